"""Core test fixtures for the cardsmith project."""

import os
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest
import yaml
from typer.testing import CliRunner

from cardsmith.config.user_config import UserConfig
from cardsmith.models.artifact import ArtifactRef, MediumHandle
from cardsmith.profile.loader import load_profile
from cardsmith.profile.models import DeviceProfile


MBR_SIGNATURE = b"\x55\xaa"


def make_disk_image(path: Path, size: int = 4096) -> Path:
    """Write a tiny file that looks like a raw disk image (MBR signature at 510)."""
    data = bytearray(size)
    data[510:512] = MBR_SIGNATURE
    path.write_bytes(bytes(data))
    return path


# ---- Base Fixtures ----


@pytest.fixture
def cli_runner() -> CliRunner:
    """Return a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def dietpi_profile() -> DeviceProfile:
    """Built-in DietPi profile with an SPI display and touch panel."""
    return load_profile("dietpi-lcd35")


@pytest.fixture
def raspios_profile() -> DeviceProfile:
    """Built-in Raspberry Pi OS profile with an SPI display and touch panel."""
    return load_profile("raspios-lcd28")


@pytest.fixture
def headless_profile() -> DeviceProfile:
    """Built-in Raspberry Pi OS profile without a display."""
    return load_profile("raspios-headless")


@pytest.fixture(params=["dietpi-lcd35", "raspios-lcd28", "raspios-headless"])
def any_builtin_profile(request: pytest.FixtureRequest) -> DeviceProfile:
    """Each built-in profile in turn."""
    return load_profile(request.param)


@pytest.fixture
def wifi_profile(dietpi_profile: DeviceProfile) -> DeviceProfile:
    """DietPi profile with SSH on, a primary network and one open backup."""
    return dietpi_profile.with_overrides(
        network={
            "ssid": "NetA",
            "psk": "Secret1",
            "backup_networks": [{"ssid": "CafeOpen"}],
        },
        system={"ssh": True},
    )


@pytest.fixture
def medium() -> MediumHandle:
    return MediumHandle(
        device_path="/dev/sdz",
        size=32_010_928_128,
        model="SD Card Reader",
        vendor="Generic",
        serial="000000001234",
        transport="usb",
    )


@pytest.fixture
def make_image():
    """Factory writing a raw disk image of a given size."""
    return make_disk_image


@pytest.fixture
def disk_image(tmp_path: Path) -> Path:
    return make_disk_image(tmp_path / "image.img")


@pytest.fixture
def image_artifact(disk_image: Path) -> ArtifactRef:
    return ArtifactRef(locator=str(disk_image), min_size=1024)


@pytest.fixture
def mount_root(tmp_path: Path) -> Path:
    """Empty directory standing in for a mounted boot partition."""
    root = tmp_path / "bootfs"
    root.mkdir()
    return root


@pytest.fixture
def mock_enumerator(medium: MediumHandle) -> Mock:
    """Enumerator that keeps reporting *medium* unchanged."""
    enumerator = Mock()
    enumerator.resolve.return_value = medium
    enumerator.list_media.return_value = [medium]
    enumerator.describe_contents.return_value = ["/dev/sdz1: bootfs (vfat, 512.00 MB)"]
    return enumerator


# ---- Test Isolation Fixtures ----


@pytest.fixture
def isolated_config(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[UserConfig, None, None]:
    """Create an isolated UserConfig instance with temporary directories.

    - Writes a minimal config file in a temporary directory
    - Clears CARDSMITH_* environment variables
    - Points XDG directories at the temporary directory
    """
    config_dir = tmp_path / ".config" / "cardsmith"
    config_dir.mkdir(parents=True)
    config_file = config_dir / "config.yaml"

    initial_config: dict[str, Any] = {
        "log_level": "INFO",
        "workdir": str(tmp_path / "work"),
        "download_attempts": 3,
    }
    with config_file.open("w") as f:
        yaml.dump(initial_config, f)

    for key in list(os.environ):
        if key.startswith("CARDSMITH_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / ".config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / ".cache"))

    yield UserConfig(cli_config_path=config_file)


@pytest.fixture
def isolated_cli_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[dict[str, Any], None, None]:
    """Run CLI commands from an empty temporary directory with a clean environment."""
    for key in list(os.environ):
        if key.startswith("CARDSMITH_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / ".config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / ".cache"))
    monkeypatch.chdir(tmp_path)

    output_dir = tmp_path / "output"
    yield {"temp_dir": tmp_path, "output_dir": output_dir}

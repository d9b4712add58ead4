"""Tests for ConfigOverlay building and writing."""

import stat
import tomllib
from pathlib import Path
from unittest.mock import Mock

import pytest

from cardsmith.core.errors import ConfigWriteError, FileSystemError, OverlayError
from cardsmith.models.verification import CheckOutcome, VerificationStatus
from cardsmith.overlay.builder import (
    ConfigOverlay,
    boot_config,
    display_overlay_line,
    package_list,
    touch_overlay_line,
    validate_bundle,
)
from cardsmith.overlay.bundle import ConfigBundle, ConfigFile, Fragment
from cardsmith.overlay.formats import parse_assignments, parse_wpa_supplicant
from cardsmith.pipeline.verification import VerificationEngine
from cardsmith.profile.models import ConfigSchema


class TestBuildDeterminism:
    """The same profile always produces the same bundle."""

    def test_build_twice_gives_identical_bundle(self, any_builtin_profile):
        """Two builds agree on paths, content and digest."""
        first = ConfigOverlay().build(any_builtin_profile)
        second = ConfigOverlay().build(any_builtin_profile)

        assert first == second
        assert first.digest() == second.digest()

    def test_digest_changes_with_content(self, dietpi_profile):
        """Changing one profile field changes the digest."""
        base = ConfigOverlay().build(dietpi_profile)
        renamed = ConfigOverlay().build(
            dietpi_profile.with_overrides(system={"hostname": "kiosk"})
        )
        assert base.digest() != renamed.digest()

    def test_every_file_ends_with_newline(self, any_builtin_profile):
        bundle = ConfigOverlay().build(any_builtin_profile)
        for f in bundle.files:
            assert f.content.endswith("\n"), f.path

    def test_all_files_use_profile_schema(self, any_builtin_profile):
        bundle = ConfigOverlay().build(any_builtin_profile)
        assert all(f.config_schema == bundle.config_schema for f in bundle.files)


class TestDietPiBundle:
    """File set and content for the DietPi layout."""

    def test_paths_in_fragment_order(self, dietpi_profile):
        """Files appear boot, network, system, modules, script, docs."""
        bundle = ConfigOverlay().build(dietpi_profile)

        assert bundle.paths() == [
            "config.txt",
            "cardsmith/99-calibration.conf",
            "dietpi-wifi.txt",
            "dietpi.txt",
            "cardsmith/packages.txt",
            "ssh",
            "cardsmith/modules.conf",
            "Automation_Custom_Script.sh",
            "cardsmith/README.txt",
            "cardsmith/PINOUT.txt",
            "cardsmith/TROUBLESHOOTING.txt",
        ]

    def test_network_file_holds_primary_then_backup(self, wifi_profile):
        """The primary network comes first, the open backup after it."""
        bundle = ConfigOverlay().build(wifi_profile)
        values = parse_assignments(bundle.get("dietpi-wifi.txt").content)

        assert values["aWIFI_SSID[0]"] == "NetA"
        assert values["aWIFI_KEY[0]"] == "Secret1"
        assert values["aWIFI_KEYMGR[0]"] == "WPA-PSK"
        assert values["aWIFI_SSID[1]"] == "CafeOpen"
        assert values["aWIFI_KEY[1]"] == ""
        assert values["aWIFI_KEYMGR[1]"] == "NONE"
        assert "aWIFI_SSID[2]" not in values

    def test_system_file_seeds_password_and_ssh(self, dietpi_profile):
        bundle = ConfigOverlay().build(dietpi_profile)
        values = parse_assignments(bundle.get("dietpi.txt").content)

        assert values["AUTO_SETUP_GLOBAL_PASSWORD"] == "dietpi"
        assert values["AUTO_SETUP_SSH_SERVER_INDEX"] == "-1"
        assert values["AUTO_SETUP_NET_HOSTNAME"] == "dietpi-lcd"
        assert values["AUTO_SETUP_AUTOMATED"] == "1"

    def test_ssh_marker_omitted_when_ssh_disabled(self, dietpi_profile):
        profile = dietpi_profile.with_overrides(system={"ssh": False})
        bundle = ConfigOverlay().build(profile)

        assert bundle.get("ssh") is None
        values = parse_assignments(bundle.get("dietpi.txt").content)
        assert values["AUTO_SETUP_SSH_SERVER_INDEX"] == "0"

    def test_script_is_executable_bash(self, dietpi_profile):
        script = ConfigOverlay().build(dietpi_profile).get("Automation_Custom_Script.sh")

        assert script.mode == 0o755
        assert script.fragment == Fragment.SCRIPT
        assert script.content.startswith("#!/bin/bash\n")
        assert "set -eu" in script.content.splitlines()

    def test_password_with_quote_is_shell_quoted(self, dietpi_profile):
        profile = dietpi_profile.with_overrides(account={"password": "it's secret"})
        content = ConfigOverlay().build(profile).get("dietpi.txt").content

        assert "AUTO_SETUP_GLOBAL_PASSWORD='it'\\''s secret'" in content
        assert parse_assignments(content)["AUTO_SETUP_GLOBAL_PASSWORD"] == "it's secret"


class TestRaspiosBundle:
    """File set and content for the Raspberry Pi OS layout."""

    def test_wpa_supplicant_priorities(self, raspios_profile):
        """Networks are written in order with descending priority."""
        profile = raspios_profile.with_overrides(
            network={
                "ssid": "NetA",
                "psk": "Secret1",
                "backup_networks": [
                    {"ssid": "NetB", "psk": "another-key"},
                    {"ssid": "Hidden", "hidden": True},
                ],
            }
        )
        content = ConfigOverlay().build(profile).get("wpa_supplicant.conf").content
        settings, networks = parse_wpa_supplicant(content)

        assert settings["country"] == "US"
        assert [n["ssid"] for n in networks] == ["NetA", "NetB", "Hidden"]
        assert [n["priority"] for n in networks] == ["3", "2", "1"]
        assert networks[0]["psk"] == "Secret1"
        assert networks[2]["key_mgmt"] == "NONE"
        assert networks[2]["scan_ssid"] == "1"
        assert "psk" not in networks[2]

    def test_custom_toml_has_user_and_ssh(self, raspios_profile):
        content = ConfigOverlay().build(raspios_profile).get("custom.toml").content

        assert 'name = "pi"' in content
        assert 'password = "raspberry"' in content
        assert "password_encrypted = false" in content
        assert "[ssh]\nenabled = true" in content

    def test_custom_toml_carries_primary_network(self, raspios_profile):
        profile = raspios_profile.with_overrides(
            network={"ssid": 'Net "A"', "psk": "Secret1", "country": "DE"}
        )
        content = ConfigOverlay().build(profile).get("custom.toml").content
        wlan = tomllib.loads(content)["wlan"]

        assert wlan == {
            "ssid": 'Net "A"',
            "password": "Secret1",
            "password_encrypted": False,
            "hidden": False,
            "country": "DE",
        }

    def test_custom_toml_without_network_has_no_wlan(self, raspios_profile):
        content = ConfigOverlay().build(raspios_profile).get("custom.toml").content
        assert "[wlan]" not in content

    def test_custom_toml_skips_wlan_when_wifi_disabled(self, raspios_profile):
        profile = raspios_profile.with_overrides(
            network={"ssid": "NetA", "psk": "Secret1", "wifi_enabled": False}
        )
        content = ConfigOverlay().build(profile).get("custom.toml").content
        assert "[wlan]" not in content

    def test_script_lives_under_cardsmith_dir(self, raspios_profile):
        bundle = ConfigOverlay().build(raspios_profile)
        assert bundle.get("cardsmith/firstboot.sh") is not None
        assert bundle.get("Automation_Custom_Script.sh") is None

    def test_readme_tells_operator_to_run_script(self, raspios_profile):
        readme = ConfigOverlay().build(raspios_profile).get("cardsmith/README.txt")
        assert "sudo bash /boot/firmware/cardsmith/firstboot.sh" in readme.content


class TestBootConfig:
    """config.txt lines for displays, touch and radios."""

    def test_display_overlay_line(self, dietpi_profile):
        assert display_overlay_line(dietpi_profile) == (
            "dtoverlay=fbtft,spi0-0,ili9486,width=480,height=320,rotate=90,"
            "speed=32000000,fps=30,dc_pin=24,reset_pin=25,led_pin=18"
        )

    def test_touch_overlay_line(self, dietpi_profile):
        assert touch_overlay_line(dietpi_profile) == (
            "dtoverlay=ads7846,cs=1,penirq=17,penirq_pull=2,speed=2000000,"
            "swapxy=1,pmax=255,xohms=150,xmin=200,xmax=3900,ymin=200,ymax=3900"
        )

    def test_xpt2046_uses_ads7846_overlay(self, raspios_profile):
        assert touch_overlay_line(raspios_profile).startswith("dtoverlay=ads7846,")

    def test_panel_disables_autodetect_and_mirrors_hdmi(self, dietpi_profile):
        lines = boot_config(dietpi_profile).splitlines()

        assert "display_auto_detect=0" in lines
        assert "camera_auto_detect=0" in lines
        assert "hdmi_cvt=480 320 60 6 0 0 0" in lines
        assert "dtoverlay=disable-bt" in lines
        assert "dtparam=act_led_trigger=mmc0" in lines
        assert "gpu_mem=128" in lines

    def test_headless_has_no_panel_lines(self, headless_profile):
        lines = boot_config(headless_profile).splitlines()

        assert display_overlay_line(headless_profile) is None
        assert "display_auto_detect=0" not in lines
        assert "dtoverlay=disable-bt" not in lines
        assert "dtparam=spi=off" in lines
        assert "dtparam=i2c_arm=on" in lines
        assert "enable_uart=1" in lines
        assert "dtparam=audio=off" in lines

    def test_wifi_disabled_adds_overlay(self, headless_profile):
        profile = headless_profile.with_overrides(network={"wifi_enabled": False})
        assert "dtoverlay=disable-wifi" in boot_config(profile).splitlines()


class TestPackageList:
    def test_implied_packages_come_first(self, dietpi_profile):
        assert package_list(dietpi_profile) == [
            "fbset",
            "xserver-xorg-input-evdev",
            "evtest",
            "xserver-xorg",
            "xinit",
            "x11-xserver-utils",
        ]

    def test_duplicates_removed(self, raspios_profile):
        """evtest is implied by touch and also listed explicitly."""
        packages = package_list(raspios_profile)
        assert packages.count("evtest") == 1
        assert packages == [
            "fbset",
            "xserver-xorg-input-evdev",
            "evtest",
            "i2c-tools",
            "fbi",
        ]


class TestValidateBundle:
    """Bundle invariants enforced before writing."""

    def _file(self, path, schema=ConfigSchema.DIETPI, fragment=Fragment.BOOT, content="x\n"):
        return ConfigFile(
            path=path, content=content, fragment=fragment, config_schema=schema
        )

    def test_schema_mix_rejected(self):
        bundle = ConfigBundle(
            profile_name="mixed",
            config_schema=ConfigSchema.DIETPI,
            files=(
                self._file("config.txt"),
                self._file(
                    "wpa_supplicant.conf",
                    schema=ConfigSchema.RASPIOS,
                    fragment=Fragment.NETWORK,
                ),
            ),
        )
        with pytest.raises(OverlayError, match="raspios layout in a dietpi bundle"):
            validate_bundle(bundle)

    def test_duplicate_path_rejected(self):
        bundle = ConfigBundle(
            profile_name="dup",
            config_schema=ConfigSchema.DIETPI,
            files=(self._file("config.txt"), self._file("config.txt")),
        )
        with pytest.raises(OverlayError, match="Duplicate path config.txt"):
            validate_bundle(bundle)

    def test_missing_newline_rejected(self):
        bundle = ConfigBundle(
            profile_name="nl",
            config_schema=ConfigSchema.DIETPI,
            files=(self._file("config.txt", content="no newline"),),
        )
        with pytest.raises(OverlayError, match="newline"):
            validate_bundle(bundle)

    def test_fragment_order_enforced(self):
        bundle = ConfigBundle(
            profile_name="order",
            config_schema=ConfigSchema.DIETPI,
            files=(
                self._file("dietpi.txt", fragment=Fragment.SYSTEM),
                self._file("config.txt", fragment=Fragment.BOOT),
            ),
        )
        with pytest.raises(OverlayError, match="out of fragment order"):
            validate_bundle(bundle)

    def test_path_escaping_surface_rejected(self):
        with pytest.raises(ValueError):
            self._file("../etc/passwd")


class TestOverlayWrite:
    """Writing bundles to a mounted surface."""

    def test_write_creates_every_file(self, dietpi_profile, mount_root):
        overlay = ConfigOverlay()
        bundle = overlay.build(dietpi_profile)

        written = overlay.write(bundle, mount_root)

        assert written == [mount_root / p for p in bundle.paths()]
        for f in bundle.files:
            assert (mount_root / f.path).read_text() == f.content

    def test_script_written_executable(self, dietpi_profile, mount_root):
        overlay = ConfigOverlay()
        overlay.write(overlay.build(dietpi_profile), mount_root)

        mode = (mount_root / "Automation_Custom_Script.sh").stat().st_mode
        assert stat.S_IMODE(mode) == 0o755

    def test_rewrite_is_idempotent(self, dietpi_profile, mount_root):
        overlay = ConfigOverlay()
        bundle = overlay.build(dietpi_profile)
        overlay.write(bundle, mount_root)
        before = {p: (mount_root / p).read_bytes() for p in bundle.paths()}

        overlay.write(bundle, mount_root)

        assert {p: (mount_root / p).read_bytes() for p in bundle.paths()} == before

    def test_write_failure_raises_config_write_error(self, dietpi_profile):
        file_adapter = Mock()
        file_adapter.write_atomic.side_effect = FileSystemError("disk full")
        overlay = ConfigOverlay(file_adapter=file_adapter)
        bundle = overlay.build(dietpi_profile)

        with pytest.raises(ConfigWriteError, match="disk full"):
            overlay.write(bundle, Path("/mnt/boot"))


class TestRoundTrip:
    """Build, write and verify with no errors for every built-in profile."""

    def test_builtin_profiles_verify_perfect(self, any_builtin_profile, mount_root):
        overlay = ConfigOverlay()
        overlay.write(overlay.build(any_builtin_profile), mount_root)

        result = VerificationEngine().verify(mount_root, any_builtin_profile)

        assert result.errors == 0, result.findings()
        assert result.warnings == 0, result.findings()
        assert result.status == VerificationStatus.PERFECT

    def test_network_and_ssh_scenario(self, wifi_profile, mount_root):
        """SSID NetA with key Secret1 and SSH on verifies end to end."""
        overlay = ConfigOverlay()
        overlay.write(overlay.build(wifi_profile), mount_root)

        result = VerificationEngine().verify(mount_root, wifi_profile)

        assert (mount_root / "ssh").is_file()
        assert result.outcome_of("network.ssid") == CheckOutcome.SUCCESS
        assert result.outcome_of("network.psk") == CheckOutcome.SUCCESS
        assert result.outcome_of("network.backups") == CheckOutcome.SUCCESS
        assert result.outcome_of("ssh.marker") == CheckOutcome.SUCCESS
        assert result.errors == 0

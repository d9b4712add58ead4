"""Mount providers exposing a medium's boot partition as a directory."""

import re
import shutil
import subprocess
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from cardsmith.core.errors import ConfigWriteError
from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.models.artifact import MediumHandle


MOUNT_TIMEOUT = 10
PARTITION_WAIT_SECONDS = 10.0


def boot_partition_path(device_path: str) -> str:
    """First partition of a disk: ``/dev/sdb`` -> ``/dev/sdb1``, ``/dev/mmcblk0`` -> ``/dev/mmcblk0p1``."""
    separator = "p" if device_path[-1:].isdigit() else ""
    return f"{device_path}{separator}1"


def extract_mount_point(output: str) -> str | None:
    # "Mounted /dev/sdb1 at /run/media/user/bootfs"
    match = re.search(r" at (/\S+?)\.?$", output.strip())
    return match.group(1) if match else None


def info_mount_point(info_output: str) -> str | None:
    match = re.search(r"^\s*MountPoints?:\s*(/\S+)", info_output, re.MULTILINE)
    if match:
        return match.group(1)
    lines = info_output.splitlines()
    for i, line in enumerate(lines):
        if "MountPoints:" in line and i + 1 < len(lines):
            candidate = lines[i + 1].strip()
            if candidate.startswith("/"):
                return candidate
    return None


class StaticMount:
    """A surface that is already mounted (or a plain directory)."""

    def __init__(self, root: Path) -> None:
        self.root = root

    @contextmanager
    def mount(self, medium: MediumHandle) -> Iterator[Path]:
        if not self.root.is_dir():
            raise ConfigWriteError(
                f"Mount root {self.root} is not a directory",
                {"device": medium.device_path},
            )
        yield self.root


class UdisksMount(StructlogMixin):
    """Mounts the boot partition with ``udisksctl`` and unmounts it afterwards."""

    def __init__(
        self,
        partition_wait: float = PARTITION_WAIT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__()
        self.partition_wait = partition_wait
        self.sleep = sleep

    def _run(self, *args: str, timeout: int = MOUNT_TIMEOUT) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["udisksctl", *args], capture_output=True, text=True, timeout=timeout, check=False
        )

    def _wait_for_partition(self, medium: MediumHandle, partition: str) -> None:
        # The kernel rereads the partition table asynchronously after a raw write
        if shutil.which("partprobe"):
            subprocess.run(
                ["partprobe", medium.device_path],
                capture_output=True,
                timeout=MOUNT_TIMEOUT,
                check=False,
            )
        waited = 0.0
        while not Path(partition).exists():
            if waited >= self.partition_wait:
                raise ConfigWriteError(
                    f"Boot partition {partition} did not appear",
                    {"device": medium.device_path},
                )
            self.sleep(0.5)
            waited += 0.5

    @contextmanager
    def mount(self, medium: MediumHandle) -> Iterator[Path]:
        if not shutil.which("udisksctl"):
            raise ConfigWriteError("`udisksctl` command not found. Please install udisks2.")

        partition = boot_partition_path(medium.device_path)
        self._wait_for_partition(medium, partition)

        try:
            result = self._run("mount", "--no-user-interaction", "-b", partition)
        except subprocess.TimeoutExpired as e:
            raise ConfigWriteError(
                f"Timeout mounting {partition}", {"device": medium.device_path}
            ) from e

        stderr = result.stderr.lower()
        if result.returncode == 0:
            mount_point = extract_mount_point(result.stdout)
        elif "already mounted" in stderr:
            mount_point = info_mount_point(self._run("info", "-b", partition).stdout)
        elif "not authorized" in stderr:
            raise ConfigWriteError(
                f"Authorization failed for mounting {partition}",
                {"device": medium.device_path},
            )
        else:
            raise ConfigWriteError(
                f"Failed to mount {partition}: {result.stderr.strip()}",
                {"device": medium.device_path},
            )

        if not mount_point:
            raise ConfigWriteError(
                f"Could not determine where {partition} was mounted",
                {"device": medium.device_path},
            )

        self.logger.info("boot_partition_mounted", partition=partition, mount_point=mount_point)
        try:
            yield Path(mount_point)
        finally:
            self._unmount(partition)

    def _unmount(self, partition: str) -> None:
        try:
            result = self._run("unmount", "--no-user-interaction", "-b", partition)
        except subprocess.TimeoutExpired:
            self.logger.warning("unmount_timed_out", partition=partition)
            return
        if result.returncode != 0:
            self.logger.warning(
                "unmount_failed", partition=partition, stderr=result.stderr.strip()
            )
        else:
            self.logger.debug("boot_partition_unmounted", partition=partition)


__all__ = [
    "StaticMount",
    "UdisksMount",
    "boot_partition_path",
    "extract_mount_point",
    "info_mount_point",
]

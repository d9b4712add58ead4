"""Linux block device adapters: enumeration with lsblk and raw image writes."""

import json
import os
import shutil
import stat
import subprocess
from pathlib import Path

from cardsmith.core.errors import CardsmithError, WriteFailureReason, WriterError
from cardsmith.core.structlog_logger import get_struct_logger
from cardsmith.models.artifact import MediumHandle, format_size
from cardsmith.protocols.io_protocols import ByteProgress


logger = get_struct_logger(__name__)

LSBLK_COLUMNS = "NAME,PATH,SIZE,MODEL,VENDOR,SERIAL,TYPE,TRAN,RM,MOUNTPOINT,FSTYPE,LABEL"
DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024
REMOVABLE_TRANSPORTS = {"usb", "mmc"}


class EnumerationError(CardsmithError):
    """Block devices could not be listed."""


def _text(value: object) -> str:
    return str(value).strip() if value is not None else ""


class LsblkEnumerator:
    """Lists removable disks through ``lsblk -J``."""

    def __init__(self, lsblk_path: str | None = None, timeout: float = 10.0) -> None:
        self.lsblk_path = lsblk_path
        self.timeout = timeout

    def _lsblk(self, *args: str) -> list[dict[str, object]]:
        lsblk = self.lsblk_path or shutil.which("lsblk")
        if not lsblk:
            raise EnumerationError("`lsblk` command not found. Please install util-linux.")
        cmd = [lsblk, "-b", "-J", "-o", LSBLK_COLUMNS, *args]
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout, check=False
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise EnumerationError(f"lsblk failed: {e}") from e
        if proc.returncode != 0:
            # lsblk exits non-zero for a path that is not a block device
            logger.debug("lsblk_failed", args=args, stderr=proc.stderr.strip())
            return []
        try:
            payload = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError as e:
            raise EnumerationError(f"lsblk returned non-JSON output: {e}") from e
        devices = payload.get("blockdevices", [])
        return devices if isinstance(devices, list) else []

    @staticmethod
    def _to_handle(entry: dict[str, object]) -> MediumHandle:
        transport = _text(entry.get("tran")).lower()
        removable = entry.get("rm") in (True, 1, "1") or transport in REMOVABLE_TRANSPORTS
        return MediumHandle(
            device_path=_text(entry.get("path")) or f"/dev/{_text(entry.get('name'))}",
            size=int(entry.get("size") or 0),  # type: ignore[call-overload]
            model=_text(entry.get("model")),
            vendor=_text(entry.get("vendor")),
            serial=_text(entry.get("serial")),
            removable=removable,
            transport=transport,
        )

    def list_media(self) -> list[MediumHandle]:
        media = [
            self._to_handle(entry)
            for entry in self._lsblk()
            if entry.get("type") == "disk"
        ]
        removable = [m for m in media if m.removable and m.size > 0]
        logger.debug("media_listed", total=len(media), removable=len(removable))
        return removable

    def resolve(self, medium: MediumHandle) -> MediumHandle | None:
        entries = [
            e for e in self._lsblk("--nodeps", medium.device_path) if e.get("type") == "disk"
        ]
        if not entries:
            return None
        return self._to_handle(entries[0])

    def describe_contents(self, medium: MediumHandle) -> list[str]:
        lines = []
        for disk in self._lsblk(medium.device_path):
            children = disk.get("children") or []
            for part in children if isinstance(children, list) else []:
                label = _text(part.get("label")) or "no label"
                fstype = _text(part.get("fstype")) or "unknown filesystem"
                size = format_size(int(part.get("size") or 0))
                line = f"{_text(part.get('path'))}: {label} ({fstype}, {size})"
                if part.get("mountpoint"):
                    line += f", mounted at {_text(part.get('mountpoint'))}"
                lines.append(line)
        return lines or ["no partitions found"]


def _open_device(path: str) -> int:
    flags = os.O_WRONLY
    if hasattr(os, "O_SYNC"):
        flags |= os.O_SYNC
    return os.open(path, flags)


class StreamingBlockWriter:
    """Copies a raw image onto a device in fixed-size chunks, then fsyncs."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    def write(
        self,
        image_path: Path,
        medium: MediumHandle,
        on_progress: ByteProgress | None = None,
    ) -> None:
        device = medium.device_path
        try:
            mode = os.stat(device).st_mode
        except FileNotFoundError as e:
            raise WriterError(
                WriteFailureReason.TARGET_NOT_FOUND, f"{device} does not exist"
            ) from e
        if not (stat.S_ISBLK(mode) or stat.S_ISREG(mode)):
            raise WriterError(
                WriteFailureReason.TARGET_NOT_FOUND,
                f"{device} is not a block device",
            )

        total = image_path.stat().st_size
        if medium.size and total > medium.size:
            raise WriterError(
                WriteFailureReason.IO_ERROR,
                f"image is {format_size(total)} but {device} holds only "
                f"{format_size(medium.size)}",
            )

        # Always from byte zero; partial writes are never resumed
        fd = _open_device(device)
        done = 0
        try:
            with image_path.open("rb") as src:
                for chunk in iter(lambda: src.read(self.chunk_size), b""):
                    view = memoryview(chunk)
                    while view:
                        written = os.write(fd, view)
                        view = view[written:]
                    done += len(chunk)
                    if on_progress:
                        on_progress(done, total)
            os.fsync(fd)
        finally:
            os.close(fd)

        logger.info("image_streamed", device=device, bytes=done)


__all__ = ["EnumerationError", "LsblkEnumerator", "StreamingBlockWriter"]

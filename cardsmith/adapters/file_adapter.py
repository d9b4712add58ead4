"""File adapter for the configuration surface and the local workspace."""

import os
import tempfile
from pathlib import Path

from cardsmith.core.errors import FileSystemError
from cardsmith.core.structlog_logger import get_struct_logger


logger = get_struct_logger(__name__)


class FileSystemAdapter:
    """Filesystem operations with cardsmith error wrapping."""

    def read_text(self, path: Path, encoding: str = "utf-8") -> str:
        try:
            return path.read_text(encoding=encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise FileSystemError(
                f"Cannot read {path}: {e}", {"path": str(path), "operation": "read"}
            ) from e

    def read_text_if_exists(self, path: Path, encoding: str = "utf-8") -> str | None:
        """Content of *path*, or None when it is not a regular file."""
        if not path.is_file():
            return None
        return self.read_text(path, encoding)

    def mkdir(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(
                f"Cannot create directory {path}: {e}",
                {"path": str(path), "operation": "mkdir"},
            ) from e

    def write_atomic(
        self, path: Path, content: str, mode: int = 0o644, encoding: str = "utf-8"
    ) -> None:
        """Write *content* to *path* without ever leaving a partial file.

        Data goes to a temp file in the same directory, is fsynced, then renamed
        over the target with ``os.replace``.
        """
        self.mkdir(path.parent)
        data = content.encode(encoding)
        fd, tmp_name = -1, ""
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
            with os.fdopen(fd, "wb") as fh:
                fd = -1
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
            tmp_name = ""
            self._fsync_dir(path.parent)
        except OSError as e:
            raise FileSystemError(
                f"Cannot write {path}: {e}", {"path": str(path), "operation": "write"}
            ) from e
        finally:
            if fd >= 0:
                os.close(fd)
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)

        logger.debug("file_written", path=str(path), bytes=len(data))

    @staticmethod
    def _fsync_dir(directory: Path) -> None:
        # FAT boot partitions and some platforms refuse O_RDONLY on directories
        try:
            dir_fd = os.open(directory, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(dir_fd)
        except OSError:
            logger.debug("directory_fsync_unsupported", path=str(directory))
        finally:
            os.close(dir_fd)


def create_file_adapter() -> FileSystemAdapter:
    return FileSystemAdapter()


__all__ = ["FileSystemAdapter", "create_file_adapter"]

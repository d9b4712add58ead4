"""Protocols for the collaborators that move bytes: download, extract, write."""

from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

from cardsmith.models.artifact import ArtifactRef, MediumHandle


# (bytes done, bytes total or 0 when unknown)
ByteProgress = Callable[[int, int], None]


@runtime_checkable
class DownloaderProtocol(Protocol):
    def fetch(
        self,
        artifact: ArtifactRef,
        workdir: Path,
        on_progress: ByteProgress | None = None,
    ) -> Path:
        """Make the artifact available locally and return its path.

        Raises:
            NetworkError, ArtifactNotFoundError, DownloadTimeoutError
        """
        ...


@runtime_checkable
class ExtractorProtocol(Protocol):
    def extract(self, path: Path, workdir: Path) -> Path:
        """Return the single disk image inside *path* (or *path* itself when raw).

        Raises:
            UnsupportedFormatError, CorruptArchiveError
        """
        ...


@runtime_checkable
class BlockWriterProtocol(Protocol):
    def write(
        self,
        image_path: Path,
        medium: MediumHandle,
        on_progress: ByteProgress | None = None,
    ) -> None:
        """Write the whole image to the medium, starting at byte zero.

        Raises:
            WriterError: with reason TargetNotFound, PermissionDenied or WriteIOError
        """
        ...


__all__ = [
    "BlockWriterProtocol",
    "ByteProgress",
    "DownloaderProtocol",
    "ExtractorProtocol",
]

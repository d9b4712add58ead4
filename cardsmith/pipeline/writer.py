"""ProvisioningWriter: glue between the pipeline and the block writer."""

import errno
import time
from collections.abc import Callable
from pathlib import Path

from cardsmith.core.errors import WriteFailureReason, WriterError
from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.models.artifact import MediumHandle
from cardsmith.protocols.io_protocols import BlockWriterProtocol, ByteProgress


_TARGET_GONE = {errno.ENOENT, errno.ENODEV, errno.ENXIO}
_NO_PERMISSION = {errno.EACCES, errno.EPERM, errno.EROFS}


def classify_os_error(error: OSError) -> WriteFailureReason:
    if isinstance(error, FileNotFoundError) or error.errno in _TARGET_GONE:
        return WriteFailureReason.TARGET_NOT_FOUND
    if isinstance(error, PermissionError) or error.errno in _NO_PERMISSION:
        return WriteFailureReason.PERMISSION_DENIED
    return WriteFailureReason.IO_ERROR


class ThrottledProgress:
    """Forward progress at most once per *interval*, plus the final update."""

    def __init__(
        self,
        callback: ByteProgress | None,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.callback = callback
        self.interval = interval
        self.clock = clock
        self._last: float | None = None

    def __call__(self, done: int, total: int) -> None:
        if self.callback is None:
            return
        now = self.clock()
        final = total > 0 and done >= total
        if final or self._last is None or now - self._last >= self.interval:
            self._last = now
            self.callback(done, total)


class ProvisioningWriter(StructlogMixin):
    """Writes an image through a BlockWriterProtocol and classifies its failures."""

    def __init__(
        self,
        block_writer: BlockWriterProtocol,
        progress_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.block_writer = block_writer
        self.progress_interval = progress_interval
        self.clock = clock

    def write(
        self,
        image_path: Path,
        medium: MediumHandle,
        on_progress: ByteProgress | None = None,
    ) -> None:
        """Write *image_path* onto *medium* from byte zero.

        Raises:
            WriterError: With a TargetNotFound, PermissionDenied or WriteIOError reason
        """
        self.logger.info(
            "image_write_started",
            image=str(image_path),
            device=medium.device_path,
            medium_size=medium.size,
        )
        started = self.clock()
        progress = ThrottledProgress(on_progress, self.progress_interval, self.clock)
        try:
            self.block_writer.write(image_path, medium, progress)
        except WriterError as e:
            self.log_error_with_context(
                "image_write_failed", e, device=medium.device_path, reason=e.reason
            )
            raise
        except OSError as e:
            reason = classify_os_error(e)
            self.log_error_with_context(
                "image_write_failed", e, device=medium.device_path, reason=reason
            )
            raise WriterError(
                reason,
                f"Writing {medium.device_path} failed: {e}",
                {"device": medium.device_path},
            ) from e

        self.logger.info(
            "image_write_completed",
            device=medium.device_path,
            seconds=round(self.clock() - started, 1),
        )


__all__ = ["ProvisioningWriter", "ThrottledProgress", "classify_os_error"]

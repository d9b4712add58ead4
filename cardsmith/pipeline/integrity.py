"""Integrity checks for a fetched artifact before it is used.

The checker fails closed: anything it cannot positively recognise is rejected.
"""

import hashlib
from pathlib import Path

from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.models.artifact import ArtifactRef, ImageFormat
from cardsmith.models.pipeline import IntegrityReason, IntegrityResult


DEFAULT_MAX_ARTIFACT_SIZE = 64 * 1024**3
HEAD_BYTES = 4096
HASH_CHUNK = 1024 * 1024

MAGIC_NUMBERS: list[tuple[bytes, ImageFormat]] = [
    (b"PK\x03\x04", ImageFormat.ZIP),
    (b"\xfd7zXZ\x00", ImageFormat.XZ),
    (b"\x1f\x8b", ImageFormat.GZIP),
    (b"BZh", ImageFormat.BZIP2),
    (b"\x28\xb5\x2f\xfd", ImageFormat.ZSTD),
]

EXTENSION_FORMATS: dict[str, ImageFormat] = {
    ".zip": ImageFormat.ZIP,
    ".xz": ImageFormat.XZ,
    ".gz": ImageFormat.GZIP,
    ".bz2": ImageFormat.BZIP2,
    ".zst": ImageFormat.ZSTD,
    ".img": ImageFormat.RAW,
}

MARKUP_PREFIXES = (b"<!doctype", b"<html", b"<?xml", b"<head", b"<body", b"<error")


def looks_like_markup(head: bytes) -> bool:
    """True for HTML/XML error pages saved in place of the artifact."""
    text = head.lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    return text.startswith(MARKUP_PREFIXES)


def detect_format(head: bytes) -> ImageFormat | None:
    for magic, fmt in MAGIC_NUMBERS:
        if head.startswith(magic):
            return fmt
    # MBR boot signature; GPT disks carry a protective MBR with the same marker
    if len(head) >= 512 and head[510:512] == b"\x55\xaa":
        return ImageFormat.RAW
    return None


def format_from_name(path: Path | str) -> ImageFormat | None:
    """Guess the container format from the file extension."""
    return EXTENSION_FORMATS.get(Path(path).suffix.lower())


def read_head(path: Path, size: int = HEAD_BYTES) -> bytes:
    with path.open("rb") as fh:
        return fh.read(size)


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(HASH_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


class IntegrityChecker(StructlogMixin):
    """Validates a local artifact against its ArtifactRef."""

    def __init__(self, max_artifact_size: int = DEFAULT_MAX_ARTIFACT_SIZE) -> None:
        super().__init__()
        self.max_artifact_size = max_artifact_size

    def check(self, artifact: ArtifactRef, local_path: Path) -> IntegrityResult:
        result = self._check(artifact, local_path)
        log = self.logger.info if result.ok else self.logger.warning
        log(
            "integrity_checked",
            path=str(local_path),
            ok=result.ok,
            reason=result.reason.value,
            measured_size=result.measured_size,
            detected_format=result.detected_format.value
            if result.detected_format
            else None,
        )
        return result

    def _check(self, artifact: ArtifactRef, local_path: Path) -> IntegrityResult:
        def fail(
            reason: IntegrityReason,
            detail: str,
            size: int = 0,
            fmt: ImageFormat | None = None,
        ) -> IntegrityResult:
            return IntegrityResult(
                ok=False,
                measured_size=size,
                reason=reason,
                detected_format=fmt,
                detail=detail,
            )

        if not local_path.is_file():
            return fail(IntegrityReason.MISSING, f"{local_path} does not exist")

        try:
            size = local_path.stat().st_size
            head = read_head(local_path) if size else b""
        except OSError as e:
            return fail(IntegrityReason.MISSING, f"cannot read {local_path}: {e}")

        if size == 0:
            return fail(IntegrityReason.EMPTY, "artifact is empty")

        if size < artifact.min_size:
            return fail(
                IntegrityReason.TOO_SMALL,
                f"{size} bytes is below the expected minimum of "
                f"{artifact.min_size} bytes",
                size,
            )

        upper = artifact.max_size or self.max_artifact_size
        if size > upper:
            return fail(
                IntegrityReason.TOO_LARGE,
                f"{size} bytes exceeds the upper bound of {upper} bytes",
                size,
            )

        if looks_like_markup(head):
            return fail(
                IntegrityReason.BAD_FORMAT,
                "artifact is an HTML/XML document, probably a server error page",
                size,
            )

        detected = detect_format(head)
        if detected is None:
            return fail(
                IntegrityReason.BAD_FORMAT,
                "content matches no known archive or disk image format",
                size,
            )

        by_name = format_from_name(local_path)
        if by_name is not None and by_name != detected:
            self.logger.warning(
                "artifact_extension_mismatch",
                path=str(local_path),
                by_name=by_name.value,
                detected=detected.value,
            )

        if artifact.expected_format is not None and detected != ImageFormat(
            artifact.expected_format
        ):
            return fail(
                IntegrityReason.BAD_FORMAT,
                f"expected {ImageFormat(artifact.expected_format).value}, "
                f"found {detected.value}",
                size,
                detected,
            )

        if artifact.sha256 is not None:
            try:
                digest = sha256_file(local_path)
            except OSError as e:
                return fail(
                    IntegrityReason.MISSING, f"cannot read {local_path}: {e}", size
                )
            if digest != artifact.sha256:
                return fail(
                    IntegrityReason.CHECKSUM_MISMATCH,
                    f"sha256 {digest} does not match expected {artifact.sha256}",
                    size,
                    detected,
                )

        return IntegrityResult(
            ok=True,
            measured_size=size,
            reason=IntegrityReason.OK,
            detected_format=detected,
        )


__all__ = [
    "DEFAULT_MAX_ARTIFACT_SIZE",
    "IntegrityChecker",
    "detect_format",
    "format_from_name",
    "looks_like_markup",
    "sha256_file",
]

"""Unpack a downloaded artifact down to a single raw disk image."""

import bz2
import gzip
import lzma
import shutil
import zipfile
import zlib
from pathlib import Path

from cardsmith.core.errors import CorruptArchiveError, UnsupportedFormatError
from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.models.artifact import ImageFormat
from cardsmith.pipeline.integrity import detect_format, read_head


COPY_BUFFER = 4 * 1024 * 1024
IMAGE_SUFFIXES = (".img", ".iso", ".raw")

_STREAM_OPENERS = {
    ImageFormat.XZ: lzma.open,
    ImageFormat.GZIP: gzip.open,
    ImageFormat.BZIP2: bz2.open,
}
_STREAM_ERRORS = (lzma.LZMAError, zlib.error, EOFError, OSError)


def image_name_for(archive: Path) -> str:
    """``foo.img.xz`` -> ``foo.img``; names without an image suffix get one."""
    stem = archive.with_suffix("").name if archive.suffix else archive.name
    return stem if stem.lower().endswith(IMAGE_SUFFIXES) else f"{stem}.img"


class ArchiveExtractor(StructlogMixin):
    """Detects the container by magic number and extracts the single image."""

    def extract(self, path: Path, workdir: Path) -> Path:
        fmt = detect_format(read_head(path))
        if fmt is None:
            raise UnsupportedFormatError(
                f"{path.name} is not a recognised archive or disk image",
                {"path": str(path)},
            )
        if fmt is ImageFormat.RAW:
            self.logger.debug("artifact_is_raw_image", path=str(path))
            return path
        if fmt is ImageFormat.ZSTD:
            raise UnsupportedFormatError(
                f"{path.name} is zstd-compressed; decompress it with `unzstd` first",
                {"path": str(path), "format": fmt.value},
            )

        workdir.mkdir(parents=True, exist_ok=True)
        if fmt is ImageFormat.ZIP:
            target = self._extract_zip(path, workdir)
        else:
            target = self._extract_stream(path, workdir, fmt)

        self.logger.info(
            "artifact_extracted",
            archive=str(path),
            image=str(target),
            format=fmt.value,
            size=target.stat().st_size,
        )
        return target

    def _extract_stream(self, path: Path, workdir: Path, fmt: ImageFormat) -> Path:
        target = workdir / image_name_for(path)
        opener = _STREAM_OPENERS[fmt]
        try:
            with opener(path, "rb") as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst, COPY_BUFFER)
        except _STREAM_ERRORS as e:
            target.unlink(missing_ok=True)
            raise CorruptArchiveError(
                f"{path.name} could not be decompressed: {e}",
                {"path": str(path), "format": fmt.value},
            ) from e
        return target

    def _extract_zip(self, path: Path, workdir: Path) -> Path:
        try:
            with zipfile.ZipFile(path) as archive:
                members = [
                    info
                    for info in archive.infolist()
                    if not info.is_dir()
                    and info.filename.lower().endswith(IMAGE_SUFFIXES)
                ]
                if len(members) != 1:
                    raise UnsupportedFormatError(
                        f"{path.name} must contain exactly one disk image, "
                        f"found {len(members)}",
                        {"path": str(path)},
                    )
                target = workdir / Path(members[0].filename).name
                self._copy_member(archive, members[0], target, path)
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as e:
            raise CorruptArchiveError(
                f"{path.name} is a damaged zip archive: {e}", {"path": str(path)}
            ) from e
        return target

    def _copy_member(
        self, archive: zipfile.ZipFile, member: zipfile.ZipInfo, target: Path, path: Path
    ) -> None:
        try:
            with archive.open(member) as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst, COPY_BUFFER)
        except NotImplementedError as e:
            # zipfile raises this for compression methods it cannot decode
            target.unlink(missing_ok=True)
            raise UnsupportedFormatError(
                f"{path.name} uses an unsupported zip compression method: {e}",
                {"path": str(path)},
            ) from e
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as e:
            target.unlink(missing_ok=True)
            raise CorruptArchiveError(
                f"{path.name} is a damaged zip archive: {e}", {"path": str(path)}
            ) from e


__all__ = ["ArchiveExtractor", "image_name_for"]

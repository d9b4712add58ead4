"""Artifact and medium references handed between pipeline stages."""

from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from pydantic import Field, field_validator

from cardsmith.models.base import FrozenModel


class ImageFormat(str, Enum):
    """Container formats recognised by magic number."""

    ZIP = "zip"
    XZ = "xz"
    GZIP = "gzip"
    BZIP2 = "bzip2"
    ZSTD = "zstd"
    RAW = "raw"


class ArtifactRef(FrozenModel):
    """Where to fetch a base image and what it must look like."""

    locator: str
    min_size: int = Field(default=0, ge=0)
    max_size: int | None = Field(default=None, gt=0)
    sha256: str | None = None
    expected_format: ImageFormat | None = None

    @field_validator("sha256")
    @classmethod
    def normalize_sha256(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().lower()
        if len(value) != 64 or any(c not in "0123456789abcdef" for c in value):
            raise ValueError("sha256 must be 64 hexadecimal characters")
        return value

    @property
    def is_remote(self) -> bool:
        return urlparse(self.locator).scheme in ("http", "https")

    @property
    def filename(self) -> str:
        """Basename of the locator, used for the download target."""
        parsed = urlparse(self.locator)
        name = Path(parsed.path if parsed.scheme else self.locator).name
        return name or "image.img"


def format_size(bytes_count: int) -> str:
    """Format a byte count as a human-readable string."""
    count = float(bytes_count)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if count < 1024.0 or unit == "TB":
            return f"{count:.2f} {unit}"
        count /= 1024.0
    return f"{count:.2f} TB"


class MediumHandle(FrozenModel):
    """A removable block device selected as the provisioning target."""

    device_path: str
    size: int = Field(default=0, ge=0)
    model: str = ""
    vendor: str = ""
    serial: str = ""
    removable: bool = True
    transport: str = ""

    @property
    def resource_id(self) -> str:
        return self.device_path

    def identity(self) -> tuple[int, str, str]:
        """Values compared on re-enumeration to detect a swapped card."""
        return (self.size, self.model, self.serial)

    def describe(self) -> str:
        parts = [self.device_path, format_size(self.size)]
        label = " ".join(p for p in (self.vendor, self.model) if p)
        if label:
            parts.append(label)
        if self.serial:
            parts.append(f"serial {self.serial}")
        if self.transport:
            parts.append(self.transport)
        return " | ".join(parts)


__all__ = ["ArtifactRef", "ImageFormat", "MediumHandle", "format_size"]

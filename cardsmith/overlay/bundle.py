"""The in-memory set of files that make up a configuration overlay."""

import hashlib
from enum import Enum
from pathlib import PurePosixPath

from pydantic import Field, field_validator

from cardsmith.models.base import FrozenModel
from cardsmith.profile.models import ConfigSchema


class Fragment(str, Enum):
    """Fragment groups, in the order they are written."""

    BOOT = "boot"
    NETWORK = "network"
    SYSTEM = "system"
    MODULES = "modules"
    SCRIPT = "script"
    DOCS = "docs"


FRAGMENT_ORDER = list(Fragment)


class ConfigFile(FrozenModel):
    path: str
    content: str
    fragment: Fragment
    config_schema: ConfigSchema
    mode: int = 0o644

    @field_validator("path")
    @classmethod
    def relative_posix_path(cls, value: str) -> str:
        pure = PurePosixPath(value)
        if not value or pure.is_absolute() or ".." in pure.parts:
            raise ValueError(f"'{value}' must be a relative path inside the surface")
        return str(pure)


class ConfigBundle(FrozenModel):
    """Ordered files for one profile. Identical profiles give identical bundles."""

    profile_name: str
    config_schema: ConfigSchema
    files: tuple[ConfigFile, ...] = Field(default_factory=tuple)

    def digest(self) -> str:
        h = hashlib.sha256()
        for f in self.files:
            h.update(f.path.encode("utf-8"))
            h.update(b"\0")
            h.update(f.content.encode("utf-8"))
            h.update(b"\0")
        return h.hexdigest()

    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def get(self, path: str) -> ConfigFile | None:
        for f in self.files:
            if f.path == path:
                return f
        return None

    def by_fragment(self, fragment: Fragment) -> list[ConfigFile]:
        return [f for f in self.files if f.fragment == fragment]


__all__ = ["ConfigBundle", "ConfigFile", "FRAGMENT_ORDER", "Fragment"]

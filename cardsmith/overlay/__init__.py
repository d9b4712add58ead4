"""Configuration overlay: device profile to boot-partition files."""

from cardsmith.overlay.builder import ConfigOverlay, validate_bundle
from cardsmith.overlay.bundle import ConfigBundle, ConfigFile, Fragment
from cardsmith.overlay.schema import SchemaLayout, layout_for


__all__ = [
    "ConfigBundle",
    "ConfigFile",
    "ConfigOverlay",
    "Fragment",
    "SchemaLayout",
    "layout_for",
    "validate_bundle",
]

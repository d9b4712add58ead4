from .errors import (
    CardsmithError,
    ConfigError,
    ConfigWriteError,
    FailureKind,
    OverlayError,
    ProfileError,
    ProvisioningError,
)
from .logging import setup_logging


__all__ = [
    "CardsmithError",
    "ConfigError",
    "ConfigWriteError",
    "FailureKind",
    "OverlayError",
    "ProfileError",
    "ProvisioningError",
    "setup_logging",
]

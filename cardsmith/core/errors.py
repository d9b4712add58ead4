"""Error types for cardsmith.

Every error raised by cardsmith derives from CardsmithError. Collaborator errors
(download, extraction, block writes) are classified here so the orchestrator can map
them onto a FailureKind without inspecting messages.
"""

from enum import Enum
from typing import Any


class CardsmithError(Exception):
    """Base exception for all cardsmith errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigError(CardsmithError):
    """Invalid or unreadable user configuration."""


class ProfileError(ConfigError):
    """A device profile could not be found, parsed or validated."""


class OverlayError(CardsmithError):
    """A configuration bundle violates a build-time invariant."""


class ConfigWriteError(CardsmithError):
    """Writing a fragment onto the configuration surface failed."""


class FileSystemError(CardsmithError):
    """A local file operation failed."""


class TemplateError(CardsmithError):
    """A document template failed to render."""


# ---- Download collaborator ----


class AcquisitionError(CardsmithError):
    """Base class for artifact download failures."""

    retryable: bool = True


class NetworkError(AcquisitionError):
    """Connection-level failure while fetching an artifact."""


class DownloadTimeoutError(AcquisitionError):
    """The transfer stalled or the server did not answer in time."""


class ArtifactNotFoundError(AcquisitionError):
    """The artifact does not exist at the given locator."""

    retryable = False


# ---- Extraction collaborator ----


class ExtractionError(CardsmithError):
    """Base class for archive extraction failures."""


class UnsupportedFormatError(ExtractionError):
    """The artifact is not an archive format we can unpack."""


class CorruptArchiveError(ExtractionError):
    """The archive is truncated or its contents are damaged."""


# ---- Block writer collaborator ----


class WriteFailureReason(str, Enum):
    """Distinguishable block-writer failures."""

    TARGET_NOT_FOUND = "TargetNotFound"
    PERMISSION_DENIED = "PermissionDenied"
    IO_ERROR = "WriteIOError"


class WriterError(CardsmithError):
    """The block writer could not complete the image write."""

    def __init__(
        self,
        reason: WriteFailureReason,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.reason = reason


# ---- Medium / operator ----


class MediumNotFoundError(CardsmithError):
    """The selected medium is no longer present."""


class MediumChangedError(CardsmithError):
    """The medium identity changed since it was confirmed."""


class OperatorCancelled(CardsmithError):
    """The operator explicitly cancelled the run."""


# ---- Pipeline ----


class FailureKind(str, Enum):
    """Terminal failure kinds of a provisioning run."""

    ACQUISITION_FAILED = "AcquisitionFailed"
    INTEGRITY_FAILED = "IntegrityFailed"
    USER_ABORTED = "UserAborted"
    WRITE_FAILED = "WriteFailed"
    CONFIG_WRITE_FAILED = "ConfigWriteFailed"


REMEDIATION_HINTS: dict[FailureKind, str] = {
    FailureKind.ACQUISITION_FAILED: (
        "Check the network connection and the image URL, then start a new run."
    ),
    FailureKind.INTEGRITY_FAILED: (
        "Delete the downloaded artifact and fetch a fresh copy; "
        "a corrupt download is never retried automatically."
    ),
    FailureKind.USER_ABORTED: "Nothing was written. Start a new run when ready.",
    FailureKind.WRITE_FAILED: (
        "Reseat the card or pick another reader, check permissions, "
        "then start a new run."
    ),
    FailureKind.CONFIG_WRITE_FAILED: (
        "The configuration surface is in an unknown state. "
        "Re-flash the card with a new run."
    ),
}


class ProvisioningError(CardsmithError):
    """A stage failure classified by the orchestrator."""

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        hint: str = "",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.kind = kind
        self.hint = hint or REMEDIATION_HINTS[kind]


__all__ = [
    "AcquisitionError",
    "ArtifactNotFoundError",
    "CardsmithError",
    "ConfigError",
    "ConfigWriteError",
    "CorruptArchiveError",
    "DownloadTimeoutError",
    "ExtractionError",
    "FailureKind",
    "FileSystemError",
    "MediumChangedError",
    "MediumNotFoundError",
    "NetworkError",
    "OperatorCancelled",
    "OverlayError",
    "ProfileError",
    "ProvisioningError",
    "REMEDIATION_HINTS",
    "TemplateError",
    "UnsupportedFormatError",
    "WriteFailureReason",
    "WriterError",
]

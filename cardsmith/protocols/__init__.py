"""Protocol definitions for cardsmith collaborators."""

from cardsmith.protocols.device_protocols import (
    ConfirmationPromptProtocol,
    ConfirmationRequest,
    GuardedResource,
    MediumEnumeratorProtocol,
    MountProviderProtocol,
    RetargetProviderProtocol,
)
from cardsmith.protocols.io_protocols import (
    BlockWriterProtocol,
    ByteProgress,
    DownloaderProtocol,
    ExtractorProtocol,
)


__all__ = [
    "BlockWriterProtocol",
    "ByteProgress",
    "ConfirmationPromptProtocol",
    "ConfirmationRequest",
    "DownloaderProtocol",
    "ExtractorProtocol",
    "GuardedResource",
    "MediumEnumeratorProtocol",
    "MountProviderProtocol",
    "RetargetProviderProtocol",
]

"""Data models shared across cardsmith."""

from cardsmith.models.artifact import ArtifactRef, ImageFormat, MediumHandle
from cardsmith.models.base import CardsmithBaseModel, FrozenModel
from cardsmith.models.pipeline import (
    IntegrityReason,
    IntegrityResult,
    PipelineRun,
    PipelineState,
    ProgressEvent,
    ProvisioningReport,
)
from cardsmith.models.verification import (
    CheckOutcome,
    CheckRecord,
    VerificationResult,
    VerificationStatus,
)


__all__ = [
    "ArtifactRef",
    "CardsmithBaseModel",
    "CheckOutcome",
    "CheckRecord",
    "FrozenModel",
    "ImageFormat",
    "IntegrityReason",
    "IntegrityResult",
    "MediumHandle",
    "PipelineRun",
    "PipelineState",
    "ProgressEvent",
    "ProvisioningReport",
    "VerificationResult",
    "VerificationStatus",
]

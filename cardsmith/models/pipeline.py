"""Pipeline state, progress events and the final provisioning report."""

from enum import Enum

from pydantic import Field

from cardsmith.core.errors import FailureKind
from cardsmith.models.artifact import ImageFormat, MediumHandle
from cardsmith.models.base import CardsmithBaseModel, FrozenModel
from cardsmith.models.verification import VerificationResult, VerificationStatus


class PipelineState(str, Enum):
    INIT = "Init"
    DOWNLOADING = "Downloading"
    VERIFYING = "Verifying"
    AWAITING_CONFIRMATION = "AwaitingConfirmation"
    WRITING = "Writing"
    CONFIGURING = "Configuring"
    POST_VERIFYING = "PostVerifying"
    REPORTED = "Reported"
    FAILED = "Failed"


# Failed is reachable from every non-terminal state and is added below.
ALLOWED_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.INIT: frozenset({PipelineState.DOWNLOADING}),
    PipelineState.DOWNLOADING: frozenset({PipelineState.VERIFYING}),
    PipelineState.VERIFYING: frozenset({PipelineState.AWAITING_CONFIRMATION}),
    PipelineState.AWAITING_CONFIRMATION: frozenset({PipelineState.WRITING}),
    PipelineState.WRITING: frozenset(
        {PipelineState.CONFIGURING, PipelineState.AWAITING_CONFIRMATION}
    ),
    PipelineState.CONFIGURING: frozenset({PipelineState.POST_VERIFYING}),
    PipelineState.POST_VERIFYING: frozenset({PipelineState.REPORTED}),
    PipelineState.REPORTED: frozenset(),
    PipelineState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({PipelineState.REPORTED, PipelineState.FAILED})

# States in which the medium has not been touched yet.
PRE_WRITE_STATES = frozenset(
    {
        PipelineState.INIT,
        PipelineState.DOWNLOADING,
        PipelineState.VERIFYING,
        PipelineState.AWAITING_CONFIRMATION,
    }
)


def can_transition(current: PipelineState, target: PipelineState) -> bool:
    if current in TERMINAL_STATES:
        return False
    if target == PipelineState.FAILED:
        return True
    return target in ALLOWED_TRANSITIONS[current]


class IntegrityReason(str, Enum):
    OK = "Ok"
    MISSING = "Missing"
    EMPTY = "Empty"
    TOO_SMALL = "TooSmall"
    TOO_LARGE = "TooLarge"
    BAD_FORMAT = "BadFormat"
    CHECKSUM_MISMATCH = "ChecksumMismatch"


class IntegrityResult(FrozenModel):
    ok: bool
    measured_size: int = 0
    reason: IntegrityReason
    detected_format: ImageFormat | None = None
    detail: str = ""


class ProgressEvent(FrozenModel):
    """One observable step of a run: a state transition or a progress tick."""

    stage: str
    state: PipelineState
    message: str = ""
    done: int | None = None
    total: int | None = None


class PipelineRun(CardsmithBaseModel):
    """Mutable record of a single provisioning run, owned by the orchestrator."""

    profile_name: str
    medium: MediumHandle
    state: PipelineState = PipelineState.INIT
    history: list[PipelineState] = Field(
        default_factory=lambda: [PipelineState.INIT]
    )
    download_attempts: int = 0
    confirmation_rounds: int = 0
    retargets: int = 0
    artifact_path: str | None = None
    image_path: str | None = None
    cancel_requested: bool = False


class ProvisioningReport(CardsmithBaseModel):
    """Outcome of a run, regardless of how it ended."""

    profile_name: str
    state: PipelineState
    medium: MediumHandle
    history: list[PipelineState] = Field(default_factory=list)
    failure_kind: FailureKind | None = None
    message: str = ""
    hint: str = ""
    download_attempts: int = 0
    image_path: str | None = None
    bundle_digest: str | None = None
    written_files: list[str] = Field(default_factory=list)
    verification: VerificationResult | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.REPORTED

    @property
    def exit_code(self) -> int:
        """0 perfect, 3 warnings only, 4 verification errors, 1 failed run."""
        if not self.succeeded or self.verification is None:
            return 1
        return {
            VerificationStatus.PERFECT: 0,
            VerificationStatus.GOOD: 3,
            VerificationStatus.ISSUES: 4,
        }[self.verification.status]


__all__ = [
    "ALLOWED_TRANSITIONS",
    "IntegrityReason",
    "IntegrityResult",
    "PRE_WRITE_STATES",
    "PipelineRun",
    "PipelineState",
    "ProgressEvent",
    "ProvisioningReport",
    "TERMINAL_STATES",
    "can_transition",
]

"""PipelineOrchestrator: sequences the provisioning stages of a single run.

Stage order::

    Init -> Downloading -> Verifying -> AwaitingConfirmation -> Writing
         -> Configuring -> PostVerifying -> Reported

Any stage may end in Failed. Only this module decides whether a collaborator
failure is retried or terminal.
"""

import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from cardsmith.core.errors import (
    AcquisitionError,
    ArtifactNotFoundError,
    CardsmithError,
    ConfigWriteError,
    ExtractionError,
    FailureKind,
    MediumChangedError,
    MediumNotFoundError,
    OperatorCancelled,
    OverlayError,
    ProvisioningError,
    WriteFailureReason,
    WriterError,
)
from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.models.artifact import ArtifactRef, ImageFormat, MediumHandle
from cardsmith.models.pipeline import (
    PRE_WRITE_STATES,
    PipelineRun,
    PipelineState,
    ProgressEvent,
    ProvisioningReport,
    can_transition,
)
from cardsmith.models.verification import VerificationResult
from cardsmith.overlay.builder import ConfigOverlay
from cardsmith.overlay.bundle import ConfigBundle
from cardsmith.overlay.schema import layout_for
from cardsmith.pipeline.integrity import IntegrityChecker, detect_format, read_head
from cardsmith.pipeline.safety import SafetyGuard
from cardsmith.pipeline.verification import VerificationEngine, render_report
from cardsmith.pipeline.writer import ProvisioningWriter
from cardsmith.profile.models import DeviceProfile
from cardsmith.protocols.device_protocols import (
    ConfirmationPromptProtocol,
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


if TYPE_CHECKING:
    from cardsmith.config.settings import CardsmithSettings


EventCallback = Callable[[ProgressEvent], None]

STAGE_NAMES: dict[PipelineState, str] = {
    PipelineState.INIT: "init",
    PipelineState.DOWNLOADING: "download",
    PipelineState.VERIFYING: "integrity",
    PipelineState.AWAITING_CONFIRMATION: "confirm",
    PipelineState.WRITING: "write",
    PipelineState.CONFIGURING: "configure",
    PipelineState.POST_VERIFYING: "verify",
    PipelineState.REPORTED: "report",
    PipelineState.FAILED: "failed",
}

# Failure kind for an unclassified CardsmithError raised while in a state
STATE_FAILURES: dict[PipelineState, FailureKind] = {
    PipelineState.INIT: FailureKind.CONFIG_WRITE_FAILED,
    PipelineState.DOWNLOADING: FailureKind.ACQUISITION_FAILED,
    PipelineState.VERIFYING: FailureKind.INTEGRITY_FAILED,
    PipelineState.AWAITING_CONFIRMATION: FailureKind.WRITE_FAILED,
    PipelineState.WRITING: FailureKind.WRITE_FAILED,
    PipelineState.CONFIGURING: FailureKind.CONFIG_WRITE_FAILED,
    PipelineState.POST_VERIFYING: FailureKind.CONFIG_WRITE_FAILED,
}

MAX_RETARGETS = 1


class PipelineOrchestrator(StructlogMixin):
    """Drives one profile onto one medium and always returns a report.

    Collaborators are injected; ``create_orchestrator`` wires the defaults.
    """

    def __init__(
        self,
        downloader: DownloaderProtocol,
        extractor: ExtractorProtocol,
        writer: ProvisioningWriter,
        enumerator: MediumEnumeratorProtocol,
        mount_provider: MountProviderProtocol,
        prompt: ConfirmationPromptProtocol,
        integrity: IntegrityChecker | None = None,
        overlay: ConfigOverlay | None = None,
        verifier: VerificationEngine | None = None,
        retarget_provider: RetargetProviderProtocol | None = None,
        guard: SafetyGuard[MediumHandle] | None = None,
        workdir: Path | None = None,
        download_attempts: int = 3,
        retry_backoff_seconds: float = 2.0,
        retry_backoff_factor: float = 2.0,
        max_confirmation_rounds: int = 3,
        on_event: EventCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__()
        self.downloader = downloader
        self.extractor = extractor
        self.writer = writer
        self.enumerator = enumerator
        self.mount_provider = mount_provider
        self.integrity = integrity or IntegrityChecker()
        self.overlay = overlay or ConfigOverlay()
        self.verifier = verifier or VerificationEngine()
        self.retarget_provider = retarget_provider
        self.guard = guard or SafetyGuard(enumerator.resolve, prompt)
        self.workdir = workdir or Path.cwd() / ".cardsmith"
        self.download_attempts = download_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.retry_backoff_factor = retry_backoff_factor
        self.max_confirmation_rounds = max_confirmation_rounds
        self.on_event = on_event
        self.sleep = sleep
        self._run: PipelineRun | None = None
        self._cancel_requested = False

    # ---- public API ----

    def cancel(self) -> None:
        """Request cancellation; honored at the next boundary before Writing."""
        state = self._run.state if self._run else PipelineState.INIT
        if state not in PRE_WRITE_STATES:
            self.logger.warning("cancel_ignored", state=state.value)
            return
        self._cancel_requested = True
        self.logger.info("cancel_requested", state=state.value)

    def run(
        self,
        profile: DeviceProfile,
        artifact: ArtifactRef,
        medium: MediumHandle,
    ) -> ProvisioningReport:
        """Provision *medium* with *artifact* configured for *profile*.

        Never raises for a stage failure: the returned report carries the failure
        kind, message and remediation hint.
        """
        run = PipelineRun(profile_name=profile.name, medium=medium)
        self._run = run
        self.logger.info(
            "pipeline_started",
            profile=profile.name,
            artifact=artifact.locator,
            device=medium.device_path,
        )
        self._emit(run, f"Provisioning {medium.device_path} with {profile.name}")
        bundle: ConfigBundle | None = None
        try:
            bundle = self._build_bundle(profile)
            artifact_path = self._acquire(run, artifact)
            image_path = self._verify_artifact(run, artifact, artifact_path)
            target = self._confirm_and_write(run, image_path)
            return self._configure(run, profile, bundle, target)
        except ProvisioningError as e:
            return self._fail(run, e, bundle)
        except CardsmithError as e:
            kind = STATE_FAILURES.get(run.state, FailureKind.WRITE_FAILED)
            return self._fail(run, ProvisioningError(kind, e.message, context=e.context), bundle)
        finally:
            self._discard_extracted(run)
            self._run = None
            self._cancel_requested = False

    # ---- stages ----

    def _build_bundle(self, profile: DeviceProfile) -> ConfigBundle:
        try:
            return self.overlay.build(profile)
        except OverlayError as e:
            raise ProvisioningError(
                FailureKind.CONFIG_WRITE_FAILED,
                f"Profile {profile.name} cannot be rendered: {e.message}",
                "Fix the device profile; nothing was downloaded or written.",
            ) from e

    def _acquire(self, run: PipelineRun, artifact: ArtifactRef) -> Path:
        self._checkpoint(run)
        self._transition(run, PipelineState.DOWNLOADING, f"Fetching {artifact.locator}")
        delay = self.retry_backoff_seconds
        for attempt in range(1, self.download_attempts + 1):
            self._checkpoint(run)
            run.download_attempts = attempt
            try:
                path = self.downloader.fetch(
                    artifact, self.workdir, self._byte_progress(run)
                )
            except ArtifactNotFoundError as e:
                raise ProvisioningError(
                    FailureKind.ACQUISITION_FAILED,
                    f"Image not found: {e.message}",
                    "Check the image URL or path in the profile.",
                ) from e
            except AcquisitionError as e:
                if not e.retryable or attempt >= self.download_attempts:
                    raise ProvisioningError(
                        FailureKind.ACQUISITION_FAILED,
                        f"Download failed after {attempt} attempt(s): {e.message}",
                    ) from e
                self.logger.warning(
                    "download_retry",
                    attempt=attempt,
                    max_attempts=self.download_attempts,
                    delay=delay,
                    error=e.message,
                )
                self.sleep(delay)
                delay *= self.retry_backoff_factor
                continue
            run.artifact_path = str(path)
            return path
        # download_attempts is at least 1, the loop always returns or raises
        raise ProvisioningError(FailureKind.ACQUISITION_FAILED, "No download attempted")

    def _verify_artifact(
        self, run: PipelineRun, artifact: ArtifactRef, artifact_path: Path
    ) -> Path:
        self._checkpoint(run)
        self._transition(run, PipelineState.VERIFYING, f"Checking {artifact_path.name}")
        result = self.integrity.check(artifact, artifact_path)
        if not result.ok:
            raise ProvisioningError(
                FailureKind.INTEGRITY_FAILED,
                f"Artifact rejected ({result.reason.value}): {result.detail}",
            )
        try:
            image_path = self.extractor.extract(artifact_path, self.workdir)
            run.image_path = str(image_path)
            image_format = detect_format(read_head(image_path))
        except ExtractionError as e:
            raise ProvisioningError(
                FailureKind.INTEGRITY_FAILED, f"Extraction failed: {e.message}"
            ) from e
        except OSError as e:
            raise ProvisioningError(
                FailureKind.INTEGRITY_FAILED, f"Extracted image unreadable: {e}"
            ) from e
        if image_format is not ImageFormat.RAW:
            raise ProvisioningError(
                FailureKind.INTEGRITY_FAILED,
                f"{image_path.name} is not a disk image (no partition table found)",
            )
        return image_path

    def _confirm_and_write(self, run: PipelineRun, image_path: Path) -> MediumHandle:
        self._checkpoint(run)
        self._transition(
            run,
            PipelineState.AWAITING_CONFIRMATION,
            f"Waiting for confirmation to overwrite {run.medium.device_path}",
        )
        while True:
            try:
                target = self._await_confirmation(run, run.medium)
            except MediumNotFoundError as e:
                self._retarget(run, e)
                continue

            self._transition(run, PipelineState.WRITING, f"Writing {image_path.name}")
            try:
                self.writer.write(image_path, target, self._byte_progress(run))
            except WriterError as e:
                self.guard.revoke(target)
                if e.reason == WriteFailureReason.PERMISSION_DENIED:
                    raise ProvisioningError(
                        FailureKind.WRITE_FAILED,
                        f"Permission denied writing {target.device_path}: {e.message}",
                        "Run cardsmith with root privileges or add your user to the "
                        "disk group, then start a new run.",
                    ) from e
                self._retarget(run, e)
                self._transition(
                    run,
                    PipelineState.AWAITING_CONFIRMATION,
                    f"Retrying on {run.medium.device_path}",
                )
                continue
            self.guard.revoke(target)
            return target

    def _await_confirmation(self, run: PipelineRun, selection: MediumHandle) -> MediumHandle:
        """Ask until the confirmed identity still holds right before the write."""
        for attempt in range(1, self.max_confirmation_rounds + 1):
            self._checkpoint(run)
            run.confirmation_rounds += 1
            try:
                confirmed = self.guard.confirm(
                    selection, self._prior_contents(selection), attempt
                )
            except OperatorCancelled as e:
                raise ProvisioningError(
                    FailureKind.USER_ABORTED, f"Cancelled by operator: {e.message}"
                ) from e
            if not confirmed:
                raise ProvisioningError(
                    FailureKind.USER_ABORTED,
                    f"Overwriting {selection.device_path} was not confirmed",
                )
            self._checkpoint(run)
            try:
                return self.guard.check_unchanged(selection)
            except MediumChangedError as e:
                self.logger.warning(
                    "medium_changed_reconfirming",
                    device=selection.device_path,
                    attempt=attempt,
                    error=e.message,
                )
                self._emit(run, f"{selection.device_path} changed, confirm again")
        raise ProvisioningError(
            FailureKind.WRITE_FAILED,
            f"{selection.device_path} kept changing across "
            f"{self.max_confirmation_rounds} confirmation rounds",
            "Make sure only the intended card is inserted, then start a new run.",
        )

    def _prior_contents(self, medium: MediumHandle) -> list[str]:
        try:
            return self.enumerator.describe_contents(medium)
        except CardsmithError as e:
            self.logger.warning(
                "medium_contents_unavailable", device=medium.device_path, error=e.message
            )
            return ["contents could not be read"]

    def _retarget(self, run: PipelineRun, error: CardsmithError) -> None:
        """Swap in a corrected medium, at most once per run."""
        if self.retarget_provider is None or run.retargets >= MAX_RETARGETS:
            raise ProvisioningError(
                FailureKind.WRITE_FAILED,
                f"Writing {run.medium.device_path} failed: {error.message}",
            ) from error
        run.retargets += 1
        replacement = self.retarget_provider.retarget(run.medium, error)
        if replacement is None:
            raise ProvisioningError(
                FailureKind.WRITE_FAILED,
                f"Writing {run.medium.device_path} failed and no other target was "
                f"chosen: {error.message}",
            ) from error
        self.logger.info(
            "medium_retargeted",
            previous=run.medium.device_path,
            device=replacement.device_path,
        )
        run.medium = replacement

    def _configure(
        self,
        run: PipelineRun,
        profile: DeviceProfile,
        bundle: ConfigBundle,
        target: MediumHandle,
    ) -> ProvisioningReport:
        self._transition(
            run, PipelineState.CONFIGURING, f"Applying {len(bundle.files)} configuration files"
        )
        layout = layout_for(bundle.config_schema)
        report_note = ""
        try:
            with self.mount_provider.mount(target) as root:
                self.overlay.write(bundle, root)
                self._transition(
                    run, PipelineState.POST_VERIFYING, "Verifying the configuration"
                )
                verification = self.verifier.verify(root, profile)
                try:
                    self.overlay.write_file(
                        root / layout.report_file, render_report(verification, profile.name)
                    )
                except ConfigWriteError as e:
                    report_note = f" (report file not written: {e.message})"
        except ConfigWriteError as e:
            raise ProvisioningError(
                FailureKind.CONFIG_WRITE_FAILED, e.message, context=e.context
            ) from e

        return self._finish(run, bundle, target, verification, report_note)

    # ---- helpers ----

    def _finish(
        self,
        run: PipelineRun,
        bundle: ConfigBundle,
        target: MediumHandle,
        verification: VerificationResult,
        note: str = "",
    ) -> ProvisioningReport:
        message = f"Verification {verification.status.value}{note}"
        self._transition(run, PipelineState.REPORTED, message)
        report = ProvisioningReport(
            profile_name=run.profile_name,
            state=run.state,
            medium=target,
            history=list(run.history),
            message=message,
            download_attempts=run.download_attempts,
            image_path=run.image_path,
            bundle_digest=bundle.digest(),
            written_files=list(bundle.paths()),
            verification=verification,
        )
        self.logger.info(
            "pipeline_completed",
            profile=run.profile_name,
            device=target.device_path,
            status=verification.status.value,
            exit_code=report.exit_code,
        )
        return report

    def _fail(
        self,
        run: PipelineRun,
        error: ProvisioningError,
        bundle: ConfigBundle | None,
    ) -> ProvisioningReport:
        failed_in = run.state
        if can_transition(run.state, PipelineState.FAILED):
            self._transition(run, PipelineState.FAILED, error.message)
        self.log_error_with_context(
            "pipeline_failed",
            error,
            kind=error.kind.value,
            state=failed_in.value,
            device=run.medium.device_path,
        )
        return ProvisioningReport(
            profile_name=run.profile_name,
            state=run.state,
            medium=run.medium,
            history=list(run.history),
            failure_kind=error.kind,
            message=error.message,
            hint=error.hint,
            download_attempts=run.download_attempts,
            image_path=run.image_path,
            bundle_digest=bundle.digest() if bundle else None,
        )

    def _discard_extracted(self, run: PipelineRun) -> None:
        """Remove an image unpacked into the workdir; the artifact itself stays."""
        if not run.image_path or run.image_path == run.artifact_path:
            return
        try:
            Path(run.image_path).unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(
                "extracted_image_not_removed", image=run.image_path, error=str(e)
            )
            return
        self.logger.debug("extracted_image_removed", image=run.image_path)

    def _checkpoint(self, run: PipelineRun) -> None:
        if self._cancel_requested and run.state in PRE_WRITE_STATES:
            run.cancel_requested = True
            raise ProvisioningError(
                FailureKind.USER_ABORTED,
                f"Cancelled before writing ({run.state.value})",
            )

    def _transition(
        self, run: PipelineRun, target: PipelineState, message: str = ""
    ) -> None:
        if not can_transition(run.state, target):
            raise ProvisioningError(
                STATE_FAILURES.get(run.state, FailureKind.WRITE_FAILED),
                f"Illegal transition {run.state.value} -> {target.value}",
            )
        previous = run.state
        run.state = target
        run.history.append(target)
        self.logger.info(
            "pipeline_transition",
            previous=previous.value,
            state=target.value,
            detail=message,
        )
        self._emit(run, message)

    def _emit(self, run: PipelineRun, message: str) -> None:
        if self.on_event is None:
            return
        self.on_event(
            ProgressEvent(stage=STAGE_NAMES[run.state], state=run.state, message=message)
        )

    def _byte_progress(self, run: PipelineRun) -> ByteProgress | None:
        on_event = self.on_event
        if on_event is None:
            return None

        def report(done: int, total: int) -> None:
            on_event(
                ProgressEvent(
                    stage=STAGE_NAMES[run.state],
                    state=run.state,
                    done=done,
                    total=total,
                )
            )

        return report


def create_orchestrator(
    prompt: ConfirmationPromptProtocol,
    settings: "CardsmithSettings | None" = None,
    mount_provider: MountProviderProtocol | None = None,
    retarget_provider: RetargetProviderProtocol | None = None,
    downloader: DownloaderProtocol | None = None,
    extractor: ExtractorProtocol | None = None,
    block_writer: BlockWriterProtocol | None = None,
    enumerator: MediumEnumeratorProtocol | None = None,
    on_event: EventCallback | None = None,
) -> PipelineOrchestrator:
    """Create a PipelineOrchestrator wired with the default Linux collaborators.

    Args:
        prompt: Confirmation prompt shown before the destructive write
        settings: Runtime settings; defaults are loaded from the environment
        mount_provider: Where the configuration surface appears; udisks by default
        retarget_provider: Offers a corrected medium after a failed write
        downloader, extractor, block_writer, enumerator: Collaborator overrides
        on_event: Receives every ProgressEvent

    Returns:
        Configured PipelineOrchestrator instance
    """
    from cardsmith.adapters.archive_extractor import ArchiveExtractor
    from cardsmith.adapters.block_device import LsblkEnumerator, StreamingBlockWriter
    from cardsmith.adapters.http_downloader import HttpDownloader
    from cardsmith.adapters.mounts import UdisksMount
    from cardsmith.config.settings import CardsmithSettings

    settings = settings or CardsmithSettings()
    return PipelineOrchestrator(
        downloader=downloader or HttpDownloader(timeout=settings.request_timeout),
        extractor=extractor or ArchiveExtractor(),
        writer=ProvisioningWriter(
            block_writer or StreamingBlockWriter(chunk_size=settings.write_chunk_size),
            progress_interval=settings.progress_interval,
        ),
        enumerator=enumerator or LsblkEnumerator(),
        mount_provider=mount_provider or UdisksMount(),
        prompt=prompt,
        integrity=IntegrityChecker(max_artifact_size=settings.max_artifact_size),
        retarget_provider=retarget_provider,
        workdir=settings.workdir,
        download_attempts=settings.download_attempts,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        retry_backoff_factor=settings.retry_backoff_factor,
        max_confirmation_rounds=settings.max_confirmation_rounds,
        on_event=on_event,
    )


__all__ = ["PipelineOrchestrator", "STAGE_NAMES", "create_orchestrator"]

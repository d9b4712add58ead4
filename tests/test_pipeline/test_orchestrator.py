"""Tests for PipelineOrchestrator with fake collaborators."""

import lzma
from pathlib import Path
from unittest.mock import Mock

import pytest

from cardsmith.adapters.archive_extractor import ArchiveExtractor
from cardsmith.adapters.mounts import StaticMount
from cardsmith.core.errors import (
    ArtifactNotFoundError,
    FailureKind,
    NetworkError,
    OperatorCancelled,
    WriteFailureReason,
    WriterError,
)
from cardsmith.models.artifact import ArtifactRef, MediumHandle
from cardsmith.models.pipeline import PipelineState, ProgressEvent
from cardsmith.pipeline.orchestrator import PipelineOrchestrator
from cardsmith.pipeline.writer import ProvisioningWriter


def typed_token(request):
    """Prompt answer that types exactly the requested token."""
    return request.token


@pytest.fixture
def downloader(disk_image):
    mock = Mock()
    mock.fetch.return_value = disk_image
    return mock


@pytest.fixture
def block_writer():
    return Mock()


@pytest.fixture
def prompt():
    mock = Mock()
    mock.ask.side_effect = typed_token
    return mock


@pytest.fixture
def make_orchestrator(
    tmp_path, downloader, block_writer, prompt, mock_enumerator, mount_root
):
    """Build an orchestrator whose collaborators can be overridden per test."""

    def factory(**overrides):
        kwargs = {
            "downloader": downloader,
            "extractor": ArchiveExtractor(),
            "writer": ProvisioningWriter(block_writer),
            "enumerator": mock_enumerator,
            "mount_provider": StaticMount(mount_root),
            "prompt": prompt,
            "workdir": tmp_path / "work",
            "sleep": Mock(),
        }
        kwargs.update(overrides)
        return PipelineOrchestrator(**kwargs)

    return factory


class TestSuccessfulRun:
    """Happy path through every stage."""

    def test_run_reports_perfect(
        self, make_orchestrator, dietpi_profile, image_artifact, medium, mount_root
    ):
        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert report.state == PipelineState.REPORTED
        assert report.failure_kind is None
        assert report.exit_code == 0
        assert report.history == [
            PipelineState.INIT,
            PipelineState.DOWNLOADING,
            PipelineState.VERIFYING,
            PipelineState.AWAITING_CONFIRMATION,
            PipelineState.WRITING,
            PipelineState.CONFIGURING,
            PipelineState.POST_VERIFYING,
            PipelineState.REPORTED,
        ]
        assert (mount_root / "cardsmith" / "verification-report.txt").is_file()
        assert (mount_root / "config.txt").is_file()

    def test_writer_receives_confirmed_medium(
        self, make_orchestrator, block_writer, dietpi_profile, image_artifact, medium, disk_image
    ):
        make_orchestrator().run(dietpi_profile, image_artifact, medium)

        block_writer.write.assert_called_once()
        image_path, target, _ = block_writer.write.call_args.args
        assert image_path == disk_image
        assert target == medium

    def test_report_lists_written_files(
        self, make_orchestrator, dietpi_profile, image_artifact, medium
    ):
        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert "config.txt" in report.written_files
        assert report.bundle_digest is not None
        assert report.verification.errors == 0

    def test_events_cover_every_stage(
        self, make_orchestrator, dietpi_profile, image_artifact, medium
    ):
        events: list[ProgressEvent] = []
        orchestrator = make_orchestrator(on_event=events.append)

        orchestrator.run(dietpi_profile, image_artifact, medium)

        stages = [e.stage for e in events]
        for stage in ("download", "integrity", "confirm", "write", "configure", "verify"):
            assert stage in stages
        assert events[-1].state == PipelineState.REPORTED


class TestAcquisition:
    """Download retries and their limits."""

    def test_transient_failure_retried_then_succeeds(
        self, make_orchestrator, downloader, disk_image, dietpi_profile, image_artifact, medium
    ):
        downloader.fetch.side_effect = [NetworkError("reset"), disk_image]
        sleep = Mock()

        report = make_orchestrator(sleep=sleep).run(
            dietpi_profile, image_artifact, medium
        )

        assert report.state == PipelineState.REPORTED
        assert report.download_attempts == 2
        sleep.assert_called_once_with(2.0)

    def test_gives_up_after_three_attempts(
        self, make_orchestrator, downloader, block_writer, dietpi_profile, image_artifact, medium
    ):
        downloader.fetch.side_effect = NetworkError("connection refused")
        sleep = Mock()

        report = make_orchestrator(sleep=sleep).run(
            dietpi_profile, image_artifact, medium
        )

        assert report.state == PipelineState.FAILED
        assert report.failure_kind == FailureKind.ACQUISITION_FAILED
        assert downloader.fetch.call_count == 3
        assert report.download_attempts == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0]
        assert "after 3 attempt(s)" in report.message
        block_writer.write.assert_not_called()

    def test_not_found_is_not_retried(
        self, make_orchestrator, downloader, dietpi_profile, image_artifact, medium
    ):
        downloader.fetch.side_effect = ArtifactNotFoundError("404 for image")

        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert report.failure_kind == FailureKind.ACQUISITION_FAILED
        assert downloader.fetch.call_count == 1


class TestIntegrityStage:
    def test_undersized_artifact_rejected(
        self, make_orchestrator, block_writer, prompt, dietpi_profile, disk_image, medium
    ):
        artifact = ArtifactRef(locator=str(disk_image), min_size=50_000_000)

        report = make_orchestrator().run(dietpi_profile, artifact, medium)

        assert report.failure_kind == FailureKind.INTEGRITY_FAILED
        assert "TooSmall" in report.message
        prompt.ask.assert_not_called()
        block_writer.write.assert_not_called()

    def test_extracted_file_without_partition_table_rejected(
        self, make_orchestrator, tmp_path, dietpi_profile, image_artifact, medium
    ):
        bogus = tmp_path / "bogus.img"
        bogus.write_bytes(b"\0" * 2048)
        extractor = Mock()
        extractor.extract.return_value = bogus

        report = make_orchestrator(extractor=extractor).run(
            dietpi_profile, image_artifact, medium
        )

        assert report.failure_kind == FailureKind.INTEGRITY_FAILED
        assert "no partition table" in report.message


class TestWorkdirCleanup:
    """Images unpacked into the workdir do not outlive the run."""

    def test_extracted_image_removed_after_run(
        self, make_orchestrator, downloader, block_writer, tmp_path, disk_image,
        dietpi_profile, medium
    ):
        archive = tmp_path / "os.img.xz"
        archive.write_bytes(lzma.compress(disk_image.read_bytes()))
        downloader.fetch.return_value = archive
        written = []
        block_writer.write.side_effect = lambda image, *_: written.append(image.is_file())

        report = make_orchestrator().run(
            dietpi_profile, ArtifactRef(locator=str(archive)), medium
        )

        assert report.state == PipelineState.REPORTED
        assert written == [True]
        assert Path(report.image_path) == tmp_path / "work" / "os.img"
        assert not (tmp_path / "work" / "os.img").exists()
        assert archive.is_file()

    def test_rejected_extraction_removed(
        self, make_orchestrator, tmp_path, dietpi_profile, image_artifact, medium
    ):
        bogus = tmp_path / "bogus.img"
        bogus.write_bytes(b"\0" * 2048)
        extractor = Mock()
        extractor.extract.return_value = bogus

        report = make_orchestrator(extractor=extractor).run(
            dietpi_profile, image_artifact, medium
        )

        assert report.failure_kind == FailureKind.INTEGRITY_FAILED
        assert not bogus.exists()

    def test_raw_artifact_kept(
        self, make_orchestrator, dietpi_profile, image_artifact, medium, disk_image
    ):
        make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert disk_image.is_file()


class TestConfirmation:
    """The typed confirmation gate in front of the write."""

    @pytest.mark.parametrize("answer", ["y", "yes", "", "  ", "/dev/sdy", "YES"])
    def test_non_token_answer_aborts(
        self, make_orchestrator, prompt, block_writer, dietpi_profile, image_artifact, medium, answer
    ):
        prompt.ask.side_effect = None
        prompt.ask.return_value = answer

        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert report.state == PipelineState.FAILED
        assert report.failure_kind == FailureKind.USER_ABORTED
        block_writer.write.assert_not_called()

    def test_token_with_whitespace_accepted(
        self, make_orchestrator, prompt, dietpi_profile, image_artifact, medium
    ):
        prompt.ask.side_effect = lambda request: f"  {request.token}\n"

        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert report.state == PipelineState.REPORTED

    def test_operator_cancel_in_prompt(
        self, make_orchestrator, prompt, block_writer, dietpi_profile, image_artifact, medium
    ):
        prompt.ask.side_effect = OperatorCancelled("Ctrl-C")

        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert report.failure_kind == FailureKind.USER_ABORTED
        block_writer.write.assert_not_called()

    def test_prompt_shows_prior_contents(
        self, make_orchestrator, prompt, dietpi_profile, image_artifact, medium
    ):
        make_orchestrator().run(dietpi_profile, image_artifact, medium)

        request = prompt.ask.call_args.args[0]
        assert request.token == "/dev/sdz"
        assert request.prior_contents == ["/dev/sdz1: bootfs (vfat, 512.00 MB)"]
        assert request.changed is False

    def test_medium_changed_after_confirmation_asks_again(
        self, make_orchestrator, prompt, mock_enumerator, block_writer, dietpi_profile, image_artifact, medium
    ):
        """A different card size between confirm and write needs a new answer."""
        swapped = medium.model_copy(update={"size": 8_000_000_000})
        mock_enumerator.resolve.side_effect = [medium, swapped, swapped, swapped]

        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert prompt.ask.call_count == 2
        assert prompt.ask.call_args_list[1].args[0].changed is True
        assert report.state == PipelineState.REPORTED
        assert block_writer.write.call_args.args[1] == swapped

    def test_medium_that_keeps_changing_fails(
        self, make_orchestrator, prompt, mock_enumerator, block_writer, dietpi_profile, image_artifact, medium
    ):
        sizes = iter(range(1, 100))
        mock_enumerator.resolve.side_effect = lambda m: medium.model_copy(
            update={"size": next(sizes)}
        )

        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert report.failure_kind == FailureKind.WRITE_FAILED
        assert prompt.ask.call_count == 3
        block_writer.write.assert_not_called()

    def test_medium_removed_without_retarget_fails(
        self, make_orchestrator, mock_enumerator, block_writer, dietpi_profile, image_artifact, medium
    ):
        mock_enumerator.resolve.return_value = None

        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert report.failure_kind == FailureKind.WRITE_FAILED
        block_writer.write.assert_not_called()


class TestWriteFailures:
    """Writer errors, retargeting and permission problems."""

    def test_permission_denied_is_terminal(
        self, make_orchestrator, block_writer, dietpi_profile, image_artifact, medium
    ):
        block_writer.write.side_effect = WriterError(
            WriteFailureReason.PERMISSION_DENIED, "EACCES"
        )
        retarget = Mock()

        report = make_orchestrator(retarget_provider=retarget).run(
            dietpi_profile, image_artifact, medium
        )

        assert report.failure_kind == FailureKind.WRITE_FAILED
        assert "root" in report.hint
        retarget.retarget.assert_not_called()

    def test_target_lost_retargets_once(
        self, make_orchestrator, block_writer, prompt, mock_enumerator, dietpi_profile, image_artifact, medium
    ):
        other = MediumHandle(device_path="/dev/sdy", size=16_000_000_000, model="Reader")
        block_writer.write.side_effect = [
            WriterError(WriteFailureReason.TARGET_NOT_FOUND, "gone"),
            None,
        ]
        mock_enumerator.resolve.side_effect = lambda m: m
        retarget = Mock()
        retarget.retarget.return_value = other

        report = make_orchestrator(retarget_provider=retarget).run(
            dietpi_profile, image_artifact, medium
        )

        assert report.state == PipelineState.REPORTED
        assert report.medium == other
        assert prompt.ask.call_count == 2
        assert prompt.ask.call_args_list[1].args[0].token == "/dev/sdy"
        assert report.history.count(PipelineState.AWAITING_CONFIRMATION) == 2

    def test_second_write_failure_is_terminal(
        self, make_orchestrator, block_writer, mock_enumerator, dietpi_profile, image_artifact, medium
    ):
        other = MediumHandle(device_path="/dev/sdy", size=16_000_000_000)
        block_writer.write.side_effect = WriterError(
            WriteFailureReason.IO_ERROR, "I/O error"
        )
        mock_enumerator.resolve.side_effect = lambda m: m
        retarget = Mock()
        retarget.retarget.return_value = other

        report = make_orchestrator(retarget_provider=retarget).run(
            dietpi_profile, image_artifact, medium
        )

        assert report.failure_kind == FailureKind.WRITE_FAILED
        assert block_writer.write.call_count == 2
        retarget.retarget.assert_called_once()

    def test_plain_os_error_is_classified(
        self, make_orchestrator, block_writer, dietpi_profile, image_artifact, medium
    ):
        block_writer.write.side_effect = PermissionError(13, "Permission denied")

        report = make_orchestrator().run(dietpi_profile, image_artifact, medium)

        assert report.failure_kind == FailureKind.WRITE_FAILED
        assert "Permission denied" in report.message


class TestConfigureStage:
    def test_unmountable_surface_is_config_write_failure(
        self, make_orchestrator, tmp_path, dietpi_profile, image_artifact, medium
    ):
        missing = StaticMount(tmp_path / "not-mounted")

        report = make_orchestrator(mount_provider=missing).run(
            dietpi_profile, image_artifact, medium
        )

        assert report.failure_kind == FailureKind.CONFIG_WRITE_FAILED
        assert PipelineState.WRITING in report.history


class TestCancellation:
    def test_cancel_during_confirmation_aborts_before_write(
        self, make_orchestrator, prompt, block_writer, dietpi_profile, image_artifact, medium
    ):
        orchestrator = make_orchestrator()

        def cancel_then_confirm(request):
            orchestrator.cancel()
            return request.token

        prompt.ask.side_effect = cancel_then_confirm

        report = orchestrator.run(dietpi_profile, image_artifact, medium)

        assert report.failure_kind == FailureKind.USER_ABORTED
        block_writer.write.assert_not_called()

    def test_cancel_during_download_stops_retries(
        self, make_orchestrator, downloader, dietpi_profile, image_artifact, medium
    ):
        orchestrator = make_orchestrator()

        def fail_and_cancel(*args):
            orchestrator.cancel()
            raise NetworkError("reset")

        downloader.fetch.side_effect = fail_and_cancel

        report = orchestrator.run(dietpi_profile, image_artifact, medium)

        assert report.failure_kind == FailureKind.USER_ABORTED
        assert downloader.fetch.call_count == 1

    def test_cancel_while_writing_is_ignored(
        self, make_orchestrator, block_writer, dietpi_profile, image_artifact, medium
    ):
        orchestrator = make_orchestrator()
        block_writer.write.side_effect = lambda *args: orchestrator.cancel()

        report = orchestrator.run(dietpi_profile, image_artifact, medium)

        assert report.state == PipelineState.REPORTED

    def test_cancel_flag_cleared_between_runs(
        self, make_orchestrator, dietpi_profile, image_artifact, medium
    ):
        orchestrator = make_orchestrator()
        orchestrator.cancel()

        first = orchestrator.run(dietpi_profile, image_artifact, medium)
        second = orchestrator.run(dietpi_profile, image_artifact, medium)

        assert first.failure_kind == FailureKind.USER_ABORTED
        assert second.state == PipelineState.REPORTED


def test_local_image_never_needs_network(
    make_orchestrator, dietpi_profile, disk_image, medium
):
    """A real HttpDownloader serves local paths without a session call."""
    from cardsmith.adapters.http_downloader import HttpDownloader

    session = Mock()
    orchestrator = make_orchestrator(downloader=HttpDownloader(session=session))

    report = orchestrator.run(
        dietpi_profile, ArtifactRef(locator=str(disk_image), min_size=1024), medium
    )

    assert report.state == PipelineState.REPORTED
    session.get.assert_not_called()
    assert Path(report.image_path) == disk_image

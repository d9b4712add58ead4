"""Tests for the artifact IntegrityChecker."""

import gzip
import hashlib

import pytest

from cardsmith.models.artifact import ArtifactRef, ImageFormat
from cardsmith.models.pipeline import IntegrityReason
from cardsmith.pipeline.integrity import (
    IntegrityChecker,
    detect_format,
    format_from_name,
    looks_like_markup,
)


class TestIntegrityChecker:
    """Fail-closed checks on a fetched artifact."""

    def test_valid_raw_image(self, disk_image):
        result = IntegrityChecker().check(
            ArtifactRef(locator=str(disk_image), min_size=1024), disk_image
        )

        assert result.ok
        assert result.reason == IntegrityReason.OK
        assert result.measured_size == 4096
        assert result.detected_format == ImageFormat.RAW

    def test_stub_below_minimum_is_too_small(self, tmp_path, make_image):
        """A 1 KiB stub against a 50 MB floor is rejected."""
        stub = make_image(tmp_path / "stub.img", size=1024)

        result = IntegrityChecker().check(
            ArtifactRef(locator=str(stub), min_size=50_000_000), stub
        )

        assert not result.ok
        assert result.reason == IntegrityReason.TOO_SMALL
        assert result.measured_size == 1024

    def test_html_error_page_is_bad_format(self, tmp_path):
        page = tmp_path / "image.img.xz"
        page.write_bytes(b"<!DOCTYPE html><html><body>Not Found</body></html>" * 40)

        result = IntegrityChecker().check(ArtifactRef(locator=str(page)), page)

        assert result.reason == IntegrityReason.BAD_FORMAT
        assert "HTML" in result.detail

    def test_unknown_bytes_are_bad_format(self, tmp_path):
        junk = tmp_path / "junk.bin"
        junk.write_bytes(b"\x01\x02\x03" * 500)

        result = IntegrityChecker().check(ArtifactRef(locator=str(junk)), junk)

        assert result.reason == IntegrityReason.BAD_FORMAT

    def test_missing_file(self, tmp_path):
        path = tmp_path / "absent.img"
        result = IntegrityChecker().check(ArtifactRef(locator=str(path)), path)
        assert result.reason == IntegrityReason.MISSING

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.img"
        path.touch()
        result = IntegrityChecker().check(ArtifactRef(locator=str(path)), path)
        assert result.reason == IntegrityReason.EMPTY

    def test_too_large(self, disk_image):
        result = IntegrityChecker().check(
            ArtifactRef(locator=str(disk_image), max_size=1000), disk_image
        )
        assert result.reason == IntegrityReason.TOO_LARGE

    def test_global_upper_bound(self, disk_image):
        result = IntegrityChecker(max_artifact_size=2048).check(
            ArtifactRef(locator=str(disk_image)), disk_image
        )
        assert result.reason == IntegrityReason.TOO_LARGE

    def test_expected_format_mismatch(self, disk_image):
        result = IntegrityChecker().check(
            ArtifactRef(locator=str(disk_image), expected_format=ImageFormat.XZ),
            disk_image,
        )

        assert result.reason == IntegrityReason.BAD_FORMAT
        assert "expected xz, found raw" in result.detail

    def test_checksum_match_and_mismatch(self, disk_image):
        digest = hashlib.sha256(disk_image.read_bytes()).hexdigest()
        checker = IntegrityChecker()

        good = checker.check(ArtifactRef(locator=str(disk_image), sha256=digest), disk_image)
        bad = checker.check(
            ArtifactRef(locator=str(disk_image), sha256="0" * 64), disk_image
        )

        assert good.ok
        assert bad.reason == IntegrityReason.CHECKSUM_MISMATCH

    def test_gzip_archive_recognised(self, tmp_path):
        path = tmp_path / "image.img.gz"
        with gzip.open(path, "wb") as fh:
            fh.write(b"\0" * 8192)

        result = IntegrityChecker().check(ArtifactRef(locator=str(path)), path)

        assert result.ok
        assert result.detected_format == ImageFormat.GZIP


class TestFormatHelpers:
    @pytest.mark.parametrize(
        ("head", "expected"),
        [
            (b"PK\x03\x04rest", ImageFormat.ZIP),
            (b"\xfd7zXZ\x00rest", ImageFormat.XZ),
            (b"\x1f\x8brest", ImageFormat.GZIP),
            (b"BZh91AY", ImageFormat.BZIP2),
            (b"\x28\xb5\x2f\xfdrest", ImageFormat.ZSTD),
            (bytes(510) + b"\x55\xaa", ImageFormat.RAW),
            (b"hello", None),
        ],
    )
    def test_detect_format(self, head, expected):
        assert detect_format(head) == expected

    def test_looks_like_markup_ignores_bom_and_case(self):
        assert looks_like_markup(b"\xef\xbb\xbf\n  <HTML>")
        assert not looks_like_markup(b"PK\x03\x04")

    def test_format_from_name(self):
        assert format_from_name("foo.img.xz") == ImageFormat.XZ
        assert format_from_name("foo.IMG") == ImageFormat.RAW
        assert format_from_name("foo.tar") is None

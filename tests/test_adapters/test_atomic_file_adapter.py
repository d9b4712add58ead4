"""Tests for FileSystemAdapter."""

import os
import stat
from unittest.mock import patch

import pytest

from cardsmith.adapters.file_adapter import FileSystemAdapter, create_file_adapter
from cardsmith.core.errors import FileSystemError


class TestFileSystemAdapter:
    def test_write_atomic_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b" / "file.txt"

        create_file_adapter().write_atomic(target, "hello\n")

        assert target.read_text() == "hello\n"
        assert stat.S_IMODE(target.stat().st_mode) == 0o644

    def test_write_atomic_mode(self, tmp_path):
        target = tmp_path / "script.sh"
        FileSystemAdapter().write_atomic(target, "#!/bin/bash\n", 0o755)
        assert stat.S_IMODE(target.stat().st_mode) == 0o755

    def test_no_temp_files_left_behind(self, tmp_path):
        FileSystemAdapter().write_atomic(tmp_path / "f.txt", "x\n")
        assert [p.name for p in tmp_path.iterdir()] == ["f.txt"]

    def test_failed_replace_keeps_old_content(self, tmp_path):
        target = tmp_path / "config.txt"
        target.write_text("old\n")

        with (
            patch("cardsmith.adapters.file_adapter.os.replace", side_effect=OSError("EIO")),
            pytest.raises(FileSystemError, match="Cannot write"),
        ):
            FileSystemAdapter().write_atomic(target, "new\n")

        assert target.read_text() == "old\n"
        assert [p.name for p in tmp_path.iterdir()] == ["config.txt"]

    def test_read_text_if_exists(self, tmp_path):
        adapter = FileSystemAdapter()
        (tmp_path / "f.txt").write_text("data")

        assert adapter.read_text_if_exists(tmp_path / "f.txt") == "data"
        assert adapter.read_text_if_exists(tmp_path / "missing.txt") is None
        assert adapter.read_text_if_exists(tmp_path) is None

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores file permissions")
    def test_unreadable_file_raises(self, tmp_path):
        path = tmp_path / "secret.txt"
        path.write_text("x")
        path.chmod(0)
        try:
            with pytest.raises(FileSystemError, match="Cannot read"):
                FileSystemAdapter().read_text(path)
        finally:
            path.chmod(0o644)

    def test_invalid_utf8_raises(self, tmp_path):
        path = tmp_path / "binary.txt"
        path.write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(FileSystemError):
            FileSystemAdapter().read_text(path)

"""Tests for boot partition file format helpers."""

from cardsmith.overlay.formats import (
    format_overlay,
    parse_assignments,
    parse_boot_config,
    parse_list,
    shell_quote,
    toml_string,
)


class TestShellAssignments:
    def test_quote_and_parse_special_characters(self):
        for value in ["plain", "with space", "it's", "$HOME", ""]:
            line = f"KEY={shell_quote(value)}"
            assert parse_assignments(line)["KEY"] == value

    def test_comments_and_blank_lines_skipped(self):
        text = "# comment\n\nA=1\n  B = two \nnot an assignment\n"
        assert parse_assignments(text) == {"A": "1", "B": "two"}

    def test_later_keys_win(self):
        assert parse_assignments("A=1\nA=2\n") == {"A": "2"}


class TestBootConfigParsing:
    def test_overlay_flags_and_params(self):
        line = format_overlay("fbtft", "spi0-0", "ili9486", rotate=90, fps=30)
        cfg = parse_boot_config(line + "\n")

        overlay = cfg.overlay("fbtft")
        assert overlay.flags == ["spi0-0", "ili9486"]
        assert overlay.params == {"rotate": "90", "fps": "30"}

    def test_dtparams_settings_and_sections(self):
        cfg = parse_boot_config(
            "[all]\ndtparam=spi=on\ndtparam=i2c_arm=off # inline\nenable_uart=1\n"
        )
        assert cfg.dtparams == {"spi": "on", "i2c_arm": "off"}
        assert cfg.settings == {"enable_uart": "1"}

    def test_bare_dtparam_means_on(self):
        assert parse_boot_config("dtparam=audio\n").dtparams == {"audio": "on"}

    def test_missing_overlay(self):
        assert parse_boot_config("").overlay("fbtft") is None


class TestMisc:
    def test_toml_string_escapes(self):
        assert toml_string('say "hi"\\') == '"say \\"hi\\"\\\\"'
        assert toml_string("tab\there") == '"tab\\there"'

    def test_parse_list(self):
        assert parse_list("# header\nfoo\n\n  bar  \n") == ["foo", "bar"]

"""Tests for TemplateAdapter."""

import pytest

from cardsmith.adapters.template_adapter import TemplateAdapter
from cardsmith.core.errors import TemplateError
from cardsmith.overlay.templates import create_template_adapter


class TestTemplateAdapter:
    def test_render(self):
        adapter = TemplateAdapter({"hello.txt": "Hello {{ name }}\n"})
        assert adapter.render("hello.txt", {"name": "pi"}) == "Hello pi\n"

    def test_undefined_variable_raises(self):
        adapter = TemplateAdapter({"hello.txt": "Hello {{ name }}"})
        with pytest.raises(TemplateError, match="hello.txt"):
            adapter.render("hello.txt", {})

    def test_missing_template_raises(self):
        with pytest.raises(TemplateError):
            TemplateAdapter({}).render("absent.txt", {})

    def test_no_html_escaping(self):
        adapter = TemplateAdapter({})
        assert adapter.render_string("{{ v }}", {"v": "<a & b>"}) == "<a & b>"

    def test_block_whitespace_trimmed(self):
        adapter = TemplateAdapter({})
        template = "{% for x in xs %}\n  {{ x }}\n{% endfor %}\n"
        assert adapter.render_string(template, {"xs": [1, 2]}) == "  1\n  2\n"


class TestDocumentTemplates:
    def test_shquote_filter(self):
        adapter = create_template_adapter()
        rendered = adapter.render_string("echo {{ v | shquote }}", {"v": "it's"})
        assert rendered == "echo 'it'\\''s'"

    def test_onoff_global(self):
        adapter = create_template_adapter()
        assert adapter.render_string("{{ onoff(True) }}/{{ onoff(False) }}", {}) == "on/off"

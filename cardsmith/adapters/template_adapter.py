"""Template adapter wrapping Jinja2 rendering of the generated documents."""

from collections.abc import Mapping
from typing import Any

from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError as JinjaError

from cardsmith.core.errors import TemplateError
from cardsmith.core.logging import debug_enabled
from cardsmith.core.structlog_logger import get_struct_logger


logger = get_struct_logger(__name__)


class TemplateAdapter:
    """Jinja2 template adapter over an in-memory template set."""

    def __init__(
        self,
        templates: Mapping[str, str],
        trim_blocks: bool = True,
        lstrip_blocks: bool = True,
    ) -> None:
        self.env = Environment(
            loader=DictLoader(dict(templates)),
            trim_blocks=trim_blocks,
            lstrip_blocks=lstrip_blocks,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
            autoescape=False,
        )

    def render(self, name: str, context: Mapping[str, Any]) -> str:
        """Render the named template.

        Raises:
            TemplateError: If the template is missing or refers to an undefined value
        """
        try:
            return self.env.get_template(name).render(**context)
        except JinjaError as e:
            logger.error(
                "template_render_error",
                template=name,
                error=str(e),
                exc_info=debug_enabled(),
            )
            raise TemplateError(
                f"Failed to render template '{name}': {e}",
                {"template": name, "context_keys": sorted(context)},
            ) from e

    def render_string(self, template_string: str, context: Mapping[str, Any]) -> str:
        try:
            return self.env.from_string(template_string).render(**context)
        except JinjaError as e:
            raise TemplateError(f"Failed to render template string: {e}") from e


__all__ = ["TemplateAdapter"]

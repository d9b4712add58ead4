"""Error handling decorators for CLI commands."""

import logging
import sys
import traceback
from collections.abc import Callable
from functools import wraps
from typing import Any

import typer
from pydantic import ValidationError

from cardsmith.core.errors import (
    CardsmithError,
    ConfigError,
    OverlayError,
    ProfileError,
)
from cardsmith.core.structlog_logger import get_struct_logger


__all__ = ["handle_errors", "print_stack_trace_if_verbose"]

logger = get_struct_logger(__name__)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator to handle common exceptions in CLI commands.

    Known errors are logged and turned into exit code 1; ``typer.Exit`` raised by
    the command passes through untouched.

    Args:
        func: The function to decorate

    Returns:
        Decorated function with error handling
    """

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ProfileError as e:
            logger.error("profile_error", error=e.message)
            print_stack_trace_if_verbose()
            raise typer.Exit(1) from e
        except ConfigError as e:
            logger.error("configuration_error", error=e.message)
            print_stack_trace_if_verbose()
            raise typer.Exit(1) from e
        except OverlayError as e:
            logger.error("overlay_error", error=e.message)
            print_stack_trace_if_verbose()
            raise typer.Exit(1) from e
        except ValidationError as e:
            logger.error("invalid_override", error=str(e))
            print_stack_trace_if_verbose()
            raise typer.Exit(1) from e
        except CardsmithError as e:
            logger.error("cardsmith_error", error=e.message, context=e.context)
            print_stack_trace_if_verbose()
            raise typer.Exit(1) from e
        except FileNotFoundError as e:
            logger.error("file_not_found", error=str(e))
            print_stack_trace_if_verbose()
            raise typer.Exit(1) from e
        except typer.Exit:
            raise
        except Exception as e:
            exc_info = logging.getLogger().isEnabledFor(logging.DEBUG)
            logger.error("unexpected_error", error=str(e), exc_info=exc_info)
            print_stack_trace_if_verbose()
            raise typer.Exit(1) from e

    return wrapper


def print_stack_trace_if_verbose() -> None:
    """Print stack trace if verbose/debug mode is enabled."""
    if any(arg in sys.argv for arg in ["-v", "-vv", "--verbose", "--debug"]):
        print("\nStack trace:", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)

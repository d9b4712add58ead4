"""Shared Rich styling for CLI output."""

from rich.console import Console
from rich.theme import Theme


class Colors:
    """Standardized color palette for CLI output."""

    SUCCESS = "bold green"
    ERROR = "bold red"
    WARNING = "bold yellow"
    INFO = "bold blue"

    PRIMARY = "cyan"
    MUTED = "dim"
    HEADER = "bold cyan"
    HIGHLIGHT = "bold white"


class Icons:
    """Plain-text status markers; they survive any terminal font."""

    SUCCESS = "✓"
    ERROR = "✗"
    WARNING = "!"
    INFO = "i"
    BULLET = "•"
    ARROW = "→"


CARDSMITH_THEME = Theme(
    {
        "success": Colors.SUCCESS,
        "error": Colors.ERROR,
        "warning": Colors.WARNING,
        "info": Colors.INFO,
        "primary": Colors.PRIMARY,
        "muted": Colors.MUTED,
        "header": Colors.HEADER,
        "highlight": Colors.HIGHLIGHT,
    }
)

OUTCOME_STYLES = {
    "success": ("success", Icons.SUCCESS),
    "warning": ("warning", Icons.WARNING),
    "error": ("error", Icons.ERROR),
}


def get_console(stderr: bool = False) -> Console:
    return Console(theme=CARDSMITH_THEME, stderr=stderr, highlight=False)


__all__ = ["CARDSMITH_THEME", "Colors", "Icons", "OUTCOME_STYLES", "get_console"]

"""Main CLI application for cardsmith."""

import logging
import sys
from importlib.metadata import distribution
from typing import Annotated

import typer

from cardsmith.cli.decorators import print_stack_trace_if_verbose
from cardsmith.config.settings import CardsmithSettings
from cardsmith.config.user_config import UserConfig
from cardsmith.core.errors import ConfigError
from cardsmith.core.logging import setup_logging


__all__ = ["AppContext", "__version__", "app", "main"]

__version__ = distribution("cardsmith").version

logger = logging.getLogger(__name__)


class AppContext:
    """Application context for storing shared state."""

    def __init__(
        self,
        verbose: int = 0,
        log_file: str | None = None,
        config_file: str | None = None,
    ):
        """Initialize AppContext.

        Args:
            verbose: Verbosity level
            log_file: Path to log file
            config_file: Path to configuration file
        """
        self.verbose = verbose
        self.log_file = log_file
        self.config_file = config_file
        self.user_config = UserConfig(cli_config_path=config_file)

    @property
    def settings(self) -> CardsmithSettings:
        return self.user_config.settings


app = typer.Typer(
    name="cardsmith",
    help=f"""cardsmith SD card provisioning tool v{__version__}

Writes a base OS image to a removable card and overlays the configuration a
board needs to boot with its display, touch panel and network working:

Profile → Image (download + check) → Card (confirm + write) → Config → Verify

Common workflows:
  • List profiles:    cardsmith profiles list
  • Preview a card:   cardsmith render dietpi-lcd35 ./preview
  • Provision a card: cardsmith provision dietpi-lcd35 --device /dev/sdb
  • Check a card:     cardsmith verify dietpi-lcd35 /media/$USER/bootfs""",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity (-v=INFO, -vv=DEBUG)",
        ),
    ] = 0,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging (equivalent to -vv)"),
    ] = False,
    log_file: Annotated[
        str | None, typer.Option("--log-file", help="Also write JSON logs to a file")
    ] = None,
    config_file: Annotated[
        str | None,
        typer.Option("-c", "--config", help="Path to configuration file"),
    ] = None,
    version: Annotated[
        bool, typer.Option("--version", help="Show version and exit")
    ] = False,
) -> None:
    """cardsmith SD card provisioning tool."""
    if version:
        print(f"cardsmith v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        print(ctx.get_help())
        raise typer.Exit()

    try:
        app_context = AppContext(
            verbose=verbose, log_file=log_file, config_file=config_file
        )
    except ConfigError as e:
        setup_logging()
        logger.error("Configuration error: %s", e.message)
        raise typer.Exit(1) from e
    ctx.obj = app_context

    # CLI flags win over the configured level
    if debug or verbose >= 2:
        level_name = "DEBUG"
    elif verbose == 1:
        level_name = "INFO"
    else:
        level_name = app_context.settings.log_level

    setup_logging(log_level_name=level_name, log_file=log_file)


def main() -> int:
    """Main CLI entry point."""
    try:
        from cardsmith.cli.commands import register_all_commands

        register_all_commands(app)
        app()
        return 0
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0
    except Exception as e:
        logger.exception("Unexpected error: %s", e)
        print_stack_trace_if_verbose()
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""CLI command modules."""

import typer

from cardsmith.cli.commands.devices import register_commands as register_devices_commands
from cardsmith.cli.commands.profiles import (
    register_commands as register_profiles_commands,
)
from cardsmith.cli.commands.provision import (
    register_commands as register_provision_commands,
)
from cardsmith.cli.commands.surface import register_commands as register_surface_commands


def register_all_commands(app: typer.Typer) -> None:
    """Register all CLI commands with the main app.

    Args:
        app: The main Typer app
    """
    register_profiles_commands(app)
    register_devices_commands(app)
    register_surface_commands(app)
    register_provision_commands(app)

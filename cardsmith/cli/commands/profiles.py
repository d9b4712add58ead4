"""Device profile commands."""

from typing import Annotated

import typer
import yaml

from cardsmith.cli.decorators import handle_errors
from cardsmith.cli.helpers.output import print_info_message, print_list_item
from cardsmith.cli.helpers.profile import get_app_context, resolve_profile
from cardsmith.profile.loader import list_profile_names


SECRET_MASK = "********"

profiles_app = typer.Typer(
    name="profiles",
    help="""Inspect device profiles.

Profiles are YAML files describing a board: base image, display, touch panel,
buses, network and system settings. Built-in profiles ship with cardsmith;
extra directories can be added with CARDSMITH_PROFILE_PATHS or `profile_paths`
in the config file.""",
    no_args_is_help=True,
)


@profiles_app.command("list")
@handle_errors
def list_profiles(ctx: typer.Context) -> None:
    """List every profile on the search path."""
    settings = get_app_context(ctx).settings
    names = list_profile_names(settings.expanded_profile_paths())
    if not names:
        print_info_message("No device profiles found")
        return
    print_info_message(f"{len(names)} device profile(s):")
    for name in names:
        print_list_item(name)


@profiles_app.command("show")
@handle_errors
def show_profile(
    ctx: typer.Context,
    profile: Annotated[str, typer.Argument(help="Profile name or YAML file")],
    show_secrets: Annotated[
        bool, typer.Option("--show-secrets", help="Print passwords and PSKs in clear")
    ] = False,
) -> None:
    """Print a fully resolved profile as YAML."""
    resolved = resolve_profile(ctx, profile)
    data = resolved.model_dump(mode="json")
    if not show_secrets:
        if data["network"].get("psk"):
            data["network"]["psk"] = SECRET_MASK
        for backup in data["network"].get("backup_networks", []):
            if backup.get("psk"):
                backup["psk"] = SECRET_MASK
        data["account"]["password"] = SECRET_MASK
    typer.echo(yaml.safe_dump(data, sort_keys=False, default_flow_style=False), nl=False)


def register_commands(app: typer.Typer) -> None:
    """Register profile commands with the main app."""
    app.add_typer(profiles_app, name="profiles")

"""Removable media listing."""

import typer

from cardsmith.adapters.block_device import LsblkEnumerator
from cardsmith.cli.decorators import handle_errors
from cardsmith.cli.helpers.output import print_info_message, print_media_table


@handle_errors
def devices() -> None:
    """List removable block devices that can be provisioned."""
    media = LsblkEnumerator().list_media()
    if not media:
        print_info_message("No removable media found")
        return
    print_media_table(media)


def register_commands(app: typer.Typer) -> None:
    app.command("devices")(devices)

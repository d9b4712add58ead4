"""The provision command: image, confirm, write, configure, verify."""

import signal
from pathlib import Path
from types import FrameType
from typing import Annotated

import typer

from cardsmith.adapters.block_device import LsblkEnumerator
from cardsmith.adapters.mounts import StaticMount, UdisksMount
from cardsmith.cli.decorators import handle_errors
from cardsmith.cli.helpers.output import print_error_message, print_report
from cardsmith.cli.helpers.profile import (
    build_overrides,
    get_app_context,
    resolve_profile,
)
from cardsmith.cli.helpers.prompts import (
    ProgressPrinter,
    RichConfirmationPrompt,
    RichRetargetPrompt,
)
from cardsmith.models.artifact import MediumHandle
from cardsmith.pipeline.orchestrator import create_orchestrator
from cardsmith.protocols.device_protocols import MountProviderProtocol


@handle_errors
def provision(
    ctx: typer.Context,
    profile: Annotated[str, typer.Argument(help="Profile name or YAML file")],
    device: Annotated[
        str, typer.Option("--device", "-d", help="Target block device, e.g. /dev/sdb")
    ],
    image: Annotated[
        str | None,
        typer.Option("--image", "-i", help="Image URL or local path (overrides the profile)"),
    ] = None,
    mount_root: Annotated[
        Path | None,
        typer.Option(
            "--mount-root",
            help="Use this already-mounted boot partition instead of mounting with udisksctl",
        ),
    ] = None,
    ssid: Annotated[str | None, typer.Option("--ssid", help="WiFi network name")] = None,
    psk: Annotated[str | None, typer.Option("--psk", help="WiFi passphrase")] = None,
    password: Annotated[
        str | None, typer.Option("--password", help="Initial account password")
    ] = None,
    hostname: Annotated[str | None, typer.Option("--hostname")] = None,
    ssh: Annotated[
        bool | None, typer.Option("--ssh/--no-ssh", help="Enable the SSH server")
    ] = None,
    show_all: Annotated[
        bool, typer.Option("--all", help="Show every verification check")
    ] = False,
) -> None:
    """Write a profile's image to a card and configure it.

    The device is erased. Before writing you must type the device path shown;
    any other answer aborts without touching the card.

    Exit codes: 0 verified, 3 verified with warnings, 4 verification errors,
    1 failed run.
    """
    settings = get_app_context(ctx).settings
    resolved = resolve_profile(
        ctx, profile, build_overrides(ssid, psk, password, hostname, ssh, image)
    )

    enumerator = LsblkEnumerator()
    medium = enumerator.resolve(MediumHandle(device_path=device))
    if medium is None:
        print_error_message(f"{device} is not a block device")
        raise typer.Exit(1)
    if not medium.removable:
        print_error_message(
            f"{device} is not a removable disk; refusing to provision it"
        )
        raise typer.Exit(1)

    mount_provider: MountProviderProtocol = (
        StaticMount(mount_root) if mount_root else UdisksMount()
    )
    printer = ProgressPrinter()
    orchestrator = create_orchestrator(
        prompt=RichConfirmationPrompt(),
        settings=settings,
        mount_provider=mount_provider,
        retarget_provider=RichRetargetPrompt(enumerator),
        enumerator=enumerator,
        on_event=printer,
    )

    def request_cancel(signum: int, frame: FrameType | None) -> None:
        orchestrator.cancel()

    previous = signal.signal(signal.SIGTERM, request_cancel)
    try:
        report = orchestrator.run(resolved, resolved.image.to_artifact(), medium)
    finally:
        signal.signal(signal.SIGTERM, previous)
        printer.close()

    print_report(report, show_all=show_all)
    if report.exit_code:
        raise typer.Exit(report.exit_code)


def register_commands(app: typer.Typer) -> None:
    app.command("provision")(provision)

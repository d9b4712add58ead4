"""Commands working on a configuration surface directory: render and verify."""

from pathlib import Path
from typing import Annotated

import typer

from cardsmith.cli.decorators import handle_errors
from cardsmith.cli.helpers.output import (
    print_info_message,
    print_list_item,
    print_success_message,
    print_verification,
)
from cardsmith.cli.helpers.profile import build_overrides, resolve_profile
from cardsmith.models.verification import VerificationResult, VerificationStatus
from cardsmith.overlay.builder import ConfigOverlay
from cardsmith.overlay.schema import layout_for
from cardsmith.pipeline.verification import VerificationEngine, render_report


STATUS_EXIT_CODES = {
    VerificationStatus.PERFECT: 0,
    VerificationStatus.GOOD: 3,
    VerificationStatus.ISSUES: 4,
}


def _exit_for(result: VerificationResult) -> None:
    code = STATUS_EXIT_CODES[result.status]
    if code:
        raise typer.Exit(code)


@handle_errors
def render(
    ctx: typer.Context,
    profile: Annotated[str, typer.Argument(help="Profile name or YAML file")],
    output: Annotated[
        Path,
        typer.Argument(help="Directory to write the configuration files into"),
    ],
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
        bool, typer.Option("--all", help="Show every check, not only findings")
    ] = False,
) -> None:
    """Build a profile's configuration into a directory and verify it.

    Nothing is downloaded or written to a device; use this to preview what
    `provision` puts on the boot partition.
    """
    resolved = resolve_profile(
        ctx, profile, build_overrides(ssid, psk, password, hostname, ssh)
    )
    overlay = ConfigOverlay()
    bundle = overlay.build(resolved)
    output.mkdir(parents=True, exist_ok=True)
    written = overlay.write(bundle, output)

    print_success_message(
        f"Rendered {len(written)} files for {resolved.name} into {output}"
    )
    for path in bundle.paths():
        print_list_item(path)
    print_info_message(f"Bundle digest {bundle.digest()}")

    result = VerificationEngine().verify(output, resolved)
    overlay.write_file(
        output / layout_for(bundle.config_schema).report_file,
        render_report(result, resolved.name),
    )
    print_verification(result, show_all=show_all)
    _exit_for(result)


@handle_errors
def verify(
    ctx: typer.Context,
    profile: Annotated[str, typer.Argument(help="Profile name or YAML file")],
    mount_root: Annotated[
        Path,
        typer.Argument(
            help="Mounted boot partition (or rendered directory) to check",
            exists=True,
            file_okay=False,
        ),
    ],
    show_all: Annotated[
        bool, typer.Option("--all", help="Show every check, not only findings")
    ] = False,
) -> None:
    """Check a configuration surface against a profile.

    Exit code 0 when every check passes, 3 with warnings only, 4 with errors.
    """
    resolved = resolve_profile(ctx, profile)
    result = VerificationEngine().verify(mount_root, resolved)
    print_verification(result, show_all=show_all)
    _exit_for(result)


def register_commands(app: typer.Typer) -> None:
    app.command("render")(render)
    app.command("verify")(verify)

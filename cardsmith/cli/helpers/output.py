"""Helper functions for CLI output formatting with Rich integration."""

from rich.markup import escape
from rich.table import Table

from cardsmith.cli.helpers.theme import OUTCOME_STYLES, Icons, get_console
from cardsmith.models.artifact import MediumHandle, format_size
from cardsmith.models.pipeline import ProvisioningReport
from cardsmith.models.verification import CheckOutcome, VerificationResult


def print_success_message(message: str) -> None:
    get_console().print(f"[success]{Icons.SUCCESS}[/success] {escape(message)}")


def print_error_message(message: str) -> None:
    get_console().print(f"[error]{Icons.ERROR}[/error] {escape(message)}")


def print_warning_message(message: str) -> None:
    get_console().print(f"[warning]{Icons.WARNING}[/warning] {escape(message)}")


def print_info_message(message: str) -> None:
    get_console().print(f"[info]{Icons.INFO}[/info] {escape(message)}")


def print_list_item(item: str, indent: int = 1) -> None:
    get_console().print(f"{' ' * (indent * 2)}{Icons.BULLET} {escape(item)}")


def print_media_table(media: list[MediumHandle]) -> None:
    """Print removable media as a table."""
    table = Table(title="Removable media", show_header=True, header_style="header")
    table.add_column("Device", style="primary", no_wrap=True)
    table.add_column("Size", justify="right")
    table.add_column("Vendor / Model")
    table.add_column("Serial", style="muted")
    table.add_column("Transport", style="muted")
    for medium in media:
        table.add_row(
            medium.device_path,
            format_size(medium.size),
            " ".join(p for p in (medium.vendor, medium.model) if p) or "-",
            medium.serial or "-",
            medium.transport or "-",
        )
    get_console().print(table)


def print_verification(result: VerificationResult, show_all: bool = False) -> None:
    """Print verification records; only findings unless *show_all*."""
    console = get_console()
    records = result.records if show_all else result.findings()
    for rec in records:
        style, icon = OUTCOME_STYLES[CheckOutcome(rec.outcome).value]
        console.print(
            f"  [{style}]{icon}[/{style}] [primary]{rec.check}[/primary]  "
            f"{escape(rec.detail)}"
        )
    summary = (
        f"{result.successes} passed, {result.warnings} warnings, {result.errors} errors"
    )
    status = result.status.value
    if result.errors:
        print_error_message(f"Verification {status}: {summary}")
    elif result.warnings:
        print_warning_message(f"Verification {status}: {summary}")
    else:
        print_success_message(f"Verification {status}: {summary}")


def print_report(report: ProvisioningReport, show_all: bool = False) -> None:
    """Print the outcome of a provisioning run."""
    if report.succeeded and report.verification is not None:
        print_success_message(
            f"Provisioned {report.medium.device_path} with {report.profile_name}"
        )
        print_verification(report.verification, show_all=show_all)
        return

    kind = report.failure_kind.value if report.failure_kind else "Failed"
    print_error_message(f"{kind}: {report.message}")
    if report.hint:
        print_list_item(report.hint)


__all__ = [
    "print_error_message",
    "print_info_message",
    "print_list_item",
    "print_media_table",
    "print_report",
    "print_success_message",
    "print_verification",
    "print_warning_message",
]

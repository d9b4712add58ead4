"""CLI helpers: output formatting, prompts and theme."""

from cardsmith.cli.helpers.output import (
    print_error_message,
    print_info_message,
    print_list_item,
    print_report,
    print_success_message,
    print_verification,
    print_warning_message,
)


__all__ = [
    "print_error_message",
    "print_info_message",
    "print_list_item",
    "print_report",
    "print_success_message",
    "print_verification",
    "print_warning_message",
]

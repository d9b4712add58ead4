"""Test fixtures for CLI tests."""

import pytest

from cardsmith.cli import app
from cardsmith.cli.commands import register_all_commands


@pytest.fixture(scope="session", autouse=True)
def registered_app():
    """Register every command on the shared Typer app once per session."""
    register_all_commands(app)
    return app

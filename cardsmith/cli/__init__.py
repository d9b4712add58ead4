"""Command-line interface for cardsmith."""

from cardsmith.cli.app import app, main


__all__ = ["app", "main"]

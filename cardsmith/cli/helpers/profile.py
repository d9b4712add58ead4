"""Profile lookup and operator overrides shared by the CLI commands."""

from typing import Any

import typer

from cardsmith.cli.app import AppContext
from cardsmith.profile.loader import load_profile
from cardsmith.profile.models import DeviceProfile


def get_app_context(ctx: typer.Context) -> AppContext:
    app_ctx = ctx.obj
    if not isinstance(app_ctx, AppContext):
        app_ctx = AppContext()
        ctx.obj = app_ctx
    return app_ctx


def build_overrides(
    ssid: str | None = None,
    psk: str | None = None,
    password: str | None = None,
    hostname: str | None = None,
    ssh: bool | None = None,
    image: str | None = None,
) -> dict[str, dict[str, Any]]:
    """Section overrides for ``DeviceProfile.with_overrides``; unset options are skipped."""
    overrides: dict[str, dict[str, Any]] = {}

    def put(section: str, key: str, value: Any) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    put("network", "ssid", ssid)
    put("network", "psk", psk)
    put("account", "password", password)
    put("system", "hostname", hostname)
    put("system", "ssh", ssh)
    put("image", "url", image)
    return overrides


def resolve_profile(
    ctx: typer.Context,
    name_or_path: str,
    overrides: dict[str, dict[str, Any]] | None = None,
) -> DeviceProfile:
    """Load a profile through the configured search path and apply overrides.

    Raises:
        ProfileError: If the profile cannot be found or is invalid
        pydantic.ValidationError: If an override is invalid
    """
    settings = get_app_context(ctx).settings
    profile = load_profile(name_or_path, settings.expanded_profile_paths())
    if overrides:
        profile = profile.with_overrides(**overrides)
    return profile


__all__ = ["build_overrides", "get_app_context", "resolve_profile"]

"""Runtime settings for cardsmith."""

import os
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _default_workdir() -> Path:
    if "XDG_CACHE_HOME" in os.environ:
        return Path(os.environ["XDG_CACHE_HOME"]) / "cardsmith"
    return Path.home() / ".cache" / "cardsmith"


class CardsmithSettings(BaseSettings):
    """Settings with automatic environment variable support.

    Precedence order (highest to lowest):
    1. Environment variables (``CARDSMITH_*``, nested with ``__``)
    2. Constructor arguments (config file data)
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="CARDSMITH_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        return (env_settings, init_settings, file_secret_settings)

    log_level: str = "WARNING"

    workdir: Path = Field(
        default_factory=_default_workdir,
        description="Directory holding downloads and extracted images",
    )

    profile_paths: Annotated[list[Path], NoDecode] = Field(
        default_factory=list,
        description="Extra directories searched for device profile YAML files",
    )

    download_attempts: int = Field(default=3, ge=1, le=20)
    retry_backoff_seconds: float = Field(default=2.0, ge=0)
    retry_backoff_factor: float = Field(default=2.0, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)

    max_artifact_size: int = Field(
        default=64 * 1024**3,
        gt=0,
        description="Upper bound for a downloaded artifact, in bytes",
    )

    write_chunk_size: int = Field(default=4 * 1024 * 1024, gt=0)
    progress_interval: float = Field(default=1.0, gt=0)
    max_confirmation_rounds: int = Field(default=3, ge=1)

    @field_validator("profile_paths", mode="before")
    @classmethod
    def decode_profile_paths(cls, v: Any) -> list[Path]:
        if isinstance(v, str):
            return [Path(p.strip()) for p in v.split(",") if p.strip()]
        if isinstance(v, list | tuple):
            return [Path(str(p).strip()) for p in v if str(p).strip()]
        return []

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level '{v}'")
        return level

    def expanded_profile_paths(self) -> list[Path]:
        return [p.expanduser() for p in self.profile_paths]


__all__ = ["CardsmithSettings"]

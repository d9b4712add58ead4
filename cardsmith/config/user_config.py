"""
User configuration management for cardsmith.

Configuration is resolved from, in order of precedence:
1. Environment variables (``CARDSMITH_*``)
2. Command-line provided config file
3. ``cardsmith.yaml`` in the current directory
4. ``$XDG_CONFIG_HOME/cardsmith/config.yaml``
5. Default values
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from cardsmith.config.settings import CardsmithSettings
from cardsmith.core.errors import ConfigError
from cardsmith.core.structlog_logger import get_struct_logger


logger = get_struct_logger(__name__)


def default_config_paths(cli_config_path: str | Path | None = None) -> list[Path]:
    """Config file candidates in search order."""
    paths: list[Path] = []
    if cli_config_path:
        paths.append(Path(cli_config_path).expanduser().resolve())

    paths.extend([Path.cwd() / "cardsmith.yaml", Path.cwd() / ".cardsmith.yml"])

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    paths.extend([base / "cardsmith" / "config.yaml", base / "cardsmith" / "config.yml"])
    return paths


def read_yaml_mapping(path: Path) -> dict[str, Any]:
    """Load a YAML file that must contain a mapping (empty files are ``{}``)."""
    try:
        with path.open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", {"path": str(path)}) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", {"path": str(path)}) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"{path} must contain a mapping, got {type(data).__name__}",
            {"path": str(path)},
        )
    return data


class UserConfig:
    """Loads CardsmithSettings from the first config file found plus the environment."""

    def __init__(self, cli_config_path: str | Path | None = None) -> None:
        self._config_paths = default_config_paths(cli_config_path)
        self._cli_config_path = cli_config_path
        self.config_path: Path | None = None
        self.settings = self._load()

    def _load(self) -> CardsmithSettings:
        if self._cli_config_path and not self._config_paths[0].exists():
            raise ConfigError(
                f"Config file not found: {self._config_paths[0]}",
                {"path": str(self._config_paths[0])},
            )

        data: dict[str, Any] = {}
        for candidate in self._config_paths:
            if candidate.is_file():
                data = read_yaml_mapping(candidate)
                self.config_path = candidate
                logger.debug("user_config_loaded", path=str(candidate))
                break
        else:
            logger.debug(
                "user_config_not_found",
                searched=[str(p) for p in self._config_paths],
            )

        try:
            return CardsmithSettings(**data)
        except ValidationError as e:
            raise ConfigError(
                f"Invalid configuration: {e}",
                {"path": str(self.config_path) if self.config_path else None},
            ) from e

    @property
    def searched_paths(self) -> list[Path]:
        return list(self._config_paths)


__all__ = ["UserConfig", "default_config_paths", "read_yaml_mapping"]

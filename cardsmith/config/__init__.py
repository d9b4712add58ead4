"""Configuration for cardsmith."""

from cardsmith.config.settings import CardsmithSettings
from cardsmith.config.user_config import UserConfig


__all__ = ["CardsmithSettings", "UserConfig"]

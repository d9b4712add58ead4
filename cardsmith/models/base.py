"""Base model for all cardsmith Pydantic models.

Provides consistent serialization behavior across the package.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict


class CardsmithBaseModel(BaseModel):
    """Base model class for all cardsmith Pydantic models.

    Serialization helpers default to:
    - by_alias=True: Use field aliases for serialization
    - exclude_unset=True: Exclude fields that weren't explicitly set
    - mode="json": Use JSON-compatible serialization
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary with consistent serialization parameters."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")

    def to_dict_full(self) -> dict[str, Any]:
        """Convert model to dictionary including all fields (even unset ones)."""
        return self.model_dump(by_alias=True, exclude_unset=False, mode="json")


class FrozenModel(CardsmithBaseModel):
    """Immutable variant; changes go through ``model_copy(update=...)``."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
    )


__all__ = ["CardsmithBaseModel", "FrozenModel"]

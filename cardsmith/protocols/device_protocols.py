"""Protocols for finding, mounting and guarding the destination medium."""

from collections.abc import Hashable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, Protocol, TypeVar, runtime_checkable

from cardsmith.models.artifact import MediumHandle


@runtime_checkable
class GuardedResource(Protocol):
    """Anything a destructive action can be confirmed against."""

    @property
    def resource_id(self) -> str: ...

    def identity(self) -> Hashable: ...

    def describe(self) -> str: ...


R = TypeVar("R", bound=GuardedResource)


@dataclass(frozen=True)
class ConfirmationRequest(Generic[R]):
    """What the operator is shown before a destructive action."""

    resource: R
    action: str
    token: str
    """The exact text the operator must type to confirm."""
    prior_contents: list[str] = field(default_factory=list)
    changed: bool = False
    attempt: int = 1


@runtime_checkable
class MediumEnumeratorProtocol(Protocol):
    def list_media(self) -> list[MediumHandle]:
        """Removable block devices currently attached."""
        ...

    def resolve(self, medium: MediumHandle) -> MediumHandle | None:
        """Fresh view of the device at ``medium.device_path``, or None if gone."""
        ...

    def describe_contents(self, medium: MediumHandle) -> list[str]:
        """Human-readable summary of what is on the medium now."""
        ...


@runtime_checkable
class MountProviderProtocol(Protocol):
    def mount(self, medium: MediumHandle) -> AbstractContextManager[Path]:
        """Context manager yielding the configuration surface root."""
        ...


@runtime_checkable
class ConfirmationPromptProtocol(Protocol):
    def ask(self, request: ConfirmationRequest[GuardedResource]) -> str:
        """Show *request* and return what the operator typed.

        May raise OperatorCancelled.
        """
        ...


@runtime_checkable
class RetargetProviderProtocol(Protocol):
    def retarget(self, medium: MediumHandle, error: Exception) -> MediumHandle | None:
        """Offer a corrected medium after a failed write, or None to give up."""
        ...


__all__ = [
    "ConfirmationPromptProtocol",
    "ConfirmationRequest",
    "GuardedResource",
    "MediumEnumeratorProtocol",
    "MountProviderProtocol",
    "RetargetProviderProtocol",
]

"""SafetyGuard: typed confirmation in front of destructive actions.

Confirmation contract: the operator must type the exact token shown, which is the
resource id (for a medium, its device path such as ``/dev/sdb``). Surrounding
whitespace is ignored. Anything else, including ``y``, ``yes`` and an empty line,
is a refusal. The guard never answers for the operator.
"""

from collections.abc import Callable, Hashable, Iterable
from typing import Generic, TypeVar

from cardsmith.core.errors import MediumChangedError, MediumNotFoundError
from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.protocols.device_protocols import (
    ConfirmationPromptProtocol,
    ConfirmationRequest,
    GuardedResource,
)


R = TypeVar("R", bound=GuardedResource)


def is_affirmative(answer: str | None, token: str) -> bool:
    return answer is not None and answer.strip() == token


class SafetyGuard(StructlogMixin, Generic[R]):
    """Gate a destructive action on an explicit, freshly captured confirmation.

    Args:
        resolver: Re-enumerates a resource; returns None when it is gone
        prompt: Asks the operator and returns the typed answer
        action: Short description of the destructive action, shown in the prompt
    """

    def __init__(
        self,
        resolver: Callable[[R], R | None],
        prompt: ConfirmationPromptProtocol,
        action: str = "erase and overwrite",
    ) -> None:
        super().__init__()
        self.resolver = resolver
        self.prompt = prompt
        self.action = action
        self._confirmed: dict[str, Hashable] = {}

    def _resolve(self, resource: R) -> R:
        current = self.resolver(resource)
        if current is None:
            self._confirmed.pop(resource.resource_id, None)
            raise MediumNotFoundError(
                f"{resource.resource_id} is no longer present",
                {"resource": resource.resource_id},
            )
        return current

    def confirm(
        self,
        resource: R,
        prior_contents: Iterable[str] = (),
        attempt: int = 1,
    ) -> bool:
        """Re-enumerate *resource* and ask the operator to confirm the action.

        *resource* is what the operator originally selected; the request is marked
        ``changed`` when the fresh identity differs from it.

        Raises:
            MediumNotFoundError: If the resource disappeared
            OperatorCancelled: If the prompt reports a cancellation
        """
        current = self._resolve(resource)
        changed = current.identity() != resource.identity()
        request: ConfirmationRequest[R] = ConfirmationRequest(
            resource=current,
            action=self.action,
            token=current.resource_id,
            prior_contents=list(prior_contents),
            changed=changed,
            attempt=attempt,
        )
        self.logger.info(
            "confirmation_requested",
            resource=current.resource_id,
            changed=changed,
            attempt=attempt,
        )

        answer = self.prompt.ask(request)  # type: ignore[arg-type]

        if not is_affirmative(answer, request.token):
            self._confirmed.pop(current.resource_id, None)
            self.logger.warning("confirmation_refused", resource=current.resource_id)
            return False

        self._confirmed[current.resource_id] = current.identity()
        self.logger.info("confirmation_accepted", resource=current.resource_id)
        return True

    def check_unchanged(self, resource: R) -> R:
        """Re-enumerate right before the action and return the fresh resource.

        Raises:
            MediumNotFoundError: If the resource disappeared
            MediumChangedError: If there is no confirmation on record or the
                identity differs from the confirmed one
        """
        current = self._resolve(resource)
        confirmed = self._confirmed.get(current.resource_id)
        if confirmed is None:
            raise MediumChangedError(
                f"{current.resource_id} has no confirmation on record",
                {"resource": current.resource_id},
            )
        if current.identity() != confirmed:
            self._confirmed.pop(current.resource_id, None)
            self.logger.warning(
                "resource_changed_after_confirmation",
                resource=current.resource_id,
                confirmed=str(confirmed),
                current=str(current.identity()),
            )
            raise MediumChangedError(
                f"{current.resource_id} changed since it was confirmed",
                {"resource": current.resource_id},
            )
        return current

    def revoke(self, resource: R) -> None:
        """Forget the confirmation for *resource*; the next action needs a new one."""
        self._confirmed.pop(resource.resource_id, None)

    def is_confirmed(self, resource: R) -> bool:
        return resource.resource_id in self._confirmed


__all__ = ["SafetyGuard", "is_affirmative"]

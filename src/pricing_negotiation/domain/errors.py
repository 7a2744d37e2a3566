"""Domain-specific exception classes for the negotiation engine."""

from pricing_negotiation.domain.types import NegotiationStatus


class NegotiationError(Exception):
    """Base class for all domain errors in the negotiation engine."""


class ValidationError(NegotiationError):
    """Raised for malformed input before any state is touched."""


class AuthorizationError(NegotiationError):
    """Raised when the acting user lacks the capability for an action.

    Attributes:
        actor_id: The user that attempted the action.
        action: The action that was refused.
    """

    def __init__(self, actor_id: int, action: str, reason: str) -> None:
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"User {actor_id} may not {action}: {reason}")


class StateConflictError(NegotiationError):
    """Raised when an action is invalid for the negotiation's current status.

    Attributes:
        current_status: The status the negotiation was in when the action was refused.
    """

    def __init__(self, current_status: NegotiationStatus, message: str) -> None:
        self.current_status = current_status
        super().__init__(message)


class InvalidTransitionError(StateConflictError):
    """Raised when an action is not in the transition table for the current status.

    Attributes:
        current_status: The status the negotiation was in.
        action: The action that was rejected.
    """

    def __init__(
        self,
        current_status: NegotiationStatus,
        action: str,
        target: NegotiationStatus | None = None,
    ) -> None:
        self.action = action
        self.target = target
        message = f"Cannot apply action '{action}' in status '{current_status}'"
        if target is not None:
            message += f" towards '{target}'"
        super().__init__(current_status, message)


class PersistenceError(NegotiationError):
    """Raised when storage fails mid-transaction; the transaction has been rolled back."""


class NotFoundError(NegotiationError):
    """Raised when a single-entity lookup finds nothing.

    Attributes:
        kind: The kind of record that was looked up.
        record_id: The identifier that was not found.
    """

    def __init__(self, kind: str, record_id: int) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class LockContentionError(PersistenceError):
    """Raised when the aggregate's write lock could not be acquired; safe to retry."""

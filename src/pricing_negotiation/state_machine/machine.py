"""NegotiationStateMachine class with guarded transitions, history, and valid_actions."""

from __future__ import annotations

from pricing_negotiation.domain.errors import InvalidTransitionError
from pricing_negotiation.domain.types import NegotiationStatus
from pricing_negotiation.state_machine.transitions import TERMINAL_STATUSES, TRANSITIONS


class NegotiationStateMachine:
    """Finite state machine guarding the negotiation lifecycle.

    Unlike a single-target event machine, several actions here branch: an
    internal approval can land in ``approved`` or ``pending_director_approval``
    depending on the approval policy.  The caller therefore names both the
    action and the target, and the machine checks the pair against the
    transition table.

    Usage::

        sm = NegotiationStateMachine(NegotiationStatus.DRAFT)
        sm.ensure_allowed("submit")
        sm.transition("submit", NegotiationStatus.SUBMITTED)
    """

    def __init__(self, initial_status: NegotiationStatus = NegotiationStatus.DRAFT) -> None:
        self._status: NegotiationStatus = initial_status
        self._history: list[tuple[NegotiationStatus, str, NegotiationStatus]] = []

    @property
    def status(self) -> NegotiationStatus:
        """Return the current negotiation status."""
        return self._status

    @property
    def is_terminal(self) -> bool:
        """Return True if the machine is in a status with no outgoing transitions."""
        return self._status in TERMINAL_STATUSES

    @property
    def history(self) -> list[tuple[NegotiationStatus, str, NegotiationStatus]]:
        """Return a copy of the ``(from, action, to)`` transitions applied so far."""
        return list(self._history)

    def allowed_targets(self, action: str) -> frozenset[NegotiationStatus]:
        """Return the statuses *action* may lead to from the current status."""
        return TRANSITIONS.get((self._status, action), frozenset())

    def ensure_allowed(self, action: str) -> None:
        """Raise unless *action* is legal from the current status.

        Raises:
            InvalidTransitionError: If the pair is not in the transition table.
        """
        if self.is_terminal or (self._status, action) not in TRANSITIONS:
            raise InvalidTransitionError(self._status, action)

    def transition(self, action: str, target: NegotiationStatus) -> NegotiationStatus:
        """Apply *action* and move to *target*.

        Args:
            action: The action being applied (e.g. ``"submit"``).
            target: The status the action resolved to.

        Returns:
            The new status.

        Raises:
            InvalidTransitionError: If the action is not legal from the current
                status, or *target* is not one of its allowed outcomes.
        """
        self.ensure_allowed(action)
        if target not in self.allowed_targets(action):
            raise InvalidTransitionError(self._status, action, target)

        old_status = self._status
        self._history.append((old_status, action, target))
        self._status = target
        return target

    def get_valid_actions(self) -> list[str]:
        """Return a sorted list of actions valid from the current status."""
        if self.is_terminal:
            return []
        return sorted(action for status, action in TRANSITIONS if status == self._status)

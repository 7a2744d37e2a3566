"""Return a negotiation to an earlier status along a permitted rollback edge."""

from __future__ import annotations

from datetime import datetime

from pricing_negotiation.domain.errors import InvalidTransitionError, ValidationError
from pricing_negotiation.domain.models import Negotiation
from pricing_negotiation.domain.types import NegotiationStatus
from pricing_negotiation.lifecycle.recorder import StatusRecorder
from pricing_negotiation.state_machine.transitions import ROLLBACK_TARGETS, NegotiationAction


class RollbackEngine:
    """Apply rollbacks, which are the only backward edges in the lifecycle.

    Permitted edges:

    * ``pending`` -> ``submitted`` or ``draft``
    * ``approved`` -> ``pending`` or ``submitted``
    * ``partially_approved`` -> ``submitted``

    Rolling back to ``submitted`` clears the approval marker.  Approval
    milestones (``approved_at``) stay in place: they record that approval was
    granted once in this cycle.
    """

    def __init__(self, recorder: StatusRecorder) -> None:
        self._recorder = recorder

    def rollback(
        self,
        negotiation: Negotiation,
        target: NegotiationStatus,
        actor_id: int,
        reason: str,
        now: datetime,
    ) -> Negotiation:
        """Move *negotiation* back to *target*.

        Raises:
            ValidationError: If *reason* is empty.
            InvalidTransitionError: If the pair is not a permitted rollback edge.
        """
        if not reason or not reason.strip():
            raise ValidationError("a rollback needs a reason")

        allowed = ROLLBACK_TARGETS.get(negotiation.status, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(negotiation.status, NegotiationAction.ROLLBACK, target)

        updates: dict[str, object] = {}
        if target == NegotiationStatus.SUBMITTED:
            updates["approval_level"] = None
        if negotiation.status == NegotiationStatus.APPROVED:
            updates["formalization_status"] = None

        return self._recorder.change_status(
            negotiation,
            NegotiationAction.ROLLBACK,
            target,
            actor_id,
            now,
            reason=reason.strip(),
            **updates,
        )

"""Start a fresh negotiation round after rejection or partial approval."""

from __future__ import annotations

from datetime import datetime

import structlog

from pricing_negotiation.domain.errors import StateConflictError
from pricing_negotiation.domain.models import CycleSnapshot, Negotiation
from pricing_negotiation.domain.types import ItemStatus, NegotiationStatus
from pricing_negotiation.lifecycle.recorder import StatusRecorder
from pricing_negotiation.state.store import NegotiationStore
from pricing_negotiation.state_machine.machine import NegotiationStateMachine
from pricing_negotiation.state_machine.transitions import NegotiationAction

logger = structlog.get_logger()


class CycleManager:
    """Archive the finished round and reopen every item for response."""

    def __init__(self, store: NegotiationStore, recorder: StatusRecorder) -> None:
        self._store = store
        self._recorder = recorder

    def start_new_cycle(
        self, negotiation: Negotiation, actor_id: int, now: datetime
    ) -> tuple[Negotiation, CycleSnapshot]:
        """Begin cycle ``negotiation_cycle + 1``.

        The current items are archived as a :class:`CycleSnapshot`, then each
        item returns to ``pending`` with its response cleared.  Proposed values
        are kept.  Approval state from the previous round is discarded.

        Returns:
            The negotiation in ``submitted`` and the archived snapshot.

        Raises:
            InvalidTransitionError: Unless the negotiation is ``rejected`` or
                ``partially_approved``.
            StateConflictError: If the cycle limit has been reached.
        """
        NegotiationStateMachine(negotiation.status).ensure_allowed(
            NegotiationAction.START_NEW_CYCLE
        )
        if negotiation.negotiation_cycle >= negotiation.max_cycles_allowed:
            raise StateConflictError(
                negotiation.status,
                f"cycle limit reached ({negotiation.negotiation_cycle} of "
                f"{negotiation.max_cycles_allowed})",
            )

        if negotiation.id is None:
            raise ValueError("negotiation must be persisted before a new cycle starts")
        snapshot = self._store.archive_cycle(
            negotiation.id, negotiation.negotiation_cycle, negotiation.items, now
        )

        reset_items = []
        for item in negotiation.items:
            reset = item.model_copy(
                update={
                    "status": ItemStatus.PENDING,
                    "approved_value": None,
                    "responded_at": None,
                    "notes": None,
                }
            )
            self._store.update_item(reset)
            reset_items.append(reset)

        next_cycle = negotiation.negotiation_cycle + 1
        updated = self._recorder.change_status(
            negotiation.model_copy(update={"items": reset_items}),
            NegotiationAction.START_NEW_CYCLE,
            NegotiationStatus.SUBMITTED,
            actor_id,
            now,
            reason=f"Started negotiation cycle {next_cycle}",
            negotiation_cycle=next_cycle,
            approval_level=None,
            approved_at=None,
            approved_by=None,
            rejected_at=None,
            rejected_by=None,
            formalization_status=None,
        )
        logger.info(
            "negotiation_cycle_started",
            negotiation_id=updated.id,
            cycle=next_cycle,
            max_cycles=updated.max_cycles_allowed,
        )
        return updated, snapshot

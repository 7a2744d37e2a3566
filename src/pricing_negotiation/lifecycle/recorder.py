"""Apply a guarded status change and write it, with its history entry, to the store.

Every status-affecting write in the lifecycle package goes through
:meth:`StatusRecorder.change_status`, which is what keeps the status column,
the milestone timestamps, and the append-only status history consistent.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from pricing_negotiation.domain.models import (
    ApprovalHistoryEntry,
    Negotiation,
    StatusHistoryEntry,
)
from pricing_negotiation.domain.types import (
    ApprovalLevel,
    ApprovalOutcome,
    FormalizationStatus,
    NegotiationStatus,
)
from pricing_negotiation.state.store import NegotiationStore
from pricing_negotiation.state_machine.machine import NegotiationStateMachine

logger = structlog.get_logger()


def milestone_updates(
    target: NegotiationStatus, actor_id: int, now: datetime
) -> dict[str, Any]:
    """Return the column updates that accompany entering *target*."""
    if target == NegotiationStatus.APPROVED:
        return {
            "approved_at": now,
            "approved_by": actor_id,
            "approval_level": None,
            "formalization_status": FormalizationStatus.PENDING_ADDENDUM,
        }
    if target == NegotiationStatus.COMPLETE:
        return {
            "completed_at": now,
            "approval_level": None,
            "formalization_status": FormalizationStatus.FORMALIZED,
        }
    if target == NegotiationStatus.PARTIALLY_COMPLETE:
        return {"completed_at": now, "approval_level": None}
    if target == NegotiationStatus.REJECTED:
        return {"rejected_at": now, "rejected_by": actor_id, "approval_level": None}
    if target == NegotiationStatus.CANCELLED:
        return {"cancelled_at": now}
    if target == NegotiationStatus.FORKED:
        return {"forked_at": now}
    if target == NegotiationStatus.EXPIRED:
        return {"expired_at": now}
    return {}


class StatusRecorder:
    """Validate, apply, and persist status changes on one negotiation aggregate."""

    def __init__(self, store: NegotiationStore) -> None:
        self._store = store

    def change_status(
        self,
        negotiation: Negotiation,
        action: str,
        target: NegotiationStatus,
        actor_id: int,
        now: datetime,
        reason: str | None = None,
        **updates: Any,
    ) -> Negotiation:
        """Move *negotiation* to *target* through *action*.

        Args:
            negotiation: The aggregate as loaded in the current transaction.
            action: The action being applied; checked against the transition table.
            target: The resolved target status.
            actor_id: The user performing the action.
            now: Transaction timestamp.
            reason: Free-text reason stored in the status history.
            **updates: Additional negotiation columns to write with the change.

        Returns:
            The updated negotiation.

        Raises:
            InvalidTransitionError: If the action/target pair is not legal.
        """
        machine = NegotiationStateMachine(negotiation.status)
        machine.transition(action, target)

        changes: dict[str, Any] = {
            **milestone_updates(target, actor_id, now),
            **updates,
            "status": target,
            "updated_at": now,
        }
        updated = negotiation.model_copy(update=changes)
        if updated.id is None:
            raise ValueError("negotiation must be persisted before its status changes")
        self._store.update(updated)

        self._store.append_status(
            StatusHistoryEntry(
                negotiation_id=updated.id,
                from_status=negotiation.status,
                to_status=target,
                actor_id=actor_id,
                reason=reason,
                created_at=now,
            )
        )
        logger.info(
            "negotiation_status_changed",
            negotiation_id=updated.id,
            action=str(action),
            from_status=negotiation.status.value,
            to_status=target.value,
            actor_id=actor_id,
        )
        return updated

    def record_approval(
        self,
        negotiation: Negotiation,
        level: ApprovalLevel,
        outcome: ApprovalOutcome,
        actor_id: int,
        now: datetime,
        notes: str | None = None,
    ) -> ApprovalHistoryEntry:
        """Append an approval history entry for *negotiation*."""
        if negotiation.id is None:
            raise ValueError("negotiation must be persisted before approvals are recorded")
        return self._store.append_approval(
            ApprovalHistoryEntry(
                negotiation_id=negotiation.id,
                level=level,
                status=outcome,
                actor_id=actor_id,
                notes=notes,
                created_at=now,
            )
        )

"""Split a negotiation's items into independent child negotiations."""

from __future__ import annotations

from datetime import datetime

import structlog

from pricing_negotiation.domain.errors import StateConflictError, ValidationError
from pricing_negotiation.domain.models import ForkGroup, Negotiation, NegotiationItem
from pricing_negotiation.domain.types import ItemStatus, NegotiationStatus
from pricing_negotiation.lifecycle.recorder import StatusRecorder
from pricing_negotiation.state.store import NegotiationStore
from pricing_negotiation.state_machine.machine import NegotiationStateMachine
from pricing_negotiation.state_machine.transitions import NegotiationAction

logger = structlog.get_logger()

MIN_FORK_GROUPS = 2
MIN_FORK_ITEMS = 2


def open_items(negotiation: Negotiation) -> list[NegotiationItem]:
    """Items still being negotiated in the current cycle (anything not completed)."""
    return [item for item in negotiation.items if item.status != ItemStatus.COMPLETED]


def validate_fork_groups(negotiation: Negotiation, groups: list[ForkGroup]) -> None:
    """Check that *groups* partition the open items of *negotiation*.

    Raises:
        StateConflictError: If fewer than two items are still open.
        ValidationError: On fewer than two groups, an item outside the
            negotiation, an item listed twice, or an open item left out of
            every group.
    """
    if len(groups) < MIN_FORK_GROUPS:
        raise ValidationError(f"a fork needs at least {MIN_FORK_GROUPS} groups")

    candidates = {item.id for item in open_items(negotiation)}
    if len(candidates) < MIN_FORK_ITEMS:
        raise StateConflictError(
            negotiation.status, f"a fork needs at least {MIN_FORK_ITEMS} open items"
        )

    seen: set[int] = set()
    for group in groups:
        for item_id in group.item_ids:
            if item_id not in candidates:
                raise ValidationError(
                    f"item {item_id} is not an open item of negotiation {negotiation.id}"
                )
            if item_id in seen:
                raise ValidationError(f"item {item_id} appears in more than one group")
            seen.add(item_id)

    missing = candidates - seen
    if missing:
        raise ValidationError(f"items {sorted(missing)} are not assigned to any group")


class ForkEngine:
    """Create one child negotiation per group and freeze the parent as ``forked``."""

    def __init__(self, store: NegotiationStore, recorder: StatusRecorder) -> None:
        self._store = store
        self._recorder = recorder

    def fork(
        self,
        negotiation: Negotiation,
        groups: list[ForkGroup],
        actor_id: int,
        now: datetime,
    ) -> tuple[Negotiation, list[Negotiation]]:
        """Fork *negotiation* into ``len(groups)`` children.

        Children start in ``submitted`` at cycle 1 with their items back in
        ``pending``.  They keep the parent's entity, creator, dates, and
        cycle limit, and record the parent in ``parent_negotiation_id``.

        Returns:
            The frozen parent and the children in group order.

        Raises:
            InvalidTransitionError: Unless the parent is ``submitted`` or
                ``partially_approved``.
            ValidationError: If the groups are not a valid partition.
        """
        NegotiationStateMachine(negotiation.status).ensure_allowed(NegotiationAction.FORK)
        validate_fork_groups(negotiation, groups)
        if negotiation.id is None:
            raise ValueError("negotiation must be persisted before it is forked")

        by_id = {item.id: item for item in negotiation.items}
        total = len(groups)
        children: list[Negotiation] = []
        for index, group in enumerate(groups, start=1):
            items = [
                NegotiationItem(
                    procedure_id=by_id[item_id].procedure_id,
                    proposed_value=by_id[item_id].proposed_value,
                    specialty_id=by_id[item_id].specialty_id,
                )
                for item_id in group.item_ids
            ]
            child = Negotiation(
                entity=negotiation.entity,
                creator_id=negotiation.creator_id,
                title=group.title or f"{negotiation.title} ({index}/{total})",
                description=negotiation.description,
                notes=negotiation.notes,
                status=NegotiationStatus.SUBMITTED,
                start_date=negotiation.start_date,
                end_date=negotiation.end_date,
                negotiation_cycle=1,
                max_cycles_allowed=negotiation.max_cycles_allowed,
                parent_negotiation_id=negotiation.id,
                created_at=now,
                updated_at=now,
                items=items,
            )
            children.append(self._store.insert(child))

        child_ids = ", ".join(f"#{child.id}" for child in children)
        parent = self._recorder.change_status(
            negotiation,
            NegotiationAction.FORK,
            NegotiationStatus.FORKED,
            actor_id,
            now,
            reason=f"Forked into negotiations {child_ids}",
            fork_count=total,
        )
        logger.info(
            "negotiation_forked",
            negotiation_id=parent.id,
            children=[child.id for child in children],
        )
        return parent, children

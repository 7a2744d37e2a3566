"""Negotiation lifecycle service: the only entry point that mutates negotiations.

Each public mutation follows the same shape:

1. Coerce and validate the input (pydantic models, catalog references).
2. Open one write transaction on the aggregate (``BEGIN IMMEDIATE``).
3. Load the negotiation, check the actor's capability, check the transition.
4. Write the new state together with its status and approval history.
5. Commit, then hand the queued notifications to the dispatcher.

Lock contention at step 2 is retried with tenacity.  Any error raised before
commit leaves the negotiation, its items, its history, and the pricing
ledger exactly as they were.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from pricing_negotiation.auth.gateway import (
    SYSTEM_ACTOR_ID,
    AuthorizationGateway,
    NegotiationCapabilities,
)
from pricing_negotiation.catalog import CatalogGateway
from pricing_negotiation.config import Settings, get_settings
from pricing_negotiation.domain.errors import (
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from pricing_negotiation.domain.models import (
    ApprovalHistoryEntry,
    ApprovedItem,
    CounterOffer,
    CycleSnapshot,
    DraftUpdate,
    ForkGroup,
    Negotiation,
    NegotiationItem,
    NewItem,
    NewNegotiation,
    PricingContract,
    StatusHistoryEntry,
    SubjectEntity,
)
from pricing_negotiation.domain.types import (
    ApprovalLevel,
    ApprovalMarker,
    ApprovalOutcome,
    FormalizationStatus,
    ItemDecision,
    ItemStatus,
    NegotiationStatus,
)
from pricing_negotiation.lifecycle.cycle import CycleManager
from pricing_negotiation.lifecycle.fork import ForkEngine
from pricing_negotiation.lifecycle.recorder import StatusRecorder
from pricing_negotiation.lifecycle.rollback import RollbackEngine
from pricing_negotiation.notifications.events import NotificationEvent
from pricing_negotiation.notifications.gateway import (
    NotificationDispatcher,
    NotificationGateway,
    PendingNotification,
)
from pricing_negotiation.policy.aggregator import aggregate_item_statuses
from pricing_negotiation.policy.approval import ApprovalPolicy
from pricing_negotiation.pricing.ledger import PricingContractLedger
from pricing_negotiation.pricing.synchronizer import PricingContractSynchronizer
from pricing_negotiation.resilience.retry import retry_on_lock_contention
from pricing_negotiation.state.store import NegotiationStore
from pricing_negotiation.state.transaction import transaction
from pricing_negotiation.state_machine.machine import NegotiationStateMachine
from pricing_negotiation.state_machine.transitions import NegotiationAction

logger = structlog.get_logger()

A = NegotiationAction
T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)
E = TypeVar("E", bound=StrEnum)

Outbox = list[PendingNotification]

# Notification sent when item aggregation lands somewhere other than ``pending``.
_AGGREGATION_EVENTS: dict[NegotiationStatus, NotificationEvent] = {
    NegotiationStatus.REJECTED: NotificationEvent.REJECTED,
    NegotiationStatus.PARTIALLY_APPROVED: NotificationEvent.PARTIALLY_APPROVED,
    NegotiationStatus.PARTIALLY_COMPLETE: NotificationEvent.PARTIALLY_COMPLETED,
}

# Notification that announces each status, re-sent on request.
_STATUS_EVENTS: dict[NegotiationStatus, NotificationEvent] = {
    NegotiationStatus.DRAFT: NotificationEvent.CREATED,
    NegotiationStatus.SUBMITTED: NotificationEvent.SUBMITTED,
    NegotiationStatus.PENDING: NotificationEvent.APPROVAL_REQUIRED,
    NegotiationStatus.PENDING_DIRECTOR_APPROVAL: NotificationEvent.APPROVAL_REQUIRED,
    NegotiationStatus.APPROVED: NotificationEvent.APPROVED,
    NegotiationStatus.PARTIALLY_APPROVED: NotificationEvent.PARTIALLY_APPROVED,
    NegotiationStatus.PARTIALLY_COMPLETE: NotificationEvent.PARTIALLY_COMPLETED,
    NegotiationStatus.COMPLETE: NotificationEvent.COMPLETED,
    NegotiationStatus.REJECTED: NotificationEvent.REJECTED,
    NegotiationStatus.CANCELLED: NotificationEvent.CANCELLED,
    NegotiationStatus.FORKED: NotificationEvent.FORK,
    NegotiationStatus.EXPIRED: NotificationEvent.EXPIRED,
}


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _coerce(model: type[M], value: M | Mapping[str, Any]) -> M:
    """Return *value* as a *model*, translating pydantic errors to ``ValidationError``."""
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc


def _coerce_enum(enum: type[E], value: E | str, field: str) -> E:
    try:
        return enum(value)
    except ValueError as exc:
        raise ValidationError(f"{value!r} is not a valid {field}") from exc


def _replace_item(negotiation: Negotiation, item: NegotiationItem) -> Negotiation:
    items = [item if existing.id == item.id else existing for existing in negotiation.items]
    return negotiation.model_copy(update={"items": items})


def _queue(
    outbox: Outbox, event: NotificationEvent, negotiation: Negotiation, **extra: Any
) -> None:
    outbox.append(PendingNotification(event=event, negotiation=negotiation, extra=extra))


def _owned_item(negotiation: Negotiation, item_id: int) -> NegotiationItem:
    try:
        return negotiation.get_item(item_id)
    except NotFoundError as exc:
        raise ValidationError(
            f"item {item_id} does not belong to negotiation {negotiation.id}"
        ) from exc


def _ensure_item_answerable(negotiation: Negotiation, item: NegotiationItem) -> None:
    """Refuse to change an item whose answer is final.

    Answers are final while other items still await a response.  A
    ``submitted`` negotiation with no pending item has come back through a
    rollback, and its answers may then be revised.
    """
    if item.status == ItemStatus.COMPLETED:
        raise StateConflictError(
            negotiation.status, f"item {item.id} is completed and can no longer change"
        )
    if item.status != ItemStatus.PENDING and negotiation.pending_items():
        raise StateConflictError(
            negotiation.status, f"item {item.id} was already answered in this round"
        )


def _unique_item_ids(item_ids: Iterable[int]) -> None:
    seen: set[int] = set()
    for item_id in item_ids:
        if item_id in seen:
            raise ValidationError(f"item {item_id} is listed more than once")
        seen.add(item_id)


class NegotiationService:
    """Create negotiations and drive them through their lifecycle.

    Args:
        conn: Connection returned by ``open_database`` (autocommit mode).
        authorization: Role and ownership queries.
        notifications: Gateway that receives events after commit.
        catalog: Procedure and specialty lookups used to validate items.
        settings: Application settings; defaults to ``get_settings()``.
        policy: Director escalation rule; defaults to the thresholds in *settings*.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        authorization: AuthorizationGateway,
        notifications: NotificationGateway,
        catalog: CatalogGateway,
        settings: Settings | None = None,
        policy: ApprovalPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._conn = conn
        self._settings = settings or get_settings()
        self._catalog = catalog
        self._clock = clock or _utcnow
        self._capabilities = NegotiationCapabilities(authorization)
        self._dispatcher = NotificationDispatcher(notifications)
        self._policy = policy or ApprovalPolicy(
            total_threshold=self._settings.director_total_threshold,
            item_threshold=self._settings.director_item_threshold,
        )

        self._store = NegotiationStore(conn)
        self._ledger = PricingContractLedger(conn)
        self._synchronizer = PricingContractSynchronizer(self._ledger)
        self._recorder = StatusRecorder(self._store)
        self._rollbacks = RollbackEngine(self._recorder)
        self._cycles = CycleManager(self._store, self._recorder)
        self._forks = ForkEngine(self._store, self._recorder)

        self._attempt_with_retry = retry_on_lock_contention(self._settings.lock_retry_attempts)(
            self._attempt
        )

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _attempt(self, operation: Callable[[Outbox], T]) -> tuple[T, Outbox]:
        outbox: Outbox = []
        with transaction(self._conn):
            result = operation(outbox)
        return result, outbox

    def _execute(self, operation: Callable[[Outbox], T]) -> T:
        """Run *operation* in one transaction, then dispatch what it queued."""
        result, outbox = self._attempt_with_retry(operation)
        self._dispatcher.dispatch(outbox)
        return result

    def _check_catalog(self, items: Iterable[NewItem]) -> None:
        for item in items:
            try:
                procedure = self._catalog.get_procedure(item.procedure_id)
            except NotFoundError as exc:
                raise ValidationError(f"unknown procedure {item.procedure_id}") from exc
            if not procedure.active:
                raise ValidationError(f"procedure {procedure.code} is inactive")
            if item.specialty_id is None:
                continue
            try:
                specialty = self._catalog.get_specialty(item.specialty_id)
            except NotFoundError as exc:
                raise ValidationError(f"unknown specialty {item.specialty_id}") from exc
            if not specialty.active:
                raise ValidationError(f"specialty {specialty.name} is inactive")

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------

    def create(
        self, actor_id: int, request: NewNegotiation | Mapping[str, Any]
    ) -> Negotiation:
        """Open a negotiation in ``draft`` owned by *actor_id*."""
        request = _coerce(NewNegotiation, request)
        self._capabilities.require(A.CREATE, actor_id)
        self._check_catalog(request.items)

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.insert(
                Negotiation(
                    entity=request.entity,
                    creator_id=actor_id,
                    title=request.title.strip(),
                    description=request.description,
                    notes=request.notes,
                    start_date=request.start_date,
                    end_date=request.end_date,
                    max_cycles_allowed=(
                        request.max_cycles_allowed or self._settings.default_max_cycles
                    ),
                    created_at=now,
                    updated_at=now,
                    items=[
                        NegotiationItem(
                            procedure_id=item.procedure_id,
                            proposed_value=item.proposed_value,
                            specialty_id=item.specialty_id,
                            notes=item.notes,
                        )
                        for item in request.items
                    ],
                )
            )
            logger.info(
                "negotiation_created",
                negotiation_id=negotiation.id,
                entity_type=negotiation.entity.type.value,
                entity_id=negotiation.entity.id,
                items=len(negotiation.items),
                actor_id=actor_id,
            )
            _queue(
                outbox,
                NotificationEvent.CREATED,
                negotiation,
                items=len(negotiation.items),
                total=negotiation.total_proposed_value,
            )
            return negotiation

        return self._execute(operation)

    def update_draft(
        self,
        negotiation_id: int,
        actor_id: int,
        changes: DraftUpdate | Mapping[str, Any],
    ) -> Negotiation:
        """Edit a draft; a provided item list replaces the existing items."""
        changes = _coerce(DraftUpdate, changes)
        if changes.items is not None:
            self._check_catalog(changes.items)

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.UPDATE, actor_id, negotiation)
            NegotiationStateMachine(negotiation.status).transition(
                A.UPDATE, NegotiationStatus.DRAFT
            )

            fields = {
                key: value
                for key, value in changes.model_dump(exclude_unset=True, exclude={"items"}).items()
                if value is not None or key in ("description", "notes")
            }
            if "title" in fields:
                if not fields["title"].strip():
                    raise ValidationError("title must not be empty")
                fields["title"] = fields["title"].strip()

            updated = negotiation.model_copy(update={**fields, "updated_at": now})
            if updated.end_date <= updated.start_date:
                raise ValidationError(
                    f"end_date ({updated.end_date}) must be after start_date ({updated.start_date})"
                )
            self._store.update(updated)

            if changes.items is not None:
                self._store.delete_items(negotiation_id)
                items = self._store.insert_items(
                    negotiation_id,
                    [
                        NegotiationItem(
                            procedure_id=item.procedure_id,
                            proposed_value=item.proposed_value,
                            specialty_id=item.specialty_id,
                            notes=item.notes,
                        )
                        for item in changes.items
                    ],
                )
                updated = updated.model_copy(update={"items": items})

            logger.info(
                "negotiation_draft_updated",
                negotiation_id=negotiation_id,
                fields=sorted(changes.model_fields_set),
                actor_id=actor_id,
            )
            return updated

        return self._execute(operation)

    def submit(self, negotiation_id: int, actor_id: int) -> Negotiation:
        """Send a draft to the counterparty."""

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.SUBMIT, actor_id, negotiation)
            NegotiationStateMachine(negotiation.status).ensure_allowed(A.SUBMIT)
            if not negotiation.items:
                raise ValidationError("a negotiation needs at least one item to be submitted")

            negotiation = self._recorder.change_status(
                negotiation,
                A.SUBMIT,
                NegotiationStatus.SUBMITTED,
                actor_id,
                now,
                reason="Submitted to counterparty",
            )
            _queue(outbox, NotificationEvent.SUBMITTED, negotiation)
            return negotiation

        return self._execute(operation)

    # ------------------------------------------------------------------
    # Counterparty responses
    # ------------------------------------------------------------------

    def _aggregate(
        self,
        negotiation: Negotiation,
        action: NegotiationAction,
        actor_id: int,
        now: datetime,
        outbox: Outbox,
    ) -> Negotiation:
        target = aggregate_item_statuses(
            (item.status for item in negotiation.items),
            negotiation.status,
            negotiation.previously_approved,
        )
        if target == negotiation.status:
            return negotiation

        if target == NegotiationStatus.PENDING:
            negotiation = self._recorder.change_status(
                negotiation,
                action,
                target,
                actor_id,
                now,
                reason="All items answered",
                approval_level=ApprovalMarker.PENDING_APPROVAL,
            )
            self._recorder.record_approval(
                negotiation, ApprovalLevel.INTERNAL, ApprovalOutcome.PENDING, actor_id, now
            )
            _queue(
                outbox,
                NotificationEvent.APPROVAL_REQUIRED,
                negotiation,
                level=ApprovalLevel.INTERNAL.value,
            )
            return negotiation

        negotiation = self._recorder.change_status(
            negotiation, action, target, actor_id, now, reason="All items answered"
        )
        _queue(outbox, _AGGREGATION_EVENTS[target], negotiation)
        return negotiation

    def _load_for_response(
        self, negotiation_id: int, actor_id: int, action: NegotiationAction
    ) -> Negotiation:
        negotiation = self._store.get(negotiation_id)
        self._capabilities.require(action, actor_id, negotiation)
        NegotiationStateMachine(negotiation.status).ensure_allowed(action)
        return negotiation

    def respond_to_item(
        self,
        item_id: int,
        actor_id: int,
        decision: ItemDecision | str,
        approved_value: Any = None,
        notes: str | None = None,
    ) -> Negotiation:
        """Approve or reject one item on behalf of the counterparty.

        An approval without *approved_value* accepts the proposed value.

        Returns:
            The negotiation after aggregation.
        """
        decision = _coerce_enum(ItemDecision, decision, "item decision")
        value = _coerce(
            ApprovedItem, {"item_id": item_id, "approved_value": approved_value}
        ).approved_value

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._load_for_response(
                self._store.negotiation_id_for_item(item_id), actor_id, A.RESPOND
            )
            item = negotiation.get_item(item_id)
            _ensure_item_answerable(negotiation, item)

            if decision == ItemDecision.APPROVED:
                update = {
                    "status": ItemStatus.APPROVED,
                    "approved_value": value if value is not None else item.proposed_value,
                }
            else:
                update = {"status": ItemStatus.REJECTED, "approved_value": None}
            answered = item.model_copy(
                update={**update, "notes": notes or item.notes, "responded_at": now}
            )
            self._store.update_item(answered)
            negotiation = _replace_item(negotiation, answered)

            logger.info(
                "negotiation_item_responded",
                negotiation_id=negotiation.id,
                item_id=item_id,
                decision=decision.value,
                actor_id=actor_id,
            )
            _queue(
                outbox,
                NotificationEvent.ITEM_RESPONSE,
                negotiation,
                item_id=item_id,
                decision=decision.value,
            )
            return self._aggregate(negotiation, A.RESPOND, actor_id, now, outbox)

        return self._execute(operation)

    @staticmethod
    def _countered(item: NegotiationItem, offer: CounterOffer, now: datetime) -> NegotiationItem:
        return item.model_copy(
            update={
                "status": ItemStatus.COUNTER_OFFERED,
                "approved_value": offer.value,
                "notes": offer.notes or item.notes,
                "responded_at": now,
            }
        )

    def counter_item(
        self, item_id: int, actor_id: int, value: Any, notes: str | None = None
    ) -> Negotiation:
        """Propose a different value for one item on behalf of the counterparty."""
        offer = _coerce(CounterOffer, {"item_id": item_id, "value": value, "notes": notes})

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._load_for_response(
                self._store.negotiation_id_for_item(item_id), actor_id, A.COUNTER
            )
            item = negotiation.get_item(item_id)
            _ensure_item_answerable(negotiation, item)

            countered = self._countered(item, offer, now)
            self._store.update_item(countered)
            negotiation = _replace_item(negotiation, countered)

            logger.info(
                "negotiation_item_countered",
                negotiation_id=negotiation.id,
                item_id=item_id,
                value=str(offer.value),
                actor_id=actor_id,
            )
            _queue(
                outbox,
                NotificationEvent.COUNTER_OFFER,
                negotiation,
                item_id=item_id,
                value=offer.value,
            )
            return self._aggregate(negotiation, A.COUNTER, actor_id, now, outbox)

        return self._execute(operation)

    def batch_counter_offer(
        self,
        negotiation_id: int,
        actor_id: int,
        offers: Iterable[CounterOffer | Mapping[str, Any]],
    ) -> Negotiation:
        """Counter several items at once; aggregation runs once at the end."""
        parsed = [_coerce(CounterOffer, offer) for offer in offers]
        if not parsed:
            raise ValidationError("a batch counter-offer needs at least one item")
        _unique_item_ids(offer.item_id for offer in parsed)

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._load_for_response(negotiation_id, actor_id, A.COUNTER)
            for offer in parsed:
                item = _owned_item(negotiation, offer.item_id)
                _ensure_item_answerable(negotiation, item)
                countered = self._countered(item, offer, now)
                self._store.update_item(countered)
                negotiation = _replace_item(negotiation, countered)

            logger.info(
                "negotiation_batch_countered",
                negotiation_id=negotiation_id,
                items=len(parsed),
                actor_id=actor_id,
            )
            _queue(outbox, NotificationEvent.COUNTER_OFFER, negotiation, items=len(parsed))
            return self._aggregate(negotiation, A.COUNTER, actor_id, now, outbox)

        return self._execute(operation)

    # ------------------------------------------------------------------
    # Internal and director approval
    # ------------------------------------------------------------------

    def process_approval(
        self, negotiation_id: int, actor_id: int, approved: bool, notes: str | None = None
    ) -> Negotiation:
        """Record the internal approval decision.

        An approval escalates to ``pending_director_approval`` when the
        approval policy says the values are too large for internal sign-off.
        """

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.PROCESS_APPROVAL, actor_id, negotiation)
            NegotiationStateMachine(negotiation.status).ensure_allowed(A.PROCESS_APPROVAL)

            if not approved:
                negotiation = self._recorder.change_status(
                    negotiation,
                    A.PROCESS_APPROVAL,
                    NegotiationStatus.REJECTED,
                    actor_id,
                    now,
                    reason=notes or "Rejected in internal approval",
                )
                self._recorder.record_approval(
                    negotiation,
                    ApprovalLevel.INTERNAL,
                    ApprovalOutcome.REJECTED,
                    actor_id,
                    now,
                    notes,
                )
                _queue(
                    outbox,
                    NotificationEvent.REJECTED,
                    negotiation,
                    level=ApprovalLevel.INTERNAL.value,
                )
                return negotiation

            escalation = self._policy.evaluate(negotiation.items)
            if escalation.needs_director:
                negotiation = self._recorder.change_status(
                    negotiation,
                    A.PROCESS_APPROVAL,
                    NegotiationStatus.PENDING_DIRECTOR_APPROVAL,
                    actor_id,
                    now,
                    reason="Escalated to director approval",
                    approval_level=ApprovalMarker.PENDING_DIRECTOR_APPROVAL,
                )
                self._recorder.record_approval(
                    negotiation,
                    ApprovalLevel.INTERNAL,
                    ApprovalOutcome.APPROVED,
                    actor_id,
                    now,
                    notes,
                )
                self._recorder.record_approval(
                    negotiation, ApprovalLevel.DIRECTOR, ApprovalOutcome.PENDING, actor_id, now
                )
                logger.info(
                    "negotiation_escalated_to_director",
                    negotiation_id=negotiation_id,
                    total=str(escalation.total),
                    largest_item=str(escalation.largest_item),
                )
                _queue(
                    outbox,
                    NotificationEvent.APPROVAL_REQUIRED,
                    negotiation,
                    level=ApprovalLevel.DIRECTOR.value,
                    total=escalation.total,
                )
                return negotiation

            negotiation = self._recorder.change_status(
                negotiation,
                A.PROCESS_APPROVAL,
                NegotiationStatus.APPROVED,
                actor_id,
                now,
                reason="Approved internally",
            )
            self._recorder.record_approval(
                negotiation, ApprovalLevel.INTERNAL, ApprovalOutcome.APPROVED, actor_id, now, notes
            )
            _queue(
                outbox,
                NotificationEvent.APPROVED,
                negotiation,
                level=ApprovalLevel.INTERNAL.value,
            )
            return negotiation

        return self._execute(operation)

    def director_approve(
        self, negotiation_id: int, actor_id: int, approved: bool, notes: str | None = None
    ) -> Negotiation:
        """Record the director's decision on an escalated negotiation."""

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.DIRECTOR_APPROVE, actor_id, negotiation)
            target = NegotiationStatus.APPROVED if approved else NegotiationStatus.REJECTED
            negotiation = self._recorder.change_status(
                negotiation,
                A.DIRECTOR_APPROVE,
                target,
                actor_id,
                now,
                reason=notes or ("Approved by director" if approved else "Rejected by director"),
            )
            self._recorder.record_approval(
                negotiation,
                ApprovalLevel.DIRECTOR,
                ApprovalOutcome.APPROVED if approved else ApprovalOutcome.REJECTED,
                actor_id,
                now,
                notes,
            )
            event = NotificationEvent.APPROVED if approved else NotificationEvent.REJECTED
            _queue(outbox, event, negotiation, level=ApprovalLevel.DIRECTOR.value)
            return negotiation

        return self._execute(operation)

    def _request_approval(
        self,
        negotiation_id: int,
        actor_id: int,
        action: NegotiationAction,
        marker: ApprovalMarker,
        level: ApprovalLevel,
        notes: str | None,
    ) -> Negotiation:
        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(action, actor_id, negotiation)
            NegotiationStateMachine(negotiation.status).transition(action, negotiation.status)

            negotiation = negotiation.model_copy(
                update={"approval_level": marker, "updated_at": now}
            )
            self._store.update(negotiation)
            self._recorder.record_approval(
                negotiation, level, ApprovalOutcome.PENDING, actor_id, now, notes
            )
            logger.info(
                "approval_requested",
                negotiation_id=negotiation_id,
                level=level.value,
                actor_id=actor_id,
            )
            _queue(outbox, NotificationEvent.APPROVAL_REQUIRED, negotiation, level=level.value)
            return negotiation

        return self._execute(operation)

    def submit_for_approval(
        self, negotiation_id: int, actor_id: int, notes: str | None = None
    ) -> Negotiation:
        """Flag an approved negotiation as awaiting another internal review."""
        return self._request_approval(
            negotiation_id,
            actor_id,
            A.SUBMIT_FOR_APPROVAL,
            ApprovalMarker.PENDING_APPROVAL,
            ApprovalLevel.INTERNAL,
            notes,
        )

    def submit_for_director_approval(
        self, negotiation_id: int, actor_id: int, notes: str | None = None
    ) -> Negotiation:
        """Flag an approved negotiation as awaiting a director's review."""
        return self._request_approval(
            negotiation_id,
            actor_id,
            A.SUBMIT_FOR_DIRECTOR_APPROVAL,
            ApprovalMarker.PENDING_DIRECTOR_APPROVAL,
            ApprovalLevel.DIRECTOR,
            notes,
        )

    # ------------------------------------------------------------------
    # External approval and completion
    # ------------------------------------------------------------------

    def _complete(
        self,
        negotiation: Negotiation,
        action: NegotiationAction,
        actor_id: int,
        now: datetime,
        outbox: Outbox,
        reason: str,
    ) -> Negotiation:
        negotiation = self._recorder.change_status(
            negotiation, action, NegotiationStatus.COMPLETE, actor_id, now, reason=reason
        )
        result = self._synchronizer.synchronize(negotiation, actor_id, now.date())
        _queue(
            outbox,
            NotificationEvent.COMPLETED,
            negotiation,
            contracts=len(result.created),
            superseded=len(result.deactivated_ids),
        )
        return negotiation

    def _finalize_items(
        self, negotiation: Negotiation, items: Iterable[NegotiationItem], now: datetime
    ) -> Negotiation:
        for item in items:
            completed = item.model_copy(
                update={"status": ItemStatus.COMPLETED, "responded_at": now}
            )
            self._store.update_item(completed)
            negotiation = _replace_item(negotiation, completed)
        return negotiation

    def process_external_approval(
        self,
        negotiation_id: int,
        actor_id: int,
        approved: bool,
        approved_items: Iterable[ApprovedItem | Mapping[str, Any]] | None = None,
        notes: str | None = None,
    ) -> Negotiation:
        """Record the counterparty's final confirmation.

        Confirmed items become ``completed`` at the confirmed value (or their
        agreed value when none is given).  Confirming every item completes
        the negotiation and updates the pricing ledger; confirming a subset
        leaves it ``partially_complete``.
        """
        confirmations = [_coerce(ApprovedItem, item) for item in approved_items or []]
        if approved and not confirmations:
            raise ValidationError("an external approval must confirm at least one item")
        _unique_item_ids(confirmation.item_id for confirmation in confirmations)

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.PROCESS_EXTERNAL_APPROVAL, actor_id, negotiation)
            NegotiationStateMachine(negotiation.status).ensure_allowed(
                A.PROCESS_EXTERNAL_APPROVAL
            )

            if not approved:
                negotiation = self._recorder.change_status(
                    negotiation,
                    A.PROCESS_EXTERNAL_APPROVAL,
                    NegotiationStatus.REJECTED,
                    actor_id,
                    now,
                    reason=notes or "Rejected by counterparty",
                )
                self._recorder.record_approval(
                    negotiation,
                    ApprovalLevel.EXTERNAL,
                    ApprovalOutcome.REJECTED,
                    actor_id,
                    now,
                    notes,
                )
                _queue(
                    outbox,
                    NotificationEvent.REJECTED,
                    negotiation,
                    level=ApprovalLevel.EXTERNAL.value,
                )
                return negotiation

            confirmed: list[NegotiationItem] = []
            for confirmation in confirmations:
                item = _owned_item(negotiation, confirmation.item_id)
                if item.status == ItemStatus.REJECTED:
                    raise ValidationError(f"item {item.id} was rejected and cannot be confirmed")
                value = confirmation.approved_value
                if value is None:
                    value = item.approved_value
                if value is None:
                    value = item.proposed_value
                confirmed.append(item.model_copy(update={"approved_value": value}))
            negotiation = self._finalize_items(negotiation, confirmed, now)

            self._recorder.record_approval(
                negotiation, ApprovalLevel.EXTERNAL, ApprovalOutcome.APPROVED, actor_id, now, notes
            )
            if all(item.status == ItemStatus.COMPLETED for item in negotiation.items):
                return self._complete(
                    negotiation,
                    A.PROCESS_EXTERNAL_APPROVAL,
                    actor_id,
                    now,
                    outbox,
                    reason=notes or "Confirmed by counterparty",
                )

            negotiation = self._recorder.change_status(
                negotiation,
                A.PROCESS_EXTERNAL_APPROVAL,
                NegotiationStatus.PARTIALLY_COMPLETE,
                actor_id,
                now,
                reason=notes or "Partially confirmed by counterparty",
            )
            _queue(
                outbox,
                NotificationEvent.PARTIALLY_COMPLETED,
                negotiation,
                completed_items=len(confirmed),
            )
            return negotiation

        return self._execute(operation)

    def mark_as_complete(
        self, negotiation_id: int, actor_id: int, notes: str | None = None
    ) -> Negotiation:
        """Complete an approved negotiation whose every item has an agreed price.

        Raises:
            StateConflictError: If any item is rejected or has no agreed value.
        """

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.MARK_AS_COMPLETE, actor_id, negotiation)
            NegotiationStateMachine(negotiation.status).ensure_allowed(A.MARK_AS_COMPLETE)

            unpriced = [
                item.id
                for item in negotiation.items
                if item.status == ItemStatus.REJECTED or item.approved_value is None
            ]
            if unpriced:
                raise StateConflictError(
                    negotiation.status, f"items {unpriced} have no agreed price"
                )

            negotiation = self._finalize_items(negotiation, negotiation.items, now)
            self._recorder.record_approval(
                negotiation, ApprovalLevel.EXTERNAL, ApprovalOutcome.APPROVED, actor_id, now, notes
            )
            return self._complete(
                negotiation,
                A.MARK_AS_COMPLETE,
                actor_id,
                now,
                outbox,
                reason=notes or "Marked as complete",
            )

        return self._execute(operation)

    def mark_as_partially_complete(
        self, negotiation_id: int, actor_id: int, notes: str | None = None
    ) -> Negotiation:
        """Close an approved negotiation, completing only the items with an agreed price.

        No pricing contracts are written: the ledger changes only when a
        negotiation completes in full.

        Raises:
            StateConflictError: If no item has an agreed price.
        """

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.MARK_AS_PARTIALLY_COMPLETE, actor_id, negotiation)
            NegotiationStateMachine(negotiation.status).ensure_allowed(
                A.MARK_AS_PARTIALLY_COMPLETE
            )

            priced = [
                item
                for item in negotiation.items
                if item.status != ItemStatus.REJECTED and item.approved_value is not None
            ]
            if not priced:
                raise StateConflictError(negotiation.status, "no item has an agreed price")

            negotiation = self._finalize_items(negotiation, priced, now)
            self._recorder.record_approval(
                negotiation, ApprovalLevel.EXTERNAL, ApprovalOutcome.APPROVED, actor_id, now, notes
            )
            negotiation = self._recorder.change_status(
                negotiation,
                A.MARK_AS_PARTIALLY_COMPLETE,
                NegotiationStatus.PARTIALLY_COMPLETE,
                actor_id,
                now,
                reason=notes or "Marked as partially complete",
            )
            _queue(
                outbox,
                NotificationEvent.PARTIALLY_COMPLETED,
                negotiation,
                completed_items=len(priced),
            )
            return negotiation

        return self._execute(operation)

    # ------------------------------------------------------------------
    # Structural operations
    # ------------------------------------------------------------------

    def cancel(self, negotiation_id: int, actor_id: int, reason: str | None = None) -> Negotiation:
        """Cancel a negotiation that has not reached a final status."""

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.CANCEL, actor_id, negotiation)
            negotiation = self._recorder.change_status(
                negotiation,
                A.CANCEL,
                NegotiationStatus.CANCELLED,
                actor_id,
                now,
                reason=reason or "Cancelled",
            )
            _queue(outbox, NotificationEvent.CANCELLED, negotiation, reason=reason or "")
            return negotiation

        return self._execute(operation)

    def start_new_cycle(self, negotiation_id: int, actor_id: int) -> Negotiation:
        """Archive the current round and reopen every item."""

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.START_NEW_CYCLE, actor_id, negotiation)
            negotiation, _ = self._cycles.start_new_cycle(negotiation, actor_id, now)
            _queue(
                outbox,
                NotificationEvent.NEW_CYCLE,
                negotiation,
                cycle=negotiation.negotiation_cycle,
                max_cycles=negotiation.max_cycles_allowed,
            )
            return negotiation

        return self._execute(operation)

    def rollback_status(
        self,
        negotiation_id: int,
        actor_id: int,
        target: NegotiationStatus | str,
        reason: str,
    ) -> Negotiation:
        """Return a negotiation to an earlier status."""
        target = _coerce_enum(NegotiationStatus, target, "negotiation status")

        def operation(outbox: Outbox) -> Negotiation:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.ROLLBACK, actor_id, negotiation)
            previous = negotiation.status
            negotiation = self._rollbacks.rollback(negotiation, target, actor_id, reason, now)
            _queue(
                outbox,
                NotificationEvent.STATUS_ROLLBACK,
                negotiation,
                from_status=previous.value,
                to_status=target.value,
                reason=reason.strip(),
            )
            return negotiation

        return self._execute(operation)

    def fork_negotiation(
        self,
        negotiation_id: int,
        actor_id: int,
        groups: Iterable[ForkGroup | Mapping[str, Any]],
    ) -> list[Negotiation]:
        """Split a negotiation into one child per group.

        Returns:
            The child negotiations, in group order.
        """
        parsed = [_coerce(ForkGroup, group) for group in groups]

        def operation(outbox: Outbox) -> list[Negotiation]:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            self._capabilities.require(A.FORK, actor_id, negotiation)
            parent, children = self._forks.fork(negotiation, parsed, actor_id, now)
            _queue(
                outbox,
                NotificationEvent.FORK,
                parent,
                children=", ".join(str(child.id) for child in children),
            )
            return children

        return self._execute(operation)

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def _expire_one(self, negotiation_id: int, cutoff: datetime, days: int) -> int | None:
        def operation(outbox: Outbox) -> int | None:
            now = self._clock()
            negotiation = self._store.get(negotiation_id)
            # Re-check under the write lock; another operation may have moved it.
            if (
                negotiation.status != NegotiationStatus.APPROVED
                or negotiation.formalization_status != FormalizationStatus.PENDING_ADDENDUM
                or negotiation.approved_at is None
                or negotiation.approved_at >= cutoff
            ):
                return None
            self._capabilities.require(A.EXPIRE, SYSTEM_ACTOR_ID, negotiation)
            negotiation = self._recorder.change_status(
                negotiation,
                A.EXPIRE,
                NegotiationStatus.EXPIRED,
                SYSTEM_ACTOR_ID,
                now,
                reason=f"Contract addendum not formalized within {days} days of approval",
            )
            _queue(outbox, NotificationEvent.EXPIRED, negotiation, days=days)
            return negotiation_id

        return self._execute(operation)

    def expire_stale_negotiations(self, older_than_days: int | None = None) -> list[int]:
        """Expire approved negotiations whose addendum was never formalized.

        Args:
            older_than_days: Age of ``approved_at`` after which a negotiation
                expires; defaults to ``Settings.formalization_expiry_days``.

        Returns:
            Ids of the negotiations that were expired.
        """
        days = older_than_days
        if days is None:
            days = self._settings.formalization_expiry_days
        if days < 1:
            raise ValidationError("older_than_days must be at least 1")
        cutoff = self._clock() - timedelta(days=days)

        candidates = [
            negotiation.id
            for negotiation in self._store.list_awaiting_formalization()
            if negotiation.id is not None
            and negotiation.approved_at is not None
            and negotiation.approved_at < cutoff
        ]
        expired = [
            negotiation_id
            for negotiation_id in candidates
            if self._expire_one(negotiation_id, cutoff, days) is not None
        ]
        logger.info(
            "stale_negotiations_expired",
            expired=len(expired),
            checked=len(candidates),
            cutoff=cutoff.isoformat(),
        )
        return expired

    def resend_notifications(self, negotiation_id: int, actor_id: int) -> NotificationEvent:
        """Send the notification for the negotiation's current status again.

        Nothing is written; the notification reflects the stored state.

        Returns:
            The event that was sent.
        """
        negotiation = self._store.get(negotiation_id)
        self._capabilities.require(A.RESEND_NOTIFICATIONS, actor_id, negotiation)

        event = _STATUS_EVENTS[negotiation.status]
        extra: dict[str, Any] = {"resent_by": actor_id}
        if negotiation.status == NegotiationStatus.PENDING:
            extra["level"] = ApprovalLevel.INTERNAL.value
        elif negotiation.status == NegotiationStatus.PENDING_DIRECTOR_APPROVAL:
            extra["level"] = ApprovalLevel.DIRECTOR.value
        elif negotiation.status == NegotiationStatus.FORKED:
            children = self._store.list_children(negotiation_id)
            extra["children"] = ", ".join(str(child.id) for child in children)

        logger.info(
            "notifications_resent",
            negotiation_id=negotiation_id,
            notification_event=event.value,
            actor_id=actor_id,
        )
        outbox: Outbox = []
        _queue(outbox, event, negotiation, **extra)
        self._dispatcher.dispatch(outbox)
        return event

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_negotiation(self, negotiation_id: int) -> Negotiation:
        """Return one negotiation with its items."""
        return self._store.get(negotiation_id)

    def get_valid_actions(self, negotiation_id: int) -> list[str]:
        """Return the actions the negotiation's current status allows."""
        negotiation = self._store.get(negotiation_id)
        return NegotiationStateMachine(negotiation.status).get_valid_actions()

    def get_approval_history(self, negotiation_id: int) -> list[ApprovalHistoryEntry]:
        """Return the approval history, oldest first."""
        self._store.get(negotiation_id)
        return self._store.list_approval_history(negotiation_id)

    def get_status_history(self, negotiation_id: int) -> list[StatusHistoryEntry]:
        """Return the status history, oldest first."""
        self._store.get(negotiation_id)
        return self._store.list_status_history(negotiation_id)

    def get_cycle_snapshots(self, negotiation_id: int) -> list[CycleSnapshot]:
        """Return the archived item state of earlier cycles."""
        self._store.get(negotiation_id)
        return self._store.list_cycle_snapshots(negotiation_id)

    def get_forks(self, negotiation_id: int) -> list[Negotiation]:
        """Return the negotiations forked from *negotiation_id*."""
        self._store.get(negotiation_id)
        return self._store.list_children(negotiation_id)

    def get_active_pricing_contracts(
        self, entity: SubjectEntity | Mapping[str, Any]
    ) -> list[PricingContract]:
        """Return the active prices for one counterparty."""
        return self._ledger.list_active(_coerce(SubjectEntity, entity))

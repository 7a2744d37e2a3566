"""Pydantic v2 models for negotiation aggregates, history records, and inputs."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pricing_negotiation.domain.errors import NotFoundError
from pricing_negotiation.domain.types import (
    ApprovalLevel,
    ApprovalMarker,
    ApprovalOutcome,
    FormalizationStatus,
    ItemStatus,
    NegotiationStatus,
    SubjectEntityType,
)


def _reject_float(v: object) -> object:
    if isinstance(v, float):
        raise ValueError("Use Decimal or string, not float, for monetary values")
    return v


def _non_negative(v: Decimal | None) -> Decimal | None:
    if v is not None and v < 0:
        raise ValueError("monetary values must not be negative")
    return v


def _one_item_per_procedure(items: list[NewItem]) -> list[NewItem]:
    # The pricing ledger holds one active price per entity and procedure.
    seen: set[int] = set()
    for item in items:
        if item.procedure_id in seen:
            raise ValueError(f"procedure {item.procedure_id} is listed more than once")
        seen.add(item.procedure_id)
    return items


class SubjectEntity(BaseModel):
    """The counterparty whose procedure pricing is negotiated."""

    model_config = ConfigDict(frozen=True)

    type: SubjectEntityType
    id: int


class NegotiationItem(BaseModel):
    """A proposed price for one procedure inside a negotiation."""

    id: int | None = None
    negotiation_id: int | None = None
    procedure_id: int
    proposed_value: Decimal
    approved_value: Decimal | None = None
    status: ItemStatus = ItemStatus.PENDING
    specialty_id: int | None = None
    notes: str | None = None
    responded_at: datetime | None = None

    @field_validator("proposed_value", "approved_value", mode="before")
    @classmethod
    def reject_float_inputs(cls, v: object) -> object:
        """Reject float inputs for monetary fields to prevent precision errors."""
        return _reject_float(v)

    @field_validator("proposed_value", "approved_value")
    @classmethod
    def values_must_not_be_negative(cls, v: Decimal | None) -> Decimal | None:
        """Ensure monetary values are zero or positive."""
        return _non_negative(v)


class Negotiation(BaseModel):
    """A negotiation aggregate: the negotiation row plus its items.

    Status changes are made by the lifecycle service only; the model itself
    carries no transition logic.
    """

    id: int | None = None
    entity: SubjectEntity
    creator_id: int
    title: str
    description: str | None = None
    notes: str | None = None
    status: NegotiationStatus = NegotiationStatus.DRAFT
    approval_level: ApprovalMarker | None = None
    start_date: date
    end_date: date
    negotiation_cycle: int = 1
    max_cycles_allowed: int = 3
    parent_negotiation_id: int | None = None
    fork_count: int = 0
    formalization_status: FormalizationStatus | None = None
    approved_at: datetime | None = None
    approved_by: int | None = None
    completed_at: datetime | None = None
    rejected_at: datetime | None = None
    rejected_by: int | None = None
    cancelled_at: datetime | None = None
    forked_at: datetime | None = None
    expired_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    items: list[NegotiationItem] = Field(default_factory=list)

    @property
    def total_proposed_value(self) -> Decimal:
        """Sum of every item's proposed value."""
        return sum((item.proposed_value for item in self.items), Decimal("0"))

    @property
    def previously_approved(self) -> bool:
        """Whether internal approval was already granted in the current cycle."""
        return self.approved_at is not None

    def get_item(self, item_id: int) -> NegotiationItem:
        """Return the item with *item_id*.

        Raises:
            NotFoundError: If the item does not belong to this negotiation.
        """
        for item in self.items:
            if item.id == item_id:
                return item
        raise NotFoundError("NegotiationItem", item_id)

    def pending_items(self) -> list[NegotiationItem]:
        """Return the items still awaiting a counterparty response."""
        return [item for item in self.items if item.status == ItemStatus.PENDING]


class ApprovalHistoryEntry(BaseModel):
    """Immutable record of one approval decision or request."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    negotiation_id: int
    level: ApprovalLevel
    status: ApprovalOutcome
    actor_id: int
    notes: str | None = None
    created_at: datetime


class StatusHistoryEntry(BaseModel):
    """Immutable record of one negotiation status change."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    negotiation_id: int
    from_status: NegotiationStatus
    to_status: NegotiationStatus
    actor_id: int
    reason: str | None = None
    created_at: datetime


class CycleSnapshot(BaseModel):
    """Item state archived when a negotiation starts a new cycle."""

    model_config = ConfigDict(frozen=True)

    negotiation_id: int
    cycle: int
    items: list[NegotiationItem]
    archived_at: datetime


class PricingContract(BaseModel):
    """An entry in the pricing-contract ledger consumed by billing."""

    id: int | None = None
    entity: SubjectEntity
    procedure_id: int
    specialty_id: int | None = None
    price: Decimal
    start_date: date
    end_date: date | None = None
    is_active: bool = True
    negotiation_id: int | None = None
    deactivation_reason: str | None = None
    created_by: int | None = None
    created_at: datetime | None = None

    @field_validator("price", mode="before")
    @classmethod
    def reject_float_inputs(cls, v: object) -> object:
        """Reject float inputs for monetary fields to prevent precision errors."""
        return _reject_float(v)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class NewItem(BaseModel):
    """A procedure price proposed when creating or editing a draft."""

    model_config = ConfigDict(frozen=True)

    procedure_id: int
    proposed_value: Decimal
    specialty_id: int | None = None
    notes: str | None = None

    @field_validator("proposed_value", mode="before")
    @classmethod
    def reject_float_inputs(cls, v: object) -> object:
        """Reject float inputs for monetary fields to prevent precision errors."""
        return _reject_float(v)

    @field_validator("proposed_value")
    @classmethod
    def value_must_not_be_negative(cls, v: Decimal) -> Decimal:
        """Ensure the proposed value is zero or positive."""
        return _non_negative(v)  # type: ignore[return-value]


class NewNegotiation(BaseModel):
    """Everything needed to open a negotiation in ``draft``."""

    model_config = ConfigDict(frozen=True)

    entity: SubjectEntity
    title: str
    start_date: date
    end_date: date
    items: list[NewItem]
    description: str | None = None
    notes: str | None = None
    max_cycles_allowed: int | None = None

    @field_validator("title")
    @classmethod
    def title_must_not_be_empty(cls, v: str) -> str:
        """Ensure the title is not empty or whitespace-only."""
        if not v.strip():
            raise ValueError("title must not be empty")
        return v

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(cls, v: list[NewItem]) -> list[NewItem]:
        """Ensure at least one item is proposed, one per procedure."""
        if len(v) == 0:
            raise ValueError("a negotiation needs at least one item")
        return _one_item_per_procedure(v)

    @field_validator("max_cycles_allowed")
    @classmethod
    def cycles_must_be_positive(cls, v: int | None) -> int | None:
        """Ensure the cycle limit allows at least the first cycle."""
        if v is not None and v < 1:
            raise ValueError("max_cycles_allowed must be at least 1")
        return v

    @model_validator(mode="after")
    def end_date_must_follow_start_date(self) -> NewNegotiation:
        """Ensure the validity window is not empty."""
        if self.end_date <= self.start_date:
            raise ValueError(
                f"end_date ({self.end_date}) must be after start_date ({self.start_date})"
            )
        return self


class DraftUpdate(BaseModel):
    """Partial edit of a negotiation that is still a draft."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    description: str | None = None
    notes: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    items: list[NewItem] | None = None

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(cls, v: list[NewItem] | None) -> list[NewItem] | None:
        """Replacing the items with an empty list is not allowed."""
        if v is None:
            return v
        if len(v) == 0:
            raise ValueError("a negotiation needs at least one item")
        return _one_item_per_procedure(v)


class CounterOffer(BaseModel):
    """A counter value proposed by the counterparty for one item."""

    model_config = ConfigDict(frozen=True)

    item_id: int
    value: Decimal
    notes: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def reject_float_inputs(cls, v: object) -> object:
        """Reject float inputs for monetary fields to prevent precision errors."""
        return _reject_float(v)

    @field_validator("value")
    @classmethod
    def value_must_not_be_negative(cls, v: Decimal) -> Decimal:
        """Ensure the counter value is zero or positive."""
        return _non_negative(v)  # type: ignore[return-value]


class ApprovedItem(BaseModel):
    """An item confirmed during external approval, optionally with its final value."""

    model_config = ConfigDict(frozen=True)

    item_id: int
    approved_value: Decimal | None = None

    @field_validator("approved_value", mode="before")
    @classmethod
    def reject_float_inputs(cls, v: object) -> object:
        """Reject float inputs for monetary fields to prevent precision errors."""
        return _reject_float(v)

    @field_validator("approved_value")
    @classmethod
    def value_must_not_be_negative(cls, v: Decimal | None) -> Decimal | None:
        """Ensure the approved value is zero or positive."""
        return _non_negative(v)


class ForkGroup(BaseModel):
    """Items that will be carried into one child negotiation."""

    model_config = ConfigDict(frozen=True)

    item_ids: list[int]
    title: str | None = None

    @field_validator("item_ids")
    @classmethod
    def group_must_not_be_empty(cls, v: list[int]) -> list[int]:
        """Ensure each fork group carries at least one item."""
        if len(v) == 0:
            raise ValueError("a fork group needs at least one item")
        if len(set(v)) != len(v):
            raise ValueError("a fork group lists the same item twice")
        return v

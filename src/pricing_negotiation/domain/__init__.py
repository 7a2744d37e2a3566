"""Domain types, models, and errors for the negotiation engine."""

from pricing_negotiation.domain.errors import (
    AuthorizationError,
    InvalidTransitionError,
    LockContentionError,
    NegotiationError,
    NotFoundError,
    PersistenceError,
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
    Role,
    SubjectEntityType,
)

__all__ = [
    "ApprovalHistoryEntry",
    "ApprovalLevel",
    "ApprovalMarker",
    "ApprovalOutcome",
    "ApprovedItem",
    "AuthorizationError",
    "CounterOffer",
    "CycleSnapshot",
    "DraftUpdate",
    "ForkGroup",
    "FormalizationStatus",
    "InvalidTransitionError",
    "ItemDecision",
    "ItemStatus",
    "LockContentionError",
    "Negotiation",
    "NegotiationError",
    "NegotiationItem",
    "NegotiationStatus",
    "NewItem",
    "NewNegotiation",
    "NotFoundError",
    "PersistenceError",
    "PricingContract",
    "Role",
    "StateConflictError",
    "StatusHistoryEntry",
    "SubjectEntity",
    "SubjectEntityType",
    "ValidationError",
]

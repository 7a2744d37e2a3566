"""Transition table defining every legal (status, action) -> target statuses mapping."""

from enum import StrEnum

from pricing_negotiation.domain.types import NegotiationStatus

S = NegotiationStatus


class NegotiationAction(StrEnum):
    """Actions that can be applied to a negotiation."""

    CREATE = "create"
    UPDATE = "update"
    SUBMIT = "submit"
    RESPOND = "respond"
    COUNTER = "counter"
    PROCESS_APPROVAL = "process_approval"
    DIRECTOR_APPROVE = "director_approve"
    SUBMIT_FOR_APPROVAL = "submit_for_approval"
    SUBMIT_FOR_DIRECTOR_APPROVAL = "submit_for_director_approval"
    PROCESS_EXTERNAL_APPROVAL = "process_external_approval"
    MARK_AS_COMPLETE = "mark_as_complete"
    MARK_AS_PARTIALLY_COMPLETE = "mark_as_partially_complete"
    CANCEL = "cancel"
    START_NEW_CYCLE = "start_new_cycle"
    ROLLBACK = "rollback"
    FORK = "fork"
    EXPIRE = "expire"
    RESEND_NOTIFICATIONS = "resend_notifications"


A = NegotiationAction

# Item responses keep the negotiation in SUBMITTED until every item has been
# answered, then the aggregator picks one of the other targets.
_AGGREGATION_TARGETS = frozenset(
    {S.SUBMITTED, S.PENDING, S.REJECTED, S.PARTIALLY_APPROVED, S.PARTIALLY_COMPLETE}
)

# All valid (current_status, action) -> allowed target statuses.
# Any pair not in this dict is an invalid transition.
TRANSITIONS: dict[tuple[NegotiationStatus, str], frozenset[NegotiationStatus]] = {
    # From DRAFT
    (S.DRAFT, A.UPDATE): frozenset({S.DRAFT}),
    (S.DRAFT, A.SUBMIT): frozenset({S.SUBMITTED}),
    (S.DRAFT, A.CANCEL): frozenset({S.CANCELLED}),
    # From SUBMITTED
    (S.SUBMITTED, A.RESPOND): _AGGREGATION_TARGETS,
    (S.SUBMITTED, A.COUNTER): _AGGREGATION_TARGETS,
    (S.SUBMITTED, A.CANCEL): frozenset({S.CANCELLED}),
    (S.SUBMITTED, A.FORK): frozenset({S.FORKED}),
    # From PENDING
    (S.PENDING, A.PROCESS_APPROVAL): frozenset(
        {S.APPROVED, S.PENDING_DIRECTOR_APPROVAL, S.REJECTED}
    ),
    (S.PENDING, A.CANCEL): frozenset({S.CANCELLED}),
    (S.PENDING, A.ROLLBACK): frozenset({S.SUBMITTED, S.DRAFT}),
    # From PENDING_DIRECTOR_APPROVAL
    (S.PENDING_DIRECTOR_APPROVAL, A.DIRECTOR_APPROVE): frozenset({S.APPROVED, S.REJECTED}),
    (S.PENDING_DIRECTOR_APPROVAL, A.CANCEL): frozenset({S.CANCELLED}),
    # From APPROVED
    (S.APPROVED, A.SUBMIT_FOR_APPROVAL): frozenset({S.APPROVED}),
    (S.APPROVED, A.SUBMIT_FOR_DIRECTOR_APPROVAL): frozenset({S.APPROVED}),
    (S.APPROVED, A.PROCESS_EXTERNAL_APPROVAL): frozenset(
        {S.COMPLETE, S.PARTIALLY_COMPLETE, S.REJECTED}
    ),
    (S.APPROVED, A.MARK_AS_COMPLETE): frozenset({S.COMPLETE}),
    (S.APPROVED, A.MARK_AS_PARTIALLY_COMPLETE): frozenset({S.PARTIALLY_COMPLETE}),
    (S.APPROVED, A.CANCEL): frozenset({S.CANCELLED}),
    (S.APPROVED, A.ROLLBACK): frozenset({S.PENDING, S.SUBMITTED}),
    (S.APPROVED, A.EXPIRE): frozenset({S.EXPIRED}),
    # From PARTIALLY_APPROVED
    (S.PARTIALLY_APPROVED, A.CANCEL): frozenset({S.CANCELLED}),
    (S.PARTIALLY_APPROVED, A.START_NEW_CYCLE): frozenset({S.SUBMITTED}),
    (S.PARTIALLY_APPROVED, A.ROLLBACK): frozenset({S.SUBMITTED}),
    (S.PARTIALLY_APPROVED, A.FORK): frozenset({S.FORKED}),
    # From REJECTED
    (S.REJECTED, A.START_NEW_CYCLE): frozenset({S.SUBMITTED}),
}

# States that reject all actions -- no outgoing transitions allowed.
TERMINAL_STATUSES: frozenset[NegotiationStatus] = frozenset(
    {S.COMPLETE, S.PARTIALLY_COMPLETE, S.CANCELLED, S.FORKED, S.EXPIRED}
)

# Statuses from which rollback is permitted, and to where.
ROLLBACK_TARGETS: dict[NegotiationStatus, frozenset[NegotiationStatus]] = {
    status: targets for (status, action), targets in TRANSITIONS.items() if action == A.ROLLBACK
}

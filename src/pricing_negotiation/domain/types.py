"""Domain enumerations shared by the aggregator, the state machine, and persistence."""

from enum import StrEnum


class NegotiationStatus(StrEnum):
    """States in the negotiation lifecycle."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING = "pending"
    APPROVED = "approved"
    PENDING_DIRECTOR_APPROVAL = "pending_director_approval"
    COMPLETE = "complete"
    PARTIALLY_COMPLETE = "partially_complete"
    PARTIALLY_APPROVED = "partially_approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    FORKED = "forked"
    EXPIRED = "expired"


class ItemStatus(StrEnum):
    """States of a single negotiated procedure price."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COUNTER_OFFERED = "counter_offered"
    COMPLETED = "completed"


class ItemDecision(StrEnum):
    """Decisions a counterparty representative can record on an item."""

    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalLevel(StrEnum):
    """Levels recorded in the approval history."""

    INTERNAL = "internal"
    EXTERNAL = "external"
    DIRECTOR = "director"


class ApprovalOutcome(StrEnum):
    """Outcome recorded on an approval history entry."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalMarker(StrEnum):
    """Advisory marker describing which sign-off a negotiation is waiting on."""

    PENDING_APPROVAL = "pending_approval"
    PENDING_DIRECTOR_APPROVAL = "pending_director_approval"


class FormalizationStatus(StrEnum):
    """Progress of the contract addendum that formalizes an approved negotiation."""

    PENDING_ADDENDUM = "pending_addendum"
    FORMALIZED = "formalized"


class SubjectEntityType(StrEnum):
    """Counterparties whose procedure pricing can be negotiated."""

    HEALTH_PLAN = "health_plan"
    PROFESSIONAL = "professional"
    CLINIC = "clinic"


class Role(StrEnum):
    """Roles consumed from the authorization framework."""

    SUPER_ADMIN = "super_admin"
    DIRECTOR = "director"
    COMMERCIAL_MANAGER = "commercial_manager"
    PLAN_ADMIN = "plan_admin"
    CLINIC_ADMIN = "clinic_admin"
    PROFESSIONAL = "professional"


# Role a user must hold, in addition to owning the exact entity instance,
# to act as the representative of each subject entity type.
REPRESENTATIVE_ROLES: dict[SubjectEntityType, Role] = {
    SubjectEntityType.HEALTH_PLAN: Role.PLAN_ADMIN,
    SubjectEntityType.CLINIC: Role.CLINIC_ADMIN,
    SubjectEntityType.PROFESSIONAL: Role.PROFESSIONAL,
}

INTERNAL_APPROVER_ROLES: frozenset[Role] = frozenset(
    {Role.COMMERCIAL_MANAGER, Role.SUPER_ADMIN, Role.DIRECTOR}
)

COMMERCIAL_ROLES: frozenset[Role] = frozenset(
    {Role.COMMERCIAL_MANAGER, Role.SUPER_ADMIN, Role.DIRECTOR}
)

DIRECTOR_ROLES: frozenset[Role] = frozenset({Role.DIRECTOR})


def get_representative_role(entity_type: SubjectEntityType) -> Role:
    """Look up the role that represents a subject entity type.

    Args:
        entity_type: The subject entity type to look up.

    Returns:
        The role a representative of that entity type must hold.

    Raises:
        ValueError: If the entity type has no representative role.
    """
    try:
        return REPRESENTATIVE_ROLES[entity_type]
    except KeyError:
        raise ValueError(f"Unknown subject entity type: {entity_type}") from None

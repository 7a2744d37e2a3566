"""Capability checks consumed from the external authorization framework.

Every action maps to exactly one capability in :data:`ACTION_CAPABILITIES`,
and :class:`NegotiationCapabilities` resolves that capability with a single
query against the :class:`AuthorizationGateway`.  Ownership and
self-approval rules live here and nowhere else.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from typing import Protocol

import structlog

from pricing_negotiation.domain.errors import AuthorizationError
from pricing_negotiation.domain.models import Negotiation
from pricing_negotiation.domain.types import (
    COMMERCIAL_ROLES,
    DIRECTOR_ROLES,
    INTERNAL_APPROVER_ROLES,
    Role,
    SubjectEntityType,
    get_representative_role,
)
from pricing_negotiation.state_machine.transitions import NegotiationAction

logger = structlog.get_logger()

# Actor id recorded for transitions run by scheduled jobs rather than a user.
SYSTEM_ACTOR_ID = 0


class AuthorizationGateway(Protocol):
    """Role and ownership queries answered by the authentication framework."""

    def has_role(self, user_id: int, roles: Iterable[Role]) -> bool:
        """Return True if *user_id* holds any of *roles*."""
        ...

    def owns_entity(self, user_id: int, entity_type: SubjectEntityType, entity_id: int) -> bool:
        """Return True if *user_id* represents the exact entity instance."""
        ...


class Capability(StrEnum):
    """Who may perform an action."""

    COMMERCIAL = "commercial"
    CREATOR = "creator"
    CREATOR_OR_COMMERCIAL = "creator_or_commercial"
    REPRESENTATIVE = "representative"
    INTERNAL_APPROVER = "internal_approver"
    DIRECTOR = "director"
    SYSTEM = "system"


A = NegotiationAction

ACTION_CAPABILITIES: dict[NegotiationAction, Capability] = {
    A.CREATE: Capability.COMMERCIAL,
    A.UPDATE: Capability.CREATOR,
    A.SUBMIT: Capability.CREATOR,
    A.RESPOND: Capability.REPRESENTATIVE,
    A.COUNTER: Capability.REPRESENTATIVE,
    A.PROCESS_APPROVAL: Capability.INTERNAL_APPROVER,
    A.DIRECTOR_APPROVE: Capability.DIRECTOR,
    A.SUBMIT_FOR_APPROVAL: Capability.COMMERCIAL,
    A.SUBMIT_FOR_DIRECTOR_APPROVAL: Capability.COMMERCIAL,
    A.PROCESS_EXTERNAL_APPROVAL: Capability.REPRESENTATIVE,
    A.MARK_AS_COMPLETE: Capability.COMMERCIAL,
    A.MARK_AS_PARTIALLY_COMPLETE: Capability.COMMERCIAL,
    A.CANCEL: Capability.CREATOR_OR_COMMERCIAL,
    A.START_NEW_CYCLE: Capability.COMMERCIAL,
    A.ROLLBACK: Capability.COMMERCIAL,
    A.FORK: Capability.COMMERCIAL,
    A.EXPIRE: Capability.SYSTEM,
    A.RESEND_NOTIFICATIONS: Capability.CREATOR_OR_COMMERCIAL,
}


class NegotiationCapabilities:
    """Resolve per-action capabilities against an :class:`AuthorizationGateway`."""

    def __init__(self, gateway: AuthorizationGateway) -> None:
        self._gateway = gateway

    def denial_reason(
        self, action: NegotiationAction, actor_id: int, negotiation: Negotiation | None = None
    ) -> str | None:
        """Return why *actor_id* may not perform *action*, or None if allowed.

        Args:
            action: The action being attempted.
            actor_id: The acting user.
            negotiation: The negotiation acted upon.  Only ``create`` may omit it.
        """
        capability = ACTION_CAPABILITIES[action]

        if capability == Capability.SYSTEM:
            return None if actor_id == SYSTEM_ACTOR_ID else "only scheduled jobs may do this"

        if capability == Capability.COMMERCIAL:
            if self._gateway.has_role(actor_id, COMMERCIAL_ROLES):
                return None
            return "a commercial role is required"

        if negotiation is None:
            raise ValueError(f"action {action} needs the negotiation to check capability")

        is_creator = negotiation.creator_id == actor_id

        if capability == Capability.CREATOR:
            return None if is_creator else "only the creator may do this"

        if capability == Capability.CREATOR_OR_COMMERCIAL:
            if is_creator or self._gateway.has_role(actor_id, COMMERCIAL_ROLES):
                return None
            return "only the creator or a commercial role may do this"

        if capability == Capability.REPRESENTATIVE:
            entity = negotiation.entity
            role = get_representative_role(entity.type)
            if self._gateway.has_role(actor_id, [role]) and self._gateway.owns_entity(
                actor_id, entity.type, entity.id
            ):
                return None
            return f"not a representative of {entity.type} {entity.id}"

        # Internal and director approval: self-approval is forbidden for every role.
        if is_creator:
            return "self-approval is not allowed"
        roles = DIRECTOR_ROLES if capability == Capability.DIRECTOR else INTERNAL_APPROVER_ROLES
        if self._gateway.has_role(actor_id, roles):
            return None
        return f"one of the roles {sorted(roles)} is required"

    def is_allowed(
        self, action: NegotiationAction, actor_id: int, negotiation: Negotiation | None = None
    ) -> bool:
        """Return True if *actor_id* may perform *action*."""
        return self.denial_reason(action, actor_id, negotiation) is None

    def require(
        self, action: NegotiationAction, actor_id: int, negotiation: Negotiation | None = None
    ) -> None:
        """Raise unless *actor_id* may perform *action*.

        Raises:
            AuthorizationError: With the reason the action was refused.
        """
        reason = self.denial_reason(action, actor_id, negotiation)
        if reason is not None:
            logger.warning(
                "authorization_denied",
                action=str(action),
                actor_id=actor_id,
                negotiation_id=negotiation.id if negotiation else None,
                reason=reason,
            )
            raise AuthorizationError(actor_id, str(action), reason)


class SystemAuthorization:
    """Gateway for processes that only ever act as :data:`SYSTEM_ACTOR_ID`.

    Scheduled jobs run without a user session, so every role and ownership
    query is answered with a refusal.
    """

    def has_role(self, user_id: int, roles: Iterable[Role]) -> bool:
        return False

    def owns_entity(self, user_id: int, entity_type: SubjectEntityType, entity_id: int) -> bool:
        return False

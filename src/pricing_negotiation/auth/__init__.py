"""Capability checks built on the external authorization gateway."""

from pricing_negotiation.auth.gateway import (
    ACTION_CAPABILITIES,
    SYSTEM_ACTOR_ID,
    AuthorizationGateway,
    Capability,
    NegotiationCapabilities,
    SystemAuthorization,
)

__all__ = [
    "ACTION_CAPABILITIES",
    "SYSTEM_ACTOR_ID",
    "AuthorizationGateway",
    "Capability",
    "NegotiationCapabilities",
    "SystemAuthorization",
]

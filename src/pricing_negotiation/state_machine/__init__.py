"""Negotiation state machine with transition validation."""

from pricing_negotiation.state_machine.machine import NegotiationStateMachine
from pricing_negotiation.state_machine.transitions import (
    ROLLBACK_TARGETS,
    TERMINAL_STATUSES,
    TRANSITIONS,
    NegotiationAction,
)

__all__ = [
    "NegotiationAction",
    "NegotiationStateMachine",
    "ROLLBACK_TARGETS",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
]

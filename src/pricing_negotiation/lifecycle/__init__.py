"""Negotiation lifecycle orchestration and structural mutations."""

from pricing_negotiation.lifecycle.cycle import CycleManager
from pricing_negotiation.lifecycle.fork import ForkEngine, validate_fork_groups
from pricing_negotiation.lifecycle.recorder import StatusRecorder
from pricing_negotiation.lifecycle.rollback import RollbackEngine
from pricing_negotiation.lifecycle.service import NegotiationService

__all__ = [
    "CycleManager",
    "ForkEngine",
    "NegotiationService",
    "RollbackEngine",
    "StatusRecorder",
    "validate_fork_groups",
]

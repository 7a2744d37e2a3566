"""Pure decision functions consulted by the lifecycle service."""

from pricing_negotiation.policy.aggregator import aggregate_item_statuses
from pricing_negotiation.policy.approval import ApprovalPolicy, EscalationResult

__all__ = [
    "ApprovalPolicy",
    "EscalationResult",
    "aggregate_item_statuses",
]

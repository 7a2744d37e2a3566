"""Derive a negotiation's next status from the statuses of its items.

Pure and side-effect free: the lifecycle service consults it after every item
response or counter-offer and performs the write, the history append, and the
notification itself.
"""

from collections.abc import Iterable

from pricing_negotiation.domain.types import ItemStatus, NegotiationStatus

# Completed items have been approved by both sides; for aggregation they
# count as approvals.
_APPROVED_LIKE = frozenset({ItemStatus.APPROVED, ItemStatus.COMPLETED})


def aggregate_item_statuses(
    item_statuses: Iterable[ItemStatus],
    current_status: NegotiationStatus,
    previously_approved: bool = False,
) -> NegotiationStatus:
    """Compute the negotiation status implied by its item statuses.

    Aggregation only applies while the negotiation is ``submitted`` and every
    item has been answered.  Outcomes, evaluated in order:

    1. All items approved: ``pending`` (internal review).
    2. All items rejected: ``rejected``.
    3. All items counter-offered: ``pending`` (counter-offers need internal review).
    4. Mixed: ``partially_complete`` if internal approval was already granted
       in this cycle, otherwise ``partially_approved``.

    Args:
        item_statuses: Statuses of every item of the negotiation.
        current_status: The negotiation's status before aggregation.
        previously_approved: Whether the negotiation was already internally
            approved in the current cycle.

    Returns:
        The next status, or *current_status* when nothing changes.
    """
    statuses = list(item_statuses)

    if current_status != NegotiationStatus.SUBMITTED or not statuses:
        return current_status

    if any(status == ItemStatus.PENDING for status in statuses):
        return current_status

    if all(status in _APPROVED_LIKE for status in statuses):
        return NegotiationStatus.PENDING

    if all(status == ItemStatus.REJECTED for status in statuses):
        return NegotiationStatus.REJECTED

    if all(status == ItemStatus.COUNTER_OFFERED for status in statuses):
        return NegotiationStatus.PENDING

    if previously_approved:
        return NegotiationStatus.PARTIALLY_COMPLETE
    return NegotiationStatus.PARTIALLY_APPROVED

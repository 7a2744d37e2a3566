"""Value-based director escalation rule."""

from collections.abc import Iterable
from decimal import Decimal

from pydantic import BaseModel

from pricing_negotiation.domain.models import NegotiationItem

DIRECTOR_TOTAL_THRESHOLD = Decimal("50000")
DIRECTOR_ITEM_THRESHOLD = Decimal("10000")


class EscalationResult(BaseModel, frozen=True):
    """Result of evaluating a negotiation against the escalation thresholds.

    Attributes:
        total: Sum of the proposed values.
        largest_item: The largest single proposed value.
        exceeds_total: Whether the total is above the total threshold.
        exceeds_item: Whether any single item is above the item threshold.
    """

    total: Decimal
    largest_item: Decimal
    exceeds_total: bool
    exceeds_item: bool

    @property
    def needs_director(self) -> bool:
        """Whether a director must sign off."""
        return self.exceeds_total or self.exceeds_item


class ApprovalPolicy:
    """Decides when an internal approval must be escalated to a director.

    Both thresholds are strict: a total of exactly the total threshold, or an
    item of exactly the item threshold, does not escalate.
    """

    def __init__(
        self,
        total_threshold: Decimal = DIRECTOR_TOTAL_THRESHOLD,
        item_threshold: Decimal = DIRECTOR_ITEM_THRESHOLD,
    ) -> None:
        self.total_threshold = total_threshold
        self.item_threshold = item_threshold

    def evaluate(self, items: Iterable[NegotiationItem]) -> EscalationResult:
        """Evaluate proposed values against both thresholds."""
        values = [item.proposed_value for item in items]
        total = sum(values, Decimal("0"))
        largest = max(values, default=Decimal("0"))
        return EscalationResult(
            total=total,
            largest_item=largest,
            exceeds_total=total > self.total_threshold,
            exceeds_item=largest > self.item_threshold,
        )

    def needs_director_approval(self, items: Iterable[NegotiationItem]) -> bool:
        """Return True if the items require director escalation."""
        return self.evaluate(items).needs_director

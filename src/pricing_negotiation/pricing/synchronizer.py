"""Update the pricing-contract ledger when a negotiation completes.

Runs inside the same transaction as the negotiation's status write: the
ledger and the negotiation either both reflect completion or neither does.
"""

from __future__ import annotations

from datetime import date

import structlog
from pydantic import BaseModel

from pricing_negotiation.domain.models import Negotiation, PricingContract
from pricing_negotiation.domain.types import ItemStatus
from pricing_negotiation.pricing.ledger import PricingContractLedger

logger = structlog.get_logger()

PRICED_ITEM_STATUSES = frozenset({ItemStatus.COMPLETED, ItemStatus.APPROVED})


class SyncResult(BaseModel, frozen=True):
    """Contracts touched by one synchronization.

    Attributes:
        created: Newly activated contracts, one per priced item.
        deactivated_ids: Ids of the contracts they superseded.
    """

    created: list[PricingContract]
    deactivated_ids: list[int]


def deactivation_reason(negotiation_id: int) -> str:
    """Reason recorded on a contract superseded by *negotiation_id*."""
    return f"Superseded by negotiation #{negotiation_id}"


class PricingContractSynchronizer:
    """Replace active prices with the values agreed in a completed negotiation."""

    def __init__(self, ledger: PricingContractLedger) -> None:
        self._ledger = ledger

    def synchronize(
        self, negotiation: Negotiation, actor_id: int, effective_date: date
    ) -> SyncResult:
        """Deactivate superseded contracts and activate the negotiated prices.

        Only items that are completed (or approved) and carry an approved
        value are written; anything else has no agreed price.

        Args:
            negotiation: The negotiation entering ``complete``.
            actor_id: User credited as the creator of the new contracts.
            effective_date: End date given to superseded contracts.

        Returns:
            The contracts created and the ids of those deactivated.
        """
        if negotiation.id is None:
            raise ValueError("negotiation must be persisted before synchronization")

        created: list[PricingContract] = []
        deactivated: list[int] = []
        reason = deactivation_reason(negotiation.id)

        for item in negotiation.items:
            if item.status not in PRICED_ITEM_STATUSES or item.approved_value is None:
                continue

            current = self._ledger.find_active(negotiation.entity, item.procedure_id)
            if current is not None and current.id is not None:
                self._ledger.deactivate(current.id, effective_date, reason)
                deactivated.append(current.id)

            contract = self._ledger.insert(
                PricingContract(
                    entity=negotiation.entity,
                    procedure_id=item.procedure_id,
                    specialty_id=item.specialty_id,
                    price=item.approved_value,
                    start_date=negotiation.start_date,
                    end_date=negotiation.end_date,
                    is_active=True,
                    negotiation_id=negotiation.id,
                    created_by=actor_id,
                    created_at=negotiation.completed_at or negotiation.updated_at,
                )
            )
            created.append(contract)

        logger.info(
            "pricing_contracts_synchronized",
            negotiation_id=negotiation.id,
            created=len(created),
            deactivated=len(deactivated),
        )
        return SyncResult(created=created, deactivated_ids=deactivated)

"""Pricing-contract ledger and the synchronizer that updates it on completion."""

from pricing_negotiation.pricing.ledger import PricingContractLedger
from pricing_negotiation.pricing.synchronizer import (
    PricingContractSynchronizer,
    SyncResult,
    deactivation_reason,
)

__all__ = [
    "PricingContractLedger",
    "PricingContractSynchronizer",
    "SyncResult",
    "deactivation_reason",
]

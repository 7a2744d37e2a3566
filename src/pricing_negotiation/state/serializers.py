"""Convert negotiation models to and from SQLite row values.

Monetary values are stored as TEXT so ``Decimal`` precision survives the
round trip; dates and timestamps are stored as ISO 8601 strings.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from pydantic import BaseModel

from pricing_negotiation.domain.models import (
    Negotiation,
    NegotiationItem,
    PricingContract,
    SubjectEntity,
)


def to_row(model: BaseModel, *, exclude: set[str] | None = None) -> dict[str, Any]:
    """Dump a model to column values.

    ``mode="json"`` renders ``Decimal`` as string, dates as ISO strings, and
    enums as their values, which is exactly what the TEXT columns expect.
    """
    return model.model_dump(mode="json", exclude=exclude)


def negotiation_to_row(negotiation: Negotiation) -> dict[str, Any]:
    """Flatten a negotiation (without items) into ``negotiations`` columns."""
    row = to_row(negotiation, exclude={"items", "entity", "id"})
    row["entity_type"] = negotiation.entity.type.value
    row["entity_id"] = negotiation.entity.id
    return row


def negotiation_from_row(row: sqlite3.Row, items: list[NegotiationItem]) -> Negotiation:
    """Rebuild a negotiation aggregate from its row and its item models."""
    data = dict(row)
    data["entity"] = SubjectEntity(type=data.pop("entity_type"), id=data.pop("entity_id"))
    data["items"] = items
    return Negotiation.model_validate(data)


def item_from_row(row: sqlite3.Row) -> NegotiationItem:
    """Rebuild a negotiation item from its row."""
    return NegotiationItem.model_validate(dict(row))


def contract_to_row(contract: PricingContract) -> dict[str, Any]:
    """Flatten a pricing contract into ``pricing_contracts`` columns."""
    row = to_row(contract, exclude={"entity", "id"})
    row["entity_type"] = contract.entity.type.value
    row["entity_id"] = contract.entity.id
    row["is_active"] = 1 if contract.is_active else 0
    return row


def contract_from_row(row: sqlite3.Row) -> PricingContract:
    """Rebuild a pricing contract from its row."""
    data = dict(row)
    data["entity"] = SubjectEntity(type=data.pop("entity_type"), id=data.pop("entity_id"))
    data["is_active"] = bool(data["is_active"])
    return PricingContract.model_validate(data)


def serialize_items(items: list[NegotiationItem]) -> str:
    """Serialize a list of items to a JSON array string."""
    return json.dumps([to_row(item) for item in items])


def deserialize_items(raw: str) -> list[NegotiationItem]:
    """Deserialize a JSON array string produced by :func:`serialize_items`."""
    return [NegotiationItem.model_validate(item) for item in json.loads(raw)]

"""SQLite access to the pricing-contract ledger.

The ledger is written by negotiations but not owned by them; billing reads
the active rows.  Writes never commit on their own and must run inside the
caller's transaction.
"""

from __future__ import annotations

import sqlite3
from datetime import date

from pricing_negotiation.domain.models import PricingContract, SubjectEntity
from pricing_negotiation.state.serializers import contract_from_row, contract_to_row


class PricingContractLedger:
    """Read and write pricing contracts for (entity, procedure) pairs."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def find_active(self, entity: SubjectEntity, procedure_id: int) -> PricingContract | None:
        """Return the active contract for *entity* and *procedure_id*, if any."""
        row = self._conn.execute(
            "SELECT * FROM pricing_contracts WHERE entity_type = ? AND entity_id = ? "
            "AND procedure_id = ? AND is_active = 1",
            (entity.type.value, entity.id, procedure_id),
        ).fetchone()
        return contract_from_row(row) if row is not None else None

    def list_active(self, entity: SubjectEntity) -> list[PricingContract]:
        """Return every active contract for *entity*."""
        rows = self._conn.execute(
            "SELECT * FROM pricing_contracts WHERE entity_type = ? AND entity_id = ? "
            "AND is_active = 1 ORDER BY procedure_id",
            (entity.type.value, entity.id),
        ).fetchall()
        return [contract_from_row(row) for row in rows]

    def list_for_procedure(self, entity: SubjectEntity, procedure_id: int) -> list[PricingContract]:
        """Return the full price history of one procedure for *entity*, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM pricing_contracts WHERE entity_type = ? AND entity_id = ? "
            "AND procedure_id = ? ORDER BY id",
            (entity.type.value, entity.id, procedure_id),
        ).fetchall()
        return [contract_from_row(row) for row in rows]

    def list_for_negotiation(self, negotiation_id: int) -> list[PricingContract]:
        """Return contracts created by a negotiation."""
        rows = self._conn.execute(
            "SELECT * FROM pricing_contracts WHERE negotiation_id = ? ORDER BY id",
            (negotiation_id,),
        ).fetchall()
        return [contract_from_row(row) for row in rows]

    def deactivate(self, contract_id: int, end_date: date, reason: str) -> None:
        """Mark a contract inactive, closing its validity window."""
        self._conn.execute(
            "UPDATE pricing_contracts SET is_active = 0, end_date = ?, deactivation_reason = ? "
            "WHERE id = ?",
            (end_date.isoformat(), reason, contract_id),
        )

    def insert(self, contract: PricingContract) -> PricingContract:
        """Insert a contract and return it with its generated id."""
        row = contract_to_row(contract)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        cursor = self._conn.execute(
            f"INSERT INTO pricing_contracts ({columns}) VALUES ({placeholders})",
            tuple(row.values()),
        )
        return contract.model_copy(update={"id": int(cursor.lastrowid or 0)})

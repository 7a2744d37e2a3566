"""SQLite-backed store for the negotiation aggregate and its history.

Accepts a sqlite3.Connection and uses parameterized queries exclusively.
Unlike a standalone store, it never commits: every write happens inside the
caller's :func:`~pricing_negotiation.state.transaction.transaction` so the
negotiation row, its items, and its history change together or not at all.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime

from pricing_negotiation.domain.errors import NotFoundError
from pricing_negotiation.domain.models import (
    ApprovalHistoryEntry,
    CycleSnapshot,
    Negotiation,
    NegotiationItem,
    StatusHistoryEntry,
)
from pricing_negotiation.domain.types import FormalizationStatus, NegotiationStatus
from pricing_negotiation.state.serializers import (
    deserialize_items,
    item_from_row,
    negotiation_from_row,
    negotiation_to_row,
    serialize_items,
    to_row,
)

_ITEM_COLUMNS = (
    "negotiation_id",
    "procedure_id",
    "proposed_value",
    "approved_value",
    "status",
    "specialty_id",
    "notes",
    "responded_at",
)


class NegotiationStore:
    """Persist and retrieve negotiation aggregates, history, and cycle snapshots."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize with an open database connection.

        Args:
            conn: An open sqlite3.Connection whose database already has the
                  negotiation schema (see ``init_negotiation_schema``).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Aggregate reads
    # ------------------------------------------------------------------

    def get(self, negotiation_id: int) -> Negotiation:
        """Load one negotiation with its items.

        Raises:
            NotFoundError: If no negotiation has *negotiation_id*.
        """
        row = self._conn.execute(
            "SELECT * FROM negotiations WHERE id = ?", (negotiation_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("Negotiation", negotiation_id)
        return negotiation_from_row(row, self.list_items(negotiation_id))

    def list_items(self, negotiation_id: int) -> list[NegotiationItem]:
        """Return a negotiation's items in insertion order."""
        rows = self._conn.execute(
            "SELECT * FROM negotiation_items WHERE negotiation_id = ? ORDER BY id",
            (negotiation_id,),
        ).fetchall()
        return [item_from_row(row) for row in rows]

    def negotiation_id_for_item(self, item_id: int) -> int:
        """Return the id of the negotiation owning *item_id*.

        Raises:
            NotFoundError: If no item has *item_id*.
        """
        row = self._conn.execute(
            "SELECT negotiation_id FROM negotiation_items WHERE id = ?", (item_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("NegotiationItem", item_id)
        return int(row["negotiation_id"])

    def list_children(self, parent_id: int) -> list[Negotiation]:
        """Return the negotiations forked from *parent_id*."""
        rows = self._conn.execute(
            "SELECT id FROM negotiations WHERE parent_negotiation_id = ? ORDER BY id",
            (parent_id,),
        ).fetchall()
        return [self.get(int(row["id"])) for row in rows]

    def list_awaiting_formalization(self) -> list[Negotiation]:
        """Return approved negotiations whose contract addendum is still pending."""
        rows = self._conn.execute(
            "SELECT id FROM negotiations WHERE status = ? AND formalization_status = ? "
            "ORDER BY id",
            (NegotiationStatus.APPROVED.value, FormalizationStatus.PENDING_ADDENDUM.value),
        ).fetchall()
        return [self.get(int(row["id"])) for row in rows]

    # ------------------------------------------------------------------
    # Aggregate writes
    # ------------------------------------------------------------------

    def insert(self, negotiation: Negotiation) -> Negotiation:
        """Insert a new negotiation and its items.

        Returns:
            A copy of *negotiation* carrying the generated ids.
        """
        row = negotiation_to_row(negotiation)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        cursor = self._conn.execute(
            f"INSERT INTO negotiations ({columns}) VALUES ({placeholders})",
            tuple(row.values()),
        )
        negotiation_id = int(cursor.lastrowid or 0)
        items = self.insert_items(negotiation_id, negotiation.items)
        return negotiation.model_copy(update={"id": negotiation_id, "items": items})

    def update(self, negotiation: Negotiation) -> None:
        """Write every negotiation column back (items are written separately)."""
        row = negotiation_to_row(negotiation)
        assignments = ", ".join(f"{column} = ?" for column in row)
        self._conn.execute(
            f"UPDATE negotiations SET {assignments} WHERE id = ?",
            (*row.values(), negotiation.id),
        )

    def insert_items(
        self, negotiation_id: int, items: list[NegotiationItem]
    ) -> list[NegotiationItem]:
        """Insert items for a negotiation and return them with their new ids."""
        stored: list[NegotiationItem] = []
        placeholders = ", ".join("?" for _ in _ITEM_COLUMNS)
        for item in items:
            row = to_row(item.model_copy(update={"negotiation_id": negotiation_id}))
            cursor = self._conn.execute(
                f"INSERT INTO negotiation_items ({', '.join(_ITEM_COLUMNS)}) "
                f"VALUES ({placeholders})",
                tuple(row[column] for column in _ITEM_COLUMNS),
            )
            stored.append(
                item.model_copy(
                    update={"id": int(cursor.lastrowid or 0), "negotiation_id": negotiation_id}
                )
            )
        return stored

    def update_item(self, item: NegotiationItem) -> None:
        """Write one item's columns back."""
        row = to_row(item)
        assignments = ", ".join(f"{column} = ?" for column in _ITEM_COLUMNS)
        self._conn.execute(
            f"UPDATE negotiation_items SET {assignments} WHERE id = ?",
            (*(row[column] for column in _ITEM_COLUMNS), item.id),
        )

    def delete_items(self, negotiation_id: int) -> None:
        """Remove every item of a draft negotiation before its item list is replaced."""
        self._conn.execute(
            "DELETE FROM negotiation_items WHERE negotiation_id = ?", (negotiation_id,)
        )

    # ------------------------------------------------------------------
    # History (append-only)
    # ------------------------------------------------------------------

    def append_approval(self, entry: ApprovalHistoryEntry) -> ApprovalHistoryEntry:
        """Append an approval history entry."""
        row = to_row(entry, exclude={"id"})
        cursor = self._conn.execute(
            "INSERT INTO approval_history (negotiation_id, level, status, actor_id, notes, "
            "created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                row["negotiation_id"],
                row["level"],
                row["status"],
                row["actor_id"],
                row["notes"],
                row["created_at"],
            ),
        )
        return entry.model_copy(update={"id": int(cursor.lastrowid or 0)})

    def append_status(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        """Append a status history entry."""
        row = to_row(entry, exclude={"id"})
        cursor = self._conn.execute(
            "INSERT INTO status_history (negotiation_id, from_status, to_status, actor_id, "
            "reason, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                row["negotiation_id"],
                row["from_status"],
                row["to_status"],
                row["actor_id"],
                row["reason"],
                row["created_at"],
            ),
        )
        return entry.model_copy(update={"id": int(cursor.lastrowid or 0)})

    def list_approval_history(self, negotiation_id: int) -> list[ApprovalHistoryEntry]:
        """Return a negotiation's approval history, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM approval_history WHERE negotiation_id = ? ORDER BY id",
            (negotiation_id,),
        ).fetchall()
        return [ApprovalHistoryEntry.model_validate(dict(row)) for row in rows]

    def list_status_history(self, negotiation_id: int) -> list[StatusHistoryEntry]:
        """Return a negotiation's status history, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM status_history WHERE negotiation_id = ? ORDER BY id",
            (negotiation_id,),
        ).fetchall()
        return [StatusHistoryEntry.model_validate(dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Cycle snapshots
    # ------------------------------------------------------------------

    def archive_cycle(
        self, negotiation_id: int, cycle: int, items: list[NegotiationItem], archived_at: datetime
    ) -> CycleSnapshot:
        """Archive the item state of a finished cycle."""
        snapshot = CycleSnapshot(
            negotiation_id=negotiation_id, cycle=cycle, items=items, archived_at=archived_at
        )
        self._conn.execute(
            "INSERT INTO cycle_snapshots (negotiation_id, cycle, items_json, archived_at) "
            "VALUES (?, ?, ?, ?)",
            (negotiation_id, cycle, serialize_items(items), to_row(snapshot)["archived_at"]),
        )
        return snapshot

    def list_cycle_snapshots(self, negotiation_id: int) -> list[CycleSnapshot]:
        """Return archived cycles, oldest first."""
        rows = self._conn.execute(
            "SELECT * FROM cycle_snapshots WHERE negotiation_id = ? ORDER BY cycle",
            (negotiation_id,),
        ).fetchall()
        return [
            CycleSnapshot(
                negotiation_id=row["negotiation_id"],
                cycle=row["cycle"],
                items=deserialize_items(row["items_json"]),
                archived_at=row["archived_at"],
            )
            for row in rows
        ]

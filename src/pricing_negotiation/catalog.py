"""Read-only catalog lookups for procedures and medical specialties."""

from __future__ import annotations

import sqlite3
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from pricing_negotiation.domain.errors import NotFoundError


class Procedure(BaseModel):
    """A billable medical procedure code."""

    model_config = ConfigDict(frozen=True)

    id: int
    code: str
    name: str
    active: bool = True


class Specialty(BaseModel):
    """A medical specialty a negotiated price may be restricted to."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    active: bool = True


class CatalogGateway(Protocol):
    """Typed single-entity lookups that fail loudly when nothing is found."""

    def get_procedure(self, procedure_id: int) -> Procedure:
        """Return the procedure or raise :class:`NotFoundError`."""
        ...

    def get_specialty(self, specialty_id: int) -> Specialty:
        """Return the specialty or raise :class:`NotFoundError`."""
        ...


class SqliteCatalog:
    """Catalog backed by the ``procedures`` and ``specialties`` tables."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get_procedure(self, procedure_id: int) -> Procedure:
        row = self._conn.execute(
            "SELECT id, code, name, active FROM procedures WHERE id = ?", (procedure_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("Procedure", procedure_id)
        return Procedure(id=row[0], code=row[1], name=row[2], active=bool(row[3]))

    def get_specialty(self, specialty_id: int) -> Specialty:
        row = self._conn.execute(
            "SELECT id, name, active FROM specialties WHERE id = ?", (specialty_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("Specialty", specialty_id)
        return Specialty(id=row[0], name=row[1], active=bool(row[2]))

    def add_procedure(self, procedure: Procedure) -> None:
        """Register a procedure (used when seeding the catalog)."""
        self._conn.execute(
            "INSERT OR REPLACE INTO procedures (id, code, name, active) VALUES (?, ?, ?, ?)",
            (procedure.id, procedure.code, procedure.name, int(procedure.active)),
        )

    def add_specialty(self, specialty: Specialty) -> None:
        """Register a specialty (used when seeding the catalog)."""
        self._conn.execute(
            "INSERT OR REPLACE INTO specialties (id, name, active) VALUES (?, ?, ?)",
            (specialty.id, specialty.name, int(specialty.active)),
        )

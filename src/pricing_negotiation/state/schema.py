"""SQLite schema for the negotiation aggregate, its history, and the pricing ledger.

History tables are append-only: triggers abort any UPDATE or DELETE.  The
pricing ledger carries a partial unique index so at most one active contract
can exist per (entity, procedure).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS procedures (
        id INTEGER PRIMARY KEY,
        code TEXT NOT NULL,
        name TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS specialties (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS negotiations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        entity_id INTEGER NOT NULL,
        creator_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        notes TEXT,
        status TEXT NOT NULL,
        approval_level TEXT,
        start_date TEXT NOT NULL,
        end_date TEXT NOT NULL,
        negotiation_cycle INTEGER NOT NULL DEFAULT 1,
        max_cycles_allowed INTEGER NOT NULL DEFAULT 3,
        parent_negotiation_id INTEGER REFERENCES negotiations (id),
        fork_count INTEGER NOT NULL DEFAULT 0,
        formalization_status TEXT,
        approved_at TEXT,
        approved_by INTEGER,
        completed_at TEXT,
        rejected_at TEXT,
        rejected_by INTEGER,
        cancelled_at TEXT,
        forked_at TEXT,
        expired_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK (negotiation_cycle <= max_cycles_allowed)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS negotiation_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        negotiation_id INTEGER NOT NULL REFERENCES negotiations (id),
        procedure_id INTEGER NOT NULL,
        proposed_value TEXT NOT NULL,
        approved_value TEXT,
        status TEXT NOT NULL,
        specialty_id INTEGER,
        notes TEXT,
        responded_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS approval_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        negotiation_id INTEGER NOT NULL REFERENCES negotiations (id),
        level TEXT NOT NULL,
        status TEXT NOT NULL,
        actor_id INTEGER NOT NULL,
        notes TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS status_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        negotiation_id INTEGER NOT NULL REFERENCES negotiations (id),
        from_status TEXT NOT NULL,
        to_status TEXT NOT NULL,
        actor_id INTEGER NOT NULL,
        reason TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cycle_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        negotiation_id INTEGER NOT NULL REFERENCES negotiations (id),
        cycle INTEGER NOT NULL,
        items_json TEXT NOT NULL,
        archived_at TEXT NOT NULL,
        UNIQUE (negotiation_id, cycle)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pricing_contracts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        entity_id INTEGER NOT NULL,
        procedure_id INTEGER NOT NULL,
        specialty_id INTEGER,
        price TEXT NOT NULL,
        start_date TEXT NOT NULL,
        end_date TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        negotiation_id INTEGER REFERENCES negotiations (id),
        deactivation_reason TEXT,
        created_by INTEGER,
        created_at TEXT NOT NULL
    )
    """,
)

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_neg_status ON negotiations (status)",
    "CREATE INDEX IF NOT EXISTS idx_neg_parent ON negotiations (parent_negotiation_id)",
    "CREATE INDEX IF NOT EXISTS idx_items_negotiation ON negotiation_items (negotiation_id)",
    "CREATE INDEX IF NOT EXISTS idx_approval_negotiation ON approval_history (negotiation_id)",
    "CREATE INDEX IF NOT EXISTS idx_status_negotiation ON status_history (negotiation_id)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_pricing_active
    ON pricing_contracts (entity_type, entity_id, procedure_id)
    WHERE is_active = 1
    """,
)

_APPEND_ONLY_TABLES = ("approval_history", "status_history", "cycle_snapshots")


def init_negotiation_schema(conn: sqlite3.Connection) -> None:
    """Create every table, index, and append-only trigger if missing.

    Args:
        conn: An open sqlite3.Connection.
    """
    for ddl in _TABLES:
        conn.execute(ddl)
    for ddl in _INDEXES:
        conn.execute(ddl)

    for table in _APPEND_ONLY_TABLES:
        conn.execute(f"""
            CREATE TRIGGER IF NOT EXISTS trg_{table}_no_update
            BEFORE UPDATE ON {table}
            BEGIN
                SELECT RAISE(ABORT, '{table} is append-only');
            END
        """)
        conn.execute(f"""
            CREATE TRIGGER IF NOT EXISTS trg_{table}_no_delete
            BEFORE DELETE ON {table}
            BEGIN
                SELECT RAISE(ABORT, '{table} is append-only');
            END
        """)

    conn.commit()


def open_database(db_path: Path | str, busy_timeout: float = 5.0) -> sqlite3.Connection:
    """Open the negotiation database and make sure its schema exists.

    The connection runs in autocommit mode (``isolation_level=None``) so that
    :func:`pricing_negotiation.state.transaction.transaction` controls every
    ``BEGIN``/``COMMIT`` explicitly.

    Args:
        db_path: Path to the SQLite file, or ``":memory:"``.
        busy_timeout: Seconds to wait on a locked database before failing.

    Returns:
        An open sqlite3.Connection with WAL mode and foreign keys enabled.
    """
    conn = sqlite3.connect(str(db_path), timeout=busy_timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    init_negotiation_schema(conn)
    return conn


def close_database(conn: sqlite3.Connection) -> None:
    """Close the negotiation database connection.

    Args:
        conn: The database connection to close.
    """
    conn.close()

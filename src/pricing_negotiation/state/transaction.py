"""Transaction scope for mutations of one negotiation aggregate.

``BEGIN IMMEDIATE`` takes SQLite's write lock up front, so two concurrent
operations on the same negotiation are serialized for the whole read-modify-
write cycle: aggregations cannot double-promote and completions cannot
double-write the pricing ledger.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from pricing_negotiation.domain.errors import LockContentionError, PersistenceError

logger = structlog.get_logger()

_LOCK_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def _is_lock_error(exc: sqlite3.Error) -> bool:
    return isinstance(exc, sqlite3.OperationalError) and any(
        msg in str(exc).lower() for msg in _LOCK_MESSAGES
    )


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed block in one all-or-nothing write transaction.

    Domain errors raised inside the block roll the transaction back and
    propagate unchanged.  SQLite errors roll back and are re-raised as
    :class:`PersistenceError` (:class:`LockContentionError` when the write
    lock could not be obtained).

    Args:
        conn: A connection opened in autocommit mode (see ``open_database``).

    Yields:
        The same connection, inside an open transaction.
    """
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        if _is_lock_error(exc):
            raise LockContentionError(str(exc)) from exc
        raise PersistenceError(f"Could not open transaction: {exc}") from exc

    try:
        yield conn
    except sqlite3.Error as exc:
        _rollback(conn)
        logger.error("transaction_rolled_back", error=str(exc))
        if _is_lock_error(exc):
            raise LockContentionError(str(exc)) from exc
        raise PersistenceError(str(exc)) from exc
    except BaseException:
        _rollback(conn)
        raise

    try:
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        _rollback(conn)
        if _is_lock_error(exc):
            raise LockContentionError(str(exc)) from exc
        raise PersistenceError(f"Commit failed: {exc}") from exc

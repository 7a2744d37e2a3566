"""SQLite persistence for negotiation aggregates, history, and transactions."""

from pricing_negotiation.state.schema import close_database, init_negotiation_schema, open_database
from pricing_negotiation.state.store import NegotiationStore
from pricing_negotiation.state.transaction import transaction

__all__ = [
    "NegotiationStore",
    "close_database",
    "init_negotiation_schema",
    "open_database",
    "transaction",
]

"""Command line interface for negotiation history and scheduled clean-up.

Usage::

    python -m pricing_negotiation.cli history 42
    python -m pricing_negotiation.cli history 42 --format json
    python -m pricing_negotiation.cli expire --days 30
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pricing_negotiation.app import configure_logging, initialize_services, shutdown_services
from pricing_negotiation.config import get_settings, validate_credentials
from pricing_negotiation.domain.errors import NegotiationError
from pricing_negotiation.domain.models import ApprovalHistoryEntry, StatusHistoryEntry
from pricing_negotiation.lifecycle.service import NegotiationService


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with the ``history`` and ``expire`` subcommands.

    Returns:
        A configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(description="Procedure pricing negotiation tools")
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Path to the negotiation database (default: DATABASE_PATH setting)",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    history = subcommands.add_parser(
        "history", help="Show the status and approval history of a negotiation"
    )
    history.add_argument("negotiation_id", type=int, help="Negotiation id")
    history.add_argument(
        "--format",
        type=str,
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )

    expire = subcommands.add_parser(
        "expire", help="Expire approved negotiations whose addendum was never formalized"
    )
    expire.add_argument(
        "--days",
        type=int,
        default=None,
        help="Days after approval before expiry (default: FORMALIZATION_EXPIRY_DAYS setting)",
    )

    return parser


def history_rows(
    status_history: list[StatusHistoryEntry], approval_history: list[ApprovalHistoryEntry]
) -> list[dict[str, Any]]:
    """Merge both histories into one chronologically ordered list of dicts."""
    rows: list[dict[str, Any]] = [
        {
            "timestamp": entry.created_at.isoformat(),
            "record": "status",
            "change": f"{entry.from_status.value} -> {entry.to_status.value}",
            "actor_id": entry.actor_id,
            "note": entry.reason,
        }
        for entry in status_history
    ]
    rows.extend(
        {
            "timestamp": entry.created_at.isoformat(),
            "record": "approval",
            "change": f"{entry.level.value}: {entry.status.value}",
            "actor_id": entry.actor_id,
            "note": entry.notes,
        }
        for entry in approval_history
    )
    rows.sort(key=lambda row: row["timestamp"])
    return rows


def format_table(rows: list[dict[str, Any]]) -> str:
    """Format history rows as a human-readable table.

    Columns: Timestamp, Record, Change, Actor, Note.  Long fields are
    truncated to fit reasonable terminal width.
    """
    if not rows:
        return "No history found."

    headers = ["Timestamp", "Record", "Change", "Actor", "Note"]
    keys = ["timestamp", "record", "change", "actor_id", "note"]
    widths = [32, 8, 45, 6, 40]

    def truncate(value: object, width: int) -> str:
        s = "" if value is None else str(value)
        if len(s) > width:
            return s[: width - 3] + "..."
        return s

    lines: list[str] = []
    header_line = "  ".join(h.ljust(w) for h, w in zip(headers, widths, strict=True))
    lines.append(header_line)
    lines.append("-" * len(header_line))

    for row in rows:
        cells = [truncate(row.get(key), width) for key, width in zip(keys, widths, strict=True)]
        lines.append("  ".join(c.ljust(w) for c, w in zip(cells, widths, strict=True)))

    return "\n".join(lines)


def format_json(rows: list[dict[str, Any]]) -> str:
    """Format history rows as a pretty-printed JSON string."""
    return json.dumps(rows, indent=2)


def run_history(service: NegotiationService, negotiation_id: int, output_format: str) -> str:
    """Return the rendered history of one negotiation."""
    rows = history_rows(
        service.get_status_history(negotiation_id),
        service.get_approval_history(negotiation_id),
    )
    return format_json(rows) if output_format == "json" else format_table(rows)


def run_expire(service: NegotiationService, days: int | None) -> str:
    """Expire stale negotiations and return a one-line summary."""
    expired = service.expire_stale_negotiations(days)
    if not expired:
        return "No negotiations expired."
    return f"Expired {len(expired)} negotiation(s): " + ", ".join(f"#{i}" for i in expired)


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run the subcommand, and print its output.

    Returns:
        Process exit code: 0 on success, 1 when the operation was refused.
    """
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.db is not None:
        settings = settings.model_copy(update={"database_path": Path(args.db)})
    configure_logging(production=settings.production)
    validate_credentials(settings)

    services = initialize_services(settings)
    service: NegotiationService = services["service"]
    try:
        if args.command == "history":
            output = run_history(service, args.negotiation_id, args.output_format)
        else:
            output = run_expire(service, args.days)
    except NegotiationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        shutdown_services(services)

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())

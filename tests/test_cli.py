"""Tests for the negotiation history and expiry command line interface."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from pricing_negotiation import cli
from pricing_negotiation.catalog import Procedure, SqliteCatalog
from pricing_negotiation.cli import (
    build_parser,
    format_table,
    history_rows,
    main,
    run_expire,
    run_history,
)
from pricing_negotiation.config import Settings, get_settings
from pricing_negotiation.domain.models import Negotiation, NewNegotiation
from pricing_negotiation.lifecycle.service import NegotiationService
from pricing_negotiation.state.schema import close_database, open_database

CREATOR = 1
APPROVER = 2
PLAN_REP = 10


def _approve(service: NegotiationService, request: NewNegotiation) -> Negotiation:
    draft = service.create(CREATOR, request)
    assert draft.id is not None
    negotiation = service.submit(draft.id, CREATOR)
    for item in negotiation.items:
        assert item.id is not None
        service.respond_to_item(item.id, PLAN_REP, "approved")
    return service.process_approval(draft.id, APPROVER, approved=True, notes="fine")


@pytest.fixture
def approved_negotiation(service: NegotiationService, new_request: Any) -> Negotiation:
    return _approve(service, new_request())


@pytest.fixture
def db_path(
    tmp_path: Path, authorization: Any, notifications: Any, new_request: Any
) -> Path:
    """A database file holding one negotiation approved in January 2020."""
    path = tmp_path / "negotiations.db"
    conn = open_database(path)
    catalog = SqliteCatalog(conn)
    for procedure_id in (1, 2):
        catalog.add_procedure(
            Procedure(id=procedure_id, code=f"P{procedure_id:03d}", name="Consultation")
        )
    service = NegotiationService(
        conn,
        authorization,
        notifications,
        catalog,
        settings=Settings(_env_file=None),  # type: ignore[call-arg]
        clock=lambda: datetime(2020, 1, 6, 9, 0, tzinfo=UTC),
    )
    _approve(service, new_request())
    close_database(conn)
    return path


@pytest.fixture
def quiet_main(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run main() without reconfiguring global logging or reading a .env file."""
    monkeypatch.setattr(cli, "configure_logging", lambda production: None)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()


class TestBuildParser:
    def test_history_arguments(self) -> None:
        args = build_parser().parse_args(["--db", "/tmp/n.db", "history", "42", "--format", "json"])
        assert args.command == "history"
        assert args.negotiation_id == 42
        assert args.output_format == "json"
        assert args.db == "/tmp/n.db"

    def test_expire_defaults(self) -> None:
        args = build_parser().parse_args(["expire"])
        assert args.command == "expire"
        assert args.days is None
        assert args.db is None

    def test_subcommand_is_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestHistory:
    def test_rows_merge_both_histories(
        self, service: NegotiationService, approved_negotiation: Negotiation
    ) -> None:
        assert approved_negotiation.id is not None
        rows = history_rows(
            service.get_status_history(approved_negotiation.id),
            service.get_approval_history(approved_negotiation.id),
        )

        assert [row["change"] for row in rows if row["record"] == "status"] == [
            "draft -> submitted",
            "submitted -> pending",
            "pending -> approved",
        ]
        assert [row["change"] for row in rows if row["record"] == "approval"] == [
            "internal: pending",
            "internal: approved",
        ]
        assert rows == sorted(rows, key=lambda row: row["timestamp"])

    def test_json_output(
        self, service: NegotiationService, approved_negotiation: Negotiation
    ) -> None:
        assert approved_negotiation.id is not None
        rows = json.loads(run_history(service, approved_negotiation.id, "json"))
        assert len(rows) == 5
        assert {row["actor_id"] for row in rows} == {CREATOR, APPROVER, PLAN_REP}

    def test_table_output(
        self, service: NegotiationService, approved_negotiation: Negotiation
    ) -> None:
        assert approved_negotiation.id is not None
        table = run_history(service, approved_negotiation.id, "table")
        lines = table.splitlines()
        assert lines[0].startswith("Timestamp")
        assert set(lines[1]) == {"-"}
        assert len(lines) == 7

    def test_empty_history(self) -> None:
        assert format_table([]) == "No history found."

    def test_long_notes_are_truncated(self) -> None:
        table = format_table(
            [
                {
                    "timestamp": "2026-03-02T09:00:00+00:00",
                    "record": "status",
                    "change": "pending -> submitted",
                    "actor_id": 2,
                    "note": "x" * 80,
                }
            ]
        )
        assert table.splitlines()[2].rstrip().endswith("x" * 37 + "...")


class TestExpire:
    def test_summary(
        self, service: NegotiationService, approved_negotiation: Negotiation, clock: Any
    ) -> None:
        assert run_expire(service, None) == "No negotiations expired."
        clock.advance(days=31)
        assert run_expire(service, None) == f"Expired 1 negotiation(s): #{approved_negotiation.id}"


class TestMain:
    def test_history_command(
        self, quiet_main: None, db_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert main(["--db", str(db_path), "history", "1", "--format", "json"]) == 0
        out = capsys.readouterr().out
        assert '"change": "pending -> approved"' in out

    def test_expire_command(
        self, quiet_main: None, db_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert main(["--db", str(db_path), "expire", "--days", "30"]) == 0
        assert "Expired 1 negotiation(s): #1" in capsys.readouterr().out

        assert main(["--db", str(db_path), "history", "1"]) == 0
        assert "approved -> expired" in capsys.readouterr().out

    def test_unknown_negotiation_exits_with_error(
        self, quiet_main: None, db_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert main(["--db", str(db_path), "history", "404"]) == 1
        assert "error: Negotiation 404 not found" in capsys.readouterr().err

    def test_invalid_days_exits_with_error(
        self, quiet_main: None, db_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert main(["--db", str(db_path), "expire", "--days", "0"]) == 1
        assert "older_than_days" in capsys.readouterr().err

"""Tests for the status recorder and the engines that build on it."""

from __future__ import annotations

import sqlite3
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from pricing_negotiation.domain.models import ForkGroup, Negotiation, NegotiationItem, SubjectEntity
from pricing_negotiation.domain.types import (
    ApprovalLevel,
    ApprovalOutcome,
    NegotiationStatus,
    SubjectEntityType,
)
from pricing_negotiation.lifecycle.cycle import CycleManager
from pricing_negotiation.lifecycle.fork import ForkEngine
from pricing_negotiation.lifecycle.recorder import StatusRecorder, milestone_updates
from pricing_negotiation.state.store import NegotiationStore
from pricing_negotiation.state_machine.transitions import NegotiationAction

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _unsaved(status: NegotiationStatus = NegotiationStatus.DRAFT) -> Negotiation:
    return Negotiation(
        entity=SubjectEntity(type=SubjectEntityType.HEALTH_PLAN, id=100),
        creator_id=1,
        title="Unsaved",
        status=status,
        start_date=date(2026, 4, 1),
        end_date=date(2027, 3, 31),
        items=[
            NegotiationItem(id=1, procedure_id=1, proposed_value=Decimal("100")),
            NegotiationItem(id=2, procedure_id=2, proposed_value=Decimal("200")),
        ],
    )


@pytest.fixture
def store(conn: sqlite3.Connection) -> NegotiationStore:
    return NegotiationStore(conn)


class TestMilestones:
    def test_approval_opens_formalization(self) -> None:
        updates = milestone_updates(NegotiationStatus.APPROVED, 2, NOW)
        assert updates["approved_at"] == NOW
        assert updates["approved_by"] == 2
        assert updates["formalization_status"] == "pending_addendum"

    def test_submitted_has_no_milestone(self) -> None:
        assert milestone_updates(NegotiationStatus.SUBMITTED, 1, NOW) == {}


class TestUnsavedNegotiations:
    def test_status_change_needs_an_id(
        self, store: NegotiationStore, conn: sqlite3.Connection
    ) -> None:
        with pytest.raises(ValueError, match="persisted"):
            StatusRecorder(store).change_status(
                _unsaved(), NegotiationAction.SUBMIT, NegotiationStatus.SUBMITTED, 1, NOW
            )
        assert conn.execute("SELECT COUNT(*) FROM status_history").fetchone()[0] == 0

    def test_approval_record_needs_an_id(self, store: NegotiationStore) -> None:
        with pytest.raises(ValueError, match="persisted"):
            StatusRecorder(store).record_approval(
                _unsaved(), ApprovalLevel.INTERNAL, ApprovalOutcome.PENDING, 1, NOW
            )

    def test_new_cycle_needs_an_id(self, store: NegotiationStore) -> None:
        manager = CycleManager(store, StatusRecorder(store))
        with pytest.raises(ValueError, match="persisted"):
            manager.start_new_cycle(_unsaved(NegotiationStatus.REJECTED), 2, NOW)

    def test_fork_needs_an_id(self, store: NegotiationStore) -> None:
        engine = ForkEngine(store, StatusRecorder(store))
        groups = [ForkGroup(item_ids=[1]), ForkGroup(item_ids=[2])]
        with pytest.raises(ValueError, match="persisted"):
            engine.fork(_unsaved(NegotiationStatus.SUBMITTED), groups, 2, NOW)

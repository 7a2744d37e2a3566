"""Tests for the Block Kit notification builder."""

from __future__ import annotations

from datetime import date

import pytest

from pricing_negotiation.domain.models import Negotiation, SubjectEntity
from pricing_negotiation.domain.types import NegotiationStatus, SubjectEntityType
from pricing_negotiation.notifications.blocks import EVENT_TITLES, build_notification_blocks
from pricing_negotiation.notifications.events import NotificationEvent


@pytest.fixture
def negotiation() -> Negotiation:
    return Negotiation(
        id=42,
        entity=SubjectEntity(type=SubjectEntityType.CLINIC, id=7),
        creator_id=1,
        title="Clinic prices",
        status=NegotiationStatus.PENDING,
        start_date=date(2026, 4, 1),
        end_date=date(2026, 12, 31),
        negotiation_cycle=2,
    )


class TestBuildNotificationBlocks:
    def test_header_and_summary(self, negotiation: Negotiation) -> None:
        blocks = build_notification_blocks(NotificationEvent.APPROVAL_REQUIRED, negotiation, {})

        assert len(blocks) == 2
        assert blocks[0]["type"] == "header"
        assert blocks[0]["text"]["text"] == "Approval required: #42"
        fields = [field["text"] for field in blocks[1]["fields"]]
        assert fields == [
            "*Title:*\nClinic prices",
            "*Status:*\npending",
            "*Counterparty:*\nclinic #7",
            "*Cycle:*\n2",
        ]

    def test_extra_details_are_sorted_and_labelled(self, negotiation: Negotiation) -> None:
        blocks = build_notification_blocks(
            NotificationEvent.STATUS_ROLLBACK,
            negotiation,
            {"to_status": "submitted", "from_status": "approved"},
        )

        assert len(blocks) == 3
        assert [field["text"] for field in blocks[2]["fields"]] == [
            "*From Status:*\napproved",
            "*To Status:*\nsubmitted",
        ]

    def test_extra_fields_are_capped_at_ten(self, negotiation: Negotiation) -> None:
        extra = {f"key_{index:02d}": index for index in range(15)}
        blocks = build_notification_blocks(NotificationEvent.CREATED, negotiation, extra)
        assert len(blocks[2]["fields"]) == 10

    def test_every_event_has_a_title(self) -> None:
        assert set(EVENT_TITLES) == set(NotificationEvent)

"""Tests for rolling negotiations back along the permitted edges."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from pricing_negotiation.domain.errors import (
    AuthorizationError,
    InvalidTransitionError,
    ValidationError,
)
from pricing_negotiation.domain.models import Negotiation
from pricing_negotiation.domain.types import ApprovalMarker, ItemStatus, NegotiationStatus
from pricing_negotiation.lifecycle.service import NegotiationService
from pricing_negotiation.notifications.events import NotificationEvent

CREATOR = 1
APPROVER = 2
PLAN_REP = 10

Factory = Callable[..., Negotiation]


class TestRollbackStatus:
    def test_pending_back_to_submitted(
        self, service: NegotiationService, pending: Factory, notifications: Any
    ) -> None:
        negotiation = pending()
        assert negotiation.id is not None
        assert negotiation.approval_level == ApprovalMarker.PENDING_APPROVAL

        result = service.rollback_status(
            negotiation.id, APPROVER, "submitted", "  prices need another look "
        )

        assert result.status == NegotiationStatus.SUBMITTED
        assert result.approval_level is None
        last = service.get_status_history(negotiation.id)[-1]
        assert (last.from_status, last.to_status) == (
            NegotiationStatus.PENDING,
            NegotiationStatus.SUBMITTED,
        )
        assert last.reason == "prices need another look"
        event, _, extra = notifications.sent[-1]
        assert event == NotificationEvent.STATUS_ROLLBACK
        assert extra == {
            "from_status": "pending",
            "to_status": "submitted",
            "reason": "prices need another look",
        }

    def test_pending_back_to_draft_allows_editing(
        self, service: NegotiationService, pending: Factory
    ) -> None:
        negotiation = pending()
        assert negotiation.id is not None

        service.rollback_status(negotiation.id, APPROVER, "draft", "wrong procedures")
        edited = service.update_draft(negotiation.id, CREATOR, {"title": "Corrected"})
        resubmitted = service.submit(negotiation.id, CREATOR)

        assert edited.title == "Corrected"
        assert resubmitted.status == NegotiationStatus.SUBMITTED

    def test_approved_back_to_pending_needs_a_new_approval(
        self, service: NegotiationService, approved: Factory
    ) -> None:
        negotiation = approved()
        assert negotiation.id is not None

        result = service.rollback_status(negotiation.id, APPROVER, "pending", "recheck totals")
        assert result.status == NegotiationStatus.PENDING
        assert result.formalization_status is None
        assert result.approved_at is not None

        again = service.process_approval(negotiation.id, APPROVER, approved=True)
        assert again.status == NegotiationStatus.APPROVED

    def test_rejection_after_rollback_from_approved_is_partially_complete(
        self, service: NegotiationService, approved: Factory
    ) -> None:
        negotiation = approved(["100", "200"])
        assert negotiation.id is not None
        service.rollback_status(negotiation.id, APPROVER, "submitted", "counterparty objected")
        first = negotiation.items[0]
        assert first.id is not None

        result = service.respond_to_item(first.id, PLAN_REP, "rejected")

        assert result.status == NegotiationStatus.PARTIALLY_COMPLETE
        assert [item.status for item in result.items] == [
            ItemStatus.REJECTED,
            ItemStatus.APPROVED,
        ]
        assert result.completed_at is not None

    def test_partially_approved_back_to_submitted(
        self, service: NegotiationService, submitted: Factory
    ) -> None:
        negotiation = submitted(["100", "200"])
        first, second = negotiation.items
        assert first.id is not None and second.id is not None
        service.respond_to_item(first.id, PLAN_REP, "approved")
        service.respond_to_item(second.id, PLAN_REP, "rejected")
        assert negotiation.id is not None

        result = service.rollback_status(negotiation.id, APPROVER, "submitted", "reopen")
        assert result.status == NegotiationStatus.SUBMITTED

        answered = service.respond_to_item(second.id, PLAN_REP, "approved")
        assert answered.status == NegotiationStatus.PENDING

    @pytest.mark.parametrize(
        ("fixture", "target"),
        [
            ("submitted", "draft"),
            ("approved", "draft"),
            ("pending", "approved"),
            ("pending", "pending"),
        ],
    )
    def test_edges_outside_the_table_are_refused(
        self,
        request: pytest.FixtureRequest,
        service: NegotiationService,
        fixture: str,
        target: str,
    ) -> None:
        negotiation = request.getfixturevalue(fixture)()
        with pytest.raises(InvalidTransitionError):
            service.rollback_status(negotiation.id, APPROVER, target, "because")
        assert service.get_negotiation(negotiation.id).status == negotiation.status

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_reason_is_required(
        self, service: NegotiationService, pending: Factory, reason: str
    ) -> None:
        negotiation = pending()
        assert negotiation.id is not None
        with pytest.raises(ValidationError):
            service.rollback_status(negotiation.id, APPROVER, "submitted", reason)

    def test_unknown_status_is_invalid(
        self, service: NegotiationService, pending: Factory
    ) -> None:
        negotiation = pending()
        assert negotiation.id is not None
        with pytest.raises(ValidationError):
            service.rollback_status(negotiation.id, APPROVER, "limbo", "because")

    def test_representative_may_not_roll_back(
        self, service: NegotiationService, pending: Factory
    ) -> None:
        negotiation = pending()
        assert negotiation.id is not None
        with pytest.raises(AuthorizationError):
            service.rollback_status(negotiation.id, PLAN_REP, "submitted", "because")

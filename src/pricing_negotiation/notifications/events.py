"""Notification events emitted after a lifecycle operation commits."""

from enum import StrEnum


class NotificationEvent(StrEnum):
    """Events delivered to the notification gateway."""

    CREATED = "created"
    SUBMITTED = "submitted"
    APPROVAL_REQUIRED = "approval_required"
    ITEM_RESPONSE = "item_response"
    COUNTER_OFFER = "counter_offer"
    APPROVED = "approved"
    PARTIALLY_APPROVED = "partially_approved"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    FORK = "fork"
    NEW_CYCLE = "new_cycle"
    STATUS_ROLLBACK = "status_rollback"
    EXPIRED = "expired"

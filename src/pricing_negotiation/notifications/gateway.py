"""Notification gateway protocol, a structlog-backed gateway, and the dispatcher.

Notifications are fire-and-forget.  The lifecycle service queues them while a
transaction is open and hands them to :class:`NotificationDispatcher` only
after commit, so a delivery failure can never undo a committed state change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from pricing_negotiation.domain.models import Negotiation
from pricing_negotiation.notifications.events import NotificationEvent

logger = structlog.get_logger()


class NotificationGateway(Protocol):
    """Delivers negotiation events to people; content and transport are its concern."""

    def notify(
        self, event: NotificationEvent, negotiation: Negotiation, extra: dict[str, Any]
    ) -> None:
        """Deliver *event* about *negotiation* with event-specific *extra* data."""
        ...


class LoggingNotificationGateway:
    """Gateway that records every event in the structured log."""

    def notify(
        self, event: NotificationEvent, negotiation: Negotiation, extra: dict[str, Any]
    ) -> None:
        logger.info(
            "negotiation_notification",
            notification_event=event.value,
            negotiation_id=negotiation.id,
            status=negotiation.status.value,
            extra={key: str(value) for key, value in extra.items()},
        )


@dataclass(frozen=True)
class PendingNotification:
    """A notification queued during a transaction."""

    event: NotificationEvent
    negotiation: Negotiation
    extra: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher:
    """Send queued notifications, isolating the caller from gateway failures."""

    def __init__(self, gateway: NotificationGateway) -> None:
        self._gateway = gateway

    def dispatch(self, notifications: list[PendingNotification]) -> None:
        """Deliver each notification in order; a failure is logged and skipped."""
        for pending in notifications:
            try:
                self._gateway.notify(pending.event, pending.negotiation, pending.extra)
            except Exception:
                logger.exception(
                    "notification_failed",
                    notification_event=pending.event.value,
                    negotiation_id=pending.negotiation.id,
                )

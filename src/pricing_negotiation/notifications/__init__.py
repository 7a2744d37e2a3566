"""Notification events, gateways, and post-commit dispatch."""

from pricing_negotiation.notifications.events import NotificationEvent
from pricing_negotiation.notifications.gateway import (
    LoggingNotificationGateway,
    NotificationDispatcher,
    NotificationGateway,
    PendingNotification,
)
from pricing_negotiation.notifications.slack import SlackNotificationGateway

__all__ = [
    "LoggingNotificationGateway",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationGateway",
    "PendingNotification",
    "SlackNotificationGateway",
]

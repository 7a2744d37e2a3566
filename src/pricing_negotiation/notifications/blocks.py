"""Block Kit message builders for negotiation notifications.

Pure functions that return Block Kit block dicts. These functions have no
side effects and are easy to test.
"""

from __future__ import annotations

from typing import Any

from pricing_negotiation.domain.models import Negotiation
from pricing_negotiation.notifications.events import NotificationEvent

EVENT_TITLES: dict[NotificationEvent, str] = {
    NotificationEvent.CREATED: "Negotiation created",
    NotificationEvent.SUBMITTED: "Negotiation submitted for review",
    NotificationEvent.APPROVAL_REQUIRED: "Approval required",
    NotificationEvent.ITEM_RESPONSE: "Item response received",
    NotificationEvent.COUNTER_OFFER: "Counter-offer received",
    NotificationEvent.APPROVED: "Negotiation approved",
    NotificationEvent.PARTIALLY_APPROVED: "Negotiation partially approved",
    NotificationEvent.COMPLETED: "Negotiation completed",
    NotificationEvent.PARTIALLY_COMPLETED: "Negotiation partially completed",
    NotificationEvent.REJECTED: "Negotiation rejected",
    NotificationEvent.CANCELLED: "Negotiation cancelled",
    NotificationEvent.FORK: "Negotiation forked",
    NotificationEvent.NEW_CYCLE: "New negotiation cycle started",
    NotificationEvent.STATUS_ROLLBACK: "Negotiation status rolled back",
    NotificationEvent.EXPIRED: "Negotiation expired",
}


def build_notification_blocks(
    event: NotificationEvent, negotiation: Negotiation, extra: dict[str, Any]
) -> list[dict[str, Any]]:
    """Build Block Kit blocks describing a negotiation event.

    Args:
        event: The lifecycle event.
        negotiation: The negotiation the event concerns.
        extra: Event-specific details, rendered as additional fields.

    Returns:
        List of Block Kit block dicts.
    """
    title = EVENT_TITLES.get(event, event.value)
    entity = negotiation.entity

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"{title}: #{negotiation.id}"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Title:*\n{negotiation.title}"},
                {"type": "mrkdwn", "text": f"*Status:*\n{negotiation.status.value}"},
                {"type": "mrkdwn", "text": f"*Counterparty:*\n{entity.type.value} #{entity.id}"},
                {"type": "mrkdwn", "text": f"*Cycle:*\n{negotiation.negotiation_cycle}"},
            ],
        },
    ]

    if extra:
        blocks.append(
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*{key.replace('_', ' ').title()}:*\n{value}"}
                    for key, value in sorted(extra.items())
                ][:10],
            }
        )

    return blocks

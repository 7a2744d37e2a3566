"""Slack notification gateway posting Block Kit messages.

Wraps slack_sdk.WebClient.  Posts are retried with backoff and a final
failure is logged, never raised.
"""

from __future__ import annotations

from typing import Any

import structlog
from slack_sdk import WebClient

from pricing_negotiation.domain.models import Negotiation
from pricing_negotiation.notifications.blocks import EVENT_TITLES, build_notification_blocks
from pricing_negotiation.notifications.events import NotificationEvent
from pricing_negotiation.resilience.retry import resilient_api_call

logger = structlog.get_logger()


class SlackNotificationGateway:
    """Posts negotiation events to a Slack channel."""

    def __init__(self, channel: str, bot_token: str | None = None, client: Any = None) -> None:
        """Initialize the gateway.

        Args:
            channel: Channel ID that receives negotiation events.
            bot_token: Slack bot token.  Ignored when *client* is given.
            client: A pre-built ``WebClient`` (or compatible object).

        Raises:
            ValueError: If neither *client* nor *bot_token* is provided.
        """
        if client is None:
            if not bot_token:
                raise ValueError("SlackNotificationGateway needs a bot_token or a client")
            client = WebClient(token=bot_token)
        self._client = client
        self._channel = channel

    def notify(
        self, event: NotificationEvent, negotiation: Negotiation, extra: dict[str, Any]
    ) -> None:
        blocks = build_notification_blocks(event, negotiation, extra)
        fallback = f"{EVENT_TITLES.get(event, event.value)}: #{negotiation.id} {negotiation.title}"
        ts = self._post(blocks, fallback)
        if ts is not None:
            logger.debug("slack_notification_posted", negotiation_id=negotiation.id, ts=ts)

    @resilient_api_call("slack_chat_post_message")
    def _post(self, blocks: list[dict[str, Any]], fallback_text: str) -> str:
        response = self._client.chat_postMessage(
            channel=self._channel,
            blocks=blocks,
            text=fallback_text,
        )
        return str(response["ts"])

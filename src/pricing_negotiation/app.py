"""Process wiring for the negotiation engine.

``configure_logging`` sets up structlog once per process.
``initialize_services`` opens the database named by ``Settings.database_path``,
picks the notification gateway (Slack when both Slack settings are present,
the structured log otherwise), and builds the lifecycle service.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

from pricing_negotiation.auth.gateway import AuthorizationGateway, SystemAuthorization
from pricing_negotiation.catalog import SqliteCatalog
from pricing_negotiation.config import Settings, get_settings
from pricing_negotiation.lifecycle.service import NegotiationService
from pricing_negotiation.notifications.gateway import (
    LoggingNotificationGateway,
    NotificationGateway,
)
from pricing_negotiation.notifications.slack import SlackNotificationGateway
from pricing_negotiation.state.schema import close_database, open_database

logger = structlog.get_logger()


def configure_logging(production: bool = False) -> None:
    """Install the structlog processor chain.

    Production emits one JSON object per event and drops DEBUG.  Development
    renders coloured console lines and keeps DEBUG.  Every event carries
    ``service="pricing-negotiation"`` through the contextvars processor.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if production else logging.DEBUG
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service="pricing-negotiation")


def build_notification_gateway(settings: Settings) -> NotificationGateway:
    """Return the Slack gateway when configured, otherwise the logging gateway."""
    bot_token = settings.slack_bot_token.get_secret_value() or None
    channel = settings.slack_notification_channel
    if bot_token and channel:
        try:
            gateway = SlackNotificationGateway(channel=channel, bot_token=bot_token)
            logger.info("slack_notifications_enabled", channel=channel)
            return gateway
        except Exception:
            logger.warning("slack_gateway_init_failed", exc_info=True)
    else:
        logger.info("slack_notifications_disabled")
    return LoggingNotificationGateway()


def initialize_services(
    settings: Settings | None = None,
    authorization: AuthorizationGateway | None = None,
) -> dict[str, Any]:
    """Open the database and build the catalog, notification gateway, and service.

    Args:
        settings: Settings to use; ``get_settings()`` when omitted.
        authorization: Role and ownership gateway supplied by the host
            application.  Defaults to :class:`SystemAuthorization`, which is
            enough for scheduled jobs and read-only queries.

    Returns:
        The ``conn``, ``catalog``, ``notifications``, and ``service`` objects by name.
    """
    if settings is None:
        settings = get_settings()

    db_path = settings.database_path
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_database(db_path)

    catalog = SqliteCatalog(conn)
    notifications = build_notification_gateway(settings)
    service = NegotiationService(
        conn,
        authorization or SystemAuthorization(),
        notifications,
        catalog,
        settings=settings,
    )
    logger.info("services_initialized", database=str(db_path))

    return {
        "conn": conn,
        "catalog": catalog,
        "notifications": notifications,
        "service": service,
    }


def shutdown_services(services: dict[str, Any]) -> None:
    """Close the database connection opened by :func:`initialize_services`."""
    conn = services.get("conn")
    if conn is not None:
        close_database(conn)
        logger.info("database_closed")

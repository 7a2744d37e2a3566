"""Typed settings for the negotiation engine, read with pydantic-settings.

Values come from environment variables (case-insensitive) and an optional
``.env`` file in the working directory.  ``get_settings()`` caches the loaded
instance; ``validate_credentials()`` is the startup check for the Slack
notification credentials.

This module must not import anything from ``pricing_negotiation``: every other
module may import it.
"""

from __future__ import annotations

import sys
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Engine settings; each field maps to the upper-cased environment variable."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    production: bool = False

    # Storage
    database_path: Path = Path("data/negotiations.db")
    lock_retry_attempts: int = Field(default=5, ge=1)

    # Director escalation and cycles
    director_total_threshold: Decimal = Field(default=Decimal("50000"), gt=0)
    director_item_threshold: Decimal = Field(default=Decimal("10000"), gt=0)
    default_max_cycles: int = Field(default=3, ge=1)

    # Contract addendum deadline after approval
    formalization_expiry_days: int = Field(default=30, ge=1)

    # Slack
    slack_bot_token: SecretStr = SecretStr("")
    slack_notification_channel: str = ""

    @model_validator(mode="after")
    def item_threshold_within_total(self) -> Settings:
        """Ensure the per-item threshold does not exceed the total threshold."""
        if self.director_item_threshold > self.director_total_threshold:
            raise ValueError(
                "DIRECTOR_ITEM_THRESHOLD must not exceed DIRECTOR_TOTAL_THRESHOLD"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Load the settings once per process.

    Tests reset the cache with ``get_settings.cache_clear()``.  Invalid
    settings end the process with exit code 1 after logging the field errors.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # exc.errors() omits input values, so secrets never reach the log.
        logger.error(
            "settings_invalid",
            errors=exc.errors(include_url=False, include_input=False),
        )
        sys.exit(1)


def missing_credentials(settings: Settings) -> list[str]:
    """Return the names of the Slack settings that are empty."""
    missing: list[str] = []
    if not settings.slack_bot_token.get_secret_value():
        missing.append("SLACK_BOT_TOKEN")
    if not settings.slack_notification_channel:
        missing.append("SLACK_NOTIFICATION_CHANNEL")
    return missing


def validate_credentials(settings: Settings) -> None:
    """Check the notification credentials before the service starts.

    Production refuses to start without them (exit code 1).  Development
    logs a warning per missing value and notifications go to the log instead.
    """
    missing = missing_credentials(settings)
    if not missing:
        logger.info("credentials_present")
        return

    if not settings.production:
        for name in missing:
            logger.warning("credential_not_set", setting=name)
        return

    for name in missing:
        logger.error("credential_not_set", setting=name)
    print(
        "Refusing to start in production: " + ", ".join(missing) + " not set.",
        file=sys.stderr,
    )
    sys.exit(1)

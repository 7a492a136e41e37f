"""Sentry error tracking integration.

Features:
- Automatic error capture
- Performance monitoring
- Actor context
- Tagged capture of lifecycle failures
"""

import logging
import os
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration


def init_sentry(
    dsn: str | None = None,
    environment: str = "development",
    release: str | None = None,
    traces_sample_rate: float = 0.05,
) -> bool:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN. If None, uses SENTRY_DSN env var.
        environment: Environment name (development, staging, production)
        release: Release version string
        traces_sample_rate: Percentage of transactions to trace (0.0 to 1.0)

    Returns:
        True if Sentry was initialized, False otherwise
    """
    sentry_dsn = dsn or os.getenv("SENTRY_DSN")

    if not sentry_dsn:
        return False

    logging_integration = LoggingIntegration(
        level=logging.INFO,  # Capture INFO and above as breadcrumbs
        event_level=logging.ERROR,  # Send ERROR and above as events
    )

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=environment,
        release=release or os.getenv("APP_VERSION", "1.0.0"),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            logging_integration,
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        before_send=_before_send,
        before_send_transaction=_before_send_transaction,
    )

    return True


def _before_send(event: dict, hint: dict) -> dict | None:
    """Drop player-facing rejections; keep lifecycle and unexpected errors."""
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        if getattr(exc_value, "recoverable", False):
            return None

    return event


def _before_send_transaction(event: dict, hint: dict) -> dict | None:
    """Filter out health check and metrics transactions."""
    transaction_name = event.get("transaction", "")
    if any(path in transaction_name for path in ["/health", "/metrics"]):
        return None

    return event


def set_actor_context(actor_id: str) -> None:
    sentry_sdk.set_user({"id": actor_id})


def capture_lifecycle_error(
    error: Exception,
    tournament_day: str | None = None,
    trigger: str | None = None,
    extra: dict[str, Any] | None = None,
) -> str | None:
    """Capture a tournament lifecycle failure with high priority.

    Args:
        error: The exception that occurred
        tournament_day: Cycle key being created or activated
        trigger: What ran the lifecycle (cron_http, celery_beat)
        extra: Additional context

    Returns:
        Sentry event ID or None
    """
    with sentry_sdk.new_scope() as scope:
        scope.set_level("fatal")
        scope.set_tag("lifecycle_error", "true")
        if tournament_day:
            scope.set_tag("tournament_day", tournament_day)
        if trigger:
            scope.set_tag("lifecycle_trigger", trigger)
        if extra:
            for key, value in extra.items():
                scope.set_extra(key, value)

        return sentry_sdk.capture_exception(error)

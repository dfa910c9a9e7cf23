"""
Sentry Error Tracking
=====================

Centralized error tracking for the API process and the ARQ worker.

Related files:
- touchcredit/main.py: Initializes Sentry on app startup
- touchcredit/workers/arq_worker.py: Initializes Sentry on worker startup

Environment Variables:
- SENTRY_DSN: Sentry project DSN (required for Sentry to work)
- ENVIRONMENT: Environment name (production, staging, development)
- RELEASE_VERSION: Release tag attached to events (optional)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)


def get_sentry_dsn() -> Optional[str]:
    """DSN from the environment, None when not configured."""
    return os.environ.get("SENTRY_DSN") or None


def init_sentry() -> bool:
    """
    Initialize the Sentry SDK.

    Returns:
        True if Sentry was initialized, False when no DSN is configured
        or initialization failed.

    Side effects:
        - Configures the global Sentry client
        - Sets up FastAPI, SQLAlchemy, Redis and logging integrations
    """
    dsn = get_sentry_dsn()
    if not dsn:
        return False

    environment = os.environ.get("ENVIRONMENT", "development")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                RedisIntegration(),
                LoggingIntegration(
                    level=logging.INFO,         # breadcrumbs
                    event_level=logging.ERROR,  # events
                ),
            ],
            traces_sample_rate=0.1,
            send_default_pii=False,
            release=os.environ.get("RELEASE_VERSION"),
        )
        logger.debug("[SENTRY] Initialized for %s environment", environment)
        return True
    except Exception as e:
        logger.error("[SENTRY] Failed to initialize: %s", e)
        return False


def capture_exception(exception: BaseException, extra: Optional[dict] = None) -> None:
    """
    Report a handled exception.

    Use this where an exception is caught and the work continues (batch
    runs, worker jobs) but the failure should still be visible.

    Args:
        exception: The exception to capture
        extra: Additional context attached to the event

    Example:
        try:
            calculator.score_conversion(conversion_id)
        except Exception as e:
            capture_exception(e, extra={"conversion_id": conversion_id})
    """
    try:
        with sentry_sdk.new_scope() as scope:
            if extra:
                for key, value in extra.items():
                    scope.set_extra(key, value)
            sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.error("[SENTRY] Failed to capture exception: %s", e)


def capture_message(message: str, level: str = "info", extra: Optional[dict] = None) -> None:
    """Report a notable non-exception event (e.g. a batch with many errors)."""
    try:
        with sentry_sdk.new_scope() as scope:
            if extra:
                for key, value in extra.items():
                    scope.set_extra(key, value)
            sentry_sdk.capture_message(message, level=level)
    except Exception as e:
        logger.error("[SENTRY] Failed to capture message: %s", e)


def flush(timeout: float = 2.0) -> None:
    """Wait for queued events to be sent."""
    sentry_sdk.flush(timeout=timeout)

"""
Telemetry Module
================

Error tracking for the attribution service.

Components:
- sentry.py: Error tracking and performance monitoring

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: Environment name reported with events

Usage:
    from touchcredit.telemetry import init_observability, capture_exception

    init_observability()      # API and worker startup
    capture_exception(exc, extra={"conversion_id": 42})

Related modules:
- touchcredit/main.py: Initializes observability on startup
- touchcredit/workers/arq_worker.py: Reports job failures
- touchcredit/services/attribution/batch.py: Reports per-conversion failures
"""

from touchcredit.telemetry.sentry import (
    init_sentry,
    capture_exception,
    capture_message,
    flush,
)


def init_observability() -> dict:
    """
    Initialize observability tools.

    Returns:
        {"sentry": True/False}
    """
    return {
        "sentry": init_sentry(),
    }


def shutdown_observability() -> None:
    """Flush pending events on shutdown."""
    flush()


__all__ = [
    "init_observability",
    "shutdown_observability",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "flush",
]

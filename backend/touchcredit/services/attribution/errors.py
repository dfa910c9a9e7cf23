"""
Attribution Exceptions
======================

Custom exception types for the attribution engine.

Missing conversions and empty lookback windows are NOT exceptions: the
calculator reports them as ScoreOutcome statuses. Exceptions are reserved
for caller mistakes (unknown model ids) and store failures.

RELATED FILES
-------------
- touchcredit/services/attribution/credit_models.py: Raises InvalidModelError
- touchcredit/services/attribution/store.py: Raises StorageError
- touchcredit/routers/attribution.py: Maps both to HTTP responses
"""

from typing import Optional


class AttributionError(Exception):
    """Base exception for all attribution engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidModelError(AttributionError, ValueError):
    """
    Raised when an unrecognized attribution model id is requested.

    Maps to a 4xx response at the HTTP layer.
    """

    def __init__(self, model_id: Optional[str]):
        super().__init__(f"Invalid attribution model: {model_id!r}")
        self.model_id = model_id


class StorageError(AttributionError):
    """
    Raised when the underlying store fails.

    Wraps the original SQLAlchemy error. The transaction has already been
    rolled back when this is raised; the engine never retries.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class ConfigurationError(AttributionError, ValueError):
    """Raised when AttributionConfig values are out of range."""

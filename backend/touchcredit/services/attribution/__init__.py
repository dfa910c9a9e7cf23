"""
Attribution Engine Package.

WHAT:
    Multi-touch attribution: distributes credit for each conversion across
    the visitor's prior marketing touches under five models and reports
    the results by channel.

MODULES:
    - channels: Channel classifier (UTM + referrer -> channel label)
    - credit_models: The five attribution models
    - store: SQLAlchemy repository over touches/conversions/links/results
    - calculator: Scores one conversion and persists links and credits
    - batch: Periodic sweep over unscored conversions
    - reporting: Channel performance and conversion totals
    - service: AttributionService facade used by routers and workers

REFERENCES:
    - backend/touchcredit/models.py (Touch, Conversion, TouchConversionLink, AttributionResult)
    - backend/touchcredit/routers/attribution.py
"""

from .channels import Channel, classify_channel
from .credit_models import (
    AttributionModel,
    CreditModel,
    TouchPoint,
    build_credit_models,
    calculate_credits,
    calculate_all,
    compare_channel_shares,
)
from .errors import AttributionError, InvalidModelError, StorageError, ConfigurationError
from .config import AttributionConfig
from .store import AttributionStore
from .calculator import AttributionCalculator, ScoreOutcome, ScoreStatus
from .batch import BatchProcessor, BatchResult
from .reporting import ChannelPerformance, ConversionStats, ReportingAggregator
from .service import AttributionService, AttributionReport, ModelComparison

__all__ = [
    "Channel",
    "classify_channel",
    "AttributionModel",
    "CreditModel",
    "TouchPoint",
    "build_credit_models",
    "calculate_credits",
    "calculate_all",
    "compare_channel_shares",
    "AttributionError",
    "InvalidModelError",
    "StorageError",
    "ConfigurationError",
    "AttributionConfig",
    "AttributionStore",
    "AttributionCalculator",
    "ScoreOutcome",
    "ScoreStatus",
    "BatchProcessor",
    "BatchResult",
    "ChannelPerformance",
    "ConversionStats",
    "ReportingAggregator",
    "AttributionService",
    "AttributionReport",
    "ModelComparison",
]

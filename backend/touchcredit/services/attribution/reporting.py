"""
Reporting Aggregator.

WHAT:
    Read-only rollups over stored attribution results: credit and
    credit-weighted conversion value per channel, per-model comparison and
    channel-agnostic conversion totals.

WHY:
    Answers "which channels drive conversions?" under each model. Numbers
    come straight from stored results, so they reflect the last scoring of
    each conversion.

DATE RANGES:
    Ranges are inclusive calendar days on conversion time: from the start of
    date_from to the end of date_to.

REFERENCES:
    - touchcredit/services/attribution/store.py:channel_performance_rows
    - touchcredit/routers/attribution.py (HTTP exposure)
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Tuple

from .credit_models import AttributionModel
from .store import AttributionStore

logger = logging.getLogger(__name__)


@dataclass
class ChannelPerformance:
    channel: str
    total_credit: float
    weighted_value: float
    conversion_count: int
    touch_count: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ConversionStats:
    total_conversions: int = 0
    total_value: float = 0.0
    today_conversions: int = 0
    today_value: float = 0.0
    month_conversions: int = 0
    month_value: float = 0.0
    total_touches: int = 0
    unattributed_conversions: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _as_float(value) -> float:
    # Numeric columns come back as Decimal on PostgreSQL
    return float(value) if value is not None else 0.0


def date_range_bounds(date_from: date, date_to: date) -> Tuple[datetime, datetime]:
    """[start of date_from, start of the day after date_to)."""
    return (
        datetime.combine(date_from, time.min),
        datetime.combine(date_to + timedelta(days=1), time.min),
    )


class ReportingAggregator:
    def __init__(self, store: AttributionStore):
        self.store = store

    def channel_performance(
        self,
        model: AttributionModel,
        date_from: date,
        date_to: date,
    ) -> List[ChannelPerformance]:
        """Per-channel totals for one model, highest credit first."""
        model = AttributionModel.from_id(model)
        period_start, period_end = date_range_bounds(date_from, date_to)
        rows = self.store.channel_performance_rows(model.value, period_start, period_end)
        return [
            ChannelPerformance(
                channel=row.channel,
                total_credit=_as_float(row.total_credit),
                weighted_value=_as_float(row.weighted_value),
                conversion_count=int(row.conversion_count or 0),
                touch_count=int(row.touch_count or 0),
            )
            for row in rows
        ]

    def compare_models(self, date_from: date, date_to: date) -> Dict[AttributionModel, List[ChannelPerformance]]:
        """Channel performance for every model over the same range."""
        return {
            model: self.channel_performance(model, date_from, date_to)
            for model in AttributionModel
        }

    def stats(self, now: datetime) -> ConversionStats:
        today_start = datetime.combine(now.date(), time.min)
        tomorrow_start = today_start + timedelta(days=1)
        month_start = today_start.replace(day=1)

        raw = self.store.conversion_stats(today_start, tomorrow_start, month_start)
        return ConversionStats(
            total_conversions=int(raw["total_conversions"]),
            total_value=_as_float(raw["total_value"]),
            today_conversions=int(raw["today_conversions"]),
            today_value=_as_float(raw["today_value"]),
            month_conversions=int(raw["month_conversions"]),
            month_value=_as_float(raw["month_value"]),
            total_touches=int(raw["total_touches"]),
            unattributed_conversions=int(raw["unattributed_conversions"]),
        )

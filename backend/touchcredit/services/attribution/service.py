"""
Attribution Service.

WHAT:
    The engine's external surface: record touches and conversions, score and
    re-score conversions, run the batch sweep, report, and clean up.

WHY:
    Routers and ARQ jobs call one object. It owns the session factory and the
    validated AttributionConfig; each operation opens its own session, so the
    service is safe to share across requests and worker jobs.

CONSTRUCTION:
    Built once per process (touchcredit/main.py stores it on app.state,
    touchcredit/workers/arq_worker.py puts it in the job context). There is
    no module-level instance.

TIMESTAMPS:
    Stored as naive UTC. Aware datetimes are converted on the way in.

REFERENCES:
    - touchcredit/services/attribution/calculator.py
    - touchcredit/services/attribution/batch.py
    - touchcredit/services/attribution/reporting.py
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from touchcredit.models import Conversion, Touch
from touchcredit.telemetry import capture_exception

from .batch import BatchProcessor, BatchResult
from .calculator import AttributionCalculator, ScoreOutcome, ScoreStatus, build_registry
from .channels import classify_channel
from .config import AttributionConfig
from .credit_models import AttributionModel
from .errors import StorageError
from .reporting import ChannelPerformance, ConversionStats, ReportingAggregator
from .store import AttributionStore

logger = logging.getLogger(__name__)


# Event types that count as marketing touches
TOUCH_EVENT_TYPES = frozenset({"pageview", "click", "form_view", "form_start"})


@dataclass
class AttributionReport:
    model: AttributionModel
    date_from: date
    date_to: date
    channels: List[ChannelPerformance]
    stats: ConversionStats


@dataclass
class ModelComparison:
    date_from: date
    date_to: date
    models: Dict[AttributionModel, List[ChannelPerformance]] = field(default_factory=dict)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def touch_to_dict(touch: Touch) -> Dict[str, Any]:
    return {
        "id": touch.id,
        "visitor_id": touch.visitor_id,
        "session_id": touch.session_id,
        "touch_type": touch.touch_type,
        "channel": touch.channel,
        "source": touch.source,
        "medium": touch.medium,
        "campaign": touch.campaign,
        "content": touch.content,
        "term": touch.term,
        "landing_page": touch.landing_page,
        "referrer": touch.referrer,
        "touched_at": touch.touched_at,
    }


def conversion_to_dict(conversion: Conversion) -> Dict[str, Any]:
    value = conversion.conversion_value
    return {
        "id": conversion.id,
        "visitor_id": conversion.visitor_id,
        "conversion_type": conversion.conversion_type,
        "conversion_value": float(value) if isinstance(value, Decimal) else (value or 0.0),
        "source": conversion.source,
        "source_id": conversion.source_id,
        "customer_email": conversion.customer_email,
        "customer_name": conversion.customer_name,
        "metadata": conversion.extra_data or {},
        "converted_at": conversion.converted_at,
    }


class AttributionService:
    """Facade over the attribution engine."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: Optional[AttributionConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.config = config or AttributionConfig()
        self.registry = build_registry(self.config)
        self.clock = clock

    @contextmanager
    def _store(self) -> Iterator[AttributionStore]:
        db = self.session_factory()
        try:
            yield AttributionStore(db)
        finally:
            db.close()

    def _calculator(self, store: AttributionStore) -> AttributionCalculator:
        return AttributionCalculator(store, self.config, self.registry)

    # =========================================================================
    # INGESTION
    # =========================================================================

    def record_touch(self, visitor_id: str, event_data: Mapping[str, Any]) -> Optional[int]:
        """
        Record a visitor event as a touch if it qualifies.

        Only pageview/click/form_view/form_start events are touches. Events
        other than pageviews also need a UTM source or campaign, or a
        referrer, to count.

        Args:
            visitor_id: Visitor identifier
            event_data: event_type, session_id, utm_source, utm_medium,
                utm_campaign, utm_content, utm_term, page_url, referrer and
                an optional timestamp (defaults to now)

        Returns:
            The new touch id, or None when the event does not qualify
        """
        event_type = event_data.get("event_type") or "pageview"
        if event_type not in TOUCH_EVENT_TYPES:
            return None

        has_utm = bool(event_data.get("utm_source") or event_data.get("utm_campaign"))
        has_referrer = bool(event_data.get("referrer"))
        if not (has_utm or has_referrer) and event_type != "pageview":
            return None

        channel = classify_channel(
            event_data.get("referrer"),
            utm_source=event_data.get("utm_source"),
            utm_medium=event_data.get("utm_medium"),
        )
        touched_at = to_naive_utc(event_data.get("timestamp")) or self.clock()

        with self._store() as store:
            with store.transaction("record_touch"):
                touch = store.add_touch(
                    visitor_id=visitor_id,
                    session_id=event_data.get("session_id"),
                    touch_type=event_type,
                    channel=channel.value,
                    source=event_data.get("utm_source"),
                    medium=event_data.get("utm_medium"),
                    campaign=event_data.get("utm_campaign"),
                    content=event_data.get("utm_content"),
                    term=event_data.get("utm_term"),
                    landing_page=event_data.get("page_url"),
                    referrer=event_data.get("referrer"),
                    touched_at=touched_at,
                )
                touch_id = touch.id

        logger.debug("[TRACKING] Touch %s recorded for visitor %s (%s)", touch_id, visitor_id, channel.value)
        return touch_id

    def record_conversion(
        self,
        visitor_id: str,
        conversion_type: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Store a conversion and score it immediately with every model.

        The conversion is inserted already claimed so an overlapping batch
        run does not score it a second time. When no touches are found the
        claim is released and the next batch run retries it. A store failure
        while scoring leaves the conversion saved without results and still
        claimed; the batch sweep retries it once the claim is stale.

        Returns:
            {"conversion_id": int, "attribution": ScoreOutcome dict}
        """
        data = data or {}
        now = self.clock()
        converted_at = to_naive_utc(data.get("converted_at")) or now

        with self._store() as store:
            with store.transaction("record_conversion"):
                conversion = store.add_conversion(
                    visitor_id=visitor_id,
                    conversion_type=conversion_type,
                    conversion_value=data.get("value") or 0,
                    source=data.get("source"),
                    source_id=data.get("source_id"),
                    customer_email=data.get("email"),
                    customer_name=data.get("name"),
                    extra_data=dict(data.get("metadata") or {}),
                    converted_at=converted_at,
                    attribution_claimed_at=now,
                )
                conversion_id = conversion.id

            logger.info("[ATTRIBUTION] Conversion %s recorded (%s) for visitor %s", conversion_id, conversion_type, visitor_id)

            try:
                outcome = self._calculator(store).score_conversion(conversion_id)
                if outcome.status == ScoreStatus.no_touches:
                    store.release_claim(conversion_id)
                attribution = outcome.to_dict()
            except StorageError as e:
                logger.exception("[ATTRIBUTION] Scoring deferred for conversion %s", conversion_id)
                capture_exception(e, extra={"conversion_id": conversion_id})
                attribution = {"conversion_id": conversion_id, "status": "deferred"}

        return {"conversion_id": conversion_id, "attribution": attribution}

    # =========================================================================
    # SCORING
    # =========================================================================

    def score_conversion(self, conversion_id: int, models: Optional[Iterable[Any]] = None) -> ScoreOutcome:
        """Score (or re-score) one conversion; see AttributionCalculator."""
        with self._store() as store:
            return self._calculator(store).score_conversion(conversion_id, models)

    def process_pending_conversions(self, limit: Optional[int] = None) -> BatchResult:
        processor = BatchProcessor(
            self.session_factory,
            config=self.config,
            registry=self.registry,
            clock=self.clock,
        )
        return processor.process_pending(limit)

    # =========================================================================
    # REPORTING
    # =========================================================================

    def channel_performance(self, model: Any, date_from: date, date_to: date) -> List[ChannelPerformance]:
        model = AttributionModel.from_id(model)
        with self._store() as store:
            return ReportingAggregator(store).channel_performance(model, date_from, date_to)

    def stats(self) -> ConversionStats:
        with self._store() as store:
            return ReportingAggregator(store).stats(self.clock())

    def get_report(self, model: Any, date_from: date, date_to: date) -> AttributionReport:
        """Channel performance for one model plus summary stats."""
        model = AttributionModel.from_id(model)
        with self._store() as store:
            aggregator = ReportingAggregator(store)
            return AttributionReport(
                model=model,
                date_from=date_from,
                date_to=date_to,
                channels=aggregator.channel_performance(model, date_from, date_to),
                stats=aggregator.stats(self.clock()),
            )

    def compare_models(self, date_from: date, date_to: date) -> ModelComparison:
        with self._store() as store:
            return ModelComparison(
                date_from=date_from,
                date_to=date_to,
                models=ReportingAggregator(store).compare_models(date_from, date_to),
            )

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def conversion_detail(self, conversion_id: int, model: Any = None) -> Optional[Dict[str, Any]]:
        """
        A conversion with its linked touches and stored credits.

        Conversions with no stored results are scored on demand first.

        Returns:
            None if the conversion does not exist
        """
        model = AttributionModel.from_id(model) if model is not None else None

        with self._store() as store:
            conversion = store.get_conversion(conversion_id)
            if conversion is None:
                return None

            if not store.has_results(conversion_id):
                self._calculator(store).score_conversion(conversion_id)

            touches = store.get_visitor_touches(
                conversion.visitor_id, conversion_id=conversion_id, limit=1000
            )
            results: Dict[str, List[Dict[str, Any]]] = {}
            for result, touch in store.get_results(conversion_id, model.value if model else None):
                results.setdefault(result.model, []).append({
                    "touch_id": touch.id,
                    "channel": touch.channel,
                    "credit": result.credit,
                })

            return {
                "conversion": conversion_to_dict(conversion),
                "touches": [touch_to_dict(touch) for touch in touches],
                "results": results,
            }

    def list_conversions(self, page: int = 1, per_page: int = 20, **filters: Any) -> Tuple[List[Dict[str, Any]], int]:
        """Paginated conversions; filters as AttributionStore.list_conversions."""
        with self._store() as store:
            rows, total = store.list_conversions(page=page, per_page=per_page, **filters)
            return [conversion_to_dict(row) for row in rows], total

    def visitor_touches(
        self,
        visitor_id: str,
        conversion_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        with self._store() as store:
            touches = store.get_visitor_touches(visitor_id, conversion_id=conversion_id, limit=limit)
            return [touch_to_dict(touch) for touch in touches]

    @staticmethod
    def list_models() -> List[Dict[str, str]]:
        return [
            {"id": model.value, "name": model.label, "description": model.description}
            for model in AttributionModel
        ]

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def cleanup_old_touches(self, retention_days: Optional[int] = None) -> int:
        """Delete touches past retention that no conversion links to.

        Returns:
            Number of touches deleted
        """
        if retention_days is None:
            retention_days = self.config.touch_retention_days
        elif retention_days <= 0:
            raise ValueError(f"retention_days must be positive, got {retention_days}")
        cutoff = self.clock() - timedelta(days=retention_days)

        with self._store() as store:
            with store.transaction("cleanup_old_touches"):
                deleted = store.delete_unlinked_touches_before(cutoff)

        logger.info("[ATTRIBUTION] Deleted %d touches older than %s", deleted, cutoff)
        return deleted

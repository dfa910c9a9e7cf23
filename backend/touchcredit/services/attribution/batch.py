"""Batch processor for unscored conversions.

WHAT: Finds conversions with no attribution results and scores them with
      every model.
WHY: Synchronous scoring at conversion time can fail or be skipped (touches
     arriving late, store outages). This sweep, run periodically by the ARQ
     worker, catches them up.

Selection is a left outer join against attribution_results filtered on a
null result id, so conversions already scored are never reprocessed. Each
selected conversion is claimed with a conditional UPDATE before scoring so
overlapping runs (two workers, or a manual trigger during a cron run) do
not score the same conversion twice.

A failed or unattributable conversion keeps its claim timestamp as its last
attempt; it becomes selectable again once the claim is older than
claim_ttl_seconds.

REFERENCES:
  - touchcredit/workers/arq_worker.py:scheduled_attribution_batch
  - touchcredit/services/attribution/store.py:claim_conversion
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional

from sqlalchemy.orm import Session

from touchcredit.telemetry import capture_exception, capture_message

from .calculator import AttributionCalculator, ScoreStatus, build_registry
from .config import AttributionConfig
from .credit_models import AttributionModel, CreditModel
from .errors import StorageError
from .store import AttributionStore

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    processed: int = 0
    errors: int = 0
    pending: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "errors": self.errors,
            "pending": self.pending,
            "skipped": self.skipped,
        }


class BatchProcessor:
    """Scores pending conversions, one session and one claim per conversion."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: Optional[AttributionConfig] = None,
        registry: Optional[Mapping[AttributionModel, CreditModel]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.config = config or AttributionConfig()
        self.registry = registry or build_registry(self.config)
        self.clock = clock

    def process_pending(self, limit: Optional[int] = None) -> BatchResult:
        """Score up to `limit` unscored conversions.

        Per-conversion failures are counted in `errors` and never stop the
        run. `skipped` counts conversions another worker claimed first.
        """
        if limit is None:
            limit = self.config.batch_size
        elif limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        now = self.clock()
        claim_cutoff = now - timedelta(seconds=self.config.claim_ttl_seconds)

        db = self.session_factory()
        try:
            pending_ids = AttributionStore(db).find_pending_conversion_ids(limit, claim_cutoff)
        finally:
            db.close()

        result = BatchResult(pending=len(pending_ids))
        if not pending_ids:
            logger.debug("[BATCH] No pending conversions")
            return result

        logger.info("[BATCH] Processing %d pending conversions", len(pending_ids))

        for conversion_id in pending_ids:
            db = self.session_factory()
            try:
                store = AttributionStore(db)
                if not store.claim_conversion(conversion_id, now, claim_cutoff):
                    logger.info("[BATCH] Conversion %s claimed by another worker, skipping", conversion_id)
                    result.skipped += 1
                    continue

                calculator = AttributionCalculator(store, self.config, self.registry)
                outcome = calculator.score_conversion(conversion_id)
                if outcome.status == ScoreStatus.scored:
                    result.processed += 1
                else:
                    result.errors += 1
                    logger.info("[BATCH] Conversion %s not scored: %s", conversion_id, outcome.status.value)
            except StorageError as e:
                result.errors += 1
                logger.error("[BATCH] Storage error for conversion %s: %s", conversion_id, e)
            except Exception as e:
                result.errors += 1
                logger.exception("[BATCH] Unexpected error scoring conversion %s", conversion_id)
                capture_exception(e, extra={"conversion_id": conversion_id})
            finally:
                db.close()

        logger.info(
            "[BATCH] Done: processed=%d errors=%d skipped=%d",
            result.processed, result.errors, result.skipped,
        )
        if result.errors:
            capture_message(
                f"Attribution batch finished with {result.errors} errors",
                level="warning",
                extra=result.to_dict(),
            )
        return result

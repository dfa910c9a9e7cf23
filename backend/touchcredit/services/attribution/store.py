"""Touch/conversion store.

WHAT:
    Repository over the four attribution row-sets (touches, conversions,
    touch_conversions, attribution_results) bound to one SQLAlchemy session.

WHY:
    Keeps every query in one place so the calculator, batch processor and
    reporting aggregator stay free of SQL. All SQLAlchemy failures surface as
    StorageError after the session has been rolled back.

TRANSACTIONS:
    Query/mutation helpers never commit. Callers group writes with
    `with store.transaction("operation"):` which commits on success and
    rolls back on failure, so a conversion's links and results are written
    all-or-nothing.

REFERENCES:
    - touchcredit/models.py (row definitions)
    - touchcredit/services/attribution/calculator.py (main writer)
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import case, delete, distinct, exists, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from touchcredit.models import AttributionResult, Conversion, Touch, TouchConversionLink

from .errors import StorageError

logger = logging.getLogger(__name__)


CONVERSION_ORDER_COLUMNS = {
    "id": Conversion.id,
    "converted_at": Conversion.converted_at,
    "conversion_value": Conversion.conversion_value,
    "conversion_type": Conversion.conversion_type,
}


class AttributionStore:
    """SQLAlchemy-backed store for one unit of work (one session)."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # TRANSACTION HELPERS
    # =========================================================================

    @contextmanager
    def guard(self, operation: str) -> Iterator[None]:
        """Translate SQLAlchemy errors into StorageError, rolling back first."""
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("[STORE] %s failed: %s", operation, e)
            raise StorageError(f"{operation} failed: {e}", operation=operation) from e

    @contextmanager
    def transaction(self, operation: str) -> Iterator[None]:
        """Run the block and commit; roll back and raise StorageError on failure."""
        with self.guard(operation):
            yield
            self.db.commit()

    # =========================================================================
    # TOUCHES
    # =========================================================================

    def add_touch(self, **fields: Any) -> Touch:
        touch = Touch(**fields)
        self.db.add(touch)
        self.db.flush()
        return touch

    def get_touches_in_window(
        self,
        visitor_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> List[Touch]:
        """Touches for a visitor with window_start <= touched_at <= window_end.

        Ordered by timestamp, then id (arrival order) for ties.
        """
        with self.guard("get_touches_in_window"):
            return (
                self.db.query(Touch)
                .filter(
                    Touch.visitor_id == visitor_id,
                    Touch.touched_at >= window_start,
                    Touch.touched_at <= window_end,
                )
                .order_by(Touch.touched_at.asc(), Touch.id.asc())
                .all()
            )

    def get_visitor_touches(
        self,
        visitor_id: str,
        conversion_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[Touch]:
        """A visitor's touches; with conversion_id, only those linked to it."""
        with self.guard("get_visitor_touches"):
            query = self.db.query(Touch).filter(Touch.visitor_id == visitor_id)
            if conversion_id is not None:
                query = query.join(
                    TouchConversionLink, TouchConversionLink.touch_id == Touch.id
                ).filter(TouchConversionLink.conversion_id == conversion_id)
            return (
                query.order_by(Touch.touched_at.asc(), Touch.id.asc())
                .limit(limit)
                .all()
            )

    def delete_unlinked_touches_before(self, cutoff: datetime) -> int:
        """Delete touches older than cutoff that no conversion links to."""
        linked = select(TouchConversionLink.touch_id)
        result = self.db.execute(
            delete(Touch)
            .where(Touch.touched_at < cutoff, Touch.id.not_in(linked))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # =========================================================================
    # CONVERSIONS
    # =========================================================================

    def add_conversion(self, **fields: Any) -> Conversion:
        conversion = Conversion(**fields)
        self.db.add(conversion)
        self.db.flush()
        return conversion

    def get_conversion(self, conversion_id: int) -> Optional[Conversion]:
        with self.guard("get_conversion"):
            return self.db.get(Conversion, conversion_id)

    def list_conversions(
        self,
        page: int = 1,
        per_page: int = 20,
        visitor_id: Optional[str] = None,
        conversion_type: Optional[str] = None,
        source: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        order_by: str = "converted_at",
        descending: bool = True,
    ) -> Tuple[List[Conversion], int]:
        """Paginated conversions plus the total matching count."""
        with self.guard("list_conversions"):
            query = self.db.query(Conversion)
            if visitor_id:
                query = query.filter(Conversion.visitor_id == visitor_id)
            if conversion_type:
                query = query.filter(Conversion.conversion_type == conversion_type)
            if source:
                query = query.filter(Conversion.source == source)
            if date_from is not None:
                query = query.filter(Conversion.converted_at >= date_from)
            if date_to is not None:
                query = query.filter(Conversion.converted_at < date_to)

            total = query.count()

            column = CONVERSION_ORDER_COLUMNS.get(order_by, Conversion.converted_at)
            ordering = column.desc() if descending else column.asc()
            rows = (
                query.order_by(ordering, Conversion.id.desc() if descending else Conversion.id.asc())
                .offset((page - 1) * per_page)
                .limit(per_page)
                .all()
            )
            return rows, total

    # =========================================================================
    # LINKS & RESULTS
    # =========================================================================

    def replace_links(self, conversion_id: int, touch_ids: Sequence[int]) -> None:
        """Make the link set for a conversion exactly touch_ids.

        Existing links are kept (not duplicated); links to touches that fell
        out of the window are removed.
        """
        wanted = set(touch_ids)
        existing = {
            touch_id
            for (touch_id,) in self.db.query(TouchConversionLink.touch_id).filter(
                TouchConversionLink.conversion_id == conversion_id
            )
        }

        stale = existing - wanted
        if stale:
            self.db.execute(
                delete(TouchConversionLink)
                .where(
                    TouchConversionLink.conversion_id == conversion_id,
                    TouchConversionLink.touch_id.in_(stale),
                )
                .execution_options(synchronize_session=False)
            )

        for touch_id in touch_ids:
            if touch_id not in existing:
                self.db.add(TouchConversionLink(conversion_id=conversion_id, touch_id=touch_id))
        self.db.flush()

    def replace_results(
        self,
        conversion_id: int,
        model: str,
        credits: Mapping[int, float],
        calculated_at: datetime,
    ) -> int:
        """Replace the (conversion, model) result set; only credit > 0 is stored.

        Returns:
            Number of rows written
        """
        self.db.execute(
            delete(AttributionResult)
            .where(
                AttributionResult.conversion_id == conversion_id,
                AttributionResult.model == model,
            )
            .execution_options(synchronize_session=False)
        )

        written = 0
        for touch_id, credit in credits.items():
            if credit > 0:
                self.db.add(AttributionResult(
                    conversion_id=conversion_id,
                    touch_id=touch_id,
                    model=model,
                    credit=credit,
                    calculated_at=calculated_at,
                ))
                written += 1
        self.db.flush()
        return written

    def has_results(self, conversion_id: int) -> bool:
        with self.guard("has_results"):
            return self.db.query(
                exists().where(AttributionResult.conversion_id == conversion_id)
            ).scalar()

    def get_results(
        self,
        conversion_id: int,
        model: Optional[str] = None,
    ) -> List[Tuple[AttributionResult, Touch]]:
        """Stored results joined to their touch, in touch order."""
        with self.guard("get_results"):
            query = (
                self.db.query(AttributionResult, Touch)
                .join(Touch, AttributionResult.touch_id == Touch.id)
                .filter(AttributionResult.conversion_id == conversion_id)
            )
            if model is not None:
                query = query.filter(AttributionResult.model == model)
            return query.order_by(
                Touch.touched_at.asc(), Touch.id.asc(), AttributionResult.model.asc()
            ).all()

    # =========================================================================
    # BATCH SELECTION & CLAIMS
    # =========================================================================

    def find_pending_conversion_ids(self, limit: int, claim_cutoff: datetime) -> List[int]:
        """Conversions with zero result rows whose claim is free or stale.

        Never-attempted conversions come first, then the oldest attempts,
        so conversions that keep failing cannot starve new ones.
        """
        with self.guard("find_pending_conversion_ids"):
            never_claimed_first = case(
                (Conversion.attribution_claimed_at.is_(None), 0), else_=1
            )
            rows = (
                self.db.query(Conversion.id)
                .outerjoin(AttributionResult, AttributionResult.conversion_id == Conversion.id)
                .filter(
                    AttributionResult.id.is_(None),
                    or_(
                        Conversion.attribution_claimed_at.is_(None),
                        Conversion.attribution_claimed_at < claim_cutoff,
                    ),
                )
                .order_by(never_claimed_first, Conversion.attribution_claimed_at.asc(), Conversion.id.asc())
                .limit(limit)
                .all()
            )
            return [conversion_id for (conversion_id,) in rows]

    def claim_conversion(self, conversion_id: int, now: datetime, claim_cutoff: datetime) -> bool:
        """Atomically mark a conversion as being scored.

        Succeeds only if nobody holds a claim newer than claim_cutoff.
        """
        with self.transaction("claim_conversion"):
            result = self.db.execute(
                update(Conversion)
                .where(
                    Conversion.id == conversion_id,
                    or_(
                        Conversion.attribution_claimed_at.is_(None),
                        Conversion.attribution_claimed_at < claim_cutoff,
                    ),
                )
                .values(attribution_claimed_at=now)
                .execution_options(synchronize_session=False)
            )
        return bool(result.rowcount)

    def release_claim(self, conversion_id: int) -> None:
        """Clear the claim so the next batch run selects the conversion."""
        with self.transaction("release_claim"):
            self.db.execute(
                update(Conversion)
                .where(Conversion.id == conversion_id)
                .values(attribution_claimed_at=None)
                .execution_options(synchronize_session=False)
            )

    # =========================================================================
    # REPORTING
    # =========================================================================

    def channel_performance_rows(
        self,
        model: str,
        period_start: datetime,
        period_end: datetime,
    ) -> List[Any]:
        """Credit and value summed per channel for conversions in [start, end)."""
        with self.guard("channel_performance"):
            total_credit = func.sum(AttributionResult.credit).label("total_credit")
            return (
                self.db.query(
                    Touch.channel.label("channel"),
                    func.count(distinct(AttributionResult.conversion_id)).label("conversion_count"),
                    total_credit,
                    func.sum(AttributionResult.credit * Conversion.conversion_value).label("weighted_value"),
                    func.count(distinct(Touch.id)).label("touch_count"),
                )
                .join(Touch, AttributionResult.touch_id == Touch.id)
                .join(Conversion, AttributionResult.conversion_id == Conversion.id)
                .filter(
                    AttributionResult.model == model,
                    Conversion.converted_at >= period_start,
                    Conversion.converted_at < period_end,
                )
                .group_by(Touch.channel)
                .order_by(total_credit.desc(), Touch.channel.asc())
                .all()
            )

    def conversion_stats(
        self,
        today_start: datetime,
        tomorrow_start: datetime,
        month_start: datetime,
    ) -> Dict[str, Any]:
        """Channel-agnostic conversion totals (attributed or not)."""
        with self.guard("conversion_stats"):
            is_today = (Conversion.converted_at >= today_start) & (Conversion.converted_at < tomorrow_start)
            in_month = Conversion.converted_at >= month_start
            row = self.db.query(
                func.count(Conversion.id).label("total_conversions"),
                func.coalesce(func.sum(Conversion.conversion_value), 0).label("total_value"),
                func.coalesce(func.sum(case((is_today, 1), else_=0)), 0).label("today_conversions"),
                func.coalesce(func.sum(case((is_today, Conversion.conversion_value), else_=0)), 0).label("today_value"),
                func.coalesce(func.sum(case((in_month, 1), else_=0)), 0).label("month_conversions"),
                func.coalesce(func.sum(case((in_month, Conversion.conversion_value), else_=0)), 0).label("month_value"),
            ).one()

            scored = select(AttributionResult.conversion_id)
            unattributed = (
                self.db.query(func.count(Conversion.id))
                .filter(Conversion.id.not_in(scored))
                .scalar()
            ) or 0
            total_touches = self.db.query(func.count(Touch.id)).scalar() or 0

            return {
                "total_conversions": row.total_conversions or 0,
                "total_value": row.total_value,
                "today_conversions": row.today_conversions,
                "today_value": row.today_value,
                "month_conversions": row.month_conversions,
                "month_value": row.month_value,
                "total_touches": total_touches,
                "unattributed_conversions": unattributed,
            }

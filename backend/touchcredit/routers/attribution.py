"""Attribution reporting and maintenance endpoints.

WHAT:
    Provides API endpoints for:
    - Model catalogue
    - Channel performance reports, per model and side by side
    - Conversion totals
    - Conversion lists and per-conversion credit breakdowns
    - Manual re-scoring and batch processing, inline or queued to the worker

WHY:
    Marketers compare channels under different attribution models; operators
    need to re-score conversions and catch up the unscored backlog on demand.

ERRORS:
    InvalidModelError -> 400 and StorageError -> 503 are mapped by the
    exception handlers registered in touchcredit/main.py.

REFERENCES:
    - touchcredit/services/attribution/service.py
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from touchcredit.deps import get_attribution_service
from touchcredit.schemas import ErrorResponse
from touchcredit.services.attribution import AttributionService, ScoreStatus
from touchcredit.services.attribution.calculator import parse_models
from touchcredit.workers.arq_enqueue import enqueue_attribution_batch, enqueue_score_conversion

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/attribution",
    tags=["Attribution"],
    responses={
        400: {"model": ErrorResponse, "description": "Unknown model or invalid date range"},
        503: {"model": ErrorResponse, "description": "Attribution store unavailable"},
    },
)

DEFAULT_REPORT_DAYS = 30


# =============================================================================
# SCHEMAS
# =============================================================================

class ModelInfo(BaseModel):
    id: str
    name: str
    description: str


class ChannelPerformanceOut(BaseModel):
    """Credit and value attributed to one channel."""
    channel: Optional[str] = Field(None, description="Channel label")
    total_credit: float = Field(0.0, description="Sum of credit (fractional conversions)")
    weighted_value: float = Field(0.0, description="Sum of credit x conversion value")
    conversion_count: int = Field(0, description="Distinct conversions with credit for this channel")
    touch_count: int = Field(0, description="Distinct touches with credit")


class StatsOut(BaseModel):
    total_conversions: int = 0
    total_value: float = 0.0
    today_conversions: int = 0
    today_value: float = 0.0
    month_conversions: int = 0
    month_value: float = 0.0
    total_touches: int = 0
    unattributed_conversions: int = 0


class ReportOut(BaseModel):
    model: str
    date_from: date
    date_to: date
    channels: List[ChannelPerformanceOut]
    stats: StatsOut


class CompareOut(BaseModel):
    date_from: date
    date_to: date
    models: Dict[str, List[ChannelPerformanceOut]]


class ConversionOut(BaseModel):
    id: int
    visitor_id: str
    conversion_type: str
    conversion_value: float
    source: Optional[str] = None
    source_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    converted_at: datetime


class ConversionListOut(BaseModel):
    items: List[ConversionOut]
    total: int
    page: int
    per_page: int
    total_pages: int


class TouchOut(BaseModel):
    id: int
    visitor_id: str
    session_id: Optional[str] = None
    touch_type: str
    channel: Optional[str] = None
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    content: Optional[str] = None
    term: Optional[str] = None
    landing_page: Optional[str] = None
    referrer: Optional[str] = None
    touched_at: datetime


class CreditOut(BaseModel):
    touch_id: int
    channel: Optional[str] = None
    credit: float


class ConversionDetailOut(BaseModel):
    conversion: ConversionOut
    touches: List[TouchOut]
    results: Dict[str, List[CreditOut]]


class ScoreRequest(BaseModel):
    models: Optional[List[str]] = Field(None, description="Model ids to score; all when omitted")


class ScoreOut(BaseModel):
    conversion_id: int
    status: str = Field(..., description="scored, not_found or no_touches")
    touches_count: int
    credits: Dict[str, Dict[int, float]] = Field(..., description="model -> touch id -> credit")


class BatchOut(BaseModel):
    processed: int
    errors: int
    pending: int
    skipped: int


class EnqueueOut(BaseModel):
    job_id: Optional[str] = Field(None, description="ARQ job id; null when an identical job is already queued")
    status: str = Field(..., description="enqueued or skipped_or_duplicate")


# =============================================================================
# HELPERS
# =============================================================================

def _resolve_range(
    service: AttributionService,
    date_from: Optional[date],
    date_to: Optional[date],
) -> tuple:
    """Default to the last 30 days ending today; reject inverted ranges."""
    date_to = date_to or service.clock().date()
    date_from = date_from or (date_to - timedelta(days=DEFAULT_REPORT_DAYS))
    if date_from > date_to:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="date_from must not be after date_to",
        )
    return date_from, date_to


def _channels_out(rows) -> List[ChannelPerformanceOut]:
    return [ChannelPerformanceOut(**row.to_dict()) for row in rows]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/models", response_model=List[ModelInfo])
def list_models(service: AttributionService = Depends(get_attribution_service)):
    """Available attribution models."""
    return service.list_models()


@router.get("/report", response_model=ReportOut)
def get_report(
    model: str = Query("last_touch", description="Attribution model id"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    service: AttributionService = Depends(get_attribution_service),
):
    """Channel performance for one model plus conversion totals."""
    date_from, date_to = _resolve_range(service, date_from, date_to)
    report = service.get_report(model, date_from, date_to)
    return ReportOut(
        model=report.model.value,
        date_from=report.date_from,
        date_to=report.date_to,
        channels=_channels_out(report.channels),
        stats=StatsOut(**report.stats.to_dict()),
    )


@router.get("/compare", response_model=CompareOut)
def compare_models(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    service: AttributionService = Depends(get_attribution_service),
):
    """Channel performance under every model over the same range."""
    date_from, date_to = _resolve_range(service, date_from, date_to)
    comparison = service.compare_models(date_from, date_to)
    return CompareOut(
        date_from=comparison.date_from,
        date_to=comparison.date_to,
        models={model.value: _channels_out(rows) for model, rows in comparison.models.items()},
    )


@router.get("/channels", response_model=List[ChannelPerformanceOut])
def channel_performance(
    model: str = Query("last_touch", description="Attribution model id"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    service: AttributionService = Depends(get_attribution_service),
):
    date_from, date_to = _resolve_range(service, date_from, date_to)
    return _channels_out(service.channel_performance(model, date_from, date_to))


@router.get("/stats", response_model=StatsOut)
def get_stats(service: AttributionService = Depends(get_attribution_service)):
    return StatsOut(**service.stats().to_dict())


@router.get("/conversions", response_model=ConversionListOut)
def list_conversions(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    visitor_id: Optional[str] = Query(None),
    conversion_type: Optional[str] = Query(None),
    source: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    order_by: str = Query("converted_at", pattern="^(id|converted_at|conversion_value|conversion_type)$"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    service: AttributionService = Depends(get_attribution_service),
):
    """Paginated conversions, newest first by default."""
    items, total = service.list_conversions(
        page=page,
        per_page=per_page,
        visitor_id=visitor_id,
        conversion_type=conversion_type,
        source=source,
        date_from=datetime.combine(date_from, datetime.min.time()) if date_from else None,
        date_to=datetime.combine(date_to + timedelta(days=1), datetime.min.time()) if date_to else None,
        order_by=order_by,
        descending=(order == "desc"),
    )
    return ConversionListOut(
        items=items,
        total=total,
        page=page,
        per_page=per_page,
        total_pages=(total + per_page - 1) // per_page,
    )


@router.get("/conversions/{conversion_id}", response_model=ConversionDetailOut)
def get_conversion(
    conversion_id: int,
    model: Optional[str] = Query(None, description="Only include results for this model"),
    service: AttributionService = Depends(get_attribution_service),
):
    """A conversion with its linked touches and per-model credits.

    Conversions not scored yet are scored on demand.
    """
    detail = service.conversion_detail(conversion_id, model)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversion not found")
    return detail


@router.post("/conversions/{conversion_id}/score", response_model=ScoreOut)
def score_conversion(
    conversion_id: int,
    payload: Optional[ScoreRequest] = Body(None),
    service: AttributionService = Depends(get_attribution_service),
):
    """Re-score a conversion from the current touches.

    Replaces the conversion's links and the requested models' results.
    """
    models = payload.models if payload else None
    outcome = service.score_conversion(conversion_id, models)
    if outcome.status == ScoreStatus.not_found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversion not found")

    logger.info(f"[ATTRIBUTION] Manual re-score of conversion {conversion_id}: {outcome.status.value}")
    return ScoreOut(**outcome.to_dict())


@router.get("/touches", response_model=List[TouchOut])
def visitor_touches(
    visitor_id: str = Query(..., min_length=1),
    conversion_id: Optional[int] = Query(None, description="Only touches linked to this conversion"),
    limit: int = Query(100, ge=1, le=1000),
    service: AttributionService = Depends(get_attribution_service),
):
    return service.visitor_touches(visitor_id, conversion_id=conversion_id, limit=limit)


@router.post("/process", response_model=BatchOut)
def process_pending(
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Defaults to the configured batch size"),
    service: AttributionService = Depends(get_attribution_service),
):
    """Score conversions that have no attribution results yet."""
    return BatchOut(**service.process_pending_conversions(limit).to_dict())


@router.post(
    "/conversions/{conversion_id}/score/enqueue",
    response_model=EnqueueOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enqueue_conversion_score(
    conversion_id: int,
    payload: Optional[ScoreRequest] = Body(None),
):
    """Queue a re-score on the ARQ worker instead of running it in the request.

    Model ids are validated here; a missing conversion surfaces as a
    not_found result on the job.
    """
    models = payload.models if payload else None
    if models is not None:
        models = [model.value for model in parse_models(models)]
    return EnqueueOut(**await enqueue_score_conversion(conversion_id, models))


@router.post("/process/enqueue", response_model=EnqueueOut, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_process_pending(
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Defaults to the configured batch size"),
):
    """Queue a batch sweep now rather than waiting for the next cron tick."""
    return EnqueueOut(**await enqueue_attribution_batch(limit))

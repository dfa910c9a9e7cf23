"""Tracking endpoints: touches and conversions.

WHAT:
    Receives visitor events from the tracking script and conversions from
    form/checkout/enrollment integrations.

WHY:
    Touches are the raw material for attribution; conversions trigger
    scoring. Both are thin wrappers over AttributionService.

REFERENCES:
    - touchcredit/services/attribution/service.py:record_touch
    - touchcredit/services/attribution/service.py:record_conversion
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from touchcredit.deps import get_attribution_service
from touchcredit.services.attribution import AttributionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Tracking"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class UtmParams(BaseModel):
    """UTM parameters captured from the landing page URL."""
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None


class EventContext(BaseModel):
    """Browser context: current page and referrer."""
    url: Optional[str] = None
    referrer: Optional[str] = None


class TouchEventRequest(BaseModel):
    """Visitor event from the tracking script.

    Example:
        {
            "visitor_id": "v_12345abc",
            "event": "pageview",
            "session_id": "s_1",
            "attribution": {"utm_source": "google", "utm_medium": "cpc"},
            "context": {"url": "https://example.com/pricing", "referrer": "https://www.google.com/"},
            "ts": "2025-11-30T12:00:00Z"
        }
    """
    visitor_id: str = Field(..., min_length=1, max_length=64, description="Visitor identifier")
    event: str = Field("pageview", description="Event type (pageview, click, form_view, form_start, ...)")
    session_id: Optional[str] = Field(None, max_length=64)
    attribution: Optional[UtmParams] = Field(None, description="UTM parameters")
    context: Optional[EventContext] = Field(None, description="Browser context")
    ts: Optional[datetime] = Field(None, description="Event timestamp (ISO 8601), defaults to now")


class TouchEventResponse(BaseModel):
    status: str = Field(..., description="recorded or ignored")
    touch_id: Optional[int] = Field(None, description="Id of the stored touch")


class ConversionRequest(BaseModel):
    """A conversion reported by an integration (form, checkout, enrollment)."""
    visitor_id: str = Field(..., min_length=1, max_length=64)
    conversion_type: str = Field(..., min_length=1, max_length=50, description="e.g. form_submission, purchase")
    value: float = Field(0.0, ge=0, description="Monetary value")
    source: Optional[str] = Field(None, max_length=50, description="Reporting integration")
    source_id: Optional[str] = Field(None, max_length=100, description="Id in the reporting integration")
    email: Optional[str] = Field(None, max_length=255)
    name: Optional[str] = Field(None, max_length=255)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    converted_at: Optional[datetime] = Field(None, description="Defaults to now")


class ConversionResponse(BaseModel):
    conversion_id: int
    attribution: Dict[str, Any]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post("/touches", response_model=TouchEventResponse)
def record_touch(
    payload: TouchEventRequest,
    service: AttributionService = Depends(get_attribution_service),
):
    """Record a visitor event as a touch when it qualifies.

    Non-qualifying events (other event types, or non-pageview events
    without UTM data or a referrer) are acknowledged with status "ignored".
    """
    utm = payload.attribution or UtmParams()
    ctx = payload.context or EventContext()

    touch_id = service.record_touch(payload.visitor_id, {
        "event_type": payload.event,
        "session_id": payload.session_id,
        "utm_source": utm.utm_source,
        "utm_medium": utm.utm_medium,
        "utm_campaign": utm.utm_campaign,
        "utm_content": utm.utm_content,
        "utm_term": utm.utm_term,
        "page_url": ctx.url,
        "referrer": ctx.referrer,
        "timestamp": payload.ts,
    })

    if touch_id is None:
        logger.debug(f"[TRACKING] Ignored {payload.event} event for visitor {payload.visitor_id}")
        return TouchEventResponse(status="ignored")

    return TouchEventResponse(status="recorded", touch_id=touch_id)


@router.post("/conversions", response_model=ConversionResponse, status_code=status.HTTP_201_CREATED)
def record_conversion(
    payload: ConversionRequest,
    service: AttributionService = Depends(get_attribution_service),
):
    """Store a conversion and attribute it immediately."""
    result = service.record_conversion(payload.visitor_id, payload.conversion_type, {
        "value": payload.value,
        "source": payload.source,
        "source_id": payload.source_id,
        "email": payload.email,
        "name": payload.name,
        "metadata": payload.metadata,
        "converted_at": payload.converted_at,
    })
    return ConversionResponse(**result)

"""AttributionService tests

WHAT: Touch qualification, conversion recording, detail lookups and cleanup
WHY: The service is the surface every router and worker job goes through
REFERENCES:
    - touchcredit/services/attribution/service.py
"""

from datetime import datetime, timedelta, timezone

import pytest

from touchcredit.models import Conversion, Touch
from touchcredit.services.attribution import AttributionService, InvalidModelError, StorageError
from touchcredit.services.attribution import service as service_module


def _touch(session_factory, touch_id):
    db = session_factory()
    try:
        return db.get(Touch, touch_id)
    finally:
        db.close()


# =============================================================================
# record_touch
# =============================================================================

def test_pageview_without_utm_is_recorded_as_direct(service, session_factory, now):
    touch_id = service.record_touch("v1", {"event_type": "pageview", "page_url": "https://example.com/"})

    touch = _touch(session_factory, touch_id)
    assert touch.channel == "Direct"
    assert touch.touch_type == "pageview"
    assert touch.landing_page == "https://example.com/"
    assert touch.touched_at == now


@pytest.mark.parametrize("event_type", ["click", "form_view", "form_start"])
def test_non_pageview_needs_utm_or_referrer(service, event_type):
    assert service.record_touch("v1", {"event_type": event_type}) is None
    assert service.record_touch("v1", {"event_type": event_type, "utm_campaign": "spring"}) is not None
    assert service.record_touch("v1", {"event_type": event_type, "referrer": "https://t.co/x"}) is not None


@pytest.mark.parametrize("event_type", ["scroll", "form_submit", "purchase"])
def test_other_event_types_are_ignored(service, event_type):
    assert service.record_touch("v1", {"event_type": event_type, "utm_source": "google"}) is None


def test_touch_fields_and_channel(service, session_factory):
    touch_id = service.record_touch("v1", {
        "event_type": "click",
        "session_id": "s1",
        "utm_source": "google",
        "utm_medium": "cpc",
        "utm_campaign": "brand",
        "utm_content": "ad-1",
        "utm_term": "shoes",
        "referrer": "https://www.google.com/",
    })

    touch = _touch(session_factory, touch_id)
    assert touch.channel == "Paid Search"
    assert (touch.source, touch.medium, touch.campaign, touch.content, touch.term) == (
        "google", "cpc", "brand", "ad-1", "shoes"
    )
    assert touch.session_id == "s1"


def test_aware_timestamp_stored_as_naive_utc(service, session_factory):
    aware = datetime(2025, 6, 10, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    touch_id = service.record_touch("v1", {"event_type": "pageview", "timestamp": aware})

    assert _touch(session_factory, touch_id).touched_at == datetime(2025, 6, 10, 12, 0)


# =============================================================================
# record_conversion / score_conversion
# =============================================================================

def test_record_conversion_scores_immediately(service, now):
    service.record_touch("v1", {"event_type": "pageview", "timestamp": now - timedelta(days=1)})

    result = service.record_conversion("v1", "form_submission", {
        "value": 10, "email": "a@example.com", "metadata": {"form_id": 7},
    })

    assert result["attribution"]["status"] == "scored"
    assert result["attribution"]["touches_count"] == 1
    assert set(result["attribution"]["credits"]) == {
        "first_touch", "last_touch", "linear", "time_decay", "position_based",
    }


def test_record_conversion_without_touches(service):
    result = service.record_conversion("nobody", "purchase")

    assert result["attribution"]["status"] == "no_touches"


def test_record_conversion_defers_scoring_on_storage_error(service, monkeypatch):
    def failing_score(self, conversion_id, models=None):
        raise StorageError("score_conversion failed", operation="score_conversion")

    monkeypatch.setattr(service_module.AttributionCalculator, "score_conversion", failing_score)
    monkeypatch.setattr(service_module, "capture_exception", lambda exc, extra=None: None)

    result = service.record_conversion("v1", "purchase")

    assert result["attribution"]["status"] == "deferred"
    _, total = service.list_conversions()
    assert total == 1


def _claimed_at(session_factory, conversion_id):
    db = session_factory()
    try:
        return db.get(Conversion, conversion_id).attribution_claimed_at
    finally:
        db.close()


def test_record_conversion_is_claimed_while_scoring(service, session_factory, monkeypatch, now):
    service.record_touch("v1", {"event_type": "pageview", "timestamp": now - timedelta(days=1)})
    overlapping = []
    original = service_module.AttributionCalculator.score_conversion

    def score_with_concurrent_batch(self, conversion_id, models=None):
        # A cron run landing between insert and scoring
        overlapping.append(service.process_pending_conversions())
        return original(self, conversion_id, models)

    monkeypatch.setattr(service_module.AttributionCalculator, "score_conversion", score_with_concurrent_batch)

    result = service.record_conversion("v1", "purchase")

    assert result["attribution"]["status"] == "scored"
    assert (overlapping[0].pending, overlapping[0].processed) == (0, 0)
    assert _claimed_at(session_factory, result["conversion_id"]) == now


def test_record_conversion_without_touches_releases_claim(service, session_factory):
    conversion_id = service.record_conversion("nobody", "purchase")["conversion_id"]

    assert _claimed_at(session_factory, conversion_id) is None


def test_deferred_conversion_keeps_claim_until_stale(service, session_factory, monkeypatch, now):
    def failing_score(self, conversion_id, models=None):
        raise StorageError("score_conversion failed", operation="score_conversion")

    monkeypatch.setattr(service_module.AttributionCalculator, "score_conversion", failing_score)
    monkeypatch.setattr(service_module, "capture_exception", lambda exc, extra=None: None)

    conversion_id = service.record_conversion("v1", "purchase")["conversion_id"]

    assert _claimed_at(session_factory, conversion_id) == now
    assert service.process_pending_conversions().pending == 0


def test_score_conversion_invalid_model(service):
    conversion_id = service.record_conversion("v1", "purchase")["conversion_id"]

    with pytest.raises(InvalidModelError):
        service.score_conversion(conversion_id, ["nope"])


def test_process_pending_conversions_picks_up_late_touches(service, now):
    conversion_id = service.record_conversion("v1", "purchase")["conversion_id"]
    service.record_touch("v1", {"event_type": "pageview", "timestamp": now - timedelta(hours=3)})

    result = service.process_pending_conversions()

    assert result.processed == 1
    detail = service.conversion_detail(conversion_id)
    assert len(detail["touches"]) == 1


# =============================================================================
# Lookups
# =============================================================================

def test_conversion_detail(service, now):
    service.record_touch("v1", {"event_type": "pageview", "utm_medium": "email", "timestamp": now - timedelta(days=3)})
    service.record_touch("v1", {"event_type": "pageview", "utm_medium": "cpc", "timestamp": now - timedelta(days=1)})
    conversion_id = service.record_conversion("v1", "purchase", {"value": 80})["conversion_id"]

    detail = service.conversion_detail(conversion_id, "last_touch")

    assert detail["conversion"]["conversion_value"] == 80.0
    assert [touch["channel"] for touch in detail["touches"]] == ["Email", "Paid Search"]
    assert list(detail["results"]) == ["last_touch"]
    assert detail["results"]["last_touch"] == [
        {"touch_id": detail["touches"][1]["id"], "channel": "Paid Search", "credit": 1.0}
    ]


def test_conversion_detail_scores_on_demand(service, make_touch, make_conversion, now):
    make_touch("v1", now - timedelta(days=1), channel="Social")
    conversion_id = make_conversion("v1")

    detail = service.conversion_detail(conversion_id)

    assert len(detail["results"]) == 5


def test_conversion_detail_missing(service):
    assert service.conversion_detail(12345) is None


def test_list_conversions_filters_and_paginates(service, now):
    for i in range(5):
        service.record_conversion(f"v{i}", "purchase" if i % 2 else "lead",
                                  {"converted_at": now - timedelta(days=i)})

    items, total = service.list_conversions(page=1, per_page=2)
    assert total == 5
    assert [item["visitor_id"] for item in items] == ["v0", "v1"]

    items, total = service.list_conversions(conversion_type="lead")
    assert total == 3

    items, total = service.list_conversions(page=3, per_page=2)
    assert [item["visitor_id"] for item in items] == ["v4"]


def test_visitor_touches(service, now):
    service.record_touch("v1", {"event_type": "pageview", "timestamp": now - timedelta(days=40)})
    service.record_touch("v1", {"event_type": "pageview", "timestamp": now - timedelta(days=1)})
    conversion_id = service.record_conversion("v1", "purchase")["conversion_id"]

    assert len(service.visitor_touches("v1")) == 2
    assert len(service.visitor_touches("v1", conversion_id=conversion_id)) == 1


def test_list_models():
    models = AttributionService.list_models()

    assert [model["id"] for model in models] == [
        "first_touch", "last_touch", "linear", "time_decay", "position_based",
    ]
    assert models[0]["name"] == "First Touch"


# =============================================================================
# Maintenance
# =============================================================================

def test_cleanup_keeps_linked_and_recent_touches(service, make_touch, make_conversion, now):
    old_unlinked = make_touch("v1", now - timedelta(days=120))
    old_linked = make_touch("v2", now - timedelta(days=100))
    recent = make_touch("v3", now - timedelta(days=5))
    service.score_conversion(make_conversion("v2", converted_at=now - timedelta(days=95)))

    deleted = service.cleanup_old_touches()

    assert deleted == 1
    remaining = {touch["id"] for v in ("v1", "v2", "v3") for touch in service.visitor_touches(v)}
    assert remaining == {old_linked, recent}
    assert old_unlinked not in remaining


def test_cleanup_custom_retention(service, make_touch, now):
    make_touch("v1", now - timedelta(days=10))

    assert service.cleanup_old_touches(retention_days=5) == 1


def test_cleanup_rejects_non_positive_retention(service, make_touch, now):
    make_touch("v1", now - timedelta(days=1))

    with pytest.raises(ValueError):
        service.cleanup_old_touches(retention_days=0)
    with pytest.raises(ValueError):
        service.cleanup_old_touches(retention_days=-3)

    assert len(service.visitor_touches("v1")) == 1

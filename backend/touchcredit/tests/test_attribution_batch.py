"""Batch processor tests

WHAT: The periodic sweep over conversions with no attribution results
WHY: The sweep must never rescore a scored conversion, never let two workers
     score the same conversion and never stop on a single failure
REFERENCES:
    - touchcredit/services/attribution/batch.py
    - touchcredit/services/attribution/store.py:claim_conversion
"""

from datetime import timedelta

import pytest

from touchcredit.models import AttributionResult, Conversion
from touchcredit.services.attribution import (
    AttributionCalculator,
    AttributionConfig,
    AttributionStore,
    BatchProcessor,
)
from touchcredit.services.attribution import batch as batch_module


def _processor(session_factory, now, **config):
    return BatchProcessor(session_factory, AttributionConfig(**config), clock=lambda: now)


def _result_count(session_factory, conversion_id):
    db = session_factory()
    try:
        return db.query(AttributionResult).filter(AttributionResult.conversion_id == conversion_id).count()
    finally:
        db.close()


def test_processes_unscored_conversions(session_factory, make_touch, make_conversion, now):
    make_touch("v1", now - timedelta(days=2))
    make_touch("v2", now - timedelta(days=1))
    c1 = make_conversion("v1")
    c2 = make_conversion("v2")

    result = _processor(session_factory, now).process_pending()

    assert (result.pending, result.processed, result.errors) == (2, 2, 0)
    assert _result_count(session_factory, c1) == 5
    assert _result_count(session_factory, c2) == 5


def test_second_run_does_not_reselect_scored_conversions(session_factory, make_touch, make_conversion, now):
    make_touch("v1", now - timedelta(days=2))
    make_conversion("v1")
    processor = _processor(session_factory, now)

    processor.process_pending()
    second = processor.process_pending()

    assert (second.pending, second.processed, second.errors) == (0, 0, 0)


def test_scored_conversion_is_never_reselected_even_after_claim_expires(session_factory, make_touch, make_conversion, now):
    make_touch("v1", now - timedelta(days=2))
    make_conversion("v1")
    _processor(session_factory, now).process_pending()

    later = _processor(session_factory, now + timedelta(days=1)).process_pending()

    assert later.pending == 0


def test_no_touches_counts_as_error_and_keeps_claim(session_factory, make_conversion, now):
    conversion_id = make_conversion("lonely")

    first = _processor(session_factory, now).process_pending()
    assert (first.processed, first.errors) == (0, 1)
    assert _result_count(session_factory, conversion_id) == 0

    # Claim still fresh: not retried immediately
    assert _processor(session_factory, now + timedelta(seconds=30)).process_pending().pending == 0

    # Claim stale: retried
    retry = _processor(session_factory, now + timedelta(seconds=601)).process_pending()
    assert retry.pending == 1


def test_unattempted_conversions_are_selected_before_retries(session_factory, make_touch, make_conversion, now):
    make_conversion("lonely", converted_at=now - timedelta(days=1))
    _processor(session_factory, now - timedelta(hours=1)).process_pending()

    make_touch("v2", now - timedelta(hours=2))
    fresh = make_conversion("v2")

    db = session_factory()
    try:
        pending = AttributionStore(db).find_pending_conversion_ids(limit=1, claim_cutoff=now)
    finally:
        db.close()

    assert pending == [fresh]


def test_limit_bounds_the_batch(session_factory, make_touch, make_conversion, now):
    for i in range(5):
        make_touch(f"v{i}", now - timedelta(days=1))
        make_conversion(f"v{i}")

    result = _processor(session_factory, now).process_pending(limit=3)

    assert (result.pending, result.processed) == (3, 3)
    assert _processor(session_factory, now).process_pending().processed == 2


def test_default_limit_is_batch_size(session_factory, make_touch, make_conversion, now):
    for i in range(3):
        make_touch(f"v{i}", now - timedelta(days=1))
        make_conversion(f"v{i}")

    result = _processor(session_factory, now, batch_size=2).process_pending()

    assert result.pending == 2


def test_non_positive_limit_is_rejected(session_factory, make_touch, make_conversion, now):
    make_touch("v1", now - timedelta(days=1))
    conversion_id = make_conversion("v1")

    for limit in (0, -1):
        with pytest.raises(ValueError):
            _processor(session_factory, now).process_pending(limit=limit)

    assert _result_count(session_factory, conversion_id) == 0


def test_claim_rejects_second_claimer(session_factory, make_conversion, now):
    conversion_id = make_conversion("v1")
    cutoff = now - timedelta(minutes=10)

    db1 = session_factory()
    db2 = session_factory()
    try:
        assert AttributionStore(db1).claim_conversion(conversion_id, now, cutoff) is True
        assert AttributionStore(db2).claim_conversion(conversion_id, now, cutoff) is False

        # A stale claim can be taken over
        later = now + timedelta(minutes=11)
        assert AttributionStore(db2).claim_conversion(conversion_id, later, later - timedelta(minutes=10)) is True
    finally:
        db1.close()
        db2.close()


def test_conversion_claimed_elsewhere_is_skipped(session_factory, make_touch, make_conversion, now, monkeypatch):
    make_touch("v1", now - timedelta(days=1))
    conversion_id = make_conversion("v1", attribution_claimed_at=now)

    # Selection raced with another worker's claim
    monkeypatch.setattr(
        AttributionStore, "find_pending_conversion_ids", lambda self, limit, claim_cutoff: [conversion_id]
    )

    result = _processor(session_factory, now).process_pending()

    assert (result.skipped, result.processed, result.errors) == (1, 0, 0)
    assert _result_count(session_factory, conversion_id) == 0


def test_failure_is_counted_and_run_continues(session_factory, make_touch, make_conversion, now, monkeypatch):
    make_touch("v1", now - timedelta(days=1))
    make_touch("v2", now - timedelta(days=1))
    broken = make_conversion("v1")
    healthy = make_conversion("v2")

    captured = []
    monkeypatch.setattr(batch_module, "capture_exception", lambda exc, extra=None: captured.append(extra))
    messages = []
    monkeypatch.setattr(batch_module, "capture_message", lambda message, level="info", extra=None: messages.append(level))

    original = AttributionCalculator.score_conversion

    def flaky_score(self, conversion_id, models=None):
        if conversion_id == broken:
            raise RuntimeError("boom")
        return original(self, conversion_id, models)

    monkeypatch.setattr(AttributionCalculator, "score_conversion", flaky_score)

    result = _processor(session_factory, now).process_pending()

    assert (result.processed, result.errors) == (1, 1)
    assert _result_count(session_factory, healthy) == 5
    assert captured == [{"conversion_id": broken}]
    assert messages == ["warning"]


def test_claim_timestamp_written(session_factory, make_touch, make_conversion, now):
    make_touch("v1", now - timedelta(days=1))
    conversion_id = make_conversion("v1")

    _processor(session_factory, now).process_pending()

    db = session_factory()
    try:
        assert db.get(Conversion, conversion_id).attribution_claimed_at == now
    finally:
        db.close()

"""
Channel Classifier Tests (Unit)
===============================

WHAT: Unit tests for UTM/referrer -> channel classification.
WHY: The channel is stored on every touch at insert time and drives every
     report; a wrong rule silently skews historical data.

NOTE:
These tests live outside `backend/touchcredit/tests/` to avoid loading the
database `conftest.py`.

REFERENCES:
- backend/touchcredit/services/attribution/channels.py:classify_channel
"""

import pytest

from touchcredit.services.attribution.channels import Channel, classify_channel


def test_cpc_medium_is_paid_search() -> None:
    assert classify_channel(None, utm_medium="cpc") == Channel.paid_search


def test_tco_referrer_is_social() -> None:
    assert classify_channel("https://t.co/abc") == Channel.social


def test_no_utm_no_referrer_is_direct() -> None:
    assert classify_channel(None) == Channel.direct
    assert classify_channel("") == Channel.direct


def test_unrecognized_referrer_is_referral() -> None:
    assert classify_channel("https://news.example.com") == Channel.referral


@pytest.mark.parametrize(
    "medium, source, expected",
    [
        ("PPC", None, Channel.paid_search),
        ("banner", None, Channel.display),
        ("social", "facebook", Channel.social),
        ("social", "facebook_paid", Channel.paid_social),
        ("newsletter", None, Channel.email),
        ("partner", None, Channel.affiliate),
        ("organic", None, Channel.organic_search),
    ],
)
def test_medium_rules(medium, source, expected) -> None:
    assert classify_channel(None, utm_source=source, utm_medium=medium) == expected


def test_medium_wins_over_referrer() -> None:
    result = classify_channel("https://www.facebook.com/", utm_source="google", utm_medium="email")
    assert result == Channel.email


def test_unknown_medium_falls_through_to_source() -> None:
    assert classify_channel(None, utm_source="Bing", utm_medium="weird") == Channel.organic_search
    assert classify_channel(None, utm_source="linkedin") == Channel.social


def test_unknown_source_falls_through_to_referrer() -> None:
    assert classify_channel("https://www.google.com/", utm_source="partner-site") == Channel.organic_search
    assert classify_channel(None, utm_source="partner-site") == Channel.direct


@pytest.mark.parametrize(
    "referrer",
    [
        "https://www.google.co.uk/search?q=x",
        "https://duckduckgo.com/",
        "https://yandex.ru/search",
    ],
)
def test_search_engine_referrers(referrer) -> None:
    assert classify_channel(referrer) == Channel.organic_search


@pytest.mark.parametrize(
    "referrer",
    [
        "https://m.facebook.com/story",
        "https://l.fb.com/redirect",
        "https://x.com/someone/status/1",
        "https://www.linkedin.com/feed",
        "https://old.reddit.com/r/python",
        "https://youtube.com/watch?v=1",
    ],
)
def test_social_referrers(referrer) -> None:
    assert classify_channel(referrer) == Channel.social


@pytest.mark.parametrize(
    "referrer",
    [
        # Short names must match a whole host label
        "https://blog.example.com/",
        "https://fbexample.org/",
        # Dotted names must be the host or a parent domain
        "https://budget.com/",
    ],
)
def test_short_social_names_do_not_match_substrings(referrer) -> None:
    assert classify_channel(referrer) == Channel.referral


def test_referrer_without_host_is_direct() -> None:
    assert classify_channel("not a url") == Channel.direct


def test_channel_values_are_labels() -> None:
    assert Channel.paid_search.value == "Paid Search"
    assert Channel("Organic Search") is Channel.organic_search

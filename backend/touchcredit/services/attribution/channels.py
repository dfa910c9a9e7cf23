"""Channel classification for touches.

WHAT: Maps UTM parameters and the referrer URL to a coarse channel label
WHY: Reports group attributed credit by channel. The label is computed once
     when the touch is recorded and stored on the row.

Decision order (first match wins):
  1. utm_medium in a fixed set
  2. utm_source is a known search engine or social network
  3. no referrer -> Direct
  4. referrer host matches a search engine or social domain
  5. anything else -> Referral
"""

import enum
from typing import Optional
from urllib.parse import urlparse


class Channel(str, enum.Enum):
    """Channel labels stored on touches."""
    paid_search = "Paid Search"
    organic_search = "Organic Search"
    social = "Social"
    paid_social = "Paid Social"
    email = "Email"
    affiliate = "Affiliate"
    display = "Display"
    direct = "Direct"
    referral = "Referral"


PAID_SEARCH_MEDIUMS = frozenset({"cpc", "ppc", "paid", "paidsearch"})
DISPLAY_MEDIUMS = frozenset({"display", "banner", "cpm"})
SOCIAL_MEDIUMS = frozenset({"social", "social-media", "social-paid"})
EMAIL_MEDIUMS = frozenset({"email", "e-mail", "newsletter"})
AFFILIATE_MEDIUMS = frozenset({"affiliate", "partner", "referral"})

SEARCH_ENGINE_SOURCES = frozenset({"google", "bing", "yahoo", "duckduckgo"})
SOCIAL_SOURCES = frozenset({"facebook", "twitter", "linkedin", "instagram", "tiktok"})

SEARCH_ENGINE_HOSTS = ("google", "bing", "yahoo", "duckduckgo", "baidu", "yandex")
SOCIAL_HOSTS = (
    "facebook.com", "fb.com", "twitter.com", "x.com", "t.co",
    "linkedin.com", "instagram.com", "pinterest.com",
    "youtube.com", "tiktok.com", "reddit.com",
)


def _channel_from_medium(medium: str, source: Optional[str]) -> Optional[Channel]:
    medium = medium.lower()

    if medium in PAID_SEARCH_MEDIUMS:
        return Channel.paid_search
    if medium in DISPLAY_MEDIUMS:
        return Channel.display
    if medium in SOCIAL_MEDIUMS:
        if source and "paid" in source.lower():
            return Channel.paid_social
        return Channel.social
    if medium in EMAIL_MEDIUMS:
        return Channel.email
    if medium in AFFILIATE_MEDIUMS:
        return Channel.affiliate
    if medium == "organic":
        return Channel.organic_search
    return None


def _channel_from_source(source: str) -> Optional[Channel]:
    source = source.lower()

    if source in SEARCH_ENGINE_SOURCES:
        return Channel.organic_search
    if source in SOCIAL_SOURCES:
        return Channel.social
    return None


def _host_matches(host: str, domain: str) -> bool:
    """Match a referrer host against a known domain.

    Domains are compared without their ".com" suffix. Other dotted domains
    ("t.co") must be the host or one of its parent domains. Names of one or
    two letters ("x", "fb") must equal a whole host label; longer names match
    as a substring of the host.
    """
    name = domain[:-len(".com")] if domain.endswith(".com") else domain
    if "." in name:
        return host == name or host.endswith("." + name)
    if len(name) <= 2:
        return name in host.split(".")
    return name in host


def _channel_from_referrer(referrer: str) -> Channel:
    host = urlparse(referrer).hostname
    if not host:
        return Channel.direct

    host = host.lower()

    for engine in SEARCH_ENGINE_HOSTS:
        if engine in host:
            return Channel.organic_search

    for domain in SOCIAL_HOSTS:
        if _host_matches(host, domain):
            return Channel.social

    return Channel.referral


def classify_channel(
    referrer: Optional[str],
    utm_source: Optional[str] = None,
    utm_medium: Optional[str] = None,
) -> Channel:
    """Determine the traffic channel for a touch.

    Args:
        referrer: Referrer URL, if any
        utm_source: utm_source query parameter
        utm_medium: utm_medium query parameter

    Returns:
        Channel label (never None)

    Examples:
        classify_channel(None, utm_medium="cpc")             -> Paid Search
        classify_channel("https://t.co/abc")                 -> Social
        classify_channel(None)                               -> Direct
        classify_channel("https://news.example.com/story")   -> Referral
    """
    if utm_medium:
        channel = _channel_from_medium(utm_medium, utm_source)
        if channel is not None:
            return channel

    if utm_source:
        channel = _channel_from_source(utm_source)
        if channel is not None:
            return channel

    if not referrer:
        return Channel.direct

    return _channel_from_referrer(referrer)

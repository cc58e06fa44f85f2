#!/usr/bin/env python3
"""
Utility classes and functions for the feed processing system.

This module contains the shared helpers used by the parser, fetcher and
summarizer: retry backoff, markup stripping and image URL heuristics, feed
date normalization and readability-preserving truncation.
"""

from asyncio import sleep
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from config import get_logger

# Module-specific logger
logger = get_logger("utils")


class RetryHelper:
    """Helper class for implementing retry logic with linear backoff."""

    def __init__(self, max_retries: int = 2, base_delay: float = 1.0, max_delay: float = 30.0):
        """Initialize the retry helper.

        Args:
            max_retries: Maximum number of retry attempts after the first try
            base_delay: Delay in seconds multiplied by the attempt number
            max_delay: Maximum delay in seconds between retries
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay after a failed attempt.

        Args:
            attempt: The attempt that just failed (0-based)

        Returns:
            Delay in seconds: base, 2x base, 3x base, ...
        """
        delay = self.base_delay * (attempt + 1)
        return min(delay, self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        """Sleep for the calculated delay for the given attempt."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)


def validate_url(url: str) -> bool:
    """Validate if a string is a properly formatted absolute http(s) URL."""
    if not url or not isinstance(url, str):
        return False

    url = url.strip()
    if not url.startswith(('http://', 'https://')):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.netloc) and '.' in parsed.netloc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> str:
    """Return a human-readable UTC timestamp for diagnostics."""
    if value is None:
        return "n/a"
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


# ---------------------------------------------------------------------------
# Markup handling
# ---------------------------------------------------------------------------

_ENTITIES = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&#39;", "'"),
    ("&nbsp;", " "),
    ("&#160;", " "),
)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_markup(html: Optional[str]) -> str:
    """Reduce an HTML fragment to plain text.

    Common entities are decoded first, then anything tag-shaped is removed and
    whitespace runs collapse to a single space.
    """
    if not html:
        return ""
    text = html
    for entity, replacement in _ENTITIES:
        text = text.replace(entity, replacement)
    text = _TAG_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_first_image(html: Optional[str]) -> Optional[str]:
    """Return the src of the first <img> tag in an HTML fragment, if any."""
    if not html or "<" not in html:
        return None
    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as e:
        logger.debug(f"Could not parse description HTML for images: {e}")
        return None
    img = soup.find("img", src=True)
    if img is None:
        return None
    src = str(img.get("src", "")).strip()
    return src or None


# ---------------------------------------------------------------------------
# Image URL enhancement
# ---------------------------------------------------------------------------

_BBC_MARKERS = ("bbci.co.uk", "bbc.co.uk")
_BBC_SIZES = (
    ("/96/", "/800/"),
    ("/128/", "/800/"),
    ("/240/", "/800/"),
    ("/320/", "/800/"),
    ("/464/", "/800/"),
    ("/624/", "/976/"),
)
_GUARDIAN_MARKERS = ("guim.co.uk", "guardian")
_GUARDIAN_WIDTH_RE = re.compile(r"width=\d+")
_WORDPRESS_MARKERS = ("techcrunch", "wp.com", "wordpress")
_WORDPRESS_W_RE = re.compile(r"([?&])w=\d+")
_WORDPRESS_SIZE_SUFFIX_RE = re.compile(r"-\d+x\d+\.")


def _matches(markers, *values: Optional[str]) -> bool:
    for value in values:
        if value and any(marker in value.lower() for marker in markers):
            return True
    return False


def enhance_image_url(url: Optional[str], source_hint: Optional[str] = None) -> Optional[str]:
    """Rewrite known-provider image URLs to request a larger rendition.

    Providers are recognised from the URL itself or from ``source_hint`` (the
    feed's display name). Unknown providers pass through untouched, and a
    rewrite that would not leave a valid absolute URL is discarded.
    """
    if not url:
        return url

    enhanced = url
    if _matches(_BBC_MARKERS, url) or _matches(("bbc",), source_hint):
        for small, large in _BBC_SIZES:
            enhanced = enhanced.replace(small, large)

    if _matches(_GUARDIAN_MARKERS, url, source_hint):
        enhanced = _GUARDIAN_WIDTH_RE.sub("width=1000", enhanced, count=1)

    if _matches(_WORDPRESS_MARKERS, url, source_hint):
        enhanced = _WORDPRESS_W_RE.sub(r"\1w=1200", enhanced, count=1)
        enhanced = _WORDPRESS_SIZE_SUFFIX_RE.sub(".", enhanced)

    if enhanced != url and validate_url(url) and not validate_url(enhanced):
        logger.debug(f"Discarding image rewrite that produced an invalid URL: {enhanced}")
        return url
    return enhanced


# ---------------------------------------------------------------------------
# Date normalization
# ---------------------------------------------------------------------------

_NAMED_ZONES = ("GMT", "UT", "UTC", "Z", "EST", "EDT", "CST", "CDT", "MST", "MDT", "PST", "PDT")
_RFC822_NAMED_RE = re.compile(
    r"^[A-Za-z]{3}, \d{1,2} [A-Za-z]{3} \d{4} \d{2}:\d{2}:\d{2} (?P<zone>[A-Za-z]{1,3})$"
)


def _parse_rfc822_numeric(value: str) -> Optional[datetime]:
    return datetime.strptime(value, "%a, %d %b %Y %H:%M:%S %z")


def _parse_rfc822_named(value: str) -> Optional[datetime]:
    match = _RFC822_NAMED_RE.match(value)
    if not match or match.group("zone").upper() not in _NAMED_ZONES:
        return None
    return parsedate_to_datetime(value)


def _parse_iso8601(value: str) -> Optional[datetime]:
    for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


_DATE_PARSERS = (_parse_rfc822_numeric, _parse_rfc822_named, _parse_iso8601)


def parse_feed_date(value: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Parse a feed date string into an aware UTC datetime.

    Tries RFC-822 with a numeric zone, RFC-822 with a named zone and ISO-8601
    with an offset, in that order. Unparsable input returns ``now`` (the
    current time by default) so a bad date never blocks ingestion.
    """
    fallback = now or utc_now()
    if not value or not value.strip():
        return fallback

    candidate = value.strip()
    for parser in _DATE_PARSERS:
        try:
            parsed = parser(candidate)
        except (TypeError, ValueError, OverflowError):
            continue
        if parsed is not None and parsed.tzinfo is not None:
            return parsed.astimezone(timezone.utc)

    logger.debug(f"Unparsable feed date '{value}', using fetch time")
    return fallback


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------

_SENTENCE_ENDINGS = ".!?"
_PHRASE_BREAKS = ",;:–—"


def smart_truncate(text: Optional[str], max_length: int, suffix: str = "...") -> str:
    """Truncate text to at most ``max_length`` characters, preserving readability.

    Preference order: the last sentence end comfortably inside the limit (if it
    keeps more than a third of the budget), the last phrase break in the
    second half, the last word boundary, and finally a hard cut. All but the
    sentence cut end with ``suffix``.
    """
    trimmed = (text or "").strip()
    if len(trimmed) <= max_length:
        return trimmed
    if max_length <= len(suffix):
        return trimmed[:max_length]

    best_cut = 0
    for index, char in enumerate(trimmed):
        if index >= max_length - 10:
            break
        if char in _SENTENCE_ENDINGS and index + 1 < len(trimmed) and trimmed[index + 1] in (" ", "\n"):
            best_cut = index + 1
    if best_cut > max_length // 3:
        return trimmed[:best_cut]

    budget = max_length - len(suffix)
    for index in range(min(len(trimmed), budget) - 1, max_length // 2 - 1, -1):
        if trimmed[index] in _PHRASE_BREAKS:
            return trimmed[:index] + suffix

    cutoff = trimmed[:budget]
    last_space = cutoff.rfind(" ")
    if last_space != -1:
        return cutoff[:last_space] + suffix

    return cutoff + suffix

#!/usr/bin/env python3
"""
Feed document parsing.

Turns raw RSS/Atom bytes into an ordered list of RawItem records using
feedparser, resolving the best available image for each item. Parsing fails
open: malformed items are skipped and an unreadable document yields no items.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import feedparser

from config import get_logger
from utils import extract_first_image

# Module-specific logger
logger = get_logger("feed_parser")

# Enclosures rarely advertise a width but are usually the full-size image
ENCLOSURE_ASSUMED_WIDTH = 1000


@dataclass(frozen=True)
class RawItem:
    """One feed entry before conversion into an Article."""

    title: str
    description: str
    link: Optional[str]
    pub_date: Optional[str]
    image_url: Optional[str] = None


def _width(value: Any) -> int:
    try:
        return max(int(str(value).strip()), 0)
    except (TypeError, ValueError):
        return 0


def _is_image_media(media: dict) -> bool:
    medium = (media.get("medium") or "").lower()
    mime = (media.get("type") or "").lower()
    if medium and medium != "image":
        return False
    if mime and not mime.startswith("image/"):
        return False
    return True


class FeedParser:
    """Parse feed documents into RawItem lists."""

    def __init__(self, sanitize_html: bool = True):
        self.feedparser_options = {
            'sanitize_html': sanitize_html,
            'resolve_relative_uris': True,
        }

    def parse(self, data: bytes) -> List[RawItem]:
        """Parse a feed document; never raises.

        Args:
            data: Raw document bytes as received from the network

        Returns:
            Items in document order, or an empty list if the document is unusable
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not data:
            return []

        try:
            feed = feedparser.parse(data, **self.feedparser_options)
        except Exception as e:
            logger.warning(f"Feed document could not be parsed: {e}")
            return []

        entries = feed.get("entries") or []
        if feed.get("bozo") and not entries:
            logger.warning(f"Feed document is not a valid feed: {feed.get('bozo_exception')}")
            return []

        items: List[RawItem] = []
        for index, entry in enumerate(entries):
            try:
                items.append(self._parse_entry(entry))
            except Exception as e:
                logger.warning(f"Skipping malformed feed item #{index}: {e}")
        logger.debug(f"Parsed {len(items)} of {len(entries)} items ({feed.get('version') or 'unknown format'})")
        return items

    def _parse_entry(self, entry) -> RawItem:
        description = entry.get("summary") or entry.get("description") or ""
        content_html = self._content_encoded(entry)
        if not description:
            description = content_html

        image_url = self.resolve_image(entry)
        if image_url is None:
            image_url = extract_first_image(description) or extract_first_image(content_html)

        return RawItem(
            title=(entry.get("title") or "").strip(),
            description=description,
            link=(entry.get("link") or "").strip() or None,
            pub_date=entry.get("published") or entry.get("updated"),
            image_url=image_url,
        )

    def _content_encoded(self, entry) -> str:
        for content in entry.get("content") or []:
            value = content.get("value") if hasattr(content, "get") else None
            if value:
                return value
        return ""

    def image_candidates(self, entry) -> List[Tuple[str, int]]:
        """Structured image hints as (url, width), media tags before enclosures."""
        candidates: List[Tuple[str, int]] = []
        for key in ("media_content", "media_thumbnail"):
            for media in entry.get(key) or []:
                url = (media.get("url") or "").strip()
                if url and _is_image_media(media):
                    candidates.append((url, _width(media.get("width"))))

        for enclosure in entry.get("enclosures") or []:
            mime = (enclosure.get("type") or "").lower()
            url = (enclosure.get("href") or enclosure.get("url") or "").strip()
            if url and mime.startswith("image/"):
                candidates.append((url, ENCLOSURE_ASSUMED_WIDTH))
        return candidates

    def resolve_image(self, entry) -> Optional[str]:
        """Pick the widest structured image; the first one wins on equal widths."""
        best_url, best_width = None, -1
        for url, width in self.image_candidates(entry):
            if width > best_width:
                best_url, best_width = url, width
        return best_url

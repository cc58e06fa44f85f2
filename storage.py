#!/usr/bin/env python3
"""
Article cache, seen tracking and fetch bookkeeping.

ArticleStore is the only long-lived shared state in NewsBits. Every mutation
runs under a single asyncio.Lock, so concurrent source completions apply their
merges one after another, and all persistence is funneled through the
DatabaseQueue worker. Read or decode failures are treated as "no prior state"
and write failures are logged while the in-memory state stays authoritative.
"""

import json
from asyncio import Lock
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from config import config, get_logger
from errors import StorageError
from models import Article, DatabaseQueue, parse_timestamp

# Module-specific logger
logger = get_logger("storage")

# Durable keys
CACHED_ARTICLES_KEY = "cached_articles"
LAST_FETCH_TIMES_KEY = "last_fetch_times"
SEEN_ARTICLE_KEYS_KEY = "seen_article_keys"
MAX_CACHED_ARTICLES_KEY = "max_cached_articles"
HAS_EVER_FETCHED_KEY = "has_ever_fetched"
SAVED_ARTICLES_KEY = "saved_articles"

MIN_CACHED_ARTICLES = 20
MAX_CACHED_ARTICLES = 500


def clamp_cache_limit(value: int) -> int:
    return max(MIN_CACHED_ARTICLES, min(MAX_CACHED_ARTICLES, int(value)))


class ArticleStore:
    """Bounded, deduplicated article cache plus seen set and fetch-time map.

    The cache is kept sorted by ``published_at`` (newest first), never holds
    two articles with the same identity key and never exceeds
    ``max_cached_articles`` after a mutation. Seen keys are tracked
    independently of cache membership.
    """

    def __init__(self, db: DatabaseQueue, default_limit: Optional[int] = None):
        self.db = db
        self._lock = Lock()
        self._articles: List[Article] = []
        self._seen: Set[str] = set()
        self._last_fetch: Dict[str, datetime] = {}
        self._saved: List[Article] = []
        self._max_articles = clamp_cache_limit(default_limit or config.MAX_CACHED_ARTICLES)
        self._has_ever_fetched = False
        self._loaded = False

    # Persistence helpers

    async def _read_json(self, key: str) -> Any:
        """Read and decode a stored value; corrupt or missing data is None."""
        try:
            raw = await self.db.execute("get_value", key=key)
        except StorageError as e:
            logger.warning(f"Could not read '{key}' from storage, treating as absent: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Corrupt value for '{key}', treating as absent: {e}")
            return None

    async def _write_json(self, key: str, value: Any) -> bool:
        try:
            await self.db.execute("set_value", key=key, value=json.dumps(value))
            return True
        except StorageError as e:
            logger.error(f"Failed to persist '{key}', keeping in-memory state: {e}")
            return False

    async def _delete(self, key: str) -> None:
        try:
            await self.db.execute("delete_value", key=key)
        except StorageError as e:
            logger.error(f"Failed to delete '{key}' from storage: {e}")

    def _decode_articles(self, payload: Any, key: str) -> List[Article]:
        if not isinstance(payload, list):
            if payload is not None:
                logger.warning(f"Ignoring '{key}': expected a list")
            return []
        articles = []
        for entry in payload:
            try:
                articles.append(Article.from_dict(entry))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable article in '{key}': {e}")
        return articles

    async def _persist_articles(self) -> None:
        await self._write_json(CACHED_ARTICLES_KEY, [a.to_dict() for a in self._articles])

    async def _persist_fetch_times(self) -> None:
        await self._write_json(
            LAST_FETCH_TIMES_KEY,
            {name: when.isoformat() for name, when in self._last_fetch.items()},
        )

    # Lifecycle

    async def load(self) -> None:
        """Load all durable state once; repeated calls are no-ops."""
        async with self._lock:
            if self._loaded:
                return

            stored_limit = await self._read_json(MAX_CACHED_ARTICLES_KEY)
            if isinstance(stored_limit, int) and not isinstance(stored_limit, bool):
                self._max_articles = clamp_cache_limit(stored_limit)

            articles = self._decode_articles(await self._read_json(CACHED_ARTICLES_KEY), CACHED_ARTICLES_KEY)
            self._articles = self._dedupe_sort_trim(articles)

            seen = await self._read_json(SEEN_ARTICLE_KEYS_KEY)
            self._seen = {str(k) for k in seen} if isinstance(seen, list) else set()

            fetch_times = await self._read_json(LAST_FETCH_TIMES_KEY)
            self._last_fetch = {}
            if isinstance(fetch_times, dict):
                for name, value in fetch_times.items():
                    when = parse_timestamp(value)
                    if when is not None:
                        self._last_fetch[str(name)] = when

            self._has_ever_fetched = (await self._read_json(HAS_EVER_FETCHED_KEY)) is True
            self._saved = self._decode_articles(await self._read_json(SAVED_ARTICLES_KEY), SAVED_ARTICLES_KEY)
            self._loaded = True

            logger.info(
                f"Loaded {len(self._articles)} cached articles, {len(self._seen)} seen keys, "
                f"{len(self._last_fetch)} fetch times (limit {self._max_articles})"
            )

    # Read-only views

    @property
    def cached_articles(self) -> List[Article]:
        return list(self._articles)

    @property
    def max_cached_articles(self) -> int:
        return self._max_articles

    @property
    def has_completed_first_fetch(self) -> bool:
        return self._has_ever_fetched

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    @property
    def last_fetch_times(self) -> Dict[str, datetime]:
        return dict(self._last_fetch)

    # Cache

    def _dedupe_sort_trim(self, articles: Iterable[Article]) -> List[Article]:
        keys: Set[str] = set()
        unique = []
        for article in articles:
            key = article.identity_key
            if key in keys:
                continue
            keys.add(key)
            unique.append(article)
        # list.sort is stable, so equal timestamps keep their merge order
        unique.sort(key=lambda a: a.published_at, reverse=True)
        return unique[:self._max_articles]

    async def merge(self, new_items: Iterable[Article]) -> int:
        """Merge articles into the cache.

        Items whose identity key is already cached (or that appear earlier in
        ``new_items``) are skipped. The cache is then re-sorted newest first and
        cut to the limit, so a merged item can be evicted immediately.

        Returns:
            Number of merged articles still present after trimming
        """
        async with self._lock:
            before = {a.identity_key for a in self._articles}
            self._articles = self._dedupe_sort_trim([*self._articles, *new_items])
            added = sum(1 for a in self._articles if a.identity_key not in before)
            await self._persist_articles()
            logger.debug(f"Merged {added} new articles; cache holds {len(self._articles)}")
            return added

    async def set_cache_limit(self, limit: int) -> int:
        """Clamp and persist the cache limit, prefix-cutting the cache if needed.

        Raising the limit clears the per-source fetch times so the next fetch
        backfills instead of staying capped at the old delta boundaries.

        Returns:
            The effective (clamped) limit
        """
        async with self._lock:
            new_limit = clamp_cache_limit(limit)
            raised = new_limit > self._max_articles
            self._max_articles = new_limit
            await self._write_json(MAX_CACHED_ARTICLES_KEY, new_limit)

            if len(self._articles) > new_limit:
                self._articles = self._articles[:new_limit]
                await self._persist_articles()
                logger.info(f"Cache truncated to {new_limit} articles")

            if raised:
                await self._clear_last_fetch_times_locked()
            return new_limit

    async def remove_article(self, article: Article) -> bool:
        async with self._lock:
            key = article.identity_key
            remaining = [a for a in self._articles if a.identity_key != key]
            if len(remaining) == len(self._articles):
                return False
            self._articles = remaining
            await self._persist_articles()
            return True

    async def clear_cache(self) -> None:
        async with self._lock:
            self._articles = []
            await self._delete(CACHED_ARTICLES_KEY)
            logger.info("Article cache cleared")

    # Seen tracking

    async def mark_seen(self, article: Article) -> None:
        async with self._lock:
            key = article.identity_key
            if key in self._seen:
                return
            self._seen.add(key)
            await self._write_json(SEEN_ARTICLE_KEYS_KEY, sorted(self._seen))

    def is_seen(self, article: Article) -> bool:
        return article.identity_key in self._seen

    def unseen_articles(self) -> List[Article]:
        return [a for a in self._articles if a.identity_key not in self._seen]

    async def clear_seen(self) -> None:
        async with self._lock:
            self._seen.clear()
            await self._delete(SEEN_ARTICLE_KEYS_KEY)
            logger.info("Seen articles reset")

    # Fetch bookkeeping

    def get_last_fetch_time(self, source: str) -> Optional[datetime]:
        return self._last_fetch.get(source)

    async def set_last_fetch_time(self, source: str, when: datetime) -> None:
        async with self._lock:
            self._last_fetch[source] = when
            await self._persist_fetch_times()

    async def clear_last_fetch_times(self) -> None:
        async with self._lock:
            await self._clear_last_fetch_times_locked()

    async def _clear_last_fetch_times_locked(self) -> None:
        self._last_fetch.clear()
        await self._delete(LAST_FETCH_TIMES_KEY)
        logger.info("Per-source fetch times cleared; next fetch will backfill")

    async def commit_source(self, source: str, articles: List[Article], fetched_at: datetime) -> int:
        """Merge one source's articles and record its fetch time."""
        added = await self.merge(articles)
        await self.set_last_fetch_time(source, fetched_at)
        return added

    async def mark_first_fetch_complete(self) -> None:
        async with self._lock:
            if self._has_ever_fetched:
                return
            self._has_ever_fetched = True
            await self._write_json(HAS_EVER_FETCHED_KEY, True)

    # Saved articles

    def is_saved(self, article: Article) -> bool:
        key = article.identity_key
        return any(a.identity_key == key for a in self._saved)

    @property
    def saved_articles(self) -> List[Article]:
        return list(self._saved)

    async def save_article(self, article: Article) -> bool:
        async with self._lock:
            if self.is_saved(article):
                return False
            self._saved.insert(0, article)
            await self._write_json(SAVED_ARTICLES_KEY, [a.to_dict() for a in self._saved])
            return True

    async def unsave_article(self, article: Article) -> bool:
        async with self._lock:
            key = article.identity_key
            remaining = [a for a in self._saved if a.identity_key != key]
            if len(remaining) == len(self._saved):
                return False
            self._saved = remaining
            await self._write_json(SAVED_ARTICLES_KEY, [a.to_dict() for a in self._saved])
            return True

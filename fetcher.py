#!/usr/bin/env python3
"""
RSS feed fetcher and article builder.

This module fetches the configured feeds concurrently, retries transient
failures with linear backoff, converts parsed items into Articles, applies
per-source delta filtering and commits each source's results into the shared
ArticleStore as soon as that source completes.
"""

from asyncio import (
    CancelledError, Semaphore, TimeoutError, as_completed, create_task, gather,
    get_event_loop, shield, wait_for,
)
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from inspect import isawaitable
from typing import Any, Callable, Iterable, List, Optional, Tuple

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import FeedFetchError, FeedUnavailableError
from feed_parser import FeedParser, RawItem
from models import Article, ArticleBatch, Category, FeedSource, SourceResult, configured_sources, placeholder_articles
from storage import ArticleStore
from telemetry import trace_span
from utils import RetryHelper, enhance_image_url, parse_feed_date, strip_markup, utc_now, validate_url

# Module-specific logger
logger = get_logger("fetcher")

SourceCallback = Callable[[SourceResult, List[Article]], Any]


@dataclass
class TransportResponse:
    status: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpTransport:
    """Byte fetch by URL over a shared aiohttp session; never retries itself."""

    def __init__(self, timeout: Optional[int] = None, user_agent: Optional[str] = None):
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.user_agent = user_agent or config.USER_AGENT
        self.session: Optional[ClientSession] = None

    async def _get_session(self) -> ClientSession:
        if self.session is None or self.session.closed:
            self.session = ClientSession(
                timeout=ClientTimeout(total=self.timeout),
                headers={'User-Agent': self.user_agent},
            )
        return self.session

    async def get(self, url: str) -> TransportResponse:
        """GET a URL and return its status and body.

        Raises:
            aiohttp.ClientError: On connection or protocol failures
            asyncio.TimeoutError: When the request exceeds the timeout
        """
        session = await self._get_session()
        async with session.get(url) as response:
            body = await response.read()
            return TransportResponse(status=response.status, body=body)

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


def format_client_error(error: ClientError) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, 'status', None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, 'os_error', None)
    if os_error is not None:
        errno = getattr(os_error, 'errno', None)
        if errno is not None:
            parts.append(f"errno={errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


class FeedFetcher:
    """Fetch every configured source and keep the shared ArticleStore current."""

    def __init__(
        self,
        store: ArticleStore,
        sources: Optional[Iterable[FeedSource]] = None,
        transport=None,
        parser: Optional[FeedParser] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        first_fetch_limit: Optional[int] = None,
        concurrency: Optional[int] = None,
        placeholders: Optional[List[Article]] = None,
    ) -> None:
        self.store = store
        self.sources: List[FeedSource] = list(sources) if sources is not None else configured_sources()
        self._owns_transport = transport is None
        self.transport = transport or HttpTransport()
        self.parser = parser or FeedParser()
        self.retry_helper = RetryHelper(
            max_retries=config.MAX_RETRIES if max_retries is None else max_retries,
            base_delay=config.RETRY_DELAY_BASE if retry_delay is None else retry_delay,
        )
        self.first_fetch_limit = (
            config.FIRST_FETCH_ITEMS_PER_SOURCE if first_fetch_limit is None else first_fetch_limit
        )
        self.concurrency = config.FETCH_CONCURRENCY if concurrency is None else concurrency
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")
        self.placeholders = placeholder_articles() if placeholders is None else list(placeholders)
        self.executor = ThreadPoolExecutor()

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function (feedparser) in the thread pool."""
        loop = get_event_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    # Network

    async def _get_with_retry(self, source: FeedSource) -> Tuple[bytes, int]:
        """GET a source's feed, retrying transport failures and non-2xx responses.

        Returns:
            (body, attempts used)

        Raises:
            FeedFetchError: When every attempt failed
        """
        max_retries = self.retry_helper.max_retries
        last_error = "no attempt made"
        status = None
        for attempt in range(max_retries + 1):
            try:
                response = await self.transport.get(source.url)
                if response.ok:
                    return response.body, attempt + 1
                status = response.status
                last_error = f"HTTP {response.status}"
            except TimeoutError:
                last_error = "Timed out"
            except ClientError as e:
                last_error = format_client_error(e)
            except OSError as e:
                last_error = f"{e.__class__.__name__} {e}".strip()

            if attempt < max_retries:
                logger.warning(
                    "Retry %d/%d for %s due to error: %s",
                    attempt + 1,
                    max_retries,
                    source.display_name,
                    last_error,
                )
                await self.retry_helper.sleep_for_attempt(attempt)

        raise FeedFetchError(
            source.display_name,
            f"Failed after {max_retries + 1} attempts ({last_error})",
            status=status,
        )

    # Conversion

    def build_articles(self, source: FeedSource, items: Iterable[RawItem], fetched_at: datetime) -> List[Article]:
        """Convert parsed items into Articles, dropping items without a title."""
        articles: List[Article] = []
        for item in items:
            headline = (item.title or "").strip()
            if not headline:
                continue

            image_url = enhance_image_url(item.image_url, source.display_name) if item.image_url else None
            if image_url and not validate_url(image_url):
                image_url = None
            article_url = item.link if item.link and validate_url(item.link) else None

            try:
                articles.append(Article(
                    headline=headline,
                    summary=strip_markup(item.description) or headline,
                    category=source.default_category,
                    source=source.display_name,
                    published_at=parse_feed_date(item.pub_date, now=fetched_at),
                    image_url=image_url,
                    article_url=article_url,
                ))
            except ValueError as e:
                logger.warning(f"Skipping item from {source.display_name}: {e}")
        return articles

    def apply_delta(self, articles: List[Article], last_fetch: Optional[datetime]) -> List[Article]:
        """Keep only items newer than the last fetch, or cap a first fetch."""
        if last_fetch is None:
            return articles[:self.first_fetch_limit]
        return [a for a in articles if a.published_at > last_fetch]

    @trace_span(
        "fetcher.fetch_source",
        tracer_name="fetcher",
        attr_from_args=lambda self, source: {
            "feed.source": source.display_name,
            "feed.url": source.url,
        },
    )
    async def fetch_source(self, source: FeedSource) -> SourceResult:
        """Fetch, parse and delta-filter one source without touching the store.

        Failures are reported on the returned SourceResult rather than raised.
        """
        last_fetch = self.store.get_last_fetch_time(source.display_name)
        result = SourceResult(source=source, first_fetch=last_fetch is None)

        try:
            body, result.attempts = await self._get_with_retry(source)
        except FeedFetchError as e:
            result.attempts = self.retry_helper.max_retries + 1
            result.error = str(e)
            logger.error(f"Error fetching feed {source.display_name}: {e}")
            return result
        except (OSError, RuntimeError, ValueError) as e:
            result.attempts = result.attempts or 1
            result.error = f"Unexpected error: {e}"
            logger.error(f"Unexpected error fetching feed {source.display_name}: {e}")
            return result

        result.fetched_at = utc_now()
        try:
            items = await self.run_in_executor(self.parser.parse, body)
        except RuntimeError as e:
            logger.error(f"Could not parse feed {source.display_name}: {e}")
            items = []

        articles = self.build_articles(source, items, result.fetched_at)
        result.articles = self.apply_delta(articles, last_fetch)
        logger.info(
            f"Feed {source.display_name}: {len(items)} items, {len(result.articles)} kept "
            f"({'first fetch' if result.first_fetch else 'delta'})"
        )
        return result

    async def _commit(self, result: SourceResult) -> None:
        added = await self.store.commit_source(result.source.display_name, result.articles, result.fetched_at)
        logger.debug(f"Committed {added} new articles from {result.source.display_name}")

    async def _notify(self, callback: SourceCallback, result: SourceResult) -> None:
        try:
            outcome = callback(result, self.store.cached_articles)
            if isawaitable(outcome):
                await outcome
        except CancelledError:
            raise
        except Exception as e:
            logger.error(f"Source callback failed for {result.source.display_name}: {e}")

    # Aggregate operations

    @trace_span("fetcher.fetch_all", tracer_name="fetcher")
    async def fetch_all_progressive(self, on_source_ready: Optional[SourceCallback] = None) -> ArticleBatch:
        """Fetch all sources concurrently, committing each as it completes.

        ``on_source_ready`` (sync or async) is called once per source, in
        completion order, with its SourceResult and the cache contents after
        that source was committed. Cancelling this coroutine abandons sources
        still in flight; they contribute nothing and keep their fetch time.

        Raises:
            FeedUnavailableError: If every source failed and there is neither
                cached nor placeholder content
        """
        logger.info(f"Starting fetch of {len(self.sources)} feeds")
        semaphore = Semaphore(self.concurrency)

        async def fetch_with_semaphore(source: FeedSource) -> SourceResult:
            async with semaphore:
                return await self.fetch_source(source)

        tasks = [create_task(fetch_with_semaphore(source)) for source in self.sources]
        results: List[SourceResult] = []
        try:
            for next_done in as_completed(tasks):
                result = await next_done
                if result.ok:
                    commit = create_task(self._commit(result))
                    try:
                        await shield(commit)
                    except CancelledError:
                        # A started commit always lands before cancellation propagates
                        await commit
                        raise
                results.append(result)
                if on_source_ready is not None:
                    await self._notify(on_source_ready, result)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await gather(*tasks, return_exceptions=True)

        return await self._finish(results)

    async def _finish(self, results: List[SourceResult]) -> ArticleBatch:
        failed = [r for r in results if not r.ok]
        if len(failed) < len(results):
            await self.store.mark_first_fetch_complete()
            articles = self.store.cached_articles
            logger.info(
                f"Fetch complete: {len(results) - len(failed)}/{len(results)} feeds ok, "
                f"{len(articles)} articles cached"
            )
            return ArticleBatch(articles=articles, results=results)

        cached = self.store.cached_articles
        if cached:
            logger.warning(f"All {len(results)} feeds failed; serving {len(cached)} cached articles")
            return ArticleBatch(articles=cached, results=results, from_cache=True)
        if self.placeholders:
            logger.warning("All feeds failed and the cache is empty; serving placeholder articles")
            return ArticleBatch(articles=list(self.placeholders), results=results, is_placeholder=True)
        raise FeedUnavailableError("Unable to load articles: every feed failed and nothing is cached")

    async def fetch_all(self) -> ArticleBatch:
        """Fetch every source and return the full sorted cache (or a fallback)."""
        return await self.fetch_all_progressive()

    async def fetch_category(self, category: Category) -> List[Article]:
        """Fetch all sources, then keep only articles in ``category``."""
        batch = await self.fetch_all()
        return [a for a in batch.articles if a.category == category]

    async def search(self, query: str) -> List[Article]:
        """Fetch all sources, then keep articles whose headline or summary mention ``query``."""
        batch = await self.fetch_all()
        needle = query.strip().casefold()
        if not needle:
            return batch.articles
        return [
            a for a in batch.articles
            if needle in a.headline.casefold() or needle in a.summary.casefold()
        ]

    async def close(self) -> None:
        """Close the transport (if owned) and the thread pool."""
        if self._owns_transport:
            await self.transport.close()
        if self.executor:
            try:
                await wait_for(
                    get_event_loop().run_in_executor(None, lambda: self.executor.shutdown(wait=True)),
                    timeout=30.0,
                )
            except TimeoutError:
                logger.warning("Thread pool executor shutdown timed out after 30 seconds")
                self.executor.shutdown(wait=False)
        logger.debug("FeedFetcher closed")

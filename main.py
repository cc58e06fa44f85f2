#!/usr/bin/env python3
"""
NewsBits command line entry point.

This module is the composition root: it builds the database queue, the shared
ArticleStore and the FeedFetcher, and exposes them through a small CLI:

- refresh: fetch all feeds once, bounded by a time budget
- watch: refresh every FETCH_INTERVAL_MINUTES (stand-in for an external timer)
- unseen: list articles not yet seen, optionally marking them seen
- status: show cache, seen and per-source fetch state
- set-limit: change the cache size (20-500)
- reset-seen: forget which articles were seen
"""

import asyncio
import sys
from datetime import datetime, timezone
from typing import List, Optional
import argparse

from config import config, get_logger
from errors import FeedUnavailableError, StorageError
from fetcher import FeedFetcher
from models import Article, ArticleBatch, DatabaseQueue, SourceResult
from storage import ArticleStore
from summarizer import ArticleSummarizer
from telemetry import init_telemetry, trace_span
from utils import format_timestamp

# Module-specific logger
logger = get_logger("main")


class NewsBitsApp:
    """Owns the long-lived collaborators and wires them together."""

    def __init__(self, db_path: Optional[str] = None, fetcher_factory=None) -> None:
        self.db = DatabaseQueue(db_path or config.DATABASE_PATH)
        self.store = ArticleStore(self.db)
        self.fetcher = (fetcher_factory or FeedFetcher)(self.store)
        self.summarizer = ArticleSummarizer()

    async def start(self) -> None:
        await self.db.start()
        await self.store.load()

    async def close(self) -> None:
        await self.fetcher.close()
        await self.db.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _on_source_ready(self, result: SourceResult, cached: List[Article]) -> None:
        if result.ok:
            logger.info(f"✅ {result.source.display_name}: {len(result.articles)} new, {len(cached)} cached")
        else:
            logger.warning(f"❌ {result.source.display_name}: {result.error}")

    @trace_span("app.refresh", tracer_name="app")
    async def refresh(self, budget: Optional[float] = None) -> Optional[ArticleBatch]:
        """Run one fetch of every source, abandoning sources still running after ``budget`` seconds.

        Sources that finished before the budget ran out stay committed.
        """
        budget = budget or config.REFRESH_BUDGET_SECONDS
        try:
            batch = await asyncio.wait_for(self.fetcher.fetch_all_progressive(self._on_source_ready), timeout=budget)
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ Refresh budget of {budget}s exceeded; keeping {len(self.store.cached_articles)} cached articles")
            return None

        if batch.is_placeholder:
            logger.warning("Showing placeholder articles; no feed could be loaded")
        elif batch.from_cache:
            logger.warning(f"Showing {len(batch.articles)} cached articles; every feed failed")
        else:
            logger.info(f"📰 {len(batch.articles)} articles cached, {len(self.store.unseen_articles())} unseen")
        return batch

    async def watch(self, interval_minutes: Optional[int] = None, budget: Optional[float] = None) -> None:
        interval = (interval_minutes or config.FETCH_INTERVAL_MINUTES) * 60
        logger.info(f"🕐 Refreshing every {interval // 60} minutes")
        while True:
            try:
                await self.refresh(budget)
            except FeedUnavailableError as e:
                logger.error(f"Refresh failed: {e}")
            logger.info(f"Sleeping for {interval} seconds until next refresh")
            await asyncio.sleep(interval)

    async def unseen(self, mark_seen: bool = False, summarize: bool = False) -> List[Article]:
        articles = self.store.unseen_articles()
        if summarize:
            articles = [await self.summarizer.summarize_article(a) for a in articles]
        if mark_seen:
            for article in articles:
                await self.store.mark_seen(article)
        return articles

    def check_status(self) -> dict:
        """Collect cache, seen and per-source fetch state."""
        last_fetch = self.store.last_fetch_times
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'database_path': self.db.db_path,
            'cached_articles': len(self.store.cached_articles),
            'max_cached_articles': self.store.max_cached_articles,
            'unseen_articles': len(self.store.unseen_articles()),
            'seen_keys': self.store.seen_count,
            'saved_articles': len(self.store.saved_articles),
            'first_fetch_complete': self.store.has_completed_first_fetch,
            'config': config.get_config_summary(),
            'sources': [
                {
                    'name': source.display_name,
                    'category': source.default_category.value,
                    'last_fetch': format_timestamp(last_fetch.get(source.display_name)),
                }
                for source in self.fetcher.sources
            ],
        }


def print_status(status: dict) -> None:
    print(f"\n📊 NewsBits Status")
    print(f"⏰ {status['timestamp']}")
    print(f"💾 Database: {status['database_path']}")
    print(f"   📰 Cached: {status['cached_articles']} / {status['max_cached_articles']}")
    print(f"   👀 Unseen: {status['unseen_articles']} (seen keys: {status['seen_keys']})")
    print(f"   🔖 Saved: {status['saved_articles']}")
    print(f"   🚀 First fetch complete: {status['first_fetch_complete']}")
    settings = status['config']
    print(f"\n⚙️ Settings:")
    print(f"   Feeds: {settings['feed_count']}, concurrency: {settings['fetch_concurrency']}, "
          f"retries: {settings['max_retries']}, timeout: {settings['http_timeout']}s")
    print(f"   Summaries via Azure OpenAI: {settings['has_azure_endpoint'] and settings['has_openai_key']}")
    print(f"\n📡 Sources:")
    for source in status['sources']:
        print(f"   {source['name']} [{source['category']}] last fetch: {source['last_fetch']}")


def print_articles(articles: List[Article]) -> None:
    if not articles:
        print("You're all caught up.")
        return
    for article in articles:
        print(f"\n[{article.category.display_name}] {article.smart_headline}")
        print(f"   {article.source} - {format_timestamp(article.published_at)}")
        print(f"   {article.smart_summary}")
        if article.article_url:
            print(f"   {article.article_url}")


async def _run(args) -> int:
    async with NewsBitsApp(args.database) as app:
        if args.mode == 'refresh':
            batch = await app.refresh(args.budget)
            return 0 if batch is None or batch.succeeded else 1
        if args.mode == 'watch':
            await app.watch(args.interval, args.budget)
            return 0
        if args.mode == 'unseen':
            print_articles(await app.unseen(mark_seen=args.mark_seen, summarize=args.summarize))
            return 0
        if args.mode == 'status':
            print_status(app.check_status())
            return 0
        if args.mode == 'set-limit':
            limit = await app.store.set_cache_limit(args.limit)
            print(f"Cache limit set to {limit}")
            return 0
        if args.mode == 'reset-seen':
            await app.store.clear_seen()
            print("Seen articles reset")
            return 0
    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='NewsBits feed ingestion')
    parser.add_argument('mode', choices=['refresh', 'watch', 'unseen', 'status', 'set-limit', 'reset-seen'],
                        help='Operation mode')
    parser.add_argument('limit', nargs='?', type=int,
                        help='New cache limit (set-limit only)')
    parser.add_argument('--budget', type=float,
                        help='Seconds allowed per refresh before in-flight feeds are abandoned')
    parser.add_argument('--interval', type=int,
                        help='Minutes between refreshes in watch mode')
    parser.add_argument('--mark-seen', action='store_true',
                        help='Mark listed articles as seen')
    parser.add_argument('--summarize', action='store_true',
                        help='Shorten summaries (Azure OpenAI when configured, else truncation)')
    parser.add_argument('--database', type=str,
                        help='SQLite database path (defaults to DATABASE_PATH)')
    return parser


def main():
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if args.mode == 'set-limit' and args.limit is None:
        parser.error("set-limit requires a limit")

    init_telemetry("newsbits")
    try:
        sys.exit(asyncio.run(_run(args)))
    except KeyboardInterrupt:
        logger.info("👋 NewsBits shutting down")
    except (FeedUnavailableError, StorageError) as e:
        logger.error(f"💥 {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

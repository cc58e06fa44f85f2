#!/usr/bin/env python3
"""
Short-form summaries for articles.

Uses the Azure OpenAI collaborator when it is configured and falls back to
local smart truncation otherwise, so a summary is always produced.
"""

from asyncio import Semaphore, gather
from hashlib import sha1
from typing import Awaitable, Callable, Dict, List, Optional

from config import config, get_logger
from errors import ContentFilterError
from llm_client import chat_completion, is_available
from models import Article
from utils import smart_truncate

# Module-specific logger
logger = get_logger("summarizer")

# Accept model output up to this many characters over the limit, then truncate
OVERSHOOT_TOLERANCE = 20

PROMPT_TEMPLATE = (
    "Summarize this news snippet in one concise sentence (max {max_length} characters). "
    "Keep the key facts and make it engaging. Do not start with \"This article\" or similar. "
    "Just give the summary, nothing else:\n\n{text}"
)

Collaborator = Callable[[str, int], Awaitable[Optional[str]]]


async def _azure_summary(text: str, max_length: int) -> Optional[str]:
    messages = [{"role": "user", "content": PROMPT_TEMPLATE.format(max_length=max_length, text=text)}]
    return await chat_completion(messages, purpose="summary")


class ArticleSummarizer:
    """Summarize text with an optional model, always falling back to truncation."""

    def __init__(
        self,
        collaborator: Optional[Collaborator] = None,
        available: Optional[Callable[[], bool]] = None,
        max_length: Optional[int] = None,
        concurrency: int = 4,
    ):
        self.collaborator = collaborator or _azure_summary
        self.available = available or (is_available if collaborator is None else (lambda: True))
        self.max_length = max_length or config.SUMMARY_MAX_LENGTH
        self.concurrency = concurrency
        self._cache: Dict[str, str] = {}

    def _cache_key(self, text: str, max_length: int) -> str:
        return f"{sha1(text.encode('utf-8')).hexdigest()}_{max_length}"

    async def _ask_collaborator(self, text: str, max_length: int) -> Optional[str]:
        if not self.available():
            return None
        try:
            summary = await self.collaborator(text, max_length)
        except ContentFilterError as e:
            logger.warning(f"Summary blocked by content filter, truncating instead: {e}")
            return None
        except Exception as e:
            logger.warning(f"Summarization collaborator failed, truncating instead: {e}")
            return None

        summary = (summary or "").strip()
        if not summary or len(summary) > max_length + OVERSHOOT_TOLERANCE:
            return None
        if len(summary) > max_length:
            return smart_truncate(summary, max_length)
        return summary

    async def summarize(self, text: str, max_length: Optional[int] = None) -> str:
        """Return a summary of at most ``max_length`` characters."""
        max_length = max_length or self.max_length
        trimmed = (text or "").strip()
        if len(trimmed) <= max_length:
            return trimmed

        key = self._cache_key(trimmed, max_length)
        if key in self._cache:
            return self._cache[key]

        summary = await self._ask_collaborator(trimmed, max_length)
        if summary is None:
            summary = smart_truncate(trimmed, max_length)
        self._cache[key] = summary
        return summary

    async def summarize_batch(self, texts: List[str], max_length: Optional[int] = None) -> List[str]:
        """Summarize several texts concurrently, preserving input order."""
        semaphore = Semaphore(self.concurrency)

        async def summarize_with_semaphore(text: str) -> str:
            async with semaphore:
                return await self.summarize(text, max_length)

        return list(await gather(*(summarize_with_semaphore(t) for t in texts)))

    async def summarize_article(self, article: Article) -> Article:
        """Return a copy of ``article`` carrying a short-form summary."""
        if article.ai_summary:
            return article
        return article.with_ai_summary(await self.summarize(article.summary))

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

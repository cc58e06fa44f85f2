#!/usr/bin/env python3
"""Async Azure OpenAI helper for the optional summarization collaborator.

Provides `is_available()` for capability checks and `chat_completion()` with
retry and content filter handling. Returns `None` on exhausted retries or
non-filter failures so callers can fall back to local truncation."""
from __future__ import annotations
from typing import List, Dict, Any, Optional
from asyncio import sleep

from openai import AsyncAzureOpenAI, OpenAIError

from config import config, get_logger
from errors import ContentFilterError

logger = get_logger("llm_client")

_client: Any = None


def is_available() -> bool:
    """Whether Azure OpenAI is fully configured."""
    return bool(
        config.OPENAI_API_KEY and config.AZURE_ENDPOINT and config.OPENAI_API_VERSION and config.DEPLOYMENT_NAME
    )


def _get_client() -> Optional[Any]:
    """Instantiate and cache the Azure OpenAI async client if configuration is present."""
    global _client
    if _client is not None:
        return _client
    if not is_available():
        logger.debug("Missing Azure OpenAI config; client will not initialize")
        return None
    endpoint = (
        f"https://{config.AZURE_ENDPOINT}" if not str(config.AZURE_ENDPOINT).startswith("http") else config.AZURE_ENDPOINT
    )
    _client = AsyncAzureOpenAI(
        api_key=config.OPENAI_API_KEY,
        api_version=config.OPENAI_API_VERSION,
        azure_endpoint=endpoint,
    )
    return _client


def _extract_text(choice: Any) -> str:
    message = getattr(choice, "message", None)
    if message is None:
        return ""
    if getattr(message, "refusal", None):
        return ""
    content = getattr(message, "content", None)
    if isinstance(content, str):
        return content.strip()
    return ""


def _content_filter_error(error: Exception) -> Optional[ContentFilterError]:
    body = getattr(error, "body", {}) or {}
    error_obj = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error_obj, dict):
        return None
    inner = error_obj.get("innererror")
    inner_code = inner.get("code") if isinstance(inner, dict) else None
    if error_obj.get("code") == "content_filter" or inner_code == "ResponsibleAIPolicyViolation":
        return ContentFilterError(message=error_obj.get("message", "Content filtered"), details=error_obj)
    return None


async def chat_completion(
    messages: List[Dict[str, str]],
    *,
    purpose: str = "generic",
    retries: Optional[int] = None,
    client_override: Optional[Any] = None,
) -> Optional[str]:
    """Execute an Azure OpenAI chat completion. Raises `ContentFilterError` on policy violations."""
    client = client_override or _get_client()
    if client is None:
        logger.debug("Azure OpenAI client unavailable; skipping %s", purpose)
        return None

    remaining = retries if retries is not None else config.SUMMARIZER_MAX_RETRIES
    attempt = 0

    while attempt <= remaining:
        try:
            resp = await client.chat.completions.create(model=config.DEPLOYMENT_NAME, messages=messages)
            choices = getattr(resp, "choices", None) or []
            if not choices:
                logger.error("No choices in %s response", purpose)
                return None
            raw = "\n".join(t for t in (_extract_text(c) for c in choices) if t).strip()
            if not raw:
                logger.warning("Empty or refused content in %s response", purpose)
                return None
            return raw
        except OpenAIError as e:
            filtered = _content_filter_error(e)
            if filtered is not None:
                raise filtered from e
            attempt += 1
            if attempt > remaining:
                logger.error("%s request failed after %d retries: %s", purpose, remaining, e)
                return None
            delay = config.SUMMARIZER_RETRY_DELAY_BASE * (2 ** (attempt - 1))
            logger.warning("%s transient OpenAI error: %s. Backoff %ss (attempt %d/%d)", purpose, e, delay, attempt, remaining)
            await sleep(delay)
        except Exception as e:
            filtered = _content_filter_error(e)
            if filtered is not None:
                raise filtered from e
            attempt += 1
            if attempt > remaining:
                logger.error("%s unexpected failure after %d retries: %s", purpose, remaining, e)
                return None
            delay = config.SUMMARIZER_RETRY_DELAY_BASE * (2 ** (attempt - 1))
            logger.warning("%s unexpected error: %s. Backoff %ss (attempt %d/%d)", purpose, e, delay, attempt, remaining)
            await sleep(delay)

    return None


__all__ = ["chat_completion", "is_available"]

#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Dict, Any, Optional


class ContentFilterError(Exception):
    """Raised when Azure OpenAI content filtering blocks a response.

    Attributes:
        details: Optional provider-specific payload for diagnostics.
    """

    def __init__(self, message: str = "Content filtered by Azure OpenAI", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class FeedFetchError(Exception):
    """A source could not be fetched within its retry budget."""

    def __init__(self, source: str, message: str, status: Optional[int] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status = status


class FeedUnavailableError(Exception):
    """Every source failed and there is neither cached nor placeholder content."""


class StorageError(Exception):
    """A key/value store operation failed."""


__all__ = ["ContentFilterError", "FeedFetchError", "FeedUnavailableError", "StorageError"]

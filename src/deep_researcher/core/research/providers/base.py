"""Search provider abstractions for the research pipeline.

A search provider answers one query with an optional synthesized answer plus
a list of results. The gatherer only depends on this contract, so tests and
alternative backends can stand in for the Tavily implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class SearchResult:
    """A single search hit.

    Attributes:
        title: Page title
        url: Canonical URL of the page
        content: Extracted snippet or page content
        score: Provider relevance score, when reported
    """

    title: str
    url: str
    content: str = ""
    score: Optional[float] = None


@dataclass(frozen=True)
class SearchResponse:
    """Outcome of one search call."""

    query: str
    answer: Optional[str] = None
    results: tuple[SearchResult, ...] = field(default_factory=tuple)

    @property
    def urls(self) -> list[str]:
        return [r.url for r in self.results if r.url]

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "answer": self.answer,
            "results": [
                {"title": r.title, "url": r.url, "content": r.content}
                for r in self.results
            ],
        }


class SearchProviderError(Exception):
    """Base exception for search provider failures.

    Attributes:
        provider: Provider identifier
        retryable: Whether the failure is transient
        original_error: Underlying exception, if any
    """

    def __init__(
        self,
        provider: str,
        message: str,
        retryable: bool = False,
        original_error: Optional[BaseException] = None,
    ):
        self.provider = provider
        self.retryable = retryable
        self.original_error = original_error
        super().__init__(f"{provider}: {message}")


class AuthenticationError(SearchProviderError):
    """Raised when the provider rejects the API key."""

    def __init__(self, provider: str, message: str = "Authentication failed"):
        super().__init__(provider=provider, message=message, retryable=False)


class RateLimitError(SearchProviderError):
    """Raised when the provider rate limit is still exceeded after retries."""

    def __init__(self, provider: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        message = "Rate limit exceeded"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(provider=provider, message=message, retryable=True)


class SearchProvider(ABC):
    """Abstract base class for search backends."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the provider identifier (e.g. "tavily")."""

    @abstractmethod
    async def search(self, query: str, max_results: int = 10, **kwargs: Any) -> SearchResponse:
        """Execute a search.

        Raises:
            SearchProviderError: If the search cannot be completed.
        """

    @property
    def rate_limit(self) -> Optional[float]:
        """Requests per second the provider tolerates, or None if unlimited."""
        return None

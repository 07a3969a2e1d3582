"""Search providers for the research phase.

Supported providers:
- TavilySearchProvider: Web search via Tavily API
"""

from deep_researcher.core.research.providers.base import (
    AuthenticationError,
    RateLimitError,
    SearchProvider,
    SearchProviderError,
    SearchResponse,
    SearchResult,
)
from deep_researcher.core.research.providers.tavily import TavilySearchProvider

__all__ = [
    # Abstract base
    "SearchProvider",
    "SearchResponse",
    "SearchResult",
    # Concrete providers
    "TavilySearchProvider",
    # Errors
    "SearchProviderError",
    "RateLimitError",
    "AuthenticationError",
]

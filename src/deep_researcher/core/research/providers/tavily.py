"""Tavily search provider for web search.

This module implements TavilySearchProvider, which wraps the Tavily Search API
to provide evidence for the research phase. Every call requests Tavily's
synthesized answer alongside the ranked results, since the gatherer
summarizes from that answer.

Tavily API documentation: https://docs.tavily.com/

Example usage:
    provider = TavilySearchProvider(api_key="tvly-...")
    response = await provider.search("machine learning trends", max_results=5)
"""

import asyncio
import logging
import os
from typing import Any, Optional

import httpx

from deep_researcher.core.research.providers.base import (
    AuthenticationError,
    RateLimitError,
    SearchProvider,
    SearchProviderError,
    SearchResponse,
    SearchResult,
)

logger = logging.getLogger(__name__)

# Tavily API constants
TAVILY_API_BASE_URL = "https://api.tavily.com"
TAVILY_SEARCH_ENDPOINT = "/search"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_RESULTS = 5
DEFAULT_SEARCH_DEPTH = "advanced"

VALID_SEARCH_DEPTHS = frozenset(["basic", "advanced"])


class TavilySearchProvider(SearchProvider):
    """Tavily Search API provider for web search.

    Attributes:
        api_key: Tavily API key (required)
        base_url: API base URL (default: https://api.tavily.com)
        search_depth: "basic" or "advanced" (default: "advanced")
        timeout: Request timeout in seconds (default: 30.0)
        max_retries: Maximum attempts for transient failures (default: 3)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = TAVILY_API_BASE_URL,
        search_depth: str = DEFAULT_SEARCH_DEPTH,
        max_results: int = DEFAULT_MAX_RESULTS,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Tavily search provider.

        Args:
            api_key: Tavily API key. If not provided, reads from TAVILY_API_KEY env var.
            base_url: API base URL
            search_depth: Search depth sent with every request
            max_results: Default number of results per query
            timeout: Request timeout in seconds
            max_retries: Maximum attempts for timeouts, rate limits and 5xx errors
            transport: Optional httpx transport (used by tests)

        Raises:
            ValueError: If no API key is available or search_depth is invalid
        """
        self._api_key = api_key or os.environ.get("TAVILY_API_KEY")
        if not self._api_key:
            raise ValueError(
                "Tavily API key required. Provide via api_key parameter "
                "or TAVILY_API_KEY environment variable."
            )
        if search_depth not in VALID_SEARCH_DEPTHS:
            raise ValueError(
                f"Invalid search_depth: {search_depth!r}. "
                f"Must be one of: {sorted(VALID_SEARCH_DEPTHS)}"
            )

        self._base_url = base_url.rstrip("/")
        self._search_depth = search_depth
        self._max_results = max_results
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._transport = transport

    def get_provider_name(self) -> str:
        return "tavily"

    @property
    def rate_limit(self) -> Optional[float]:
        return 1.0

    async def search(
        self,
        query: str,
        max_results: Optional[int] = None,
        **kwargs: Any,
    ) -> SearchResponse:
        """Execute a web search via Tavily API.

        Args:
            query: The search query string.
            max_results: Maximum number of results (clamped to Tavily's limit of 20).
            **kwargs: Extra payload fields passed through to the API.

        Returns:
            SearchResponse with Tavily's synthesized answer and ranked results.

        Raises:
            AuthenticationError: If API key is invalid.
            RateLimitError: If rate limit exceeded after all retries.
            SearchProviderError: For other API errors.
        """
        limit = min(max_results or self._max_results, 20)
        payload: dict[str, Any] = {
            "api_key": self._api_key,
            "query": query,
            "search_depth": self._search_depth,
            "include_answer": True,
            "max_results": limit,
        }
        payload.update(kwargs)

        response_data = await self._execute_with_retry(payload)
        return self._parse_response(query, response_data)

    async def _execute_with_retry(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Execute API request with exponential backoff retry.

        Raises:
            AuthenticationError: If API key is invalid
            RateLimitError: If rate limit exceeded after all retries
            SearchProviderError: For other API errors
        """
        url = f"{self._base_url}{TAVILY_SEARCH_ENDPOINT}"
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.post(url, json=payload)

                    # Handle authentication errors (not retryable)
                    if response.status_code == 401:
                        raise AuthenticationError(
                            provider="tavily",
                            message="Invalid API key",
                        )

                    # Handle rate limiting
                    if response.status_code == 429:
                        retry_after = self._parse_retry_after(response)
                        if attempt < self._max_retries - 1:
                            wait_time = retry_after or (2**attempt)
                            logger.warning(
                                "Tavily rate limit hit, waiting %ss (attempt %d/%d)",
                                wait_time,
                                attempt + 1,
                                self._max_retries,
                            )
                            await asyncio.sleep(wait_time)
                            continue
                        raise RateLimitError(provider="tavily", retry_after=retry_after)

                    if response.status_code >= 500 and attempt < self._max_retries - 1:
                        wait_time = 2**attempt
                        logger.warning(
                            "Tavily server error %d, retrying in %ss (attempt %d/%d)",
                            response.status_code,
                            wait_time,
                            attempt + 1,
                            self._max_retries,
                        )
                        await asyncio.sleep(wait_time)
                        continue

                    if response.status_code >= 400:
                        error_msg = self._extract_error_message(response)
                        raise SearchProviderError(
                            provider="tavily",
                            message=f"API error {response.status_code}: {error_msg}",
                            retryable=response.status_code >= 500,
                        )

                    try:
                        return response.json()
                    except ValueError as e:
                        raise SearchProviderError(
                            provider="tavily",
                            message="Response body is not valid JSON",
                            original_error=e,
                        ) from e

            except httpx.TimeoutException as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    wait_time = 2**attempt
                    logger.warning(
                        "Tavily request timeout, retrying in %ss (attempt %d/%d)",
                        wait_time,
                        attempt + 1,
                        self._max_retries,
                    )
                    await asyncio.sleep(wait_time)
                    continue

            except httpx.RequestError as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    wait_time = 2**attempt
                    logger.warning(
                        "Tavily request error: %s, retrying in %ss (attempt %d/%d)",
                        e,
                        wait_time,
                        attempt + 1,
                        self._max_retries,
                    )
                    await asyncio.sleep(wait_time)
                    continue

        # All retries exhausted
        raise SearchProviderError(
            provider="tavily",
            message=f"Request failed after {self._max_retries} attempts",
            retryable=False,
            original_error=last_error,
        )

    def _parse_retry_after(self, response: httpx.Response) -> Optional[float]:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return None

    def _extract_error_message(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:200] if response.text else "Unknown error"
        if isinstance(data, dict):
            detail = data.get("error") or data.get("message") or data.get("detail")
            if detail:
                return str(detail)
        return response.text[:200]

    def _parse_response(self, query: str, data: Any) -> SearchResponse:
        """Parse Tavily API response JSON into a SearchResponse."""
        if not isinstance(data, dict):
            raise SearchProviderError(
                provider="tavily",
                message=f"Unexpected response type: {type(data).__name__}",
            )

        results: list[SearchResult] = []
        for item in data.get("results") or []:
            if not isinstance(item, dict):
                continue
            results.append(
                SearchResult(
                    title=item.get("title") or "Untitled",
                    url=item.get("url") or "",
                    content=item.get("content") or "",
                    score=item.get("score"),
                )
            )

        return SearchResponse(
            query=query,
            answer=data.get("answer"),
            results=tuple(results),
        )

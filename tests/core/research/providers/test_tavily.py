"""Tests for TavilySearchProvider.

Tests cover:
1. Provider initialization (with/without API key)
2. Payload building
3. Response parsing
4. Error handling (401, 429, 5xx, timeouts)
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from deep_researcher.core.research.providers.base import (
    AuthenticationError,
    RateLimitError,
    SearchProviderError,
)
from deep_researcher.core.research.providers.tavily import (
    DEFAULT_TIMEOUT,
    TAVILY_API_BASE_URL,
    TavilySearchProvider,
)

SLEEP_PATH = "deep_researcher.core.research.providers.tavily.asyncio.sleep"

TAVILY_PAYLOAD = {
    "answer": "The transistor was invented at Bell Labs in 1947.",
    "results": [
        {
            "title": "Transistor",
            "url": "https://en.wikipedia.org/wiki/Transistor",
            "content": "A transistor is a semiconductor device...",
            "score": 0.97,
        },
        {"url": "https://example.com/no-title"},
        "not a result",
    ],
}


def scripted_transport(*responses):
    """MockTransport answering with ``responses`` in order and recording requests."""
    queue = list(responses)
    requests = []

    def handler(request):
        requests.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


def make_provider(transport, **kwargs):
    return TavilySearchProvider(api_key="tvly-test-key", transport=transport, **kwargs)


class TestTavilySearchProviderInit:
    """Tests for provider initialization."""

    def test_init_with_api_key(self):
        provider = TavilySearchProvider(api_key="tvly-test-key")
        assert provider._api_key == "tvly-test-key"
        assert provider._base_url == TAVILY_API_BASE_URL
        assert provider._timeout == DEFAULT_TIMEOUT
        assert provider._max_retries == 3
        assert provider.get_provider_name() == "tavily"

    def test_init_with_env_var(self, monkeypatch):
        """Test initialization reads from TAVILY_API_KEY env var."""
        monkeypatch.setenv("TAVILY_API_KEY", "tvly-env-key")
        provider = TavilySearchProvider()
        assert provider._api_key == "tvly-env-key"

    def test_init_without_api_key_raises(self, monkeypatch):
        monkeypatch.delenv("TAVILY_API_KEY", raising=False)
        with pytest.raises(ValueError, match="Tavily API key required"):
            TavilySearchProvider()

    def test_invalid_search_depth_raises(self):
        with pytest.raises(ValueError, match="Invalid search_depth"):
            TavilySearchProvider(api_key="tvly-test-key", search_depth="deep")


class TestTavilySearch:
    """Tests for request building and response parsing."""

    @pytest.mark.asyncio
    async def test_payload_requests_answer(self):
        transport = scripted_transport(httpx.Response(200, json=TAVILY_PAYLOAD))
        provider = make_provider(transport, search_depth="basic")

        await provider.search("transistor history", max_results=50, topic="general")

        body = json.loads(transport.requests[0].content)
        assert body["query"] == "transistor history"
        assert body["include_answer"] is True
        assert body["search_depth"] == "basic"
        assert body["max_results"] == 20
        assert body["topic"] == "general"
        assert str(transport.requests[0].url) == f"{TAVILY_API_BASE_URL}/search"

    @pytest.mark.asyncio
    async def test_parses_answer_and_results(self):
        transport = scripted_transport(httpx.Response(200, json=TAVILY_PAYLOAD))
        provider = make_provider(transport)

        response = await provider.search("transistor history")

        assert response.answer == TAVILY_PAYLOAD["answer"]
        assert len(response.results) == 2
        assert response.results[0].score == 0.97
        assert response.results[1].title == "Untitled"
        assert response.urls == [
            "https://en.wikipedia.org/wiki/Transistor",
            "https://example.com/no-title",
        ]

    @pytest.mark.asyncio
    async def test_non_object_body_raises(self):
        transport = scripted_transport(httpx.Response(200, json=["unexpected"]))
        provider = make_provider(transport)

        with pytest.raises(SearchProviderError, match="Unexpected response type"):
            await provider.search("q")


class TestTavilyErrors:
    """Tests for retry and error handling."""

    @pytest.mark.asyncio
    async def test_401_raises_authentication_error(self):
        transport = scripted_transport(httpx.Response(401, json={"error": "bad key"}))
        provider = make_provider(transport)

        with pytest.raises(AuthenticationError):
            await provider.search("q")
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_429_retries_then_succeeds(self):
        transport = scripted_transport(
            httpx.Response(429, headers={"Retry-After": "2"}),
            httpx.Response(200, json=TAVILY_PAYLOAD),
        )
        provider = make_provider(transport)

        with patch(SLEEP_PATH, new_callable=AsyncMock) as sleep:
            response = await provider.search("q")

        assert response.answer == TAVILY_PAYLOAD["answer"]
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_429_exhausted_raises_rate_limit(self):
        transport = scripted_transport(httpx.Response(429))
        provider = make_provider(transport, max_retries=2)

        with patch(SLEEP_PATH, new_callable=AsyncMock):
            with pytest.raises(RateLimitError):
                await provider.search("q")
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_5xx_retries_with_backoff(self):
        transport = scripted_transport(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(200, json=TAVILY_PAYLOAD),
        )
        provider = make_provider(transport)

        with patch(SLEEP_PATH, new_callable=AsyncMock) as sleep:
            await provider.search("q")

        assert [call.args[0] for call in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_5xx_on_last_attempt_raises(self):
        transport = scripted_transport(httpx.Response(500, json={"message": "boom"}))
        provider = make_provider(transport, max_retries=1)

        with pytest.raises(SearchProviderError, match="API error 500: boom") as exc_info:
            await provider.search("q")
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_4xx_is_not_retried(self):
        transport = scripted_transport(httpx.Response(400, text="bad request"))
        provider = make_provider(transport)

        with pytest.raises(SearchProviderError, match="API error 400"):
            await provider.search("q")
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_retries(self):
        transport = scripted_transport(httpx.ReadTimeout("slow"))
        provider = make_provider(transport, max_retries=3)

        with patch(SLEEP_PATH, new_callable=AsyncMock):
            with pytest.raises(SearchProviderError, match="after 3 attempts") as exc_info:
                await provider.search("q")
        assert isinstance(exc_info.value.original_error, httpx.ReadTimeout)
        assert len(transport.requests) == 3

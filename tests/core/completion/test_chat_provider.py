"""Tests for ChatCompletionProvider.

Tests cover:
1. Initialization and config wiring
2. Message rendering from prompt templates
3. Response extraction
4. Error handling (401, 429, 5xx, malformed bodies)
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from deep_researcher.config import CompletionConfig
from deep_researcher.core.completion.base import (
    AuthenticationError,
    CompletionProviderError,
)
from deep_researcher.core.completion.chat import (
    DEFAULT_MODEL,
    ChatCompletionProvider,
    backoff_delay,
)
from deep_researcher.core.completion.prompts import JSON_SYSTEM_PROMPT

SLEEP_PATH = "deep_researcher.core.completion.chat.asyncio.sleep"


def chat_body(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


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
    return ChatCompletionProvider(api_key="sk-test", transport=transport, **kwargs)


class TestInit:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(ValueError, match="Completion API key required"):
            ChatCompletionProvider()

    def test_reads_env_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

        provider = ChatCompletionProvider()

        assert provider._api_key == "sk-env"
        assert provider.model == DEFAULT_MODEL

    def test_from_config(self):
        config = CompletionConfig(
            api_key="sk-config", model="gpt-4o", base_url="http://localhost:8000/v1/"
        )

        provider = ChatCompletionProvider.from_config(config)

        assert provider.model == "gpt-4o"
        assert provider._base_url == "http://localhost:8000/v1"

    def test_backoff_delay(self):
        assert [backoff_delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestMessages:
    def test_json_function_gets_system_prompt(self):
        provider = make_provider(scripted_transport(httpx.Response(200, json=chat_body(""))))

        messages = provider.build_messages("decompose_prompt", {"research_prompt": "Transistors"})

        assert messages[0] == {"role": "system", "content": JSON_SYSTEM_PROMPT}
        assert messages[1]["role"] == "user"
        assert "Transistors" in messages[1]["content"]

    def test_unknown_function_raises(self):
        provider = make_provider(scripted_transport(httpx.Response(200, json=chat_body(""))))

        with pytest.raises(CompletionProviderError, match="not found"):
            provider.build_messages("no_such_function", {})

    def test_missing_argument_raises(self):
        provider = make_provider(scripted_transport(httpx.Response(200, json=chat_body(""))))

        with pytest.raises(CompletionProviderError, match="Missing required context"):
            provider.build_messages("decompose_prompt", {})


class TestInvoke:
    @pytest.mark.asyncio
    async def test_returns_message_content(self):
        transport = scripted_transport(httpx.Response(200, json=chat_body('{"subtasks": []}')))
        provider = make_provider(transport, model="gpt-4o", temperature=0.1)

        raw = await provider.invoke("decompose_prompt", {"research_prompt": "Transistors"})

        assert raw == '{"subtasks": []}'
        request = transport.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o"
        assert body["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_temperature_omitted_when_none(self):
        transport = scripted_transport(httpx.Response(200, json=chat_body("key")))
        provider = make_provider(transport, temperature=None)

        await provider.invoke("generate_semantic_key", {"query": "q"})

        assert "temperature" not in json.loads(transport.requests[0].content)

    @pytest.mark.asyncio
    async def test_null_content_is_empty_string(self):
        transport = scripted_transport(httpx.Response(200, json=chat_body(None)))
        provider = make_provider(transport)

        assert await provider.invoke("generate_semantic_key", {"query": "q"}) == ""

    @pytest.mark.asyncio
    async def test_missing_choices_raises(self):
        transport = scripted_transport(httpx.Response(200, json={"choices": []}))
        provider = make_provider(transport)

        with pytest.raises(CompletionProviderError, match="no choices"):
            await provider.invoke("generate_semantic_key", {"query": "q"})


class TestErrors:
    @pytest.mark.asyncio
    async def test_401_is_not_retried(self):
        transport = scripted_transport(httpx.Response(401, json={"error": {"message": "bad key"}}))
        provider = make_provider(transport)

        with pytest.raises(AuthenticationError):
            await provider.invoke("generate_semantic_key", {"query": "q"})
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_429_honours_retry_after(self):
        transport = scripted_transport(
            httpx.Response(429, headers={"Retry-After": "7"}),
            httpx.Response(200, json=chat_body("key")),
        )
        provider = make_provider(transport)

        with patch(SLEEP_PATH, new_callable=AsyncMock) as sleep:
            assert await provider.invoke("generate_semantic_key", {"query": "q"}) == "key"

        sleep.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    async def test_5xx_retries_then_fails(self):
        transport = scripted_transport(httpx.Response(503, text="unavailable"))
        provider = make_provider(transport, max_retries=3)

        with patch(SLEEP_PATH, new_callable=AsyncMock) as sleep:
            with pytest.raises(CompletionProviderError, match="failed after 3 attempts") as exc_info:
                await provider.invoke("generate_semantic_key", {"query": "q"})

        assert len(transport.requests) == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]
        assert exc_info.value.original_error.status_code == 503

    @pytest.mark.asyncio
    async def test_4xx_is_not_retried(self):
        transport = scripted_transport(httpx.Response(400, json={"error": "bad model"}))
        provider = make_provider(transport)

        with pytest.raises(CompletionProviderError, match="API error 400: bad model"):
            await provider.invoke("generate_semantic_key", {"query": "q"})
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self):
        transport = scripted_transport(
            httpx.ConnectError("refused"),
            httpx.Response(200, json=chat_body("key")),
        )
        provider = make_provider(transport)

        with patch(SLEEP_PATH, new_callable=AsyncMock):
            assert await provider.invoke("generate_semantic_key", {"query": "q"}) == "key"
        assert len(transport.requests) == 2

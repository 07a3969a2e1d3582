"""OpenAI-compatible chat completion provider.

Renders the prompt template registered for a completion function and sends
it to a ``/chat/completions`` endpoint. Any server speaking the OpenAI chat
API (OpenAI, Azure-compatible gateways, local inference servers) works.

Example usage:
    provider = ChatCompletionProvider(api_key="sk-...", model="gpt-4o-mini")
    raw = await provider.invoke("decompose_prompt", {"research_prompt": "..."})
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any, Optional

import httpx

from deep_researcher.core.completion.base import (
    AuthenticationError,
    CompletionArguments,
    CompletionProvider,
    CompletionProviderError,
    RateLimitError,
)
from deep_researcher.core.completion.prompts import PromptRegistry, get_prompt_registry

if TYPE_CHECKING:
    from deep_researcher.config import CompletionConfig

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT = 120.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_TEMPERATURE = 0.3
CHAT_ENDPOINT = "/chat/completions"


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    return (2**attempt) * 0.5


class ChatCompletionProvider(CompletionProvider):
    """Completion provider backed by an OpenAI-compatible chat API.

    Attributes:
        name: Provider identifier ('openai')
        model: Chat model requested for every call
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        temperature: Optional[float] = DEFAULT_TEMPERATURE,
        registry: Optional[PromptRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the chat completion provider.

        Args:
            api_key: API key. If not provided, reads from OPENAI_API_KEY env var.
            model: Chat model name
            base_url: API base URL (the ``/chat/completions`` path is appended)
            timeout: Request timeout in seconds
            max_retries: Maximum attempts per call
            temperature: Sampling temperature, or None for the server default
            registry: Prompt registry (default: the research prompt library)
            transport: Optional httpx transport (used by tests)

        Raises:
            ValueError: If no API key is provided or found in environment
        """
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self._api_key:
            raise ValueError(
                "Completion API key required. Provide via api_key parameter "
                "or OPENAI_API_KEY environment variable."
            )
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._temperature = temperature
        self._registry = registry if registry is not None else get_prompt_registry()
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: "CompletionConfig",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ChatCompletionProvider":
        return cls(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
            temperature=config.temperature,
            transport=transport,
        )

    def build_messages(
        self, function_name: str, arguments: CompletionArguments
    ) -> list[dict[str, str]]:
        """Render the template for ``function_name`` into chat messages.

        Raises:
            CompletionProviderError: If no template is registered or an
                argument is missing
        """
        try:
            template = self._registry.get_required(function_name)
            user_content = template.render(dict(arguments))
        except (KeyError, ValueError) as exc:
            raise CompletionProviderError(
                str(exc), provider=self.name, retryable=False, original_error=exc
            ) from exc

        messages = []
        if template.system_prompt:
            messages.append({"role": "system", "content": template.system_prompt})
        messages.append({"role": "user", "content": user_content})
        return messages

    async def invoke(self, function_name: str, arguments: CompletionArguments) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self.build_messages(function_name, arguments),
        }
        if self._temperature is not None:
            payload["temperature"] = self._temperature

        logger.debug("Invoking completion function %s (model=%s)", function_name, self.model)
        data = await self._execute_with_retry(function_name, payload)
        return self._extract_content(data)

    async def _execute_with_retry(
        self, function_name: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """POST the chat request, retrying transient failures with backoff.

        Raises:
            AuthenticationError: On 401/403 (never retried)
            CompletionProviderError: When the request fails after all attempts
        """
        url = f"{self._base_url}{CHAT_ENDPOINT}"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        last_error: Optional[Exception] = None

        for attempt in range(1, self._max_retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.post(url, json=payload, headers=headers)
                return self._check_response(response)
            except AuthenticationError:
                raise
            except CompletionProviderError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
                retry_after = exc.retry_after if isinstance(exc, RateLimitError) else None
            except httpx.TimeoutException as exc:
                last_error = exc
                retry_after = None
            except httpx.RequestError as exc:
                last_error = exc
                retry_after = None

            if attempt < self._max_retries:
                wait_time = retry_after or backoff_delay(attempt)
                logger.warning(
                    "Attempt %d for %s failed: %s; retrying in %ss",
                    attempt,
                    function_name,
                    last_error,
                    wait_time,
                )
                await asyncio.sleep(wait_time)

        raise CompletionProviderError(
            f"{function_name} failed after {self._max_retries} attempts",
            provider=self.name,
            retryable=False,
            original_error=last_error,
        )

    def _check_response(self, response: httpx.Response) -> dict[str, Any]:
        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                f"Completion API rejected credentials ({status})",
                provider=self.name,
                status_code=status,
            )
        if status == 429:
            raise RateLimitError(
                provider=self.name,
                retry_after=self._parse_retry_after(response),
            )
        if status >= 400:
            raise CompletionProviderError(
                f"API error {status}: {self._extract_error_message(response)}",
                provider=self.name,
                retryable=status >= 500,
                status_code=status,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise CompletionProviderError(
                "Response body is not valid JSON",
                provider=self.name,
                retryable=True,
                original_error=exc,
            ) from exc
        if not isinstance(data, dict):
            raise CompletionProviderError(
                f"Unexpected response type: {type(data).__name__}",
                provider=self.name,
            )
        return data

    def _extract_content(self, data: dict[str, Any]) -> str:
        try:
            content = data["choices"][0]["message"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise CompletionProviderError(
                "Response has no choices[0].message",
                provider=self.name,
                original_error=exc,
            ) from exc
        return content or ""

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
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if error:
                return str(error)
        return response.text[:200]

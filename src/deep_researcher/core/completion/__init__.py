"""Completion capability: named prompt functions backed by a chat model."""

from deep_researcher.core.completion.base import (
    AuthenticationError,
    CompletionArguments,
    CompletionProvider,
    CompletionProviderError,
    RateLimitError,
)
from deep_researcher.core.completion.chat import ChatCompletionProvider
from deep_researcher.core.completion.prompts import (
    PromptRegistry,
    PromptTemplate,
    get_prompt_registry,
)

__all__ = [
    "AuthenticationError",
    "ChatCompletionProvider",
    "CompletionArguments",
    "CompletionProvider",
    "CompletionProviderError",
    "PromptRegistry",
    "PromptTemplate",
    "RateLimitError",
    "get_prompt_registry",
]

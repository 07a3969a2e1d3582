"""Completion capability abstractions.

The research engines never talk to a model API directly. They call a named
completion *function* (``"decompose_prompt"``, ``"review_answer"``...) with a
mapping of string arguments and receive the raw text the model produced.
Which prompt backs a function name, and which model answers it, is the
provider's concern.

Example:
    class EchoProvider(CompletionProvider):
        name = "echo"

        async def invoke(self, function_name, arguments):
            return json.dumps(dict(arguments))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional, Sequence, Union

CompletionArgument = Union[str, Sequence[str]]
CompletionArguments = Mapping[str, CompletionArgument]


# =============================================================================
# Exceptions
# =============================================================================


class CompletionProviderError(Exception):
    """Base exception for completion calls.

    Attributes:
        provider: Name of the provider that raised the error
        retryable: Whether the operation can be retried
        status_code: HTTP status code if applicable
        original_error: Underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable
        self.status_code = status_code
        self.original_error = original_error


class RateLimitError(CompletionProviderError):
    """Rate limit exceeded error.

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider=provider, retryable=True, status_code=429)
        self.retry_after = retry_after


class AuthenticationError(CompletionProviderError):
    """Authentication failed error."""

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        provider: Optional[str] = None,
        status_code: int = 401,
    ):
        super().__init__(
            message, provider=provider, retryable=False, status_code=status_code
        )


# =============================================================================
# Abstract Base Class
# =============================================================================


class CompletionProvider(ABC):
    """Abstract base class for completion backends.

    Attributes:
        name: Provider name (e.g., 'openai')
    """

    name: str = "completion"

    @abstractmethod
    async def invoke(self, function_name: str, arguments: CompletionArguments) -> str:
        """Run the named completion function and return the raw model text.

        Args:
            function_name: Registered completion function (prompt) name
            arguments: Prompt arguments; list values are rendered one per line

        Returns:
            Raw completion text (possibly empty)

        Raises:
            CompletionProviderError: On transport, authentication or API failure
        """

"""Naming helpers for MCP tool registration."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import time
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent

logger = logging.getLogger(__name__)


def _minify_response(result: dict[str, Any]) -> TextContent:
    """Convert dict to TextContent with minified JSON."""
    return TextContent(
        type="text",
        text=json.dumps(result, separators=(",", ":"), default=str),
    )


def canonical_tool(
    mcp: FastMCP,
    *,
    canonical_name: str,
    **tool_kwargs: Any,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator that registers a tool under its canonical name.

    The wrapped function's dict result is returned as minified JSON text.
    Exceptions are logged with the call duration and re-raised.

    Args:
        mcp: FastMCP instance
        canonical_name: The canonical name for the tool
        **tool_kwargs: Additional kwargs passed to mcp.tool()

    Returns:
        Decorated function registered as an MCP tool
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    duration_ms = (time.perf_counter() - start_time) * 1000
                    _log_tool_error(canonical_name, e, kwargs, duration_ms)
                    raise
                if isinstance(result, dict):
                    return _minify_response(result)
                return result

            wrapper = async_wrapper
        else:

            @functools.wraps(func)
            def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    duration_ms = (time.perf_counter() - start_time) * 1000
                    _log_tool_error(canonical_name, e, kwargs, duration_ms)
                    raise
                if isinstance(result, dict):
                    return _minify_response(result)
                return result

            wrapper = sync_wrapper

        return mcp.tool(name=canonical_name, **tool_kwargs)(wrapper)

    return decorator


def _log_tool_error(
    tool_name: str,
    error: Exception,
    input_params: dict[str, Any],
    duration_ms: float,
) -> None:
    logger.error(
        "Tool %s failed after %.1fms (action=%s): %s",
        tool_name,
        duration_ms,
        input_params.get("action"),
        error,
        exc_info=True,
    )

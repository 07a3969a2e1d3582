"""
Standard response contracts for MCP tool operations.

Response Schema Contract
========================

All MCP tool responses follow a standard structure:

    {
        "success": bool,       # Required: operation success/failure
        "data": {...},         # Required: primary payload
        "error": str | null,   # Required: error message or null on success
        "meta": {              # Required: response metadata
            "version": "response-v2",
            "request_id": "req_abc123"?,
            "warnings": ["..."]?,
            "telemetry": { ... }?
        }
    }

Key Principle:
    - `success=True` means the operation executed correctly (even if the
      research is still in progress or the answer is a draft).
    - `success=False` means the operation failed to execute; `data` carries
      `error_code`, `error_type` and, where useful, `remediation`.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Machine-readable error codes for MCP tool responses."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_REQUIRED = "MISSING_REQUIRED"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNAVAILABLE = "UNAVAILABLE"

    # AI/search provider errors
    AI_NO_PROVIDER = "AI_NO_PROVIDER"


class ErrorType(str, Enum):
    """Error categories for routing and client-side handling.

    Each type corresponds to an HTTP status code analog and indicates
    whether the operation should be retried.
    """

    VALIDATION = "validation"  # 400 - No retry, fix input
    NOT_FOUND = "not_found"  # 404 - No retry
    CONFLICT = "conflict"  # 409 - Maybe retry, check state
    INTERNAL = "internal"  # 500 - Yes, with backoff
    UNAVAILABLE = "unavailable"  # 503 - Yes, with backoff


@dataclass
class ToolResponse:
    """
    Standard response structure for MCP tool operations.

    Attributes:
        success: Whether the operation completed successfully
        data: The primary payload (operation-specific structured data)
        error: Error message if success is False, None otherwise
        meta: Response metadata including version identifier
    """

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=lambda: {"version": "response-v2"})


def _build_meta(
    *,
    request_id: Optional[str] = None,
    warnings: Optional[Sequence[str]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Construct a metadata payload that always includes the response version."""
    meta: Dict[str, Any] = {"version": "response-v2"}
    if request_id:
        meta["request_id"] = request_id
    if warnings:
        meta["warnings"] = list(warnings)
    if telemetry:
        meta["telemetry"] = dict(telemetry)
    if extra:
        meta.update(dict(extra))
    return meta


def success_response(
    data: Optional[Mapping[str, Any]] = None,
    *,
    warnings: Optional[Sequence[str]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
    meta: Optional[Mapping[str, Any]] = None,
    **fields: Any,
) -> ToolResponse:
    """Create a standardized success response.

    Args:
        data: Optional mapping used as the base payload.
        warnings: Non-fatal issues to surface in ``meta.warnings``.
        telemetry: Timing/performance metadata.
        request_id: Correlation identifier propagated through logs.
        meta: Arbitrary extra metadata to merge into ``meta``.
        **fields: Additional payload fields (shorthand for ``data.update``).
    """
    payload: Dict[str, Any] = {}
    if data:
        payload.update(dict(data))
    if fields:
        payload.update(fields)

    meta_payload = _build_meta(
        request_id=request_id,
        warnings=warnings,
        telemetry=telemetry,
        extra=meta,
    )
    return ToolResponse(success=True, data=payload, error=None, meta=meta_payload)


def error_response(
    message: str,
    *,
    data: Optional[Mapping[str, Any]] = None,
    error_code: Optional[Union[ErrorCode, str]] = None,
    error_type: Optional[Union[ErrorType, str]] = None,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> ToolResponse:
    """Create a standardized error response.

    Args:
        message: Human-readable description of the failure.
        data: Optional mapping with additional machine-readable context.
        error_code: Canonical error code (``ErrorCode`` or string).
        error_type: Error category for routing (``ErrorType`` or string).
        remediation: User-facing guidance on how to fix the issue.
        details: Nested structure describing the failure.
        request_id: Correlation identifier propagated through logs.
        telemetry: Timing/performance metadata captured before failure.
        meta: Arbitrary extra metadata to merge into ``meta``.

    Example:
        >>> error_response(
        ...     "Research session 'abc' not found",
        ...     error_code=ErrorCode.NOT_FOUND,
        ...     error_type=ErrorType.NOT_FOUND,
        ...     remediation="Start a new session with action='start'",
        ... )
    """
    payload: Dict[str, Any] = {}
    if data:
        payload.update(dict(data))

    effective_error_code: Union[ErrorCode, str] = (
        error_code if error_code is not None else ErrorCode.INTERNAL_ERROR
    )
    effective_error_type: Union[ErrorType, str] = (
        error_type if error_type is not None else ErrorType.INTERNAL
    )

    if "error_code" not in payload:
        payload["error_code"] = (
            effective_error_code.value
            if isinstance(effective_error_code, Enum)
            else effective_error_code
        )
    if "error_type" not in payload:
        payload["error_type"] = (
            effective_error_type.value
            if isinstance(effective_error_type, Enum)
            else effective_error_type
        )
    if remediation is not None and "remediation" not in payload:
        payload["remediation"] = remediation
    if details and "details" not in payload:
        payload["details"] = dict(details)

    meta_payload = _build_meta(
        request_id=request_id,
        telemetry=telemetry,
        extra=meta,
    )
    return ToolResponse(success=False, data=payload, error=message, meta=meta_payload)


# ---------------------------------------------------------------------------
# Specialized Error Helpers
# ---------------------------------------------------------------------------


def not_found_error(
    resource_type: str,
    resource_id: str,
    *,
    message: Optional[str] = None,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create a not found error response (HTTP 404 analog).

    Example:
        >>> not_found_error("Research session", "3f2a9c")
    """
    return error_response(
        message or f"{resource_type} '{resource_id}' not found",
        error_code=ErrorCode.NOT_FOUND,
        error_type=ErrorType.NOT_FOUND,
        data={"resource_type": resource_type, "resource_id": resource_id},
        remediation=remediation or f"Verify the {resource_type.lower()} ID exists.",
        request_id=request_id,
    )


def conflict_error(
    message: str,
    *,
    details: Optional[Mapping[str, Any]] = None,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create a conflict error response (HTTP 409 analog)."""
    return error_response(
        message,
        error_code=ErrorCode.CONFLICT,
        error_type=ErrorType.CONFLICT,
        details=details,
        remediation=remediation or "Check current state and retry if appropriate.",
        request_id=request_id,
    )


def internal_error(
    message: str = "An internal error occurred",
    *,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an internal error response (HTTP 500 analog)."""
    remediation = "Please try again. If the problem persists, check the server logs."
    if request_id:
        remediation += f" Reference: {request_id}"

    return error_response(
        message,
        error_code=ErrorCode.INTERNAL_ERROR,
        error_type=ErrorType.INTERNAL,
        remediation=remediation,
        request_id=request_id,
    )


def unavailable_error(
    message: str = "Service temporarily unavailable",
    *,
    error_code: Union[ErrorCode, str] = ErrorCode.UNAVAILABLE,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an unavailable error response (HTTP 503 analog)."""
    return error_response(
        message,
        error_code=error_code,
        error_type=ErrorType.UNAVAILABLE,
        remediation=remediation or "Please retry with exponential backoff.",
        request_id=request_id,
    )


def sanitize_error_message(
    exc: Exception,
    context: str = "",
    include_type: bool = False,
) -> str:
    """
    Convert exception to user-safe message without internal details.

    Full details are logged server-side for debugging.

    Args:
        exc: The exception to sanitize
        context: Optional context for logging (e.g., "research.start")
        include_type: Whether to include exception type name in message

    Returns:
        User-safe error message without file paths, stack traces, or internal state
    """
    if context:
        logger.debug(f"Error in {context}: {exc}", exc_info=True)
    else:
        logger.debug(f"Error: {exc}", exc_info=True)

    type_name = type(exc).__name__

    if isinstance(exc, json.JSONDecodeError):
        return "Invalid JSON format"
    if isinstance(exc, TimeoutError):
        return "Operation timed out"
    if isinstance(exc, ValueError):
        suffix = f" ({type_name})" if include_type else ""
        return f"Invalid value provided{suffix}"
    if isinstance(exc, KeyError):
        return "Required configuration key not found"
    if isinstance(exc, ConnectionError):
        return "Connection failed - service may be unavailable"

    suffix = f" ({type_name})" if include_type else ""
    return f"An internal error occurred{suffix}"

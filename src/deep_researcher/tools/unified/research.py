"""Unified research tool with action routing.

Exposes the research session API (start, clarify, advance, status, results,
feedback, cancel, export) through a single MCP tool.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from deep_researcher.config import ServerConfig
from deep_researcher.core.naming import canonical_tool
from deep_researcher.core.research.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationFailure,
)
from deep_researcher.core.research.service import ResearchService
from deep_researcher.core.responses import (
    ErrorCode,
    ErrorType,
    conflict_error,
    error_response,
    internal_error,
    not_found_error,
    sanitize_error_message,
    success_response,
    unavailable_error,
)
from deep_researcher.tools.unified.router import (
    ActionDefinition,
    ActionRouter,
    ActionRouterError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Action Summaries
# =============================================================================

_ACTION_SUMMARY = {
    "start": "Create a research session and run the first clarification round",
    "status": "Get phase, progress, subtasks and log for a session",
    "clarify": "Answer clarifying questions (empty text accepts the prompt)",
    "advance": "Run the next phase, or all remaining phases, in the background",
    "results": "Get the final answer, or the current draft",
    "feedback": "Revise the answer with reader feedback",
    "cancel": "Cancel any background run and discard the session",
    "export": "Export the answer as markdown",
}


# =============================================================================
# Module State
# =============================================================================


class ResearchUnavailableError(RuntimeError):
    """Raised when the research service cannot be built (missing provider keys)."""


_config: Optional[ServerConfig] = None
_service: Optional[ResearchService] = None


def _get_config() -> ServerConfig:
    """Get the server config, creating a default from the environment."""
    global _config
    if _config is None:
        _config = ServerConfig.from_env()
    return _config


def _get_service() -> ResearchService:
    """Get or create the research service.

    Raises:
        ResearchUnavailableError: If a provider API key is missing.
    """
    global _service
    if _service is None:
        try:
            _service = ResearchService.from_config(_get_config())
        except ValueError as exc:
            raise ResearchUnavailableError(str(exc)) from exc
    return _service


# =============================================================================
# Validation Helpers
# =============================================================================


def _validation_error(
    field: str,
    action: str,
    message: str,
    *,
    code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    remediation: Optional[str] = None,
) -> dict:
    """Create a validation error response."""
    return asdict(
        error_response(
            f"Invalid field '{field}' for research.{action}: {message}",
            error_code=code,
            error_type=ErrorType.VALIDATION,
            remediation=remediation or f"Provide a valid '{field}' value",
            details={"field": field, "action": f"research.{action}"},
        )
    )


def _require_session_id(session_id: Optional[str], action: str) -> Optional[dict]:
    if not session_id or not session_id.strip():
        return _validation_error(
            "session_id",
            action,
            "Required non-empty string",
            code=ErrorCode.MISSING_REQUIRED,
            remediation="Pass the session_id returned by action='start'",
        )
    return None


# =============================================================================
# Action Handlers
# =============================================================================


async def _handle_start(*, query: Optional[str] = None, **kwargs: Any) -> dict:
    """Handle start action."""
    if not query or not query.strip():
        return _validation_error("query", "start", "Required non-empty string")

    service = _get_service()
    session_id = await service.create(query)
    status = await service.status(session_id)
    clarification = await service.clarification(session_id)
    return asdict(
        success_response(
            data={
                "session_id": session_id,
                "status": status.model_dump(mode="json"),
                "clarification": clarification.model_dump(mode="json"),
            }
        )
    )


async def _handle_status(*, session_id: Optional[str] = None, **kwargs: Any) -> dict:
    """Handle status action."""
    if (error := _require_session_id(session_id, "status")) is not None:
        return error
    status = await _get_service().status(session_id)
    return asdict(success_response(data=status.model_dump(mode="json")))


async def _handle_clarify(
    *,
    session_id: Optional[str] = None,
    text: Optional[str] = None,
    **kwargs: Any,
) -> dict:
    """Handle clarify action."""
    if (error := _require_session_id(session_id, "clarify")) is not None:
        return error
    response = await _get_service().submit_clarification(session_id, text or "")
    return asdict(success_response(data=response.model_dump(mode="json")))


async def _handle_advance(
    *,
    session_id: Optional[str] = None,
    run_all: bool = True,
    **kwargs: Any,
) -> dict:
    """Handle advance action."""
    if (error := _require_session_id(session_id, "advance")) is not None:
        return error
    status = await _get_service().advance(session_id, run_all=run_all)
    return asdict(success_response(data=status.model_dump(mode="json")))


async def _handle_results(*, session_id: Optional[str] = None, **kwargs: Any) -> dict:
    """Handle results action."""
    if (error := _require_session_id(session_id, "results")) is not None:
        return error
    results = await _get_service().results(session_id)
    warnings = None if results.is_final else ["Research is not final; returning the current draft"]
    return asdict(success_response(data=results.model_dump(mode="json"), warnings=warnings))


async def _handle_feedback(
    *,
    session_id: Optional[str] = None,
    text: Optional[str] = None,
    **kwargs: Any,
) -> dict:
    """Handle feedback action."""
    if (error := _require_session_id(session_id, "feedback")) is not None:
        return error
    response = await _get_service().feedback(session_id, text or "")
    return asdict(success_response(data=response.model_dump(mode="json")))


async def _handle_cancel(*, session_id: Optional[str] = None, **kwargs: Any) -> dict:
    """Handle cancel action."""
    if (error := _require_session_id(session_id, "cancel")) is not None:
        return error
    cancelled = await _get_service().cancel(session_id)
    return asdict(success_response(data={"session_id": session_id, "cancelled": cancelled}))


async def _handle_export(*, session_id: Optional[str] = None, **kwargs: Any) -> dict:
    """Handle export action."""
    if (error := _require_session_id(session_id, "export")) is not None:
        return error
    markdown = await _get_service().export(session_id)
    return asdict(
        success_response(data={"session_id": session_id, "format": "markdown", "content": markdown})
    )


# =============================================================================
# Router Setup
# =============================================================================


def _build_router() -> ActionRouter:
    """Build the action router for research tool."""
    handlers = {
        "start": _handle_start,
        "status": _handle_status,
        "clarify": _handle_clarify,
        "advance": _handle_advance,
        "results": _handle_results,
        "feedback": _handle_feedback,
        "cancel": _handle_cancel,
        "export": _handle_export,
    }
    definitions = [
        ActionDefinition(name=name, handler=handler, summary=_ACTION_SUMMARY[name])
        for name, handler in handlers.items()
    ]
    return ActionRouter(tool_name="research", actions=definitions)


_RESEARCH_ROUTER = _build_router()


async def _dispatch_research_action(action: str, **kwargs: Any) -> dict:
    """Dispatch action to appropriate handler and map domain errors."""
    try:
        return await _RESEARCH_ROUTER.dispatch(action=action, **kwargs)
    except ActionRouterError as exc:
        allowed = ", ".join(exc.allowed_actions)
        return asdict(
            error_response(
                f"Unsupported research action '{action}'. Allowed: {allowed}",
                error_code=ErrorCode.VALIDATION_ERROR,
                error_type=ErrorType.VALIDATION,
                remediation=f"Use one of: {allowed}",
                details={"action": action, "allowed_actions": exc.allowed_actions},
            )
        )
    except NotFoundError as exc:
        return asdict(
            not_found_error(
                "Research session",
                exc.session_id,
                message=str(exc),
                remediation="Start a new session with action='start'",
            )
        )
    except InvalidStateError as exc:
        details = {"action": f"research.{action}"}
        if exc.phase:
            details["phase"] = exc.phase
        return asdict(conflict_error(str(exc), details=details))
    except ValidationFailure as exc:
        return asdict(
            error_response(
                str(exc),
                error_code=ErrorCode.VALIDATION_ERROR,
                error_type=ErrorType.VALIDATION,
                details={"action": f"research.{action}"},
            )
        )
    except ResearchUnavailableError as exc:
        logger.warning("Research service unavailable: %s", exc)
        return asdict(
            unavailable_error(
                str(exc),
                error_code=ErrorCode.AI_NO_PROVIDER,
                remediation="Set TAVILY_API_KEY and OPENAI_API_KEY (or the config file equivalents)",
            )
        )
    except Exception as exc:
        logger.exception("research.%s failed", action)
        return asdict(internal_error(sanitize_error_message(exc, context=f"research.{action}")))


# =============================================================================
# Tool Registration
# =============================================================================


def register_unified_research_tool(mcp: FastMCP, config: ServerConfig) -> None:
    """Register the unified research tool.

    Args:
        mcp: FastMCP server instance
        config: Server configuration
    """
    global _config, _service
    _config = config
    _service = None

    @canonical_tool(mcp, canonical_name="research")
    async def research(
        action: str,
        query: Optional[str] = None,
        session_id: Optional[str] = None,
        text: Optional[str] = None,
        run_all: bool = True,
    ) -> dict:
        """Run multi-phase web research sessions via the action router.

        Actions:
        - start: Create a session for `query` and run the first clarification round
        - status: Phase, progress, subtasks and log for `session_id`
        - clarify: Answer clarifying questions with `text` (empty accepts the prompt)
        - advance: Run the next phase (run_all=False) or all remaining phases
        - results: Final answer, or the current draft
        - feedback: Revise the answer with reader feedback in `text`
        - cancel: Cancel any background run and discard the session
        - export: Markdown export of the answer

        Args:
            action: The research action to execute
            query: Research request (start)
            session_id: Session identifier (all actions except start)
            text: Clarification answers or feedback (clarify, feedback)
            run_all: Run every remaining phase instead of one (advance)

        Returns:
            Response envelope with action results
        """
        return await _dispatch_research_action(
            action=action,
            query=query,
            session_id=session_id,
            text=text,
            run_all=run_all,
        )

    logger.debug("Registered unified research tool")


__all__ = [
    "register_unified_research_tool",
]

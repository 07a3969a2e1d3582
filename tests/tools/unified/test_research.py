"""Integration tests for the unified research tool.

Tests dispatch logic, action handlers, error mapping and response envelopes
for all research tool actions: start, status, clarify, advance, results,
feedback, cancel, export.
"""

from unittest.mock import patch

import pytest

from deep_researcher.config import ServerConfig
from deep_researcher.core.research.service import ResearchService
from deep_researcher.server import create_server
from deep_researcher.tools.unified.research import _dispatch_research_action
from tests.conftest import RESPONSE_CONTRACT_VERSION

QUERY = "Tell me about the transistor"


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def service(completion, search):
    service = ResearchService(completion, search)
    with patch(
        "deep_researcher.tools.unified.research._get_service", return_value=service
    ):
        yield service


async def start_session():
    response = await _dispatch_research_action(action="start", query=QUERY)
    assert response["success"] is True
    return response["data"]["session_id"]


async def run_to_final(service, session_id):
    await _dispatch_research_action(action="clarify", session_id=session_id, text="")
    await _dispatch_research_action(action="advance", session_id=session_id)
    await service.sessions.get(session_id).background.task


# =============================================================================
# Dispatch and Validation
# =============================================================================


class TestDispatch:
    """Tests for action routing and input validation."""

    @pytest.mark.asyncio
    async def test_unknown_action(self, service):
        response = await _dispatch_research_action(action="summon")

        assert response["success"] is False
        assert response["data"]["error_code"] == "VALIDATION_ERROR"
        assert "start" in response["data"]["details"]["allowed_actions"]
        assert response["meta"]["version"] == RESPONSE_CONTRACT_VERSION

    @pytest.mark.asyncio
    async def test_action_is_case_insensitive(self, service):
        session_id = await start_session()

        response = await _dispatch_research_action(action="STATUS", session_id=session_id)

        assert response["success"] is True

    @pytest.mark.asyncio
    async def test_start_requires_query(self, service):
        response = await _dispatch_research_action(action="start", query="  ")

        assert response["success"] is False
        assert response["data"]["error_code"] == "VALIDATION_ERROR"
        assert response["data"]["details"]["field"] == "query"

    @pytest.mark.parametrize(
        "action", ["status", "clarify", "advance", "results", "feedback", "cancel", "export"]
    )
    @pytest.mark.asyncio
    async def test_session_actions_require_session_id(self, service, action):
        response = await _dispatch_research_action(action=action)

        assert response["success"] is False
        assert response["data"]["error_code"] == "MISSING_REQUIRED"
        assert response["data"]["details"]["action"] == f"research.{action}"


# =============================================================================
# Action Handlers
# =============================================================================


class TestStart:
    @pytest.mark.asyncio
    async def test_start_returns_status_and_clarification(self, service):
        response = await _dispatch_research_action(action="start", query=QUERY)

        data = response["data"]
        assert data["status"]["phase"] == "clarification"
        assert data["status"]["session_id"] == data["session_id"]
        assert data["clarification"]["needs_clarification"] is False
        assert data["clarification"]["questions"] == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_advance_then_results(self, service):
        session_id = await start_session()

        advance = await _dispatch_research_action(action="advance", session_id=session_id)
        assert advance["data"]["is_running"] is True
        await service.sessions.get(session_id).background.task

        results = await _dispatch_research_action(action="results", session_id=session_id)

        assert results["success"] is True
        assert results["data"]["is_final"] is True
        assert results["data"]["answer"].startswith("# The Transistor")
        assert "warnings" not in results["meta"]

    @pytest.mark.asyncio
    async def test_results_before_final_warns(self, service):
        session_id = await start_session()

        results = await _dispatch_research_action(action="results", session_id=session_id)

        assert results["success"] is True
        assert results["data"]["is_final"] is False
        assert results["meta"]["warnings"]

    @pytest.mark.asyncio
    async def test_feedback_and_export(self, service):
        session_id = await start_session()
        await run_to_final(service, session_id)

        feedback = await _dispatch_research_action(
            action="feedback", session_id=session_id, text="Add more dates"
        )
        export = await _dispatch_research_action(action="export", session_id=session_id)

        assert feedback["data"]["status_text"] == "Feedback incorporated"
        assert export["data"]["format"] == "markdown"
        assert export["data"]["content"].endswith("Revised per feedback.")

    @pytest.mark.asyncio
    async def test_cancel(self, service):
        session_id = await start_session()

        first = await _dispatch_research_action(action="cancel", session_id=session_id)
        second = await _dispatch_research_action(action="cancel", session_id=session_id)

        assert first["data"] == {"session_id": session_id, "cancelled": True}
        assert second["data"]["cancelled"] is False


# =============================================================================
# Error Mapping
# =============================================================================


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_unknown_session_is_not_found(self, service):
        response = await _dispatch_research_action(action="status", session_id="missing")

        assert response["success"] is False
        assert response["data"]["error_code"] == "NOT_FOUND"
        assert response["data"]["resource_id"] == "missing"

    @pytest.mark.asyncio
    async def test_clarify_after_final_is_conflict(self, service):
        session_id = await start_session()
        await run_to_final(service, session_id)

        response = await _dispatch_research_action(
            action="clarify", session_id=session_id, text="late"
        )

        assert response["data"]["error_code"] == "CONFLICT"
        assert response["data"]["details"]["phase"] == "final"

    @pytest.mark.asyncio
    async def test_export_without_answer_is_conflict(self, service):
        session_id = await start_session()

        response = await _dispatch_research_action(action="export", session_id=session_id)

        assert response["data"]["error_code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_missing_api_key_is_unavailable(self):
        with patch("deep_researcher.tools.unified.research._config", ServerConfig()), patch(
            "deep_researcher.tools.unified.research._service", None
        ), patch.object(
            ResearchService, "from_config", side_effect=ValueError("Tavily API key required.")
        ):
            response = await _dispatch_research_action(action="start", query=QUERY)

        assert response["data"]["error_code"] == "AI_NO_PROVIDER"
        assert response["data"]["error_type"] == "unavailable"
        assert "Tavily API key required." in response["error"]

    @pytest.mark.asyncio
    async def test_value_error_from_handler_is_internal(self, service):
        """Only service construction maps to AI_NO_PROVIDER."""
        with patch.object(service, "create", side_effect=ValueError("ttl_seconds must be positive")):
            response = await _dispatch_research_action(action="start", query=QUERY)

        assert response["success"] is False
        assert response["data"]["error_code"] == "INTERNAL_ERROR"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_sanitized(self):
        with patch(
            "deep_researcher.tools.unified.research._get_service",
            side_effect=RuntimeError("/secret/path exploded"),
        ):
            response = await _dispatch_research_action(action="start", query=QUERY)

        assert response["data"]["error_code"] == "INTERNAL_ERROR"
        assert response["error"] == "An internal error occurred"


# =============================================================================
# Registration
# =============================================================================


class TestRegistration:
    @pytest.mark.asyncio
    async def test_server_registers_research_tool(self):
        server = create_server(ServerConfig(structured_logging=False))

        tools = await server.list_tools()

        assert [tool.name for tool in tools] == ["research"]

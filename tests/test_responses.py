"""
Tests for response helper functions and standard format validation.

Verifies that the response contract is properly implemented for the
research tool and the CLI.
"""

import json
from dataclasses import asdict

import pytest

from deep_researcher.core.responses import (
    ErrorCode,
    ErrorType,
    ToolResponse,
    conflict_error,
    error_response,
    internal_error,
    not_found_error,
    sanitize_error_message,
    success_response,
    unavailable_error,
)
from tests.conftest import RESPONSE_CONTRACT_VERSION


class TestToolResponse:
    """Tests for the ToolResponse dataclass."""

    def test_default_data_is_empty_dict(self):
        response = ToolResponse(success=True, error=None)
        assert response.data == {}
        assert response.meta == {"version": RESPONSE_CONTRACT_VERSION}

    def test_serializes_to_envelope(self):
        envelope = asdict(success_response(data={"session_id": "abc"}))
        assert set(envelope) == {"success", "data", "error", "meta"}


class TestSuccessResponse:
    def test_merges_data_and_fields(self):
        response = success_response(data={"a": 1}, b=2)
        assert response.success is True
        assert response.data == {"a": 1, "b": 2}
        assert response.error is None

    def test_meta_includes_optional_entries(self):
        response = success_response(
            warnings=["draft only"],
            telemetry={"duration_ms": 12.5},
            request_id="req_1",
        )
        assert response.meta == {
            "version": RESPONSE_CONTRACT_VERSION,
            "request_id": "req_1",
            "warnings": ["draft only"],
            "telemetry": {"duration_ms": 12.5},
        }

    def test_empty_warnings_are_omitted(self):
        assert "warnings" not in success_response(warnings=[]).meta


class TestErrorResponse:
    def test_defaults_to_internal(self):
        response = error_response("boom")
        assert response.success is False
        assert response.error == "boom"
        assert response.data == {"error_code": "INTERNAL_ERROR", "error_type": "internal"}

    def test_accepts_string_codes(self):
        response = error_response("x", error_code="CUSTOM", error_type="validation")
        assert response.data["error_code"] == "CUSTOM"

    def test_remediation_and_details(self):
        response = error_response(
            "bad",
            error_code=ErrorCode.VALIDATION_ERROR,
            error_type=ErrorType.VALIDATION,
            remediation="fix it",
            details={"field": "query"},
        )
        assert response.data["remediation"] == "fix it"
        assert response.data["details"] == {"field": "query"}

    def test_error_meta_has_no_warnings(self):
        assert error_response("x").meta == {"version": RESPONSE_CONTRACT_VERSION}


class TestErrorEnums:
    def test_error_codes(self):
        assert {code.value for code in ErrorCode} == {
            "VALIDATION_ERROR",
            "MISSING_REQUIRED",
            "NOT_FOUND",
            "CONFLICT",
            "INTERNAL_ERROR",
            "UNAVAILABLE",
            "AI_NO_PROVIDER",
        }

    def test_error_types(self):
        assert {kind.value for kind in ErrorType} == {
            "validation",
            "not_found",
            "conflict",
            "internal",
            "unavailable",
        }


class TestSpecializedErrors:
    def test_not_found_error(self):
        response = not_found_error("Research session", "abc")
        assert response.error == "Research session 'abc' not found"
        assert response.data["error_type"] == "not_found"
        assert response.data["resource_id"] == "abc"
        assert response.data["remediation"] == "Verify the research session ID exists."

    def test_conflict_error(self):
        response = conflict_error("Clarification is closed", details={"phase": "final"})
        assert response.data["error_code"] == "CONFLICT"
        assert response.data["details"] == {"phase": "final"}

    def test_internal_error_reference(self):
        response = internal_error(request_id="req_9")
        assert response.data["remediation"].endswith("Reference: req_9")
        assert response.meta["request_id"] == "req_9"

    def test_unavailable_error_custom_code(self):
        response = unavailable_error("No key", error_code=ErrorCode.AI_NO_PROVIDER)
        assert response.data["error_code"] == "AI_NO_PROVIDER"
        assert response.data["error_type"] == "unavailable"


class TestSanitizeErrorMessage:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (json.JSONDecodeError("bad", "doc", 0), "Invalid JSON format"),
            (TimeoutError("slow"), "Operation timed out"),
            (ValueError("/etc/secret"), "Invalid value provided"),
            (KeyError("api_key"), "Required configuration key not found"),
            (ConnectionError("refused"), "Connection failed - service may be unavailable"),
            (RuntimeError("/srv/app.py line 3"), "An internal error occurred"),
        ],
    )
    def test_messages_hide_details(self, exc, expected):
        assert sanitize_error_message(exc) == expected

    def test_include_type(self):
        assert sanitize_error_message(RuntimeError("x"), include_type=True) == (
            "An internal error occurred (RuntimeError)"
        )

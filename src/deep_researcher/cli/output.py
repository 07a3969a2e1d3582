"""JSON output helpers for the deep-researcher CLI.

Wraps the response helpers from deep_researcher.core.responses so CLI output
matches the response-v2 envelope used by the MCP tool.
"""

import json
import sys
from dataclasses import asdict
from typing import Any, Mapping, NoReturn, Sequence

from deep_researcher.core.responses import error_response, success_response


def emit(data: Any) -> None:
    """Emit minified JSON to stdout."""
    print(json.dumps(data, separators=(",", ":"), default=str))


def emit_error(
    message: str,
    code: str = "INTERNAL_ERROR",
    *,
    error_type: str = "internal",
    remediation: str | None = None,
    details: Mapping[str, Any] | None = None,
) -> NoReturn:
    """Emit error JSON to stderr and exit with code 1.

    Raises:
        SystemExit: Always exits with code 1.
    """
    response = error_response(
        message=message,
        error_code=code,
        error_type=error_type,
        remediation=remediation,
        details=details,
    )
    print(json.dumps(asdict(response), separators=(",", ":"), default=str), file=sys.stderr)
    sys.exit(1)


def emit_success(
    data: Any,
    *,
    warnings: Sequence[str] | None = None,
    telemetry: Mapping[str, Any] | None = None,
) -> None:
    """Emit success response envelope to stdout."""
    payload = data if isinstance(data, dict) else {"result": data}
    response = success_response(data=payload, warnings=warnings, telemetry=telemetry)
    emit(asdict(response))

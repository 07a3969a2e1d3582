"""Core research, completion and background-task machinery for deep-researcher."""

from deep_researcher.core.background_task import BackgroundTask, TaskStatus
from deep_researcher.core.responses import (
    ErrorCode,
    ErrorType,
    ToolResponse,
    error_response,
    success_response,
)

__all__ = [
    "BackgroundTask",
    "TaskStatus",
    "ErrorCode",
    "ErrorType",
    "ToolResponse",
    "error_response",
    "success_response",
]

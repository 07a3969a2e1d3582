"""Error taxonomy for the research pipeline.

Only ``NotFoundError``, ``InvalidStateError`` and ``ValidationFailure`` are
surfaced to callers of the session API as structured client errors. The
remaining types are recovered inside the pipeline:

- ``ParseFailure`` is absorbed by the structured output parser.
- ``CollaboratorFailure`` is absorbed per subtask and escalated only when a
  phase is left without usable output.
- ``FatalResearchError`` is recorded on the session when a background run
  crashes.
"""

from __future__ import annotations

from typing import Optional


class ResearchError(Exception):
    """Base class for research pipeline errors."""


class NotFoundError(ResearchError):
    """Raised when a session id is unknown or has expired."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Research session '{session_id}' not found")


class InvalidStateError(ResearchError):
    """Raised when an operation is not valid for the session's current phase."""

    def __init__(self, message: str, *, phase: Optional[str] = None) -> None:
        self.phase = phase
        super().__init__(message)


class ParseFailure(ResearchError):
    """Raised when model output cannot be decoded into a structured shape."""

    def __init__(self, shape: str, reason: str) -> None:
        self.shape = shape
        self.reason = reason
        super().__init__(f"Failed to parse {shape}: {reason}")


class CollaboratorFailure(ResearchError):
    """Raised when a search or completion call fails or yields nothing usable."""

    def __init__(
        self,
        message: str,
        *,
        collaborator: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        self.collaborator = collaborator
        self.original_error = original_error
        super().__init__(message)


class ValidationFailure(ResearchError):
    """Raised when input or intermediate output fails validation."""


class FatalResearchError(ResearchError):
    """Unexpected failure during a background phase run."""

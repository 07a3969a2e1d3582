"""Multi-phase web research pipeline.

A research session moves a ResearchContext through clarification,
decomposition, per-subtask research, synthesis and review to a final answer.
ResearchService is the session-oriented entry point; ResearchOrchestrator
drives a single context.
"""

from deep_researcher.core.research.errors import (
    CollaboratorFailure,
    FatalResearchError,
    InvalidStateError,
    NotFoundError,
    ParseFailure,
    ResearchError,
    ValidationFailure,
)
from deep_researcher.core.research.models import (
    ClarificationResponse,
    FeedbackResponse,
    ResearchContext,
    ResearchPhase,
    ResearchResults,
    ResearchStatus,
    Subtask,
    SubtaskSummary,
)
from deep_researcher.core.research.cache import SemanticResultCache
from deep_researcher.core.research.orchestrator import ResearchOrchestrator
from deep_researcher.core.research.service import ResearchService
from deep_researcher.core.research.store import ExpiringStore, InMemoryExpiringStore

__all__ = [
    # Errors
    "ResearchError",
    "NotFoundError",
    "InvalidStateError",
    "ParseFailure",
    "CollaboratorFailure",
    "ValidationFailure",
    "FatalResearchError",
    # Models
    "ResearchPhase",
    "ResearchContext",
    "Subtask",
    "SubtaskSummary",
    "ResearchStatus",
    "ClarificationResponse",
    "ResearchResults",
    "FeedbackResponse",
    # Pipeline
    "ResearchOrchestrator",
    "ResearchService",
    "SemanticResultCache",
    "ExpiringStore",
    "InMemoryExpiringStore",
]

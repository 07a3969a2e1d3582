"""Pydantic models for the research pipeline.

These models define the per-session research context that every pipeline
phase reads and mutates, the records it accumulates (subtasks, summaries),
and the payloads returned by the session API.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from deep_researcher.core.research.errors import InvalidStateError

LOG_ENTRY_MAX_LENGTH = 500
IN_PROGRESS_MESSAGE = "Research is still in progress. No results available yet."


def count_words(text: Optional[str]) -> int:
    """Count whitespace-separated words."""
    if not text:
        return 0
    return len(text.split())


def truncate(text: str, max_length: int) -> str:
    """Truncate ``text`` to ``max_length`` characters, marking the cut with '...'."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


# =============================================================================
# Enums
# =============================================================================


class ResearchPhase(str, Enum):
    """Phases of the research pipeline, in execution order."""

    CLARIFICATION = "clarification"
    DECOMPOSITION = "decomposition"
    RESEARCH = "research"
    SYNTHESIS = "synthesis"
    REVIEW = "review"
    REFINEMENT = "refinement"
    FINAL = "final"

    @property
    def order(self) -> int:
        return list(ResearchPhase).index(self)

    def next_phase(self) -> Optional["ResearchPhase"]:
        """Return the phase that follows this one, or None for FINAL."""
        phases = list(ResearchPhase)
        idx = phases.index(self)
        if idx + 1 < len(phases):
            return phases[idx + 1]
        return None


# =============================================================================
# Pipeline Records
# =============================================================================


class Subtask(BaseModel):
    """One decomposed research question."""

    id: str = Field(..., description="Stable, non-empty identifier")
    description: str = Field(..., description="The research question")


class SubtaskSummary(BaseModel):
    """Cited condensation of the evidence gathered for one subtask."""

    subtask_id: str
    summary: str
    urls: list[str] = Field(default_factory=list)
    is_placeholder: bool = Field(
        default=False,
        description="True when the summary records a failed research attempt",
    )

    def to_prompt_dict(self) -> dict[str, Any]:
        """Shape used when summaries are serialized into completion arguments."""
        return {"subtask_id": self.subtask_id, "summary": self.summary, "urls": self.urls}


# =============================================================================
# Research Context
# =============================================================================


class ResearchContext(BaseModel):
    """Mutable state of one research session.

    The orchestrator that owns the context is its only writer. Phase moves
    forward only; once ``error_message`` is set the orchestrator stops
    advancing until :meth:`reset_error` is called.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    original_prompt: str
    current_prompt: str = ""
    unified_topic: Optional[str] = Field(
        default=None, description="Research topic, frozen once decomposition begins"
    )

    phase: ResearchPhase = Field(default=ResearchPhase.CLARIFICATION)
    phase_completed: bool = False
    status_text: str = "Research session started"
    progress: int = Field(default=0, ge=0, le=100)

    # Clarification round output
    clarifying_questions: list[str] = Field(default_factory=list)
    needs_clarification: bool = False
    ready_message: Optional[str] = None
    clarification_rounds: int = 0

    subtasks: list[Subtask] = Field(default_factory=list)
    summaries: list[SubtaskSummary] = Field(default_factory=list)
    follow_up_subtasks: list[Subtask] = Field(default_factory=list)
    follow_up_summaries: list[SubtaskSummary] = Field(default_factory=list)

    draft_answer: Optional[str] = None
    final_answer: Optional[str] = None
    all_sources: list[str] = Field(default_factory=list)

    completeness_score: Optional[float] = None
    quality_score: Optional[float] = None

    log: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def model_post_init(self, __context: Any) -> None:
        if not self.current_prompt:
            self.current_prompt = self.original_prompt

    @property
    def has_error(self) -> bool:
        return self.error_message is not None

    @property
    def is_complete(self) -> bool:
        return self.phase == ResearchPhase.FINAL and self.phase_completed

    @property
    def best_answer(self) -> Optional[str]:
        """Final answer when available, otherwise the current draft."""
        return self.final_answer or self.draft_answer

    @property
    def topic(self) -> str:
        return self.unified_topic or self.current_prompt

    @property
    def usable_summaries(self) -> list[SubtaskSummary]:
        return [s for s in self.summaries if not s.is_placeholder]

    def add_log(self, message: str) -> None:
        """Append a log entry, truncated to a bounded length."""
        self.log.append(truncate(message, LOG_ENTRY_MAX_LENGTH))
        self.updated_at = datetime.utcnow()

    def set_error(self, message: str) -> None:
        """Record a phase-level error; halts further phase advancement."""
        self.error_message = message
        self.status_text = f"Error: {message}"
        self.add_log(f"Error occurred: {message}")

    def reset_error(self) -> None:
        self.error_message = None
        self.updated_at = datetime.utcnow()

    def enter_phase(self, phase: ResearchPhase, status_text: Optional[str] = None) -> None:
        """Move to ``phase``; moving backwards raises InvalidStateError."""
        if phase.order < self.phase.order:
            raise InvalidStateError(
                f"Cannot move from phase '{self.phase.value}' back to '{phase.value}'",
                phase=self.phase.value,
            )
        self.phase = phase
        self.phase_completed = False
        if status_text:
            self.status_text = status_text
        self.updated_at = datetime.utcnow()

    def complete_phase(self, status_text: Optional[str] = None) -> None:
        self.phase_completed = True
        if status_text:
            self.status_text = status_text
        self.updated_at = datetime.utcnow()

    def add_sources(self, urls: Iterable[str]) -> None:
        """Merge URLs into ``all_sources`` without duplicates."""
        for url in urls:
            if url and url not in self.all_sources:
                self.all_sources.append(url)

    def subtask_completed(self, subtask_id: str) -> bool:
        return any(
            s.subtask_id == subtask_id and not s.is_placeholder for s in self.summaries
        )


# =============================================================================
# Session API Payloads
# =============================================================================


class SubtaskStatus(BaseModel):
    id: str
    description: str
    is_complete: bool = False


class ResearchStatus(BaseModel):
    """Point-in-time view of a session, safe to read during a background run."""

    session_id: str
    phase: ResearchPhase
    progress: int
    status_text: str
    subtasks: list[SubtaskStatus] = Field(default_factory=list)
    log: list[str] = Field(default_factory=list)
    is_complete: bool = False
    is_running: bool = False
    needs_clarification: bool = False
    clarifying_questions: list[str] = Field(default_factory=list)
    cache_hit: bool = False
    error: Optional[str] = None

    @classmethod
    def from_context(
        cls,
        session_id: str,
        context: ResearchContext,
        *,
        is_running: bool = False,
        cache_hit: bool = False,
    ) -> "ResearchStatus":
        return cls(
            session_id=session_id,
            phase=context.phase,
            progress=context.progress,
            status_text=context.status_text,
            subtasks=[
                SubtaskStatus(
                    id=s.id,
                    description=s.description,
                    is_complete=context.subtask_completed(s.id),
                )
                for s in context.subtasks
            ],
            log=list(context.log),
            is_complete=context.is_complete,
            is_running=is_running,
            needs_clarification=context.needs_clarification,
            clarifying_questions=list(context.clarifying_questions),
            cache_hit=cache_hit,
            error=context.error_message,
        )


class ClarificationResponse(BaseModel):
    session_id: str
    questions: list[str] = Field(default_factory=list)
    needs_clarification: bool = False
    status_text: Optional[str] = None


class ResearchResults(BaseModel):
    session_id: str
    answer: str
    word_count: int
    sources: list[str] = Field(default_factory=list)
    is_final: bool = False


class FeedbackResponse(BaseModel):
    session_id: str
    status_text: str

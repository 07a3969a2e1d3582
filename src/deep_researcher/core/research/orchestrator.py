"""Research pipeline orchestrator.

One orchestrator owns one ResearchContext and drives it through the phases:

    clarification -> decomposition -> research -> synthesis -> review
                  -> (refinement) -> final

Each phase has one async entry point. Entry points are serialized by a
per-orchestrator ``asyncio.Lock``; reading a status snapshot never takes the
lock. Calling the entry point of a phase that already passed is a no-op,
calling the current phase re-runs it, and skipping ahead raises
InvalidStateError. Once the context records an error no phase advances.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from deep_researcher.config import ResearchConfig
from deep_researcher.core.completion.base import CompletionProvider
from deep_researcher.core.research.errors import (
    CollaboratorFailure,
    InvalidStateError,
    ResearchError,
    ValidationFailure,
)
from deep_researcher.core.research.gatherer import EvidenceGatherer
from deep_researcher.core.research.models import (
    ClarificationResponse,
    FeedbackResponse,
    ResearchContext,
    ResearchPhase,
    ResearchStatus,
    Subtask,
    count_words,
)
from deep_researcher.core.research.parsing import (
    ClarificationOutput,
    DecompositionOutput,
    SubtaskSpec,
    parse_output,
)
from deep_researcher.core.research.providers.base import SearchProvider
from deep_researcher.core.research.review import ReviewEngine, should_expand
from deep_researcher.core.research.synthesis import SynthesisEngine

logger = logging.getLogger(__name__)

NEEDS_INPUT_CUES = ("need", "require", "clarif", "more information")
EMPTY_PROMPT_CUES = ("provide a prompt", "please provide", "no prompt", "research request")

NO_SUBTASKS_MESSAGE = "Decomposition failed: No valid subtasks were generated."
INVALID_SUBTASKS_MESSAGE = "All generated subtasks were invalid or too short."


def is_prompt_empty(prompt: Optional[str]) -> bool:
    """Whether a unified prompt is blank or merely asks for a prompt."""
    if not prompt or not prompt.strip():
        return True
    lowered = prompt.lower()
    return any(cue in lowered for cue in EMPTY_PROMPT_CUES)


def needs_more_input(ready_message: Optional[str], questions: Sequence[str]) -> bool:
    if ready_message:
        lowered = ready_message.lower()
        if any(cue in lowered for cue in NEEDS_INPUT_CUES):
            return True
    return len(questions) > 0


def normalize_subtasks(
    specs: Sequence[SubtaskSpec], min_description_length: int
) -> list[Subtask]:
    """Drop short descriptions, fill missing ids and drop duplicate ids."""
    subtasks: list[Subtask] = []
    seen: set[str] = set()
    for number, spec in enumerate(specs, start=1):
        description = spec.description.strip()
        if len(description) <= min_description_length:
            continue
        subtask_id = spec.id.strip()
        if not subtask_id:
            subtask_id = f"subtask-{number}"
            suffix = 1
            while subtask_id in seen:
                suffix += 1
                subtask_id = f"subtask-{number}-{suffix}"
        elif subtask_id in seen:
            continue
        seen.add(subtask_id)
        subtasks.append(Subtask(id=subtask_id, description=description))
    return subtasks


class ResearchOrchestrator:
    """Phase state machine for a single research session.

    Args:
        query: The user's research request
        completion: Completion capability
        search: Web search capability
        config: Research tuning (defaults to ResearchConfig())
        logger: Logger that mirrors every context log entry
        session_id: Identifier for the context (generated when omitted)
    """

    def __init__(
        self,
        query: str,
        completion: CompletionProvider,
        search: SearchProvider,
        *,
        config: Optional[ResearchConfig] = None,
        logger: Optional[logging.Logger] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.config = config or ResearchConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._completion = completion
        self._lock = asyncio.Lock()

        context_kwargs = {"original_prompt": query}
        if session_id:
            context_kwargs["id"] = session_id
        self.context = ResearchContext(**context_kwargs)

        self._gatherer = EvidenceGatherer(search, completion, self._logger)
        self._synthesis = SynthesisEngine(
            completion,
            self._logger,
            batch_threshold=self.config.batch_threshold,
            batch_size=self.config.batch_size,
            timeout=self.config.synthesis_timeout,
        )
        self._review = ReviewEngine(
            completion,
            self._gatherer,
            self._logger,
            polish_min_words=self.config.polish_min_words,
            retention_ratio=self.config.polish_retention_ratio,
            expansion_word_target=self.config.expansion_word_target,
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def status(self, *, is_running: bool = False, cache_hit: bool = False) -> ResearchStatus:
        return ResearchStatus.from_context(
            self.context.id, self.context, is_running=is_running, cache_hit=cache_hit
        )

    def clarification_state(self) -> ClarificationResponse:
        ctx = self.context
        return ClarificationResponse(
            session_id=ctx.id,
            questions=list(ctx.clarifying_questions),
            needs_clarification=ctx.needs_clarification,
            status_text=ctx.ready_message or ctx.status_text,
        )

    def note(self, message: str) -> None:
        self.context.add_log(message)
        self._logger.info("[%s] %s", self.context.id, message)

    # ------------------------------------------------------------------
    # Phase gating
    # ------------------------------------------------------------------

    def _should_run(self, phase: ResearchPhase) -> bool:
        """Decide whether an entry point for ``phase`` does work.

        Raises:
            InvalidStateError: If the predecessor of ``phase`` was not reached.
        """
        ctx = self.context
        if ctx.has_error:
            self._logger.debug("Session %s has an error; skipping %s", ctx.id, phase.value)
            return False
        if ctx.phase.order > phase.order:
            return False
        if ctx.phase.order < phase.order - 1:
            raise InvalidStateError(
                f"Cannot enter phase '{phase.value}' from '{ctx.phase.value}'",
                phase=ctx.phase.value,
            )
        return True

    def _record_failure(self, phase: ResearchPhase, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        self._logger.warning("Phase %s failed for session %s: %s", phase.value, self.context.id, message)
        self.context.set_error(message)

    async def _execute(
        self, phase: ResearchPhase, body: Callable[[], Awaitable[None]]
    ) -> ResearchStatus:
        async with self._lock:
            if not self._should_run(phase):
                return self.status()
            try:
                await body()
            except CollaboratorFailure as exc:
                self._record_failure(phase, exc)
                if phase == ResearchPhase.SYNTHESIS:
                    raise
            except ResearchError as exc:
                self._record_failure(phase, exc)
            except Exception as exc:
                self._logger.exception("Unexpected error in phase %s", phase.value)
                self._record_failure(phase, exc)
        return self.status()

    # ------------------------------------------------------------------
    # Clarification
    # ------------------------------------------------------------------

    async def initialize(self) -> ResearchStatus:
        """Run the first clarification round."""
        return await self._execute(ResearchPhase.CLARIFICATION, self._clarification_round)

    async def submit_clarification(self, text: str) -> ClarificationResponse:
        """Answer the clarifying questions, or accept the prompt when blank.

        Raises:
            InvalidStateError: If the session is past clarification.
        """
        ctx = self.context
        if ctx.phase != ResearchPhase.CLARIFICATION:
            raise InvalidStateError(
                f"Clarification is closed; session is in phase '{ctx.phase.value}'",
                phase=ctx.phase.value,
            )
        answer = (text or "").strip()
        if answer:

            async def body() -> None:
                ctx.current_prompt = f"{ctx.current_prompt}\n\nAdditional information: {answer}"
                self.note("Received additional information from user")
                await self._clarification_round()

        else:

            async def body() -> None:
                self._accept_prompt("Proceeding with current research prompt")

        await self._execute(ResearchPhase.CLARIFICATION, body)
        return self.clarification_state()

    def _accept_prompt(self, message: str) -> None:
        ctx = self.context
        ctx.needs_clarification = False
        ctx.clarifying_questions = []
        ctx.complete_phase(message)
        self.note(message)

    async def _clarification_round(self) -> None:
        ctx = self.context
        ctx.enter_phase(ResearchPhase.CLARIFICATION, "Analyzing research request")
        ctx.clarification_rounds += 1

        parsed: Optional[ClarificationOutput] = None
        try:
            raw = await self._completion.invoke(
                "clarify_prompt", {"user_prompt": ctx.current_prompt}
            )
            parsed = parse_output(raw, ClarificationOutput, self.note)
        except Exception as exc:
            self._logger.warning("Clarification round failed: %s", exc)
            self.note(f"Clarification error: {exc}")

        if parsed is None:
            self._accept_prompt("Proceeding with research using the current prompt")
            return

        unified = (parsed.unified_research_prompt or "").strip()
        prompt_rejected = is_prompt_empty(unified)
        if not prompt_rejected:
            ctx.current_prompt = unified

        ctx.ready_message = parsed.ready_to_proceed_message
        ctx.clarifying_questions = [q for q in parsed.clarifying_questions if q.strip()]
        needs_input = prompt_rejected or needs_more_input(
            ctx.ready_message, ctx.clarifying_questions
        )

        if needs_input and ctx.clarification_rounds >= self.config.max_clarification_rounds:
            self._accept_prompt("Maximum clarification rounds reached; proceeding with research")
            return
        if not needs_input:
            self._accept_prompt(ctx.ready_message or "Ready to proceed with research.")
            return

        ctx.needs_clarification = True
        ctx.status_text = "Clarification needed"
        self.note(f"Clarification round {ctx.clarification_rounds}: {len(ctx.clarifying_questions)} questions")

    # ------------------------------------------------------------------
    # Decomposition / Research / Synthesis
    # ------------------------------------------------------------------

    async def decompose(self) -> ResearchStatus:
        return await self._execute(ResearchPhase.DECOMPOSITION, self._decompose)

    async def _decompose(self) -> None:
        ctx = self.context
        ctx.enter_phase(ResearchPhase.DECOMPOSITION, "Decomposing research topic")
        ctx.needs_clarification = False
        if ctx.unified_topic is None:
            ctx.unified_topic = ctx.current_prompt
        self.note(f"Decomposing research topic: {ctx.topic}")

        try:
            raw = await self._completion.invoke("decompose_prompt", {"research_prompt": ctx.topic})
        except Exception as exc:
            raise CollaboratorFailure(
                f"Decomposition failed: {exc}", collaborator="completion", original_error=exc
            ) from exc

        parsed = parse_output(raw, DecompositionOutput, self.note)
        if parsed is None or not parsed.subtasks:
            raise ValidationFailure(NO_SUBTASKS_MESSAGE)

        subtasks = normalize_subtasks(
            parsed.subtasks, self.config.min_subtask_description_length
        )
        dropped = len(parsed.subtasks) - len(subtasks)
        if dropped:
            self.note(f"Discarded {dropped} invalid or duplicate subtasks")
        if not subtasks:
            raise ValidationFailure(INVALID_SUBTASKS_MESSAGE)

        ctx.subtasks = subtasks
        ctx.complete_phase(f"Identified {len(subtasks)} research subtasks")
        self.note(ctx.status_text)

    async def research(self) -> ResearchStatus:
        return await self._execute(ResearchPhase.RESEARCH, self._research)

    def _on_progress(self, completed: int, total: int) -> None:
        ctx = self.context
        ctx.progress = int(completed * 100 / total) if total else 100
        ctx.status_text = f"Researched {completed}/{total} subtasks"

    async def _research(self) -> None:
        ctx = self.context
        ctx.enter_phase(ResearchPhase.RESEARCH, "Researching subtasks")
        ctx.summaries = []
        ctx.all_sources = []
        ctx.progress = 0

        summaries = await self._gatherer.gather_all(
            ctx.subtasks, ctx.topic, log=self.note, progress=self._on_progress
        )
        ctx.summaries = summaries
        for summary in summaries:
            ctx.add_sources(summary.urls)

        usable = len(ctx.usable_summaries)
        if usable == 0:
            self._logger.warning("Session %s: no subtask produced usable research", ctx.id)
            self.note("Warning: no subtask produced usable research")
        ctx.complete_phase(f"Research complete: {usable}/{len(summaries)} subtasks summarized")
        self.note(ctx.status_text)

    async def synthesize(self) -> ResearchStatus:
        """Combine summaries into a draft.

        Raises:
            CollaboratorFailure: If synthesis and its fallback both fail (the
                error is recorded on the context first).
        """
        return await self._execute(ResearchPhase.SYNTHESIS, self._synthesize)

    async def _synthesize(self) -> None:
        ctx = self.context
        ctx.enter_phase(ResearchPhase.SYNTHESIS, "Synthesizing research findings")
        self.note(f"Synthesizing {len(ctx.summaries)} research summaries")
        draft = await self._synthesis.combine(
            ctx.summaries, ctx.original_prompt, ctx.topic, self.note
        )
        ctx.draft_answer = draft
        ctx.complete_phase(f"Draft answer ready ({count_words(draft)} words)")
        self.note(ctx.status_text)

    # ------------------------------------------------------------------
    # Review / Refinement / Final
    # ------------------------------------------------------------------

    async def review(self) -> ResearchStatus:
        return await self._execute(ResearchPhase.REVIEW, self._review_and_finalize)

    async def _review_and_finalize(self) -> None:
        ctx = self.context
        ctx.enter_phase(ResearchPhase.REVIEW, "Reviewing draft for gaps and accuracy")
        draft = ctx.draft_answer
        if not draft:
            raise ValidationFailure("No draft answer available to review")

        outcome = await self._review.review(
            draft, ctx.summaries, ctx.original_prompt, ctx.topic, self.note
        )
        if outcome.completeness_score is not None:
            ctx.completeness_score = outcome.completeness_score
            self.note(f"Research completeness score: {outcome.completeness_score:g}/10")
        for concern in outcome.accuracy_concerns:
            self.note(f"Accuracy concern ({concern.severity or 'unspecified'}): {concern.issue}")
        if outcome.structural_feedback:
            self.note(f"Structural feedback: {outcome.structural_feedback}")

        if outcome.follow_ups:
            ctx.enter_phase(ResearchPhase.REFINEMENT, "Researching follow-up topics")
            ctx.follow_up_subtasks = outcome.follow_ups
            self.note(f"Identified {len(outcome.follow_ups)} topics for additional research")
            ctx.follow_up_summaries = await self._review.research_follow_ups(
                outcome.follow_ups, ctx.topic, self.note
            )
            for summary in ctx.follow_up_summaries:
                ctx.add_sources(summary.urls)
            draft = await self._review.merge(draft, ctx.follow_up_summaries, ctx.topic, self.note)
            ctx.draft_answer = draft

        if self.config.validation_enabled:
            validation = await self._review.validate(draft, self.note)
            draft = validation.draft
            if validation.report is not None:
                ctx.quality_score = validation.report.quality_score

        if self.config.expansion_enabled and should_expand(
            draft, ctx.original_prompt, self.config.expansion_word_target
        ):
            draft = await self._review.expand(draft, ctx.topic, self.note)

        draft = await self._review.enhance_with_citations(draft, ctx.all_sources, self.note)
        ctx.draft_answer = draft

        final = await self._review.finalize(draft, ctx.all_sources, self.note)
        ctx.final_answer = final
        ctx.enter_phase(ResearchPhase.FINAL)
        ctx.progress = 100
        ctx.complete_phase(
            f"Research complete ({count_words(final)} words, {len(ctx.all_sources)} sources)"
        )
        self.note(ctx.status_text)

    async def incorporate_feedback(self, text: str) -> FeedbackResponse:
        """Revise the current answer with reader feedback.

        Raises:
            InvalidStateError: Unless the session is in review or final.
        """
        ctx = self.context
        if ctx.phase not in (ResearchPhase.REVIEW, ResearchPhase.FINAL):
            raise InvalidStateError(
                f"Feedback is only accepted after review; session is in phase '{ctx.phase.value}'",
                phase=ctx.phase.value,
            )
        feedback = (text or "").strip()
        if not feedback:
            return FeedbackResponse(session_id=ctx.id, status_text=ctx.status_text)

        async with self._lock:
            answer = ctx.final_answer if ctx.phase == ResearchPhase.FINAL else ctx.draft_answer
            if not answer:
                raise InvalidStateError("No answer available to revise", phase=ctx.phase.value)
            self.note("Incorporating user feedback")
            revised = await self._review.incorporate_feedback(answer, feedback, self.note)
            if ctx.phase == ResearchPhase.FINAL:
                ctx.final_answer = revised
            else:
                ctx.draft_answer = revised
            ctx.status_text = "Feedback incorporated"
        return FeedbackResponse(session_id=ctx.id, status_text=ctx.status_text)

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def next_phase(self) -> Optional[ResearchPhase]:
        """Phase that ``advance_one`` would run, or None when nothing is left."""
        ctx = self.context
        if ctx.has_error or ctx.phase in (ResearchPhase.FINAL, ResearchPhase.REFINEMENT):
            return None
        if ctx.phase == ResearchPhase.CLARIFICATION:
            return ResearchPhase.DECOMPOSITION
        if not ctx.phase_completed:
            return ctx.phase
        return ctx.phase.next_phase()

    def _entry_point(self, phase: ResearchPhase) -> Callable[[], Awaitable[ResearchStatus]]:
        return {
            ResearchPhase.DECOMPOSITION: self.decompose,
            ResearchPhase.RESEARCH: self.research,
            ResearchPhase.SYNTHESIS: self.synthesize,
            ResearchPhase.REVIEW: self.review,
        }[phase]

    async def advance_one(self) -> ResearchStatus:
        """Run the next pending phase."""
        phase = self.next_phase()
        if phase is None:
            return self.status()
        return await self._entry_point(phase)()

    async def run_remaining(self) -> ResearchStatus:
        """Run every remaining phase in order, stopping at the first error."""
        for phase in (
            ResearchPhase.DECOMPOSITION,
            ResearchPhase.RESEARCH,
            ResearchPhase.SYNTHESIS,
            ResearchPhase.REVIEW,
        ):
            if self.context.has_error:
                break
            await self._entry_point(phase)()
        return self.status()

    async def run(self) -> str:
        """Run the whole pipeline unattended and return the final answer.

        Clarifying questions are not asked: the prompt produced by the first
        clarification round is accepted as-is.

        Raises:
            ResearchError: If the pipeline ends with an error and no answer.
        """
        if self.context.clarification_rounds == 0:
            await self.initialize()
        if self.context.phase == ResearchPhase.CLARIFICATION and not self.context.has_error:
            await self.submit_clarification("")
        await self.run_remaining()

        answer = self.context.final_answer or self.context.draft_answer
        if self.context.has_error and not answer:
            raise ResearchError(self.context.error_message)
        return answer or ""

    def export_markdown(self) -> str:
        """Markdown export of the final (or draft) answer under a topic heading.

        Raises:
            InvalidStateError: If no answer exists yet.
        """
        ctx = self.context
        answer = ctx.best_answer
        if not answer:
            raise InvalidStateError("No research results available to export", phase=ctx.phase.value)
        if answer.lstrip().startswith("# "):
            return answer
        return f"# {ctx.topic}\n\n{answer}"

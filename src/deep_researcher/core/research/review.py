"""Review and refinement of a synthesized draft.

Every step here is best-effort: a failed completion call or unparseable
output is logged and the draft passes through unchanged. The orchestrator
composes the steps into the review phase:

    review -> follow-up research -> merge -> validate/correct -> expand
           -> enhance_with_citations -> finalize (references + polish guard)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from deep_researcher.core.completion.base import CompletionProvider
from deep_researcher.core.research.gatherer import (
    FOLLOW_UP_PLACEHOLDER,
    EvidenceGatherer,
)
from deep_researcher.core.research.models import Subtask, SubtaskSummary, count_words
from deep_researcher.core.research.parsing import (
    AccuracyConcern,
    MergeOutput,
    ReviewOutput,
    ValidationIssue,
    ValidationOutput,
    parse_output,
)
from deep_researcher.core.research.synthesis import serialize_summaries

logger = logging.getLogger(__name__)

LogSink = Callable[[str], None]

DEFAULT_POLISH_MIN_WORDS = 1000
DEFAULT_RETENTION_RATIO = 0.9
DEFAULT_EXPANSION_WORD_TARGET = 2000

SEVERITY_RANK = {"high": 0, "medium": 1, "low": 2}
EXPANSION_OPT_OUT_TERMS = ("brief", "summary")

_REFERENCES_PATTERN = re.compile(
    r"^\s*(#{1,6}\s*references\b|references:)", re.IGNORECASE | re.MULTILINE
)
_SECTION_SPLIT = re.compile(r"\n(?=#{1,6} )")
_PARAGRAPH_SPLIT = re.compile(r"\r?\n\s*\r?\n")


@dataclass
class ReviewOutcome:
    """Result of the critique call; empty when the review failed."""

    follow_ups: list[Subtask] = field(default_factory=list)
    accuracy_concerns: list[AccuracyConcern] = field(default_factory=list)
    structural_feedback: Optional[str] = None
    completeness_score: Optional[float] = None


@dataclass
class ValidationOutcome:
    draft: str
    report: Optional[ValidationOutput] = None
    corrected: bool = False


def has_references_section(text: str) -> bool:
    """Whether ``text`` already carries a references heading."""
    return bool(_REFERENCES_PATTERN.search(text))


def append_references(text: str, sources: Sequence[str]) -> str:
    """Append a ``## References`` list unless one is present or there are no sources."""
    if not sources or has_references_section(text):
        return text
    lines = "".join(f"- {url}\n" for url in sources)
    return f"{text}\n\n## References\n{lines}"


def numbered_sources(sources: Sequence[str]) -> list[str]:
    return [f"[{i + 1}] {url}" for i, url in enumerate(sources)]


def split_sections(content: str) -> list[str]:
    """Split markdown on headings, or on paragraphs when there are none."""
    sections = [s for s in _SECTION_SPLIT.split(content) if s.strip()]
    if len(sections) <= 1:
        sections = [s for s in _PARAGRAPH_SPLIT.split(content) if s.strip()]
    return sections


def is_conclusion(section: str) -> bool:
    heading = section.lstrip().lstrip("#").strip().lower()
    return heading.startswith("conclusion")


def should_expand(draft: str, original_prompt: str, word_target: int) -> bool:
    lowered = original_prompt.lower()
    if any(term in lowered for term in EXPANSION_OPT_OUT_TERMS):
        return False
    return count_words(draft) < word_target


def format_issues(issues: Sequence[ValidationIssue]) -> list[str]:
    """Render validation issues for the correction prompt, most severe first."""
    ordered = sorted(
        issues, key=lambda issue: SEVERITY_RANK.get(issue.severity.strip().lower(), 3)
    )
    lines = []
    for issue in ordered:
        kind = (issue.issue_type or "general").upper()
        lines.append(
            f"- {kind} ISSUE ({issue.severity or 'unspecified'}):\n"
            f"  Location: {issue.location}\n"
            f"  Problem: {issue.description}\n"
            f"  Suggestion: {issue.suggestion}\n"
        )
    return lines


class ReviewEngine:
    """Critique and refine drafts.

    Args:
        completion: Completion capability
        gatherer: Used to research follow-up subtasks
        logger: Logger for diagnostics
        polish_min_words: Only polish answers longer than this
        retention_ratio: Minimum share of words a polished answer must keep
        expansion_word_target: Drafts shorter than this are eligible for expansion
    """

    def __init__(
        self,
        completion: CompletionProvider,
        gatherer: EvidenceGatherer,
        logger: Optional[logging.Logger] = None,
        *,
        polish_min_words: int = DEFAULT_POLISH_MIN_WORDS,
        retention_ratio: float = DEFAULT_RETENTION_RATIO,
        expansion_word_target: int = DEFAULT_EXPANSION_WORD_TARGET,
    ) -> None:
        self._completion = completion
        self._gatherer = gatherer
        self._logger = logger or logging.getLogger(__name__)
        self.polish_min_words = polish_min_words
        self.retention_ratio = retention_ratio
        self.expansion_word_target = expansion_word_target

    async def _invoke_text(
        self, function_name: str, arguments: dict, emit: LogSink
    ) -> Optional[str]:
        """Invoke a plain-text completion; None on failure or empty output."""
        try:
            raw = await self._completion.invoke(function_name, arguments)
        except Exception as exc:
            self._logger.warning("%s failed: %s", function_name, exc)
            emit(f"Error during {function_name}: {exc}")
            return None
        text = (raw or "").strip()
        return text or None

    async def review(
        self,
        draft: str,
        summaries: Sequence[SubtaskSummary],
        original_prompt: str,
        topic: str,
        log: Optional[LogSink] = None,
    ) -> ReviewOutcome:
        """Critique ``draft``; never raises."""
        emit = log or (lambda message: None)
        try:
            raw = await self._completion.invoke(
                "review_answer",
                {
                    "original_prompt": original_prompt,
                    "final_answer": draft,
                    "summaries": serialize_summaries(summaries),
                    "research_prompt": topic,
                },
            )
        except Exception as exc:
            self._logger.warning("Review failed: %s", exc)
            emit(f"Warning: review failed, continuing with current draft: {exc}")
            return ReviewOutcome()

        parsed = parse_output(raw, ReviewOutput, emit)
        if parsed is None:
            emit("Warning: review output could not be parsed, continuing with current draft")
            return ReviewOutcome()

        follow_ups: list[Subtask] = []
        seen: set[str] = set()
        for number, spec in enumerate(parsed.follow_up_subtasks, start=1):
            description = spec.description.strip()
            if not description:
                continue
            subtask_id = spec.id.strip() or f"followup-{number}"
            if subtask_id in seen:
                continue
            seen.add(subtask_id)
            follow_ups.append(Subtask(id=subtask_id, description=description))

        return ReviewOutcome(
            follow_ups=follow_ups,
            accuracy_concerns=list(parsed.accuracy_concerns),
            structural_feedback=parsed.structural_feedback,
            completeness_score=parsed.completeness_score,
        )

    async def research_follow_ups(
        self,
        follow_ups: Sequence[Subtask],
        topic: str,
        log: Optional[LogSink] = None,
    ) -> list[SubtaskSummary]:
        return await self._gatherer.gather_all(
            follow_ups,
            topic,
            log=log,
            placeholder=FOLLOW_UP_PLACEHOLDER,
            limit_message=False,
        )

    async def merge(
        self,
        draft: str,
        new_summaries: Sequence[SubtaskSummary],
        topic: str,
        log: Optional[LogSink] = None,
    ) -> str:
        """Fold follow-up summaries into ``draft``; keeps the draft on failure."""
        emit = log or (lambda message: None)
        usable = [s for s in new_summaries if not s.is_placeholder]
        if not usable:
            emit("No usable follow-up research to merge")
            return draft

        try:
            raw = await self._completion.invoke(
                "merge_refinements",
                {
                    "original_answer": draft,
                    "new_summaries": serialize_summaries(usable),
                    "research_prompt": topic,
                },
            )
        except Exception as exc:
            self._logger.warning("Merge failed: %s", exc)
            emit(f"Error merging refinements: {exc}")
            return draft

        parsed = parse_output(raw, MergeOutput, emit)
        if parsed is None or not parsed.updated_answer.strip():
            emit("Merge produced no updated answer; keeping current draft")
            return draft
        emit(f"Merged follow-up research ({count_words(parsed.updated_answer)} words)")
        return parsed.updated_answer

    async def validate(self, draft: str, log: Optional[LogSink] = None) -> ValidationOutcome:
        """Run the quality validator and correct any issues it reports."""
        emit = log or (lambda message: None)
        emit("Performing final research validation")
        try:
            raw = await self._completion.invoke("validate_research", {"research": draft})
        except Exception as exc:
            self._logger.warning("Validation failed: %s", exc)
            emit(f"Validation error: {exc}")
            return ValidationOutcome(draft=draft)

        report = parse_output(raw, ValidationOutput, emit)
        if report is None:
            return ValidationOutcome(draft=draft)

        if report.quality_score is not None:
            emit(f"Validation score: {report.quality_score:g}/10")
        if report.passes_quality_threshold is False:
            emit("Research failed validation. Attempting corrections.")
        if not report.issues:
            return ValidationOutcome(draft=draft, report=report)

        emit(f"Found {len(report.issues)} quality issues to address")
        corrected = await self._invoke_text(
            "correct_research_issues",
            {"research": draft, "issues": format_issues(report.issues)},
            emit,
        )
        if corrected is None:
            return ValidationOutcome(draft=draft, report=report)
        emit("Applied corrections to address quality issues")
        return ValidationOutcome(draft=corrected, report=report, corrected=True)

    async def expand(
        self,
        draft: str,
        topic: str,
        log: Optional[LogSink] = None,
    ) -> str:
        """Expand each section of ``draft``; failed sections are kept as-is."""
        emit = log or (lambda message: None)
        sections = split_sections(draft)
        if not sections:
            return draft

        emit(f"Expanding {len(sections)} sections with additional detail")
        expanded: list[str] = []
        for section in sections:
            function_name = "expand_conclusion" if is_conclusion(section) else "expand_section"
            text = await self._invoke_text(
                function_name, {"section": section, "topic": topic}, emit
            )
            expanded.append(text or section)
        result = "\n\n".join(expanded)
        emit(f"Expanded answer to {count_words(result)} words")
        return result

    async def enhance_with_citations(
        self,
        draft: str,
        sources: Sequence[str],
        log: Optional[LogSink] = None,
    ) -> str:
        """Weave numbered citations into ``draft`` when sources exist."""
        if not sources:
            return draft
        emit = log or (lambda message: None)
        emit("Enhancing research with citations and formatting")
        text = await self._invoke_text(
            "enhance_with_citations",
            {"research": draft, "sources": numbered_sources(sources)},
            emit,
        )
        if text is None:
            return draft
        emit(f"Enhanced research with {len(sources)} cited sources")
        return text

    async def finalize(
        self,
        draft: str,
        sources: Sequence[str],
        log: Optional[LogSink] = None,
    ) -> str:
        """Append references and apply the polish guard."""
        emit = log or (lambda message: None)
        answer = append_references(draft, sources)

        words = count_words(answer)
        if words <= self.polish_min_words:
            return answer

        polished = await self._invoke_text("polish_article", {"article": answer}, emit)
        if polished is None:
            return answer
        polished_words = count_words(polished)
        if polished_words < words * self.retention_ratio:
            emit(
                f"Discarded polished version ({polished_words} words) "
                f"shorter than original ({words} words)"
            )
            return answer
        emit("Applied final editing and formatting improvements")
        return polished

    async def incorporate_feedback(
        self,
        answer: str,
        feedback: str,
        log: Optional[LogSink] = None,
    ) -> str:
        """Revise ``answer`` with reader feedback; keeps it on failure."""
        emit = log or (lambda message: None)
        revised = await self._invoke_text(
            "incorporate_feedback", {"article": answer, "feedback": feedback}, emit
        )
        if revised is None:
            return answer
        emit(f"Updated answer based on feedback ({count_words(revised)} words)")
        return revised


__all__ = [
    "ReviewEngine",
    "ReviewOutcome",
    "ValidationOutcome",
    "append_references",
    "has_references_section",
    "split_sections",
]

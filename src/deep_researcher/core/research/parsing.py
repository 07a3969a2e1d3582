"""Structured decoding of free-form model output.

Completion calls are asked to answer in JSON, but models routinely wrap the
object in markdown fences, surround it with prose, or embed raw newlines in
string values. Everything an engine reads from the completion capability
passes through :func:`parse_output`, which repairs the text, decodes it and
validates it against one of the closed set of result shapes defined here.

Example:
    >>> parse_output('```json\\n{"final_answer": "..."}\\n```', SynthesisOutput)
    SynthesisOutput(final_answer='...')
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from deep_researcher.core.research.errors import ParseFailure

logger = logging.getLogger(__name__)

DEFAULT_READY_MESSAGE = "Ready to proceed with research."

T = TypeVar("T", bound="StructuredOutput")


# =============================================================================
# Text Repair
# =============================================================================


def _slice_outer_braces(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start : end + 1]
    return text


def clean_json(raw: str) -> str:
    """Extract the JSON object substring from raw model output.

    Strips markdown code fences and any leading or trailing prose. Text
    without a ``{``/``}`` pair is returned trimmed but otherwise unmodified.
    """
    text = raw.strip()
    if text.startswith("```"):
        text = _slice_outer_braces(text)
    text = text.strip("`\n\r ")
    return _slice_outer_braces(text)


def escape_string_newlines(text: str) -> str:
    """Escape raw CR/LF characters that appear inside JSON string values."""
    in_string = False
    escaped = False
    out: list[str] = []
    for char in text:
        if char == '"' and not escaped:
            in_string = not in_string

        if in_string and char == "\n":
            out.append("\\n")
        elif in_string and char == "\r":
            out.append("\\r")
        else:
            out.append(char)

        escaped = char == "\\" and not escaped
    return "".join(out)


def repair_json(raw: str) -> str:
    """Best-effort repair of model output into a decodable JSON object."""
    return escape_string_newlines(clean_json(raw))


# =============================================================================
# Result Shapes
# =============================================================================


def _fold(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


class StructuredOutput(BaseModel):
    """Base for decoded model output.

    Field names are matched case-insensitively (and ignoring underscores) so
    ``finalAnswer``, ``Final_Answer`` and ``final_answer`` all populate the
    same field. Explicit ``null`` values are treated as absent.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _match_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        lookup: dict[str, str] = {}
        for name, info in cls.model_fields.items():
            target = info.alias or name
            lookup[_fold(name)] = target
            lookup[_fold(target)] = target

        normalized: dict[str, Any] = {}
        for key, value in data.items():
            if value is None:
                continue
            target = lookup.get(_fold(str(key)))
            if target is None:
                continue
            normalized.setdefault(target, value)
        return normalized


class SubtaskSpec(StructuredOutput):
    """A research question proposed by the decomposer or reviewer."""

    id: str = ""
    description: str = ""


class ClarificationOutput(StructuredOutput):
    unified_research_prompt: Optional[str] = Field(
        default=None, alias="unifiedResearchPrompt"
    )
    clarifying_questions: list[str] = Field(
        default_factory=list, alias="clarifyingQuestions"
    )
    ready_to_proceed_message: str = Field(
        default=DEFAULT_READY_MESSAGE, alias="readyToProceedMessage"
    )


class DecompositionOutput(StructuredOutput):
    subtasks: list[SubtaskSpec]


class SummaryOutput(StructuredOutput):
    subtask_id: Optional[str] = None
    summary: str


class SynthesisOutput(StructuredOutput):
    final_answer: str


def _lenient_score(value: Any) -> Optional[float]:
    # Models write scores as 7, "7", "7/10" or "high"; keep what is numeric.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        head = value.strip().split("/", 1)[0].strip()
        try:
            return float(head)
        except ValueError:
            return None
    return None


class AccuracyConcern(StructuredOutput):
    issue: str = ""
    severity: str = ""
    details: Optional[str] = None


class ReviewOutput(StructuredOutput):
    follow_up_subtasks: list[SubtaskSpec] = Field(default_factory=list)
    accuracy_concerns: list[AccuracyConcern] = Field(default_factory=list)
    structural_feedback: Optional[str] = None
    completeness_score: Optional[float] = None

    @field_validator("completeness_score", mode="before")
    @classmethod
    def _parse_score(cls, value: Any) -> Optional[float]:
        return _lenient_score(value)


class MergeOutput(StructuredOutput):
    updated_answer: str


class ValidationIssue(StructuredOutput):
    issue_type: str = Field(default="", alias="type")
    severity: str = ""
    description: str = ""
    location: str = ""
    suggestion: str = ""


class ValidationOutput(StructuredOutput):
    overall_assessment: Optional[str] = Field(default=None, alias="overallAssessment")
    quality_score: Optional[float] = Field(default=None, alias="qualityScore")
    issues: list[ValidationIssue] = Field(default_factory=list)
    passes_quality_threshold: Optional[bool] = Field(
        default=None, alias="passesQualityThreshold"
    )

    @field_validator("quality_score", mode="before")
    @classmethod
    def _parse_score(cls, value: Any) -> Optional[float]:
        return _lenient_score(value)


# =============================================================================
# Decoding
# =============================================================================


def _describe_validation_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    reason = f"{location}: {first.get('msg', 'invalid value')}"
    if len(errors) > 1:
        reason += f" (+{len(errors) - 1} more)"
    return reason


def decode_output(raw: Optional[str], shape: type[T]) -> T:
    """Repair and decode ``raw`` into ``shape``.

    Raises:
        ParseFailure: If the text is empty, not valid JSON, not a JSON object,
            or misses a required field of the shape.
    """
    name = shape.__name__
    if raw is None or not raw.strip():
        raise ParseFailure(name, "empty output")

    repaired = repair_json(raw)
    try:
        data = json.loads(repaired, strict=False)
    except json.JSONDecodeError as exc:
        raise ParseFailure(name, f"invalid JSON ({exc.msg} at position {exc.pos})") from exc

    if not isinstance(data, dict):
        raise ParseFailure(name, f"expected a JSON object, got {type(data).__name__}")

    try:
        return shape.model_validate(data)
    except ValidationError as exc:
        raise ParseFailure(name, _describe_validation_error(exc)) from exc


def parse_output(
    raw: Optional[str],
    shape: type[T],
    log: Optional[Callable[[str], None]] = None,
) -> Optional[T]:
    """Decode model output, returning ``None`` instead of raising.

    Args:
        raw: Raw completion text.
        shape: Target result shape.
        log: Optional sink (typically ``ResearchContext.add_log``) that
            receives a message describing the failure.

    Returns:
        The decoded shape, or None when the output could not be decoded.
    """
    try:
        return decode_output(raw, shape)
    except ParseFailure as exc:
        logger.debug("Structured output parse failure: %s", exc)
        if log is not None:
            log(f"JSON parsing error for {exc.shape}: {exc.reason}")
        return None


__all__ = [
    "DEFAULT_READY_MESSAGE",
    "AccuracyConcern",
    "ClarificationOutput",
    "DecompositionOutput",
    "MergeOutput",
    "ReviewOutput",
    "StructuredOutput",
    "SubtaskSpec",
    "SummaryOutput",
    "SynthesisOutput",
    "ValidationIssue",
    "ValidationOutput",
    "clean_json",
    "decode_output",
    "escape_string_newlines",
    "parse_output",
    "repair_json",
]

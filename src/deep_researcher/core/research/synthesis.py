"""Synthesis of subtask summaries into a single draft answer.

The primary path asks the completion capability to combine the summaries,
splitting them into batches when there are many. When the primary path fails
outright (error, timeout, empty or unparseable output) a plain-text fallback
prompt is tried; only a failed fallback is reported to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Callable, Optional, Sequence

from deep_researcher.core.completion.base import CompletionProvider
from deep_researcher.core.research.errors import CollaboratorFailure
from deep_researcher.core.research.models import SubtaskSummary
from deep_researcher.core.research.parsing import SynthesisOutput, parse_output

logger = logging.getLogger(__name__)

LogSink = Callable[[str], None]

DEFAULT_BATCH_THRESHOLD = 10
DEFAULT_BATCH_SIZE = 5
DEFAULT_SYNTHESIS_TIMEOUT = 300.0


def serialize_summaries(summaries: Sequence[SubtaskSummary]) -> str:
    """JSON list of summaries as passed to completion functions."""
    return json.dumps([s.to_prompt_dict() for s in summaries], indent=2)


def fallback_notes(summaries: Sequence[SubtaskSummary]) -> str:
    """Flat ``Topic: <id>`` blocks used by the fallback prompt."""
    return "\n".join(f"Topic: {s.subtask_id}\n{s.summary}\n" for s in summaries)


class SynthesisEngine:
    """Combine research summaries into a narrative answer.

    Args:
        completion: Completion capability
        logger: Logger for diagnostics
        batch_threshold: Above this many summaries, combine in batches
        batch_size: Summaries per batch
        timeout: Overall bound in seconds on the primary path
    """

    def __init__(
        self,
        completion: CompletionProvider,
        logger: Optional[logging.Logger] = None,
        *,
        batch_threshold: int = DEFAULT_BATCH_THRESHOLD,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout: Optional[float] = DEFAULT_SYNTHESIS_TIMEOUT,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._completion = completion
        self._logger = logger or logging.getLogger(__name__)
        self._batch_threshold = batch_threshold
        self._batch_size = batch_size
        self._timeout = timeout

    async def combine(
        self,
        summaries: Sequence[SubtaskSummary],
        original_prompt: str,
        topic: str,
        log: Optional[LogSink] = None,
    ) -> str:
        """Produce a draft answer from ``summaries``.

        Raises:
            CollaboratorFailure: If both the primary path and the fallback
                synthesis fail to produce text.
        """
        emit = log or (lambda message: None)
        draft: Optional[str] = None
        try:
            draft = await asyncio.wait_for(
                self._combine_primary(summaries, original_prompt, topic, emit),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            self._logger.warning("Synthesis timed out after %ss", self._timeout)
            emit(f"Synthesis timed out after {self._timeout} seconds")
        except CollaboratorFailure as exc:
            self._logger.warning("Primary synthesis failed: %s", exc)
            emit(f"Synthesis error: {exc}")

        if draft:
            return draft

        emit("Attempting fallback synthesis")
        return await self._fallback(summaries, original_prompt, topic)

    async def _combine_primary(
        self,
        summaries: Sequence[SubtaskSummary],
        original_prompt: str,
        topic: str,
        emit: LogSink,
    ) -> Optional[str]:
        if len(summaries) > self._batch_threshold:
            return await self._combine_batched(summaries, original_prompt, topic, emit)

        try:
            raw = await self._completion.invoke(
                "combine_summaries",
                {
                    "original_prompt": original_prompt,
                    "summaries": serialize_summaries(summaries),
                    "research_prompt": topic,
                },
            )
        except Exception as exc:
            raise CollaboratorFailure(
                f"combine_summaries failed: {exc}",
                collaborator="completion",
                original_error=exc,
            ) from exc

        parsed = parse_output(raw, SynthesisOutput, emit)
        if parsed is None or not parsed.final_answer.strip():
            return None
        return parsed.final_answer

    async def _combine_batched(
        self,
        summaries: Sequence[SubtaskSummary],
        original_prompt: str,
        topic: str,
        emit: LogSink,
    ) -> Optional[str]:
        batches = [
            summaries[i : i + self._batch_size]
            for i in range(0, len(summaries), self._batch_size)
        ]
        emit(f"Combining {len(summaries)} summaries in {len(batches)} batches")

        partials: list[str] = []
        for number, batch in enumerate(batches, start=1):
            try:
                raw = await self._completion.invoke(
                    "combine_summaries",
                    {
                        "original_prompt": original_prompt,
                        "summaries": serialize_summaries(batch),
                        "research_prompt": topic,
                    },
                )
            except Exception as exc:
                self._logger.warning("Synthesis batch %d failed: %s", number, exc)
                emit(f"Error processing batch {number}: {exc}")
                continue

            parsed = parse_output(raw, SynthesisOutput, emit)
            if parsed is None or not parsed.final_answer.strip():
                emit(f"Batch {number} produced no usable text; skipping")
                continue
            partials.append(parsed.final_answer)

        if not partials:
            return None
        return "\n\n".join(partials)

    async def _fallback(
        self,
        summaries: Sequence[SubtaskSummary],
        original_prompt: str,
        topic: str,
    ) -> str:
        try:
            raw = await self._completion.invoke(
                "fallback_synthesis",
                {
                    "original_prompt": original_prompt,
                    "research_prompt": topic,
                    "summaries": fallback_notes(summaries),
                },
            )
        except Exception as exc:
            raise CollaboratorFailure(
                f"Fallback synthesis failed: {exc}",
                collaborator="completion",
                original_error=exc,
            ) from exc

        text = (raw or "").strip()
        if not text:
            raise CollaboratorFailure(
                "Fallback synthesis produced no output", collaborator="completion"
            )
        return text

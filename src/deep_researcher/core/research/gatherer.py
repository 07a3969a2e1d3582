"""Evidence gathering for research subtasks.

For each subtask the gatherer searches the web with the subtask description
and asks the completion capability to condense the search answer into a
cited summary. ``gather_all`` never fails as a whole: a subtask that cannot be
researched yields a placeholder summary so downstream phases always see one
record per subtask, in subtask order.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from deep_researcher.core.completion.base import CompletionProvider
from deep_researcher.core.research.errors import CollaboratorFailure
from deep_researcher.core.research.models import Subtask, SubtaskSummary
from deep_researcher.core.research.parsing import SummaryOutput, parse_output
from deep_researcher.core.research.providers.base import SearchProvider

logger = logging.getLogger(__name__)

LogSink = Callable[[str], None]
ProgressCallback = Callable[[int, int], None]

RESEARCH_PLACEHOLDER = "[Error: Could not complete research on this subtask: {message}]"
FOLLOW_UP_PLACEHOLDER = "[Could not complete additional research on this topic: {message}]"
PLACEHOLDER_MESSAGE_LIMIT = 100


class EvidenceGatherer:
    """Search and summarize research subtasks.

    Args:
        search: Web search capability
        completion: Completion capability (``summarize_results``)
        logger: Logger for diagnostics (defaults to the module logger)
    """

    def __init__(
        self,
        search: SearchProvider,
        completion: CompletionProvider,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._search = search
        self._completion = completion
        self._logger = logger or logging.getLogger(__name__)

    async def gather(
        self,
        subtask: Subtask,
        topic: str,
        log: Optional[LogSink] = None,
    ) -> SubtaskSummary:
        """Research one subtask.

        Raises:
            CollaboratorFailure: If the search fails or returns no answer, the
                summarize call fails, or its output has no usable summary.
        """
        try:
            response = await self._search.search(subtask.description)
        except Exception as exc:
            raise CollaboratorFailure(
                f"Search failed for subtask '{subtask.id}': {exc}",
                collaborator="search",
                original_error=exc,
            ) from exc

        if response is None or not (response.answer or "").strip():
            raise CollaboratorFailure(
                f"No search answer returned for subtask '{subtask.id}'",
                collaborator="search",
            )

        urls = response.urls
        arguments = {
            "subtask_id": subtask.id,
            "tavily_answer": response.answer.replace('"', '\\"'),
            "urls": urls,
            "research_prompt": topic,
        }
        try:
            raw = await self._completion.invoke("summarize_results", arguments)
        except Exception as exc:
            raise CollaboratorFailure(
                f"Summarization failed for subtask '{subtask.id}': {exc}",
                collaborator="completion",
                original_error=exc,
            ) from exc

        parsed = parse_output(raw, SummaryOutput, log)
        if parsed is None or not parsed.summary.strip():
            raise CollaboratorFailure(
                f"No usable summary produced for subtask '{subtask.id}'",
                collaborator="completion",
            )

        return SubtaskSummary(subtask_id=subtask.id, summary=parsed.summary, urls=urls)

    async def gather_all(
        self,
        subtasks: Sequence[Subtask],
        topic: str,
        *,
        log: Optional[LogSink] = None,
        progress: Optional[ProgressCallback] = None,
        placeholder: str = RESEARCH_PLACEHOLDER,
        limit_message: bool = True,
    ) -> list[SubtaskSummary]:
        """Research every subtask in order; failures become placeholders.

        Args:
            subtasks: Subtasks to research, in execution order
            topic: Overall research topic passed to the summarizer
            log: Sink for user-visible log entries
            progress: Called with ``(completed, total)`` after each subtask
            placeholder: Format string with a ``{message}`` field used for
                failed subtasks
            limit_message: Truncate the failure message in placeholders

        Returns:
            Exactly one summary per subtask, in subtask order.
        """
        summaries: list[SubtaskSummary] = []
        total = len(subtasks)

        for index, subtask in enumerate(subtasks, start=1):
            if log is not None:
                log(f"Researching subtask {index}/{total}: {subtask.description}")
            try:
                summary = await self.gather(subtask, topic, log)
            except CollaboratorFailure as exc:
                message = str(exc)
                self._logger.warning("Subtask %s failed: %s", subtask.id, message)
                if log is not None:
                    log(f"Error researching subtask {subtask.id}: {message}")
                if limit_message:
                    message = message[:PLACEHOLDER_MESSAGE_LIMIT]
                summary = SubtaskSummary(
                    subtask_id=subtask.id,
                    summary=placeholder.format(message=message),
                    urls=[],
                    is_placeholder=True,
                )
            summaries.append(summary)
            if progress is not None:
                progress(index, total)

        return summaries

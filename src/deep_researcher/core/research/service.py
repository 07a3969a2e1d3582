"""Session-oriented research API.

ResearchService is the surface the MCP tool and the CLI talk to. It creates
sessions, hands phase advancement to background asyncio tasks, and reads
status, results and exports back from each session's orchestrator.

Example:
    service = ResearchService(completion, search)
    session_id = await service.create("How do solid-state batteries work?")
    await service.submit_clarification(session_id, "")
    await service.advance(session_id)
    ...
    results = await service.results(session_id)
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional
from uuid import uuid4

from deep_researcher.config import ResearchConfig
from deep_researcher.core import task_registry
from deep_researcher.core.background_task import BackgroundTask
from deep_researcher.core.completion.base import CompletionProvider
from deep_researcher.core.research.cache import SemanticResultCache
from deep_researcher.core.research.errors import (
    FatalResearchError,
    InvalidStateError,
    ValidationFailure,
)
from deep_researcher.core.research.models import (
    IN_PROGRESS_MESSAGE,
    ClarificationResponse,
    FeedbackResponse,
    ResearchPhase,
    ResearchResults,
    ResearchStatus,
    count_words,
)
from deep_researcher.core.research.orchestrator import ResearchOrchestrator
from deep_researcher.core.research.providers.base import SearchProvider
from deep_researcher.core.research.sessions import ResearchSession, SessionRegistry

if TYPE_CHECKING:
    from deep_researcher.config import ServerConfig

logger = logging.getLogger(__name__)

CACHE_HIT_MESSAGE = "Found similar previous research (will offer as starting point)"


class ResearchService:
    """Manage research sessions and their background runs.

    Args:
        completion: Completion capability shared by all sessions
        search: Search capability shared by all sessions
        config: Research tuning
        sessions: Session registry (default: in-memory, sliding expiry)
        cache: Semantic result cache; built from config when omitted and
            caching is enabled
        logger: Logger injected into every orchestrator
    """

    def __init__(
        self,
        completion: CompletionProvider,
        search: SearchProvider,
        *,
        config: Optional[ResearchConfig] = None,
        sessions: Optional[SessionRegistry] = None,
        cache: Optional[SemanticResultCache] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or ResearchConfig()
        self._completion = completion
        self._search = search
        self._logger = logger or logging.getLogger(__name__)
        self._sessions = (
            sessions
            if sessions is not None
            else SessionRegistry(ttl_seconds=self.config.session_ttl_seconds)
        )
        if cache is None and self.config.cache_enabled:
            cache = SemanticResultCache(
                completion, ttl_hours=self.config.cache_ttl_hours, logger=self._logger
            )
        self._cache = cache

    @classmethod
    def from_config(cls, config: "ServerConfig") -> "ResearchService":
        """Build a service with the Tavily and chat completion providers.

        Raises:
            ValueError: If an API key is missing.
        """
        from deep_researcher.core.completion.chat import ChatCompletionProvider
        from deep_researcher.core.research.providers.tavily import TavilySearchProvider

        completion = ChatCompletionProvider.from_config(config.completion)
        search = TavilySearchProvider(
            api_key=config.search.api_key,
            search_depth=config.search.search_depth,
            max_results=config.search.max_results,
            timeout=config.search.timeout,
            max_retries=config.search.max_retries,
        )
        return cls(completion, search, config=config.research)

    @property
    def cache(self) -> Optional[SemanticResultCache]:
        return self._cache

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    def new_orchestrator(self, query: str, session_id: Optional[str] = None) -> ResearchOrchestrator:
        return ResearchOrchestrator(
            query,
            self._completion,
            self._search,
            config=self.config,
            logger=self._logger,
            session_id=session_id,
        )

    # ------------------------------------------------------------------
    # Session API
    # ------------------------------------------------------------------

    async def create(self, query: str) -> str:
        """Create a session and run its first clarification round.

        Raises:
            ValidationFailure: If ``query`` is blank.
        """
        if not query or not query.strip():
            raise ValidationFailure("Research query must not be empty")
        query = query.strip()
        self._sessions.purge_expired()

        session_id = uuid4().hex
        orchestrator = self.new_orchestrator(query, session_id)
        session = ResearchSession(session_id=session_id, orchestrator=orchestrator)

        if self._cache is not None:
            probe = await self._cache.lookup(query)
            session.cache_key = probe.key
            session.cached_entry = probe.entry

        self._sessions.add(session)
        self._logger.info("Created research session %s", session_id)

        await orchestrator.initialize()
        if session.cache_hit:
            orchestrator.note(CACHE_HIT_MESSAGE)
        return session_id

    async def status(self, session_id: str) -> ResearchStatus:
        """Snapshot of a session.

        Raises:
            NotFoundError: If the session is unknown or expired.
        """
        session = self._sessions.get(session_id)
        return session.orchestrator.status(
            is_running=session.is_running, cache_hit=session.cache_hit
        )

    async def clarification(self, session_id: str) -> ClarificationResponse:
        """Pending clarifying questions for a session.

        Raises:
            NotFoundError: If the session is unknown or expired.
        """
        return self._sessions.get(session_id).orchestrator.clarification_state()

    async def submit_clarification(self, session_id: str, text: str) -> ClarificationResponse:
        """Answer clarifying questions (blank text accepts the current prompt).

        Raises:
            NotFoundError: If the session is unknown or expired.
            InvalidStateError: Unless the session is in clarification.
        """
        session = self._sessions.get(session_id)
        return await session.orchestrator.submit_clarification(text)

    async def advance(self, session_id: str, run_all: bool = True) -> ResearchStatus:
        """Start the next phase, or every remaining phase, in the background.

        Advancing while a background run is active, or while another call holds
        the session, returns the current status without starting another run.
        A finished run is removed from the task registry.

        Raises:
            NotFoundError: If the session is unknown or expired.
            InvalidStateError: If the session has recorded an error.
        """
        session = self._sessions.get(session_id)
        orchestrator = session.orchestrator
        ctx = orchestrator.context

        running = task_registry.get(session_id)
        if (running is not None and running.is_running) or orchestrator.is_busy:
            return orchestrator.status(is_running=True, cache_hit=session.cache_hit)
        if ctx.has_error:
            raise InvalidStateError(
                f"Research session has an error: {ctx.error_message}",
                phase=ctx.phase.value,
            )
        if ctx.phase == ResearchPhase.FINAL:
            orchestrator.note("Research already complete")
            return orchestrator.status(cache_hit=session.cache_hit)

        step = orchestrator.run_remaining if run_all else orchestrator.advance_one
        task = asyncio.create_task(
            self._run_in_background(session, step),
            name=f"research-{session_id}",
        )
        background = BackgroundTask(session_id, task, timeout=self.config.task_timeout)
        session.background = background
        task_registry.register(background)
        self._logger.info(
            "Started background %s for session %s",
            "run" if run_all else "phase",
            session_id,
        )
        return orchestrator.status(is_running=True, cache_hit=session.cache_hit)

    async def _run_in_background(
        self,
        session: ResearchSession,
        step: Callable[[], Awaitable[ResearchStatus]],
    ) -> None:
        background = session.background
        try:
            await self._run_step(session, step)
        finally:
            if background is not None:
                task_registry.discard(background)
                self._logger.debug(
                    "Background run for session %s ended after %.1fms (%s)",
                    session.session_id,
                    background.elapsed_ms,
                    background.status.value,
                )

    async def _run_step(
        self,
        session: ResearchSession,
        step: Callable[[], Awaitable[ResearchStatus]],
    ) -> None:
        orchestrator = session.orchestrator
        ctx = orchestrator.context
        timeout = self.config.task_timeout
        try:
            if timeout:
                status = await asyncio.wait_for(step(), timeout=timeout)
            else:
                status = await step()
        except asyncio.TimeoutError:
            if session.background is not None:
                session.background.mark_timeout()
            self._logger.warning("Background run for session %s timed out", session.session_id)
            ctx.set_error(f"Research timed out after {timeout} seconds")
            return
        except asyncio.CancelledError:
            self._logger.info("Background run for session %s cancelled", session.session_id)
            raise
        except Exception as exc:
            fatal = FatalResearchError(f"Research failed: {exc}")
            if not ctx.has_error:
                self._logger.exception("Background run for session %s crashed", session.session_id)
                ctx.set_error(str(fatal))
            if session.background is not None:
                session.background.mark_completed(error=ctx.error_message or str(fatal))
            return

        if session.background is not None:
            session.background.mark_completed(result=status.phase.value)
        self._remember_result(session)

    def _remember_result(self, session: ResearchSession) -> None:
        ctx = session.orchestrator.context
        if (
            self._cache is None
            or session.cache_key is None
            or session.result_cached
            or ctx.phase != ResearchPhase.FINAL
            or not ctx.final_answer
        ):
            return
        self._cache.store(session.cache_key, ctx.final_answer, ctx.original_prompt)
        session.result_cached = True

    async def results(self, session_id: str) -> ResearchResults:
        """Final answer when final, otherwise the current draft.

        Raises:
            NotFoundError: If the session is unknown or expired.
        """
        session = self._sessions.get(session_id)
        ctx = session.orchestrator.context

        if ctx.phase == ResearchPhase.FINAL and ctx.final_answer:
            answer, is_final = ctx.final_answer, True
        elif ctx.draft_answer:
            answer, is_final = ctx.draft_answer, False
        else:
            return ResearchResults(
                session_id=session_id,
                answer=IN_PROGRESS_MESSAGE,
                word_count=0,
                sources=list(ctx.all_sources),
                is_final=False,
            )

        return ResearchResults(
            session_id=session_id,
            answer=answer,
            word_count=count_words(answer),
            sources=list(ctx.all_sources),
            is_final=is_final,
        )

    async def feedback(self, session_id: str, text: str) -> FeedbackResponse:
        """Revise the answer with reader feedback.

        Raises:
            NotFoundError: If the session is unknown or expired.
            InvalidStateError: Unless the session is in review or final, or
                while a background run is active.
        """
        session = self._sessions.get(session_id)
        if session.is_running:
            raise InvalidStateError("A background research run is still in progress")
        return await session.orchestrator.incorporate_feedback(text)

    async def cancel(self, session_id: str) -> bool:
        """Cancel any background run and evict the session.

        Returns:
            True if a session was evicted, False if it did not exist.
        """
        session = self._sessions.remove(session_id)
        background = task_registry.remove(session_id)
        if session is not None and session.background is not None:
            background = session.background
        if background is not None:
            background.cancel()
        if session is None:
            return False
        self._logger.info("Cancelled research session %s", session_id)
        return True

    async def export(self, session_id: str) -> str:
        """Markdown export of the session's answer.

        Raises:
            NotFoundError: If the session is unknown or expired.
            InvalidStateError: If there is no answer yet.
        """
        session = self._sessions.get(session_id)
        return session.orchestrator.export_markdown()

    async def run(self, query: str) -> tuple[str, bool]:
        """Run a query unattended through the semantic cache.

        Returns:
            ``(markdown, was_cache_hit)``
        """
        orchestrator = self.new_orchestrator(query)

        async def compute() -> str:
            await orchestrator.run()
            return orchestrator.export_markdown()

        if self._cache is None:
            return await compute(), False
        lookup = await self._cache.get_or_compute(query, compute)
        return lookup.result, lookup.was_cache_hit

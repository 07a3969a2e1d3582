"""Session registry: session id -> live research session.

Sessions expire after a period of inactivity (sliding expiry); every lookup
refreshes the deadline. The registry is process-local.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from deep_researcher.core.background_task import BackgroundTask
from deep_researcher.core.research.cache import CacheEntry
from deep_researcher.core.research.errors import NotFoundError
from deep_researcher.core.research.orchestrator import ResearchOrchestrator
from deep_researcher.core.research.store import ExpiringStore, InMemoryExpiringStore

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 3600.0


@dataclass
class ResearchSession:
    """A research session and the bookkeeping around its orchestrator."""

    session_id: str
    orchestrator: ResearchOrchestrator
    created_at: float = field(default_factory=time.time)
    cache_key: Optional[str] = None
    cached_entry: Optional[CacheEntry] = None
    result_cached: bool = False
    background: Optional[BackgroundTask] = None

    @property
    def is_running(self) -> bool:
        return self.background is not None and self.background.is_running

    @property
    def cache_hit(self) -> bool:
        return self.cached_entry is not None


class SessionRegistry:
    """Sliding-expiry registry of research sessions.

    Args:
        store: Backing expiring store (default: in-memory)
        ttl_seconds: Idle time after which a session is evicted
    """

    def __init__(
        self,
        store: Optional[ExpiringStore[ResearchSession]] = None,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
    ) -> None:
        if store is None:
            store = InMemoryExpiringStore()
        self._store: ExpiringStore[ResearchSession] = store
        self._ttl_seconds = ttl_seconds

    def __len__(self) -> int:
        return len(self._store)

    def add(self, session: ResearchSession) -> None:
        self._store.set(session.session_id, session, self._ttl_seconds)
        logger.debug("Registered research session %s", session.session_id)

    def get(self, session_id: str) -> ResearchSession:
        """Return the session and refresh its expiry.

        Raises:
            NotFoundError: If the session is unknown or expired.
        """
        session = self._store.get(session_id)
        if session is None:
            raise NotFoundError(session_id)
        return session

    def remove(self, session_id: str) -> Optional[ResearchSession]:
        return self._store.delete(session_id)

    def purge_expired(self) -> int:
        removed = self._store.purge_expired()
        if removed:
            logger.info("Evicted %d expired research sessions", removed)
        return removed

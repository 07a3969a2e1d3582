"""Semantic result cache.

Research results are keyed by the *meaning* of the query rather than its
exact text: the completion capability condenses the query into a canonical
key (``generate_semantic_key``), which is hashed with SHA-256. Two queries
that condense to the same text share one cache entry.

Key derivation can fail; a query without a key is always a miss and its
result is never stored.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from deep_researcher.core.completion.base import CompletionProvider
from deep_researcher.core.research.store import ExpiringStore, InMemoryExpiringStore

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_HOURS = 24.0


@dataclass(frozen=True)
class CacheEntry:
    key_hash: str
    result_text: str
    original_query: str
    created_at: float


@dataclass(frozen=True)
class CacheLookup:
    """Outcome of ``get_or_compute``."""

    result: str
    was_cache_hit: bool
    original_query: str
    current_query: str


@dataclass(frozen=True)
class CacheProbe:
    """Outcome of ``lookup``: the derived key (if any) and the live entry (if any)."""

    key: Optional[str]
    entry: Optional[CacheEntry] = None

    @property
    def hit(self) -> bool:
        return self.entry is not None


def hash_semantic_key(semantic_text: str) -> str:
    return hashlib.sha256(semantic_text.encode("utf-8")).hexdigest()


class SemanticResultCache:
    """Cache of final research answers keyed by condensed query meaning.

    Args:
        completion: Completion capability used to derive semantic keys
        store: Backing expiring store (default: in-memory)
        ttl_hours: Sliding expiry for entries
        logger: Logger for diagnostics
    """

    def __init__(
        self,
        completion: CompletionProvider,
        store: Optional[ExpiringStore[CacheEntry]] = None,
        ttl_hours: float = DEFAULT_CACHE_TTL_HOURS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._completion = completion
        if store is None:
            store = InMemoryExpiringStore()
        self._store: ExpiringStore[CacheEntry] = store
        self._ttl_seconds = ttl_hours * 3600
        self._logger = logger or logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._store)

    async def derive_key(self, query: str) -> Optional[str]:
        """Return the hashed semantic key for ``query``, or None on failure."""
        try:
            raw = await self._completion.invoke("generate_semantic_key", {"query": query})
        except Exception as exc:
            self._logger.warning("Semantic key derivation failed: %s", exc)
            return None
        semantic_text = (raw or "").strip()
        if not semantic_text:
            self._logger.warning("Semantic key derivation returned no text")
            return None
        return hash_semantic_key(semantic_text)

    async def lookup(self, query: str) -> CacheProbe:
        """Derive the key for ``query`` and read any live entry for it."""
        key = await self.derive_key(query)
        if key is None:
            return CacheProbe(key=None)
        return CacheProbe(key=key, entry=self._store.get(key))

    def store(self, key: str, result: str, query: str) -> CacheEntry:
        entry = CacheEntry(
            key_hash=key,
            result_text=result,
            original_query=query,
            created_at=time.time(),
        )
        self._store.set(key, entry, self._ttl_seconds)
        self._logger.debug("Cached research result under key %s", key[:12])
        return entry

    async def get_or_compute(
        self,
        query: str,
        compute_fn: Callable[[], Awaitable[str]],
    ) -> CacheLookup:
        """Return the cached result for ``query``, computing and storing it on a miss.

        ``compute_fn`` is not invoked on a hit. Exceptions from ``compute_fn``
        propagate and nothing is stored.
        """
        probe = await self.lookup(query)
        if probe.entry is not None:
            self._logger.info("Semantic cache hit for query %r", query[:80])
            return CacheLookup(
                result=probe.entry.result_text,
                was_cache_hit=True,
                original_query=probe.entry.original_query,
                current_query=query,
            )

        result = await compute_fn()
        if probe.key is not None:
            self.store(probe.key, result, query)
        return CacheLookup(
            result=result,
            was_cache_hit=False,
            original_query=query,
            current_query=query,
        )

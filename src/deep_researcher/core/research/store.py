"""In-process expiring key/value store.

Backs both the session registry and the semantic result cache. Every entry
has a sliding expiry: a successful ``get`` pushes the deadline out by the
entry's TTL again. Expired entries are dropped lazily on access and in bulk
by ``purge_expired``.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

V = TypeVar("V")


class ExpiringStore(ABC, Generic[V]):
    """Narrow store interface; implementations must be safe for concurrent use."""

    @abstractmethod
    def get(self, key: str) -> Optional[V]:
        """Return the live value for ``key`` and refresh its expiry."""

    @abstractmethod
    def set(self, key: str, value: V, ttl_seconds: float) -> None:
        """Store ``value`` with a sliding expiry of ``ttl_seconds``."""

    @abstractmethod
    def delete(self, key: str) -> Optional[V]:
        """Remove ``key``; returns the removed value, if any."""

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""

    @abstractmethod
    def __len__(self) -> int:
        ...


@dataclass
class _Entry(Generic[V]):
    value: V
    ttl_seconds: float
    expires_at: float


class InMemoryExpiringStore(ExpiringStore[V]):
    """Dict-backed ExpiringStore guarded by a ``threading.Lock``.

    Args:
        clock: Monotonic time source in seconds (injectable for tests)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, _Entry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            entry.expires_at = now + entry.ttl_seconds
            return entry.value

    def set(self, key: str, value: V, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            self._entries[key] = _Entry(
                value=value,
                ttl_seconds=ttl_seconds,
                expires_at=self._clock() + ttl_seconds,
            )

    def delete(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.pop(key, None)
        return entry.value if entry is not None else None

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

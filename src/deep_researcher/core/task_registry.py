"""Registry of background research runs.

Provides a global registry for storing and retrieving background runs
keyed by session id, with lock-protected access. A run is registered when
it starts and removed when it ends or is cancelled.
"""

import threading
from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from deep_researcher.core.background_task import BackgroundTask


# Global registry instance
_registry: Dict[str, "BackgroundTask"] = {}
_registry_lock = threading.Lock()


def reset_task_registry() -> None:
    """Clear all registered runs (for tests and controlled shutdown)."""
    with _registry_lock:
        _registry.clear()


def register(task: "BackgroundTask") -> None:
    """Register a run under its session id, replacing any previous run."""
    with _registry_lock:
        _registry[task.session_id] = task


def get(session_id: str) -> Optional["BackgroundTask"]:
    with _registry_lock:
        return _registry.get(session_id)


def remove(session_id: str) -> Optional["BackgroundTask"]:
    """Remove and return the run for ``session_id``, if any."""
    with _registry_lock:
        return _registry.pop(session_id, None)


def discard(task: "BackgroundTask") -> bool:
    """Remove ``task`` only if it is still the registered run for its session.

    Returns:
        True if the run was removed.
    """
    with _registry_lock:
        if _registry.get(task.session_id) is not task:
            return False
        del _registry[task.session_id]
        return True


"""Lifecycle tracking for detached research runs.

A research session advances in the background as an ``asyncio.Task``. The
BackgroundTask wrapper records when the run started and how it ended, so a
status request can tell a running pipeline from a finished, failed,
cancelled or timed-out one.

Status lifecycle: RUNNING -> COMPLETED/FAILED/CANCELLED/TIMEOUT
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Status of a background task.

    Attributes:
        RUNNING: Task currently executing.
        COMPLETED: Task finished successfully.
        FAILED: Task finished with error.
        CANCELLED: Task cancelled by the caller.
        TIMEOUT: Task exceeded timeout limit.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED, TaskStatus.TIMEOUT}
)


class BackgroundTask:
    """Tracks one background pipeline run for a research session.

    Attributes:
        session_id: Research session the run belongs to.
        task: The asyncio task running the phases.
        timeout: Optional timeout in seconds.
        status: Current task status.
        started_at: Unix timestamp when the run was created.
        completed_at: Unix timestamp when the run ended (None while running).
        error: Error message if the run failed.
        result: Value returned by the run, if any.
    """

    def __init__(
        self,
        session_id: str,
        task: asyncio.Task[Any],
        timeout: Optional[float] = None,
    ) -> None:
        self.session_id = session_id
        self.task = task
        self.timeout = timeout
        self.status = TaskStatus.RUNNING
        self.started_at = time.time()
        self.completed_at: Optional[float] = None
        self.error: Optional[str] = None
        self.result: Optional[Any] = None

    @property
    def elapsed_ms(self) -> float:
        """Elapsed time since the run started, in milliseconds."""
        end = self.completed_at or time.time()
        return (end - self.started_at) * 1000

    @property
    def is_done(self) -> bool:
        return self.status in TERMINAL_STATUSES or self.task.done()

    @property
    def is_running(self) -> bool:
        return not self.is_done

    def cancel(self) -> bool:
        """Cancel the run.

        Returns:
            True if cancellation was requested, False if already done.
        """
        if self.is_done:
            return False
        logger.debug("Cancelling background run for session %s", self.session_id)
        self.task.cancel()
        self.status = TaskStatus.CANCELLED
        self.completed_at = time.time()
        return True

    def mark_completed(self, result: Optional[Any] = None, error: Optional[str] = None) -> None:
        """Mark the run as finished with a result or an error."""
        if self.status == TaskStatus.CANCELLED:
            return
        if error is not None:
            self.status = TaskStatus.FAILED
            self.error = error
        else:
            self.status = TaskStatus.COMPLETED
            self.result = result
        self.completed_at = time.time()

    def mark_timeout(self) -> None:
        now = time.time()
        self.status = TaskStatus.TIMEOUT
        self.error = f"Research run exceeded timeout of {self.timeout}s"
        self.completed_at = now


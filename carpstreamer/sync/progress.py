"""Progress hooks for the synchronizer.

The synchronizer never prints. It reports task lifecycle events to a
:class:`SyncObserver`, which keeps running counters and forwards a
:class:`SyncEventInfo` snapshot to a callback (a progress bar, a logger, or a
test recorder).
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .tasks import SyncOutcome, SyncResult, SyncTask

logger = logging.getLogger(__name__)


class SyncEvent(Enum):
    """Lifecycle events of a sync run."""

    TASK_QUEUED = "task_queued"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    RUN_COMPLETED = "run_completed"


@dataclass
class SyncEventInfo:
    """Snapshot passed to the observer callback."""

    event: SyncEvent
    relative_path: str = ""
    outcome: Optional[SyncOutcome] = None
    error: Optional[BaseException] = None
    elapsed: float = 0.0
    tasks_queued: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0


class SyncObserver:
    """Thread-safe event sink with running counters.

    Examples:
        >>> events = []
        >>> observer = SyncObserver(callback=events.append)
        >>> synchronizer = Synchronizer(resolver, root, observer=observer)
    """

    def __init__(self, callback: Optional[Callable[[SyncEventInfo], None]] = None):
        """Initialize the observer.

        Args:
            callback: Called with every event, possibly from worker threads
        """
        self.callback = callback
        self.tasks_queued = 0
        self.tasks_completed = 0
        self.tasks_failed = 0
        self._lock = threading.Lock()

    def _emit(self, info: SyncEventInfo) -> None:
        if self.callback is None:
            return
        try:
            self.callback(info)
        except Exception as e:
            logger.warning(f"Progress callback failed on {info.event.value}: {e}")

    def _snapshot(self, event: SyncEvent, **kwargs) -> SyncEventInfo:
        return SyncEventInfo(
            event=event,
            tasks_queued=self.tasks_queued,
            tasks_completed=self.tasks_completed,
            tasks_failed=self.tasks_failed,
            **kwargs,
        )

    def on_task_queued(self, task: SyncTask) -> None:
        with self._lock:
            self.tasks_queued += 1
            info = self._snapshot(SyncEvent.TASK_QUEUED, relative_path=task.relative_path)
        self._emit(info)

    def on_task_started(self, task: SyncTask) -> None:
        with self._lock:
            info = self._snapshot(SyncEvent.TASK_STARTED, relative_path=task.relative_path)
        self._emit(info)

    def on_task_completed(self, result: SyncResult) -> None:
        with self._lock:
            self.tasks_completed += 1
            if result.failed:
                self.tasks_failed += 1
            info = self._snapshot(
                SyncEvent.TASK_COMPLETED,
                relative_path=result.relative_path,
                outcome=result.outcome,
                error=result.error,
                elapsed=result.elapsed,
            )
        self._emit(info)

    def on_run_completed(self) -> None:
        with self._lock:
            info = self._snapshot(SyncEvent.RUN_COMPLETED)
        self._emit(info)

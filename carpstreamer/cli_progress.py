"""CLI progress display for sync operations.

This module provides a Rich-based progress display fed by the
SyncObserver events of the synchronizer.
"""

from typing import Optional

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .sync.progress import SyncEvent, SyncEventInfo, SyncObserver
from .sync.tasks import SyncOutcome

_MAX_PATH_WIDTH = 60


def _shorten(path: str, width: int = _MAX_PATH_WIDTH) -> str:
    if len(path) <= width:
        return path
    return "..." + path[-(width - 3) :]


class SyncProgressDisplay:
    """Rich-based progress display for sync runs.

    The bar total grows as the walker discovers entries, so it tracks
    completed tasks against tasks discovered so far.
    """

    def __init__(self, transient: bool = False) -> None:
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._transient = transient

    def create_observer(self) -> SyncObserver:
        """Create a SyncObserver that updates this display."""
        return SyncObserver(callback=self._handle_event)

    def _handle_event(self, info: SyncEventInfo) -> None:
        if self._progress is None or self._task is None:
            return

        if info.event == SyncEvent.TASK_QUEUED:
            self._progress.update(self._task, total=info.tasks_queued)

        elif info.event == SyncEvent.TASK_COMPLETED:
            failed = f"{info.tasks_failed} failed" if info.tasks_failed else ""
            outcome = info.outcome.value if info.outcome else SyncOutcome.UNKNOWN.value
            self._progress.update(
                self._task,
                completed=info.tasks_completed,
                description=f"{outcome}: {_shorten(info.relative_path)}",
                failures=failed,
            )

        elif info.event == SyncEvent.RUN_COMPLETED:
            self._progress.update(
                self._task,
                total=info.tasks_queued,
                completed=info.tasks_completed,
                description="Sync complete",
            )

    def __enter__(self) -> "SyncProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[red]{task.fields[failures]}"),
            TimeElapsedColumn(),
            refresh_per_second=4,
            transient=self._transient,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task("Scanning...", total=None, failures="")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None

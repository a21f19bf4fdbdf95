"""Sync engine for carp-streamer - one-way local to remote synchronization."""

from .engine import Synchronizer
from .progress import SyncEvent, SyncEventInfo, SyncObserver
from .scanner import DirectoryScanner, LocalEntry, LocalKind
from .state import CacheSnapshotStore
from .tasks import SyncOutcome, SyncResult, SyncTask

__all__ = [
    "Synchronizer",
    "SyncOutcome",
    "SyncTask",
    "SyncResult",
    "SyncEvent",
    "SyncEventInfo",
    "SyncObserver",
    "DirectoryScanner",
    "LocalEntry",
    "LocalKind",
    "CacheSnapshotStore",
]

"""Sync task and result types."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .scanner import LocalEntry


class SyncOutcome(str, Enum):
    """Terminal outcome of one sync task."""

    UNKNOWN = "unknown"
    FAILURE = "failure"
    DENIED = "denied"
    EXCLUDED = "excluded"
    DOWNLOADED = "downloaded"
    SYNCHRONIZED = "synchronized"
    UPLOADED = "uploaded"
    UPGRADED = "upgraded"
    CREATED = "created"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SyncTask:
    """Work item for one local entry."""

    entry: LocalEntry
    """Local entry to synchronize"""

    root: Path
    """Local root the entry was found under"""

    exclude_prefixes: tuple[str, ...] = ()
    """Relative path prefixes that are skipped"""

    pretend: bool = False
    """Resolve only, never create or upload"""

    @property
    def relative_path(self) -> str:
        """Path relative to the root, with forward slashes ("" for the root)."""
        relative = self.entry.path.relative_to(self.root).as_posix()
        return "" if relative == "." else relative

    @property
    def is_excluded(self) -> bool:
        """Check whether the relative path falls under an exclude prefix.

        Prefixes match whole path segments: ``bar`` excludes ``bar`` and
        ``bar/qux`` but not ``barn``.
        """
        relative = self.relative_path
        for prefix in self.exclude_prefixes:
            prefix = prefix.replace(os.sep, "/").strip("/")
            if not prefix:
                continue
            if relative == prefix or relative.startswith(prefix + "/"):
                return True
        return False


@dataclass
class SyncResult:
    """Outcome of a finished sync task."""

    task: SyncTask
    outcome: SyncOutcome
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def relative_path(self) -> str:
        return self.task.relative_path

    @property
    def failed(self) -> bool:
        return self.outcome == SyncOutcome.FAILURE

    def to_dict(self) -> dict:
        """Convert to a dictionary for JSON output."""
        return {
            "path": self.relative_path,
            "outcome": self.outcome.value,
            "error": str(self.error) if self.error is not None else None,
            "elapsed": round(self.elapsed, 3),
        }

"""Persistence of the path cache between runs.

A snapshot is a JSON document::

    {"version": 1, "saved_at": "<ISO timestamp>", "entries": [...]}

where ``entries`` is the output of :meth:`PathCache.dump`. Reusing it lets a
later run skip listing folders it already knows, trading staleness for fewer
round trips (see ``--revalidate-cache``).
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Union

from ..cache import PathCache

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class CacheSnapshotStore:
    """Loads and saves :class:`PathCache` snapshots in a JSON file."""

    def __init__(self, path: Union[str, os.PathLike]):
        """Initialize the store.

        Args:
            path: Snapshot file location
        """
        self.path = Path(path).expanduser()

    def load_into(self, cache: PathCache) -> int:
        """Restore a saved snapshot into a cache.

        Missing, unreadable or incompatible snapshots are ignored.

        Args:
            cache: Cache to fill

        Returns:
            Number of folders restored
        """
        if not self.path.exists():
            logger.debug(f"No cache snapshot found at {self.path}")
            return 0

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            if data.get("version") != SNAPSHOT_VERSION:
                logger.warning(
                    f"Ignoring cache snapshot {self.path}: "
                    f"unsupported version {data.get('version')!r}"
                )
                return 0
            before = len(cache)
            cache.load(data.get("entries", []))
        except (OSError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load cache snapshot: {e}")
            return 0

        restored = len(cache) - before
        logger.debug(
            f"Loaded cache snapshot with {restored} folders from {data.get('saved_at')}"
        )
        return restored

    def save(self, cache: PathCache) -> None:
        """Write a snapshot of the cache.

        The file is written to a temporary file in the same directory and
        moved into place, so readers never see a partial snapshot.

        Args:
            cache: Cache to persist

        Raises:
            OSError: If the snapshot cannot be written
        """
        entries = cache.dump()
        data = {
            "version": SNAPSHOT_VERSION,
            "saved_at": datetime.now().isoformat(),
            "entries": entries,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved cache snapshot with {len(entries)} folders to {self.path}")

    def clear(self) -> bool:
        """Delete the snapshot file.

        Returns:
            True if a snapshot was deleted, False if none existed
        """
        if self.path.exists():
            self.path.unlink()
            logger.debug(f"Cleared cache snapshot at {self.path}")
            return True
        return False

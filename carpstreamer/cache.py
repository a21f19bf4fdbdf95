"""LRU cache of remote folder children, keyed by parent folder ID."""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .models import RemoteEntity, entity_from_dict
from .utils import DEFAULT_CACHE_MAX_SIZE

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    entities: list[RemoteEntity]
    stored_at: float


def merge_entities(
    cached: Iterable[RemoteEntity], new: Iterable[RemoteEntity]
) -> list[RemoteEntity]:
    """Merge two entity lists by ``(kind, id)``, the new observation winning.

    Existing entities keep their position; entities seen for the first time
    are appended in the order given.
    """
    result: list[RemoteEntity] = []
    index: dict[tuple, int] = {}
    for entity in cached:
        if entity.key in index:
            result[index[entity.key]] = entity
        else:
            index[entity.key] = len(result)
            result.append(entity)
    for entity in new:
        if entity.key in index:
            result[index[entity.key]] = entity
        else:
            index[entity.key] = len(result)
            result.append(entity)
    return result


class PathCache:
    """Size- and age-bounded LRU map of parent folder ID to known children.

    The size budget counts cached entities across all keys. Reading a key
    refreshes both its recency and its age. All operations hold one
    re-entrant lock, so a read-modify-write of any key is atomic.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        max_age: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            max_size: Maximum number of cached entities (default: 100000)
            max_age: Maximum age of an entry in seconds (None: unlimited)
            clock: Wall clock returning seconds; wall time is used so ages
                survive a dump/load across processes
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.max_age = max_age if max_age and max_age > 0 else None
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._size = 0
        self._lock = threading.RLock()

    @property
    def size(self) -> int:
        """Total number of cached entities."""
        with self._lock:
            return self._size

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, parent_id: object) -> bool:
        with self._lock:
            entry = self._entries.get(parent_id)  # type: ignore[arg-type]
            return entry is not None and not self._is_expired(entry, self._clock())

    def _is_expired(self, entry: _CacheEntry, now: float) -> bool:
        return self.max_age is not None and now - entry.stored_at > self.max_age

    def _remove(self, parent_id: str) -> None:
        entry = self._entries.pop(parent_id, None)
        if entry is not None:
            self._size -= len(entry.entities)

    def _store(self, parent_id: str, entities: list[RemoteEntity], stored_at: float) -> None:
        self._remove(parent_id)
        if len(entities) > self.max_size:
            logger.debug(
                f"Not caching {len(entities)} children of {parent_id}: "
                f"exceeds cache size {self.max_size}"
            )
            return
        self._entries[parent_id] = _CacheEntry(entities, stored_at)
        self._size += len(entities)
        self._evict(self._clock())

    def _evict(self, now: float) -> None:
        if self.max_age is not None:
            for key in [k for k, v in self._entries.items() if self._is_expired(v, now)]:
                self._remove(key)
        while self._size > self.max_size and self._entries:
            key = next(iter(self._entries))
            logger.debug(f"Evicting children of {key} from cache")
            self._remove(key)

    def get(self, parent_id: str) -> list[RemoteEntity]:
        """Return the cached children of a folder.

        Args:
            parent_id: ID of the parent folder

        Returns:
            Copy of the cached entities (empty if unknown or expired)
        """
        with self._lock:
            entry = self._entries.get(parent_id)
            if entry is None:
                return []
            now = self._clock()
            if self._is_expired(entry, now):
                self._remove(parent_id)
                return []
            entry.stored_at = now
            self._entries.move_to_end(parent_id)
            return list(entry.entities)

    def put(self, parent_id: str, entities: Iterable[RemoteEntity]) -> None:
        """Merge entities into the children of a folder.

        Entities are de-duplicated by ``(kind, id)``; a newer observation
        replaces the cached one.

        Args:
            parent_id: ID of the parent folder
            entities: Newly observed children
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(parent_id)
            cached = (
                entry.entities
                if entry is not None and not self._is_expired(entry, now)
                else []
            )
            self._store(parent_id, merge_entities(cached, entities), now)

    def cache_entity(self, entity: RemoteEntity) -> RemoteEntity:
        """Cache a single entity under its parent folder.

        Args:
            entity: Entity returned by a create, upload or fetch

        Returns:
            The same entity

        Raises:
            ValueError: If the entity has no parent (the root)
        """
        if entity.parent_id is None:
            raise ValueError(f"{entity.kind.value} {entity.id} has no parent folder")
        logger.debug(f"Cache {entity.name} {entity.kind.value}.")
        self.put(entity.parent_id, [entity])
        return entity

    def discard(self, parent_id: str, entity: RemoteEntity) -> None:
        """Remove one entity from a folder's children."""
        with self._lock:
            entry = self._entries.get(parent_id)
            if entry is None:
                return
            remaining = [e for e in entry.entities if e.key != entity.key]
            self._size -= len(entry.entities) - len(remaining)
            entry.entities = remaining

    def replace(self, parent_id: str, entities: Iterable[RemoteEntity]) -> None:
        """Set the children of a folder from a complete listing.

        Unlike :meth:`put`, children missing from ``entities`` are dropped.

        Args:
            parent_id: ID of the parent folder
            entities: Every child of the folder
        """
        with self._lock:
            self._store(parent_id, merge_entities([], entities), self._clock())

    def clear(self) -> None:
        """Empty the cache."""
        with self._lock:
            self._entries.clear()
            self._size = 0

    def dump(self) -> list[dict[str, Any]]:
        """Serialize the cache, least recently used entry first.

        Returns:
            List of ``{"parent_id", "entries", "stored_at"}`` records
        """
        with self._lock:
            self._evict(self._clock())
            return [
                {
                    "parent_id": parent_id,
                    "entries": [entity.to_dict() for entity in entry.entities],
                    "stored_at": entry.stored_at,
                }
                for parent_id, entry in self._entries.items()
            ]

    def load(self, snapshot: Iterable[dict[str, Any]]) -> None:
        """Restore records produced by :meth:`dump`.

        Records are applied in order, so the recency order of the snapshot is
        preserved. Expired records are skipped.

        Args:
            snapshot: Records as returned by :meth:`dump`
        """
        with self._lock:
            now = self._clock()
            for record in snapshot:
                parent_id = str(record["parent_id"])
                stored_at = float(record.get("stored_at", now))
                entities: list[RemoteEntity] = []
                for item in record.get("entries", []):
                    entity = entity_from_dict(item, parent_id=parent_id)
                    if entity is not None:
                        entities.append(entity)
                entry = _CacheEntry(entities, stored_at)
                if self._is_expired(entry, now):
                    continue
                self._store(parent_id, merge_entities([], entities), stored_at)
            logger.debug(f"Loaded {len(self._entries)} cache entries")

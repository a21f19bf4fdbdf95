"""Shared fixtures: an in-memory Box service and resolvers backed by it."""

import hashlib
import threading
from collections import defaultdict
from typing import Any, Callable, Optional
from unittest.mock import Mock

import pytest

from carpstreamer.cache import PathCache
from carpstreamer.exceptions import (
    CarpConflictError,
    CarpNotFoundError,
    CarpNotModifiedError,
)
from carpstreamer.models import EntityKind, EntriesPage, RemoteFile, RemoteFolder
from carpstreamer.resolver import RemoteTreeResolver
from carpstreamer.retry import RetryPolicy
from carpstreamer.utils import normalize_name


class FakeBoxService:
    """In-memory stand-in for BoxClient.

    Offers the same methods as BoxClient, records every call in ``calls`` and
    lets tests inject failures (``fail``) or run code before a call is
    processed (``before``), e.g. to simulate another process.
    """

    def __init__(self, page_size: int = 1000):
        self.page_size = page_size
        self.calls: list[tuple] = []
        self._lock = threading.RLock()
        self._next_id = 100
        self._items: dict[str, dict[str, Any]] = {
            "0": {
                "kind": EntityKind.FOLDER,
                "name": "All Files",
                "parent_id": None,
                "version": 0,
            }
        }
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._hooks: dict[str, Callable[..., None]] = {}

    # ----- test helpers -----

    def fail(self, method: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``method`` raise ``error``."""
        self._failures[method].extend([error] * times)

    def before(self, method: str, hook: Callable[..., None]) -> None:
        """Run ``hook(*args)`` before every call of ``method`` is processed."""
        self._hooks[method] = hook

    def calls_to(self, method: str) -> list[tuple]:
        return [call[1:] for call in self.calls if call[0] == method]

    def add_folder(self, parent_id: str, name: str) -> RemoteFolder:
        with self._lock:
            item_id = self._new_id()
            self._items[item_id] = {
                "kind": EntityKind.FOLDER,
                "name": name,
                "parent_id": parent_id,
                "version": 1,
            }
            return self._folder(item_id)

    def add_file(self, parent_id: str, name: str, content: bytes) -> RemoteFile:
        with self._lock:
            item_id = self._new_id()
            self._items[item_id] = {
                "kind": EntityKind.FILE,
                "name": name,
                "parent_id": parent_id,
                "version": 1,
                "content": content,
            }
            return self._file(item_id)

    def remove(self, item_id: str) -> None:
        with self._lock:
            del self._items[item_id]

    def rename(self, item_id: str, name: str) -> None:
        with self._lock:
            self._items[item_id]["name"] = name
            self._items[item_id]["version"] += 1

    def touch(self, item_id: str) -> None:
        """Change an item's etag without renaming it."""
        with self._lock:
            self._items[item_id]["version"] += 1

    def content(self, item_id: str) -> bytes:
        return self._items[item_id]["content"]

    def children_named(self, parent_id: str, name: str) -> list[str]:
        with self._lock:
            return [
                item_id
                for item_id, item in self._items.items()
                if item["parent_id"] == parent_id
                and normalize_name(item["name"]) == normalize_name(name)
            ]

    # ----- internals -----

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def _enter(self, method: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((method, *args))
        hook = self._hooks.get(method)
        if hook is not None:
            hook(*args)
        with self._lock:
            if self._failures[method]:
                raise self._failures[method].pop(0)

    def _folder(self, item_id: str) -> RemoteFolder:
        item = self._items[item_id]
        return RemoteFolder(
            id=item_id,
            name=item["name"],
            etag=str(item["version"]) if item["parent_id"] is not None else None,
            parent_id=item["parent_id"],
        )

    def _file(self, item_id: str) -> RemoteFile:
        item = self._items[item_id]
        return RemoteFile(
            id=item_id,
            name=item["name"],
            etag=str(item["version"]),
            parent_id=item["parent_id"],
            sha1=hashlib.sha1(item["content"]).hexdigest(),
            size=len(item["content"]),
        )

    def _entity(self, item_id: str):
        if self._items[item_id]["kind"] == EntityKind.FOLDER:
            return self._folder(item_id)
        return self._file(item_id)

    def _require(self, item_id: str, kind: EntityKind) -> dict[str, Any]:
        item = self._items.get(item_id)
        if item is None or item["kind"] != kind:
            raise CarpNotFoundError("Resource not found", 404)
        return item

    def _conflict_for(self, parent_id: str, name: str) -> Optional[str]:
        existing = self.children_named(parent_id, name)
        return existing[0] if existing else None

    @staticmethod
    def _read(content: Any) -> bytes:
        return content if isinstance(content, bytes) else content.read()

    # ----- client interface -----

    def get_folder(self, folder_id: str) -> RemoteFolder:
        self._enter("get_folder", folder_id)
        with self._lock:
            self._require(folder_id, EntityKind.FOLDER)
            return self._folder(folder_id)

    def get_file(self, file_id: str) -> RemoteFile:
        self._enter("get_file", file_id)
        with self._lock:
            self._require(file_id, EntityKind.FILE)
            return self._file(file_id)

    def list_children(self, folder_id: str, marker: Optional[str] = None) -> EntriesPage:
        self._enter("list_children", folder_id, marker)
        with self._lock:
            self._require(folder_id, EntityKind.FOLDER)
            ids = [i for i, item in self._items.items() if item["parent_id"] == folder_id]
            start = int(marker) if marker else 0
            end = start + self.page_size
            entries = [self._entity(i) for i in ids[start:end]]
            return EntriesPage(
                entries=entries, next_marker=str(end) if end < len(ids) else None
            )

    def create_folder(self, parent_id: str, name: str) -> RemoteFolder:
        self._enter("create_folder", parent_id, name)
        with self._lock:
            self._require(parent_id, EntityKind.FOLDER)
            existing = self._conflict_for(parent_id, name)
            if existing is not None:
                raise CarpConflictError(
                    "Item with the same name already exists",
                    409,
                    conflicts=[self._entity(existing)],
                )
            return self.add_folder(parent_id, name)

    def conditional_get(self, kind: EntityKind, entity_id: str, etag: Optional[str]):
        self._enter("conditional_get", kind, entity_id, etag)
        with self._lock:
            item = self._require(entity_id, kind)
            if etag is not None and str(item["version"]) == etag:
                raise CarpNotModifiedError("Not modified", 304)
            return self._entity(entity_id)

    def preflight_upload(self, folder_id: str, name: str, size: Optional[int]) -> Any:
        self._enter("preflight_upload", folder_id, name, size)
        with self._lock:
            self._require(folder_id, EntityKind.FOLDER)
            existing = self._conflict_for(folder_id, name)
            if existing is not None:
                raise CarpConflictError(
                    "Item with the same name already exists",
                    409,
                    conflicts=[self._entity(existing)],
                )
            return {"upload_url": "https://upload.example.test/api/2.0/files/content"}

    def preflight_new_version(self, file_id: str, name: str, size: Optional[int]) -> Any:
        self._enter("preflight_new_version", file_id, name, size)
        with self._lock:
            self._require(file_id, EntityKind.FILE)
            return {"upload_url": f"https://upload.example.test/files/{file_id}"}

    def upload_simple(self, folder_id, name, content, attributes=None) -> RemoteFile:
        self._enter("upload_simple", folder_id, name)
        with self._lock:
            self._require(folder_id, EntityKind.FOLDER)
            return self.add_file(folder_id, name, self._read(content))

    def upload_chunked(self, folder_id, size, name, content, attributes=None) -> RemoteFile:
        self._enter("upload_chunked", folder_id, size, name)
        with self._lock:
            self._require(folder_id, EntityKind.FOLDER)
            return self.add_file(folder_id, name, self._read(content))

    def upload_new_version(self, file_id, name, content, attributes=None) -> RemoteFile:
        self._enter("upload_new_version", file_id)
        with self._lock:
            item = self._require(file_id, EntityKind.FILE)
            item["content"] = self._read(content)
            item["version"] += 1
            return self._file(file_id)

    def upload_new_version_chunked(
        self, file_id, size, name, content, attributes=None
    ) -> RemoteFile:
        self._enter("upload_new_version_chunked", file_id, size)
        with self._lock:
            item = self._require(file_id, EntityKind.FILE)
            item["content"] = self._read(content)
            item["version"] += 1
            return self._file(file_id)

    def get_current_user(self) -> dict[str, Any]:
        self._enter("get_current_user")
        return {"type": "user", "id": "1", "login": "user@example.test"}

    def close(self) -> None:
        pass


@pytest.fixture
def service():
    """Empty remote store with only the root folder "0"."""
    return FakeBoxService()


@pytest.fixture
def sleep():
    """Sleep replacement recording backoff delays."""
    return Mock()


@pytest.fixture
def policy(sleep):
    """Retry policy that never actually sleeps."""
    return RetryPolicy(max_retries=5, jitter=10.0, sleep=sleep, rng=lambda: 0.5)


@pytest.fixture
def cache():
    return PathCache()


@pytest.fixture
def resolver(service, policy, cache):
    """Resolver rooted at folder "0" of the fake service."""
    return RemoteTreeResolver.open(service, root_id="0", cache=cache, retry_policy=policy)

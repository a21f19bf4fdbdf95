"""Resolution of relative paths to remote folders and files."""

import dataclasses
import logging
import os
from typing import Any, BinaryIO, Optional, Union

from .cache import PathCache
from .exceptions import CarpConflictError, CarpNotFoundError, CarpNotModifiedError
from .models import EntityKind, RemoteEntity, RemoteFile, RemoteFolder, UploadAttributes
from .retry import RetryingClient, RetryPolicy, retry_if_folder_conflict
from .utils import CHUNKED_UPLOAD_THRESHOLD, ROOT_FOLDER_ID, normalize_name, split_path

logger = logging.getLogger(__name__)

Content = Union[bytes, BinaryIO]


class RemoteTreeResolver:
    """Maps relative paths below a root folder to remote entities.

    Children of every folder visited are kept in a shared :class:`PathCache`,
    so repeated lookups below the same folders cost no API calls. Missing
    segments are never an error: lookups return None.

    Examples:
        >>> resolver = RemoteTreeResolver.open(client, root_id="0")
        >>> folder = resolver.create_folder_unless_it_exists("photos/2019")
        >>> resolver.find_folder_by_path("photos/2019") == folder
        True
    """

    def __init__(
        self,
        client: Any,
        root: RemoteFolder,
        cache: Optional[PathCache] = None,
        revalidate: bool = False,
        chunked_upload_threshold: int = CHUNKED_UPLOAD_THRESHOLD,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the resolver.

        Args:
            client: BoxClient or RetryingClient; a plain client is wrapped in a
                RetryingClient using ``retry_policy``
            root: Root folder that relative paths start from
            cache: Shared path cache (a private one is created if omitted)
            revalidate: Confirm cache hits with a conditional fetch
            chunked_upload_threshold: Size in bytes from which uploads use a
                chunked upload session
            retry_policy: Policy for rate limits and folder conflicts
        """
        if not isinstance(client, RetryingClient):
            client = RetryingClient(client, retry_policy)
        self.client = client
        self.policy = client.policy
        self.root = root
        self.cache = cache if cache is not None else PathCache()
        self.revalidate = revalidate
        self.chunked_upload_threshold = chunked_upload_threshold

    @classmethod
    def open(
        cls,
        client: Any,
        root_id: str = ROOT_FOLDER_ID,
        cache: Optional[PathCache] = None,
        revalidate: bool = False,
        chunked_upload_threshold: int = CHUNKED_UPLOAD_THRESHOLD,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> "RemoteTreeResolver":
        """Fetch the root folder and create a resolver for it.

        Raises:
            CarpNotFoundError: If ``root_id`` does not name an existing folder
        """
        if not isinstance(client, RetryingClient):
            client = RetryingClient(client, retry_policy)
        root = client.get_folder(root_id)
        logger.debug(f"Opened root folder {root.name} ({root.id})")
        return cls(
            client,
            root,
            cache=cache,
            revalidate=revalidate,
            chunked_upload_threshold=chunked_upload_threshold,
        )

    # =========================
    # Lookups
    # =========================

    def find_folder_by_path(self, relative_path: Union[str, os.PathLike]) -> Optional[RemoteFolder]:
        """Resolve a relative path to a folder.

        Args:
            relative_path: Path below the root; "" is the root itself

        Returns:
            The folder, or None if any segment does not exist
        """
        return self._resolve_folder(split_path(relative_path))

    def find_file_by_path(self, relative_path: Union[str, os.PathLike]) -> Optional[RemoteFile]:
        """Resolve a relative path to a file.

        Returns:
            The file, or None if it or any parent folder does not exist
        """
        segments = split_path(relative_path)
        if not segments:
            return None
        folder = self._resolve_folder(segments[:-1])
        if folder is None:
            return None
        return self.find_file_by_name(segments[-1], folder)

    def find_folder_by_name(
        self, name: str, parent: Optional[RemoteFolder] = None
    ) -> Optional[RemoteFolder]:
        """Find a direct subfolder by name (defaults to the root's children)."""
        found = self._find_child(parent or self.root, name, EntityKind.FOLDER)
        return found if isinstance(found, RemoteFolder) else None

    def find_file_by_name(
        self, name: str, parent: Optional[RemoteFolder] = None
    ) -> Optional[RemoteFile]:
        """Find a file directly inside a folder by name."""
        found = self._find_child(parent or self.root, name, EntityKind.FILE)
        return found if isinstance(found, RemoteFile) else None

    def _resolve_folder(self, segments: list[str]) -> Optional[RemoteFolder]:
        current = self.root
        for name in segments:
            found = self.find_folder_by_name(name, current)
            if found is None:
                return None
            current = found
        return current

    def _find_child(
        self, parent: RemoteFolder, name: str, kind: EntityKind
    ) -> Optional[RemoteEntity]:
        """Find a child by normalized name, trying the cache before listing."""
        target = normalize_name(name)
        cached = _match(self.cache.get(parent.id), target, kind)
        if cached is not None:
            logger.debug(f"{cached.name} has hit the cache.")
            if not self.revalidate:
                return cached
            return self._revalidate(cached, parent)
        logger.debug(f"{name} was not found in the cache.")
        return _match(self._fetch_children(parent), target, kind)

    def _fetch_children(self, parent: RemoteFolder) -> list[RemoteEntity]:
        """List every page of a folder and replace its cached children."""
        entities: list[RemoteEntity] = []
        marker: Optional[str] = None
        while True:
            page = self.client.list_children(parent.id, marker)
            entities.extend(page.entries)
            if not page.next_marker:
                break
            marker = page.next_marker
        self.cache.replace(parent.id, entities)
        logger.debug(f"Listed {len(entities)} items of {parent.name} ({parent.id})")
        return entities

    def _revalidate(
        self, entity: RemoteEntity, parent: RemoteFolder
    ) -> Optional[RemoteEntity]:
        """Confirm a cache hit with a conditional fetch.

        Returns:
            The cached or refreshed entity, or None if it was deleted, renamed
            or moved away remotely
        """
        logger.debug(
            f"condition get {entity.kind.value} {entity.id} (etag: {entity.etag})"
        )
        try:
            fresh = self.client.conditional_get(entity.kind, entity.id, entity.etag)
        except CarpNotModifiedError:
            return entity
        except CarpNotFoundError:
            logger.debug(f"{entity.name} no longer exists, evicting it")
            self.cache.discard(parent.id, entity)
            return None

        fresh = _with_parent(fresh, parent.id)
        if fresh.parent_id != parent.id or normalize_name(fresh.name) != normalize_name(
            entity.name
        ):
            logger.debug(f"{entity.name} was moved or renamed, evicting it")
            self.cache.discard(parent.id, entity)
            self.cache.cache_entity(fresh)
            return None
        self.cache.cache_entity(fresh)
        return fresh

    # =========================
    # Folder creation
    # =========================

    def create_folder_unless_it_exists(
        self, relative_path: Union[str, os.PathLike]
    ) -> RemoteFolder:
        """Return the folder at a path, creating missing segments in order.

        Folders created concurrently by other workers or processes are
        adopted instead of failing the call.

        Args:
            relative_path: Path below the root; "" is the root itself

        Returns:
            The existing or created folder
        """
        segments = split_path(relative_path)
        found = self._resolve_folder(segments)
        if found is not None:
            return found

        current = self.root
        for name in segments:
            child = self.find_folder_by_name(name, current)
            if child is None:
                child = self._create_folder(current, name)
            current = child
        return current

    def _create_folder(self, parent: RemoteFolder, name: str) -> RemoteFolder:
        logger.debug(f"Creating folder '{name}' (parent folder id: {parent.id})")
        create = self.policy.wrap(
            self.client.create_folder, retry_if_folder_conflict(self.client.get_folder)
        )
        folder = _with_parent(create(parent.id, name), parent.id)
        self.cache.cache_entity(folder)
        return folder

    # =========================
    # Uploads
    # =========================

    def upload_file(
        self,
        name: str,
        content: Content,
        size: Optional[int] = None,
        stats: Optional[os.stat_result] = None,
        folder: Optional[RemoteFolder] = None,
    ) -> RemoteFile:
        """Upload a new file, or a new version if the name is already taken.

        Args:
            name: File name
            content: File content (bytes or binary file object)
            size: Content size in bytes (taken from ``stats`` or the bytes if
                omitted)
            stats: Local file stats, used for size and content timestamps
            folder: Destination folder (defaults to the root)

        Returns:
            The uploaded file
        """
        folder = folder or self.root
        size = _content_size(content, size, stats)

        try:
            result = self.client.preflight_upload(folder.id, name, size)
            logger.debug(f"preflight Upload File: {result}")
        except CarpConflictError as error:
            logger.debug(f"preflight error: {error}")
            existing = error.conflicting_entity
            if not isinstance(existing, RemoteFile):
                raise
            logger.debug(f"Found existing file with that name: {existing.name}")
            existing = _with_parent(existing, folder.id)
            return self.upload_new_file_version(existing, content, size, stats)

        attributes = UploadAttributes.from_stats(stats)
        logger.debug(f"uploading {name}...")
        if size is not None and size >= self.chunked_upload_threshold:
            uploaded = self.client.upload_chunked(folder.id, size, name, content, attributes)
        else:
            uploaded = self.client.upload_simple(folder.id, name, content, attributes)
        return self._cache_upload(uploaded, folder.id)

    def upload_new_file_version(
        self,
        file: RemoteFile,
        content: Content,
        size: Optional[int] = None,
        stats: Optional[os.stat_result] = None,
    ) -> RemoteFile:
        """Upload new content for an existing file.

        Args:
            file: The remote file to update
            content: File content (bytes or binary file object)
            size: Content size in bytes
            stats: Local file stats, used for size and modification time

        Returns:
            The updated file
        """
        size = _content_size(content, size, stats)
        result = self.client.preflight_new_version(file.id, file.name, size)
        logger.debug(f"preflight Upload New File Version: {result}")

        attributes = UploadAttributes.from_stats(stats, include_created=False)
        if size is not None and size >= self.chunked_upload_threshold:
            uploaded = self.client.upload_new_version_chunked(
                file.id, size, file.name, content, attributes
            )
        else:
            uploaded = self.client.upload_new_version(
                file.id, file.name, content, attributes
            )
        return self._cache_upload(uploaded, file.parent_id or self.root.id)

    def _cache_upload(self, uploaded: RemoteFile, parent_id: str) -> RemoteFile:
        uploaded = _with_parent(uploaded, parent_id)
        self.cache.cache_entity(uploaded)
        return uploaded


def _match(
    entities: list[RemoteEntity], normalized_name: str, kind: EntityKind
) -> Optional[RemoteEntity]:
    for entity in entities:
        if entity.kind == kind and normalize_name(entity.name) == normalized_name:
            return entity
    return None


def _with_parent(entity: Any, parent_id: str) -> Any:
    """Fill in the parent of an entity the API returned without one."""
    if entity.parent_id is None:
        return dataclasses.replace(entity, parent_id=parent_id)
    return entity


def _content_size(
    content: Content, size: Optional[int], stats: Optional[os.stat_result]
) -> Optional[int]:
    if size is not None:
        return size
    if stats is not None:
        return stats.st_size
    if isinstance(content, bytes):
        return len(content)
    return None

"""Data models for remote folders and files."""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .utils import to_rfc3339

logger = logging.getLogger(__name__)


class EntityKind(str, Enum):
    """Discriminant of a remote entity."""

    FOLDER = "folder"
    FILE = "file"


@dataclass(frozen=True)
class RemoteFolder:
    """A folder known to the remote storage service."""

    id: str
    """Stable opaque identifier"""

    name: str
    """Display name"""

    etag: Optional[str] = None
    """Opacity token for conditional fetches (None for the root)"""

    parent_id: Optional[str] = None
    """Identifier of the containing folder (None for the root)"""

    item_count: Optional[int] = None
    """Number of children, when the API reported it"""

    kind: EntityKind = field(default=EntityKind.FOLDER, init=False)

    @property
    def key(self) -> tuple[EntityKind, str]:
        """Identity of the entity within its parent."""
        return (self.kind, self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API's JSON representation."""
        data = _base_dict(self)
        if self.item_count is not None:
            data["item_collection"] = {"total_count": self.item_count}
        return data


@dataclass(frozen=True)
class RemoteFile:
    """A file known to the remote storage service."""

    id: str
    """Stable opaque identifier"""

    name: str
    """Display name"""

    etag: Optional[str] = None
    """Opacity token for conditional fetches"""

    parent_id: Optional[str] = None
    """Identifier of the containing folder"""

    sha1: Optional[str] = None
    """SHA-1 hex digest of the current version's content"""

    size: Optional[int] = None
    """Size of the current version in bytes"""

    kind: EntityKind = field(default=EntityKind.FILE, init=False)

    @property
    def key(self) -> tuple[EntityKind, str]:
        """Identity of the entity within its parent."""
        return (self.kind, self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API's JSON representation."""
        data = _base_dict(self)
        data["sha1"] = self.sha1
        data["size"] = self.size
        return data


RemoteEntity = Union[RemoteFolder, RemoteFile]


def _base_dict(entity: RemoteEntity) -> dict[str, Any]:
    return {
        "type": entity.kind.value,
        "id": entity.id,
        "name": entity.name,
        "etag": entity.etag,
        "parent": (
            {"type": EntityKind.FOLDER.value, "id": entity.parent_id}
            if entity.parent_id is not None
            else None
        ),
    }


def entity_from_dict(
    data: dict[str, Any], parent_id: Optional[str] = None
) -> Optional[RemoteEntity]:
    """Create a RemoteFolder or RemoteFile from an API item.

    Args:
        data: Item dictionary as returned by the API
        parent_id: Parent to assume when the item carries no ``parent`` field
            (folder listings return items without it)

    Returns:
        The entity, or None for item types that are neither folders nor files
        (e.g. web links)
    """
    parent = data.get("parent")
    if isinstance(parent, dict) and parent.get("id") is not None:
        parent_id = str(parent["id"])

    item_type = data.get("type")
    etag = data.get("etag")
    etag = str(etag) if etag is not None else None

    if item_type == EntityKind.FOLDER.value:
        collection = data.get("item_collection") or {}
        item_count = collection.get("total_count")
        return RemoteFolder(
            id=str(data["id"]),
            name=data.get("name", ""),
            etag=etag,
            parent_id=parent_id,
            item_count=item_count,
        )
    if item_type == EntityKind.FILE.value:
        size = data.get("size")
        return RemoteFile(
            id=str(data["id"]),
            name=data.get("name", ""),
            etag=etag,
            parent_id=parent_id,
            sha1=data.get("sha1"),
            size=int(size) if size is not None else None,
        )

    logger.debug(f"Skipping unsupported item type: {item_type}")
    return None


@dataclass
class EntriesPage:
    """One page of a folder listing."""

    entries: list[RemoteEntity]
    """Folders and files on this page"""

    next_marker: Optional[str] = None
    """Continuation marker; None when the listing is exhausted"""

    @classmethod
    def from_api_response(cls, data: dict[str, Any], parent_id: str) -> "EntriesPage":
        """Parse a marker-paginated listing response.

        Args:
            data: Response body of ``GET /folders/{id}/items``
            parent_id: ID of the folder that was listed

        Returns:
            EntriesPage instance
        """
        entries: list[RemoteEntity] = []
        for item in data.get("entries", []):
            entity = entity_from_dict(item, parent_id=parent_id)
            if entity is not None:
                entries.append(entity)
        next_marker = data.get("next_marker") or None
        return cls(entries=entries, next_marker=next_marker)


@dataclass
class UploadAttributes:
    """File attributes sent along with an upload."""

    content_created_at: Optional[str] = None
    content_modified_at: Optional[str] = None

    @classmethod
    def from_stats(
        cls, stats: Optional[os.stat_result], include_created: bool = True
    ) -> "UploadAttributes":
        """Build attributes from local file stats.

        Args:
            stats: Result of ``os.stat`` for the local file (may be None)
            include_created: Whether to send the creation time (new versions
                only update the modification time)

        Returns:
            UploadAttributes instance
        """
        if stats is None:
            return cls()
        created: Optional[str] = None
        if include_created:
            # st_birthtime on macOS/BSD, otherwise fall back to ctime
            birthtime = getattr(stats, "st_birthtime", None)
            created = to_rfc3339(birthtime if birthtime is not None else stats.st_ctime)
        return cls(
            content_created_at=created,
            content_modified_at=to_rfc3339(stats.st_mtime),
        )

    def to_dict(self) -> dict[str, str]:
        """Return only the attributes that are set."""
        data = {}
        if self.content_created_at:
            data["content_created_at"] = self.content_created_at
        if self.content_modified_at:
            data["content_modified_at"] = self.content_modified_at
        return data

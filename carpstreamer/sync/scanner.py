"""Local directory walking for sync operations."""

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class LocalKind(str, Enum):
    """Classification of a local entry."""

    FILE = "file"
    DIRECTORY = "dir"
    INACCESSIBLE = "inaccessible"


@dataclass(frozen=True)
class LocalEntry:
    """A local filesystem entry produced by the walker."""

    path: Path
    """Absolute path of the entry"""

    kind: LocalKind
    """File, directory, or inaccessible"""

    stat: Optional[os.stat_result] = None
    """Stat result, taken through symlinks"""

    error: Optional[OSError] = None
    """Error that made the entry inaccessible"""

    @property
    def is_file(self) -> bool:
        return self.kind == LocalKind.FILE

    @property
    def is_dir(self) -> bool:
        return self.kind == LocalKind.DIRECTORY

    @property
    def is_inaccessible(self) -> bool:
        return self.kind == LocalKind.INACCESSIBLE


class DirectoryScanner:
    """Walks a local directory tree depth-first.

    Every call to :meth:`walk` starts a fresh, lazy traversal. A directory is
    yielded before its contents, and its contents before its later siblings.
    Siblings are visited in name order.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> for entry in scanner.walk(Path("/sync/folder")):
        ...     print(entry.kind.value, entry.path)
    """

    def walk(self, root: Union[str, os.PathLike]) -> Iterator[LocalEntry]:
        """Lazily enumerate everything below ``root``.

        The root itself is not yielded. If the root, or any directory below
        it, cannot be listed, a single inaccessible entry is yielded for it
        and the walk continues with its siblings.

        Args:
            root: Directory to walk

        Yields:
            LocalEntry for every file and directory below the root
        """
        return self._walk_root(Path(root).absolute())

    def _walk_root(self, root: Path) -> Iterator[LocalEntry]:
        try:
            children = self._list(root)
        except OSError as e:
            logger.debug(f"Cannot list {root}: {e}")
            yield LocalEntry(path=root, kind=LocalKind.INACCESSIBLE, error=e)
            return
        yield from self._walk(root, children)

    @staticmethod
    def _list(directory: Path) -> list[os.DirEntry]:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda e: e.name)

    def _walk(
        self, directory: Path, children: list[os.DirEntry]
    ) -> Iterator[LocalEntry]:
        for child in children:
            path = directory / child.name
            try:
                is_dir = child.is_dir(follow_symlinks=False)
                # Links are stat-ed through, so a dangling one fails here
                stat = child.stat()
            except OSError as e:
                logger.debug(f"Cannot stat {path}: {e}")
                yield LocalEntry(path=path, kind=LocalKind.INACCESSIBLE, error=e)
                continue

            if not is_dir:
                yield LocalEntry(path=path, kind=LocalKind.FILE, stat=stat)
                continue

            # A directory that cannot be listed is reported once, as inaccessible
            try:
                grandchildren = self._list(path)
            except OSError as e:
                logger.debug(f"Cannot list {path}: {e}")
                yield LocalEntry(path=path, kind=LocalKind.INACCESSIBLE, error=e)
                continue
            yield LocalEntry(path=path, kind=LocalKind.DIRECTORY, stat=stat)
            yield from self._walk(path, grandchildren)

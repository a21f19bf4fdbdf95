"""Synchronizer: drives local entries through the remote tree resolver."""

import logging
import os
import queue
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from ..resolver import RemoteTreeResolver
from ..utils import DEFAULT_WORKERS, calculate_sha1
from .progress import SyncObserver
from .scanner import DirectoryScanner, LocalEntry
from .tasks import SyncOutcome, SyncResult, SyncTask

logger = logging.getLogger(__name__)


class _ProducerDone:
    def __init__(self, submitted: int):
        self.submitted = submitted


class Synchronizer:
    """One-way synchronizer from a local directory to a remote folder.

    Each local entry becomes a :class:`SyncTask` whose terminal outcome is
    decided by :meth:`synchronize`. :meth:`run` feeds entries to a fixed pool
    of worker threads while they are still being discovered, and yields
    results in completion order.

    Examples:
        >>> resolver = RemoteTreeResolver.open(client, root_id="0")
        >>> synchronizer = Synchronizer(resolver, Path("/sync/folder"))
        >>> for result in synchronizer.sync_directory():
        ...     print(result.outcome, result.relative_path)
    """

    def __init__(
        self,
        resolver: RemoteTreeResolver,
        root: Union[str, os.PathLike],
        exclude_prefixes: Iterable[str] = (),
        pretend: bool = False,
        max_workers: int = DEFAULT_WORKERS,
        observer: Optional[SyncObserver] = None,
        scanner: Optional[DirectoryScanner] = None,
        digest: Callable[[Path], str] = calculate_sha1,
    ):
        """Initialize the synchronizer.

        Args:
            resolver: Resolver for the destination folder
            root: Local directory that relative paths start from
            exclude_prefixes: Relative path prefixes to skip
            pretend: Resolve only; never create folders or upload
            max_workers: Number of worker threads (default: 16)
            observer: Receives task lifecycle events
            scanner: Local walker (a default one is created if omitted)
            digest: Content hash function, compared with the remote sha1
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.resolver = resolver
        self.root = Path(root).absolute()
        self.exclude_prefixes = tuple(exclude_prefixes)
        self.pretend = pretend
        self.max_workers = max_workers
        self.observer = observer or SyncObserver()
        self.scanner = scanner or DirectoryScanner()
        self._digest = digest

    def make_task(
        self, entry: LocalEntry, root: Optional[Union[str, os.PathLike]] = None
    ) -> SyncTask:
        """Wrap a local entry into a task for this synchronizer."""
        return SyncTask(
            entry=entry,
            root=Path(root).absolute() if root is not None else self.root,
            exclude_prefixes=self.exclude_prefixes,
            pretend=self.pretend,
        )

    # =========================
    # Per-task state machine
    # =========================

    def synchronize(self, task: SyncTask) -> SyncResult:
        """Run one task to its terminal outcome.

        Never raises: any failure becomes a ``FAILURE`` result carrying the
        error, so other tasks are unaffected.
        """
        self.observer.on_task_started(task)
        start = time.monotonic()
        error: Optional[BaseException] = None
        try:
            outcome = self._decide(task)
        except Exception as e:
            logger.debug(f"Failed {task.relative_path}: {e!r}")
            outcome = SyncOutcome.FAILURE
            error = e
        result = SyncResult(
            task=task, outcome=outcome, error=error, elapsed=time.monotonic() - start
        )
        logger.debug(
            f"{outcome.value}: {task.relative_path} ({result.elapsed:.2f}s)"
        )
        self.observer.on_task_completed(result)
        return result

    def _decide(self, task: SyncTask) -> SyncOutcome:
        if task.is_excluded:
            return SyncOutcome.EXCLUDED
        entry = task.entry
        if entry.is_inaccessible:
            logger.debug(f"Access denied: {entry.path}: {entry.error}")
            return SyncOutcome.DENIED
        if entry.is_dir:
            return self._sync_folder(task)
        return self._sync_file(task)

    def _sync_folder(self, task: SyncTask) -> SyncOutcome:
        relative_path = task.relative_path
        if self.resolver.find_folder_by_path(relative_path) is not None:
            return SyncOutcome.SYNCHRONIZED
        if not task.pretend:
            logger.debug(f"Creating folder `{relative_path}`...")
            self.resolver.create_folder_unless_it_exists(relative_path)
        return SyncOutcome.CREATED

    def _sync_file(self, task: SyncTask) -> SyncOutcome:
        relative_path = task.relative_path
        entry = task.entry
        remote = self.resolver.find_file_by_path(relative_path)

        if remote is None:
            if not task.pretend:
                parent_path, _, name = relative_path.rpartition("/")
                folder = self.resolver.create_folder_unless_it_exists(parent_path)
                logger.debug(f"Uploading `{relative_path}`...")
                with open(entry.path, "rb") as f:
                    self.resolver.upload_file(
                        name, f, stats=entry.stat, folder=folder
                    )
            return SyncOutcome.UPLOADED

        if self._digest(entry.path) == remote.sha1:
            return SyncOutcome.SYNCHRONIZED

        if not task.pretend:
            logger.debug(f"Upgrading `{relative_path}`...")
            with open(entry.path, "rb") as f:
                self.resolver.upload_new_file_version(remote, f, stats=entry.stat)
        return SyncOutcome.UPGRADED

    # =========================
    # Worker pool
    # =========================

    def run(
        self,
        entries: Iterable[LocalEntry],
        root: Optional[Union[str, os.PathLike]] = None,
    ) -> Iterator[SyncResult]:
        """Synchronize entries concurrently as they are produced.

        A producer thread consumes ``entries`` and submits tasks to the worker
        pool, keeping at most ``2 * max_workers`` tasks queued or running.
        Results are yielded as tasks complete, in no particular order. The
        generator ends once every submitted task has reported.

        Args:
            entries: Local entries, typically from :meth:`DirectoryScanner.walk`
            root: Local root of the entries (defaults to the synchronizer root)

        Yields:
            One SyncResult per entry
        """
        results: queue.Queue = queue.Queue()
        slots = threading.BoundedSemaphore(2 * self.max_workers)
        stop = threading.Event()
        producer_errors: list[BaseException] = []
        executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="carp-sync"
        )

        def work(task: SyncTask) -> None:
            try:
                result = self.synchronize(task)
            except BaseException as e:
                result = SyncResult(task=task, outcome=SyncOutcome.FAILURE, error=e)
            finally:
                slots.release()
            results.put(result)

        def produce() -> None:
            submitted = 0
            try:
                for entry in entries:
                    task = self.make_task(entry, root)
                    slots.acquire()
                    if stop.is_set():
                        slots.release()
                        break
                    self.observer.on_task_queued(task)
                    executor.submit(work, task)
                    submitted += 1
            except Exception as e:
                logger.debug(f"Stopped reading local entries: {e!r}")
                producer_errors.append(e)
            finally:
                results.put(_ProducerDone(submitted))

        producer = threading.Thread(
            target=produce, name="carp-sync-producer", daemon=True
        )
        producer.start()

        expected: Optional[int] = None
        received = 0
        try:
            while expected is None or received < expected:
                item = results.get()
                if isinstance(item, _ProducerDone):
                    expected = item.submitted
                    continue
                received += 1
                yield item
        finally:
            stop.set()
            producer.join()
            executor.shutdown(wait=True)
            self.observer.on_run_completed()

        if producer_errors:
            raise producer_errors[0]

    def sync_directory(
        self, root: Optional[Union[str, os.PathLike]] = None
    ) -> Iterator[SyncResult]:
        """Walk a local directory and synchronize everything below it.

        Args:
            root: Directory to walk (defaults to the synchronizer root)

        Yields:
            One SyncResult per local entry
        """
        root_path = Path(root).absolute() if root is not None else self.root
        logger.debug(f"Synchronizing {root_path} into {self.resolver.root.id}")
        return self.run(self.scanner.walk(root_path), root=root_path)

    @staticmethod
    def summarize(results: Iterable[SyncResult]) -> dict[SyncOutcome, int]:
        """Count results per outcome."""
        return dict(Counter(result.outcome for result in results))

"""Retry policy for remote calls.

This module provides:
- RetryPolicy: call-wrapping combinator with a bounded attempt budget
- retry_if_rate_limited: classifier for 429 Too Many Requests
- retry_if_folder_conflict: classifier that adopts concurrently created folders
- RetryingClient: adapter routing every client operation through a policy

Backoff formula, in seconds, with ``remaining`` the attempts left before the
retry (always >= 1)::

    delay = max(retry_after, 0) + rng() * jitter / remaining

The random part grows as the budget shrinks, spreading out workers that keep
colliding.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional, TypeVar, Union

from .exceptions import CarpAPIError, CarpConflictError, CarpRateLimitError
from .models import EntityKind, EntriesPage, RemoteEntity, RemoteFile, RemoteFolder
from .utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_JITTER

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryDecision:
    """Sleep for the backoff delay, then call again with the same arguments."""

    retry_after: float = 0.0


@dataclass
class AdoptDecision:
    """Stop retrying and return the result of ``resolve()`` instead."""

    resolve: Callable[[], Any]


Decision = Optional[Union[RetryDecision, AdoptDecision]]
Classifier = Callable[[CarpAPIError], Decision]


def retry_if_rate_limited(error: CarpAPIError) -> Decision:
    """Retry 429 responses, honouring the server's Retry-After hint."""
    if isinstance(error, CarpRateLimitError):
        return RetryDecision(retry_after=error.retry_after or 0.0)
    return None


def retry_if_folder_conflict(adopt: Callable[[str], RemoteFolder]) -> Classifier:
    """Build a classifier for folder creation conflicts.

    A conflict naming an existing folder means another worker or process
    created it first; it is adopted by re-fetching it through
    ``adopt(entity_id)``. A conflict without that payload is retried with
    backoff. A conflict with a file, and every other error, propagates.

    Args:
        adopt: Function fetching a folder by ID

    Returns:
        Classifier for :meth:`RetryPolicy.call`
    """

    def classify(error: CarpAPIError) -> Decision:
        if not isinstance(error, CarpConflictError):
            return None
        entity = error.conflicting_entity
        if entity is None:
            return RetryDecision(retry_after=error.retry_after or 0.0)
        if entity.kind != EntityKind.FOLDER:
            return None
        logger.debug(f"Found existing folder with that name: {entity.name}")
        return AdoptDecision(resolve=lambda: adopt(entity.id))

    return classify


class RetryPolicy:
    """Bounded retry combinator for remote calls.

    The budget and current delay of a call live on that call's stack, so a
    worker sleeping in backoff does not hold up other workers sharing the
    policy.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        jitter: float = DEFAULT_RETRY_JITTER,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ):
        """Initialize the retry policy.

        Args:
            max_retries: Maximum number of retries per call (default: 5)
            jitter: Upper bound of the random delay in seconds, divided by
                the remaining attempts (default: 10.0)
            sleep: Sleep function (injectable for tests)
            rng: Source of uniform random numbers in [0, 1)
        """
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.max_retries = max_retries
        self.jitter = jitter
        self._sleep = sleep
        self._rng = rng

    def backoff_delay(self, remaining: int, retry_after: float = 0.0) -> float:
        """Compute the delay before the next attempt.

        Args:
            remaining: Attempts left in the budget (>= 1)
            retry_after: Server-provided hint in seconds

        Returns:
            Delay in seconds
        """
        return max(retry_after, 0.0) + self._rng() * self.jitter / max(remaining, 1)

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        classifier: Classifier = retry_if_rate_limited,
        **kwargs: Any,
    ) -> T:
        """Call ``func(*args, **kwargs)`` and retry as the classifier decides.

        Args:
            func: Remote operation to call
            *args: Positional arguments, reused unchanged on every attempt
            classifier: Maps a failure to retry, adopt or propagate
            **kwargs: Keyword arguments, reused unchanged on every attempt

        Returns:
            Result of the first successful attempt (or of an adoption)

        Raises:
            CarpAPIError: The last failure, unchanged, once the budget is
                exhausted, or immediately when the classifier declines it
        """
        remaining = self.max_retries
        while True:
            try:
                return func(*args, **kwargs)
            except CarpAPIError as error:
                decision = classifier(error)
                if decision is None:
                    raise
                if isinstance(decision, AdoptDecision):
                    return decision.resolve()
                if remaining <= 0:
                    logger.debug(f"Giving up after {self.max_retries} retries: {error}")
                    raise
                delay = self.backoff_delay(remaining, decision.retry_after)
                logger.debug(f"API Response Error: {error}")
                logger.debug(
                    f"Retries {remaining} more times, next in {delay:.2f} seconds."
                )
                remaining -= 1
                self._sleep(delay)

    def wrap(
        self, func: Callable[..., T], classifier: Classifier = retry_if_rate_limited
    ) -> Callable[..., T]:
        """Return ``func`` wrapped so every call goes through :meth:`call`."""

        def wrapper(*args: Any, **kwargs: Any) -> T:
            return self.call(func, *args, classifier=classifier, **kwargs)

        wrapper.__name__ = getattr(func, "__name__", "wrapper")
        wrapper.__doc__ = getattr(func, "__doc__", None)
        return wrapper


class RetryingClient:
    """Adapter retrying rate limited calls of every remote operation.

    Wraps a :class:`carpstreamer.api.BoxClient` (or any object with the same
    methods) once, at the boundary where remote calls are made.
    """

    def __init__(self, client: Any, policy: Optional[RetryPolicy] = None):
        self.client = client
        self.policy = policy or RetryPolicy()

    def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return self.policy.call(func, *args, classifier=retry_if_rate_limited, **kwargs)

    def get_folder(self, folder_id: str) -> RemoteFolder:
        return self._call(self.client.get_folder, folder_id)

    def get_file(self, file_id: str) -> RemoteFile:
        return self._call(self.client.get_file, file_id)

    def list_children(
        self, folder_id: str, marker: Optional[str] = None
    ) -> EntriesPage:
        return self._call(self.client.list_children, folder_id, marker)

    def create_folder(self, parent_id: str, name: str) -> RemoteFolder:
        return self._call(self.client.create_folder, parent_id, name)

    def conditional_get(
        self, kind: EntityKind, entity_id: str, etag: Optional[str]
    ) -> RemoteEntity:
        return self._call(self.client.conditional_get, kind, entity_id, etag)

    def preflight_upload(self, folder_id: str, name: str, size: Optional[int]) -> Any:
        return self._call(self.client.preflight_upload, folder_id, name, size)

    def preflight_new_version(
        self, file_id: str, name: str, size: Optional[int]
    ) -> Any:
        return self._call(self.client.preflight_new_version, file_id, name, size)

    def _call_upload(self, func: Callable[..., T], **kwargs: Any) -> T:
        """Retry an upload, rewinding its content before every attempt.

        Content that can be neither re-sent (bytes) nor rewound is uploaded
        once without retries.
        """
        content = kwargs["content"]
        if isinstance(content, bytes):
            return self._call(func, **kwargs)
        if not (hasattr(content, "seekable") and content.seekable()):
            return func(**kwargs)

        start = content.tell()

        def attempt() -> T:
            content.seek(start)
            return func(**kwargs)

        return self._call(attempt)

    def upload_simple(
        self, folder_id: str, name: str, content: Any, attributes: Any = None
    ) -> RemoteFile:
        return self._call_upload(
            self.client.upload_simple,
            folder_id=folder_id,
            name=name,
            content=content,
            attributes=attributes,
        )

    def upload_chunked(
        self, folder_id: str, size: int, name: str, content: Any, attributes: Any = None
    ) -> RemoteFile:
        return self._call_upload(
            self.client.upload_chunked,
            folder_id=folder_id,
            size=size,
            name=name,
            content=content,
            attributes=attributes,
        )

    def upload_new_version(
        self, file_id: str, name: str, content: Any, attributes: Any = None
    ) -> RemoteFile:
        return self._call_upload(
            self.client.upload_new_version,
            file_id=file_id,
            content=content,
            attributes=attributes,
            name=name,
        )

    def upload_new_version_chunked(
        self,
        file_id: str,
        size: int,
        name: str,
        content: Any,
        attributes: Any = None,
    ) -> RemoteFile:
        return self._call_upload(
            self.client.upload_new_version_chunked,
            file_id=file_id,
            size=size,
            content=content,
            attributes=attributes,
            name=name,
        )

"""Exceptions raised by the carp-streamer API client and resolver."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .models import RemoteEntity


class CarpAPIError(Exception):
    """Base exception for all remote API errors.

    Attributes:
        status_code: HTTP status code of the failed response, if any
        retry_after: Server-provided retry hint in seconds, if any
        conflicts: Entities the request conflicted with (409 responses)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
        conflicts: Sequence[RemoteEntity] = (),
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after
        self.conflicts = tuple(conflicts)


class CarpConfigError(CarpAPIError):
    """Raised when the client is missing configuration (e.g. access token)."""


class CarpAuthenticationError(CarpAPIError):
    """Raised when the access token is invalid or expired."""


class CarpPermissionError(CarpAPIError):
    """Raised when access to a resource is forbidden."""


class CarpNotFoundError(CarpAPIError):
    """Raised when a folder or file does not exist remotely."""


class CarpNotModifiedError(CarpAPIError):
    """Raised by a conditional fetch when the cached etag is still current."""


class CarpConflictError(CarpAPIError):
    """Raised when an item with the same name already exists."""

    @property
    def conflicting_entity(self) -> RemoteEntity | None:
        """First entity reported by the server as the cause of the conflict."""
        return self.conflicts[0] if self.conflicts else None


class CarpRateLimitError(CarpAPIError):
    """Raised when the server answers with 429 Too Many Requests."""


class CarpNetworkError(CarpAPIError):
    """Raised on transport level failures (DNS, connection reset, timeout)."""


class CarpInvalidResponseError(CarpAPIError):
    """Raised when the server returns a body that cannot be parsed."""


class CarpUploadError(CarpAPIError):
    """Raised when an upload cannot be completed."""


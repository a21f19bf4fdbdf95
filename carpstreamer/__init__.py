"""carp-streamer - one-way synchronization of local directories to Box."""

__version__ = "0.1.0"

from .api import BoxClient
from .cache import PathCache
from .exceptions import (
    CarpAPIError,
    CarpAuthenticationError,
    CarpConfigError,
    CarpConflictError,
    CarpInvalidResponseError,
    CarpNetworkError,
    CarpNotFoundError,
    CarpNotModifiedError,
    CarpPermissionError,
    CarpRateLimitError,
    CarpUploadError,
)
from .models import EntityKind, RemoteFile, RemoteFolder
from .resolver import RemoteTreeResolver
from .retry import RetryingClient, RetryPolicy
from .utils import calculate_sha1

__all__ = [
    "BoxClient",
    "PathCache",
    "RemoteTreeResolver",
    "RetryPolicy",
    "RetryingClient",
    "EntityKind",
    "RemoteFile",
    "RemoteFolder",
    "CarpAPIError",
    "CarpAuthenticationError",
    "CarpConfigError",
    "CarpConflictError",
    "CarpInvalidResponseError",
    "CarpNetworkError",
    "CarpNotFoundError",
    "CarpNotModifiedError",
    "CarpPermissionError",
    "CarpRateLimitError",
    "CarpUploadError",
    "calculate_sha1",
]

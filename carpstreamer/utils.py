"""Utility functions for carp-streamer."""

import hashlib
import os
import unicodedata
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Union

# =============================================================================
# Constants
# =============================================================================

# Uploads at or above this size go through a chunked upload session (20 MB)
CHUNKED_UPLOAD_THRESHOLD: int = 20_000_000

# Retry configuration for rate limited and conflicting requests
DEFAULT_MAX_RETRIES: int = 5
DEFAULT_RETRY_JITTER: float = 10.0  # seconds

# Path cache budget (number of cached entities)
DEFAULT_CACHE_MAX_SIZE: int = 100_000

# Number of concurrent synchronization workers
DEFAULT_WORKERS: int = 16

# Read size used while hashing local files (1 MiB)
DIGEST_CHUNK_SIZE: int = 1024 * 1024

# ID of the root folder ("All Files")
ROOT_FOLDER_ID: str = "0"


# =============================================================================
# Timestamp utilities
# =============================================================================


def to_rfc3339(timestamp: Union[float, datetime]) -> str:
    """Format a timestamp as RFC 3339 in UTC without fractional seconds.

    Args:
        timestamp: Unix timestamp or datetime

    Returns:
        Timestamp string such as "2019-08-02T19:31:48Z"

    Examples:
        >>> to_rfc3339(0)
        '1970-01-01T00:00:00Z'
    """
    if isinstance(timestamp, datetime):
        dt = timestamp
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Hash calculation utilities
# =============================================================================


def calculate_sha1(
    file_path: Union[str, Path], chunk_size: int = DIGEST_CHUNK_SIZE
) -> str:
    """Calculate the SHA-1 digest of a file's content.

    The file is streamed in chunks so large files are never loaded into
    memory at once.

    Args:
        file_path: Path to the file
        chunk_size: Number of bytes read per iteration

    Returns:
        Hex encoded SHA-1 digest, comparable with the remote ``sha1`` field

    Raises:
        OSError: If the file cannot be read
    """
    digest = hashlib.sha1()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


# =============================================================================
# Name and path utilities
# =============================================================================


def normalize_name(name: str) -> str:
    """Normalize a file or folder name for comparison.

    Filesystems and the remote service may store the same visible name in
    composed or decomposed Unicode form, so names are compared in NFC.

    Examples:
        >>> normalize_name("cafe\\u0301") == normalize_name("caf\\u00e9")
        True
    """
    return unicodedata.normalize("NFC", name)


def split_path(relative_path: Union[str, Path]) -> list[str]:
    """Split a relative path into its segments.

    Both "/" and the platform separator are accepted. Empty segments and "."
    are dropped, so "" and "." denote the root.

    Examples:
        >>> split_path("a/b/c")
        ['a', 'b', 'c']
        >>> split_path("")
        []
    """
    text = str(relative_path)
    if os.sep != "/":
        text = text.replace(os.sep, "/")
    return [part for part in PurePosixPath(text).parts if part not in ("", ".", "/")]

"""API client for Box-style hierarchical file storage."""

from __future__ import annotations

import base64
import hashlib
import io
import json
import logging
import time
from typing import Any, BinaryIO, Union

import httpx

from .config import config
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
from .models import (
    EntityKind,
    EntriesPage,
    RemoteEntity,
    RemoteFile,
    RemoteFolder,
    UploadAttributes,
    entity_from_dict,
)

logger = logging.getLogger(__name__)

Content = Union[bytes, BinaryIO]

# Fields requested for listed items so files carry their content hash
ITEM_FIELDS = "type,id,name,etag,sha1,size,parent"

# Maximum number of times a chunked upload commit is polled while processing
MAX_COMMIT_POLLS = 10


class BoxClient:
    """Client for the Box content and upload APIs.

    The client maps HTTP failures to typed exceptions and performs no retries
    itself; wrap it in :class:`carpstreamer.retry.RetryingClient` for that.
    """

    def __init__(
        self,
        access_token: str | None = None,
        api_url: str | None = None,
        upload_url: str | None = None,
        timeout: float = 30.0,
        upload_timeout: float = 300.0,
    ):
        """Initialize the API client.

        Args:
            access_token: Optional access token (uses config if not provided)
            api_url: Optional content API URL (uses config if not provided)
            upload_url: Optional upload API URL (uses config if not provided)
            timeout: Request timeout in seconds (default: 30.0)
            upload_timeout: Timeout for content uploads in seconds (default: 300.0)
        """
        self.access_token = access_token or config.access_token
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.upload_url = (upload_url or config.upload_url).rstrip("/")
        self.timeout = timeout
        self.upload_timeout = upload_timeout

        if not self.access_token:
            raise CarpConfigError(
                "Access token not configured. "
                "Please set CARP_ACCESS_TOKEN environment variable."
            )

        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def _error_from_response(self, response: httpx.Response) -> CarpAPIError:
        """Translate a failed response into a typed exception.

        Args:
            response: The non-successful response

        Returns:
            Exception to raise
        """
        status_code = response.status_code
        body: Any = None
        try:
            if response.content:
                body = response.json()
        except ValueError:
            body = None

        detail = ""
        if isinstance(body, dict):
            msg = body.get("message") or body.get("code")
            if msg:
                detail = f": {msg}"

        if status_code == 401:
            return CarpAuthenticationError(
                "Invalid access token or unauthorized access", status_code
            )
        elif status_code == 403:
            return CarpPermissionError(
                f"Access forbidden - check your permissions{detail}", status_code
            )
        elif status_code == 404:
            return CarpNotFoundError(f"Resource not found{detail}", status_code)
        elif status_code == 409:
            return CarpConflictError(
                f"Item with the same name already exists{detail}",
                status_code,
                conflicts=_parse_conflicts(body),
            )
        elif status_code == 429:
            return CarpRateLimitError(
                "Rate limit exceeded - please try again later",
                status_code,
                retry_after=_parse_retry_after(response),
            )
        return CarpAPIError(
            f"API request failed with status {status_code}{detail}",
            status_code,
            retry_after=_parse_retry_after(response),
        )

    def _request(
        self, method: str, endpoint: str, base_url: str | None = None, **kwargs: Any
    ) -> Any:
        """Make an API request.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            base_url: Base URL to use instead of the content API URL
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data ({} for empty bodies)

        Raises:
            CarpAPIError: If the request fails
        """
        url = f"{base_url or self.api_url}/{endpoint.lstrip('/')}"
        client = self._get_client()

        try:
            response = client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise CarpNetworkError(f"Network error: {e}") from e

        logger.debug(f"{method} {url} -> {response.status_code}")

        if response.status_code == 304:
            raise CarpNotModifiedError("Not modified", 304)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._error_from_response(e.response) from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise CarpInvalidResponseError(
                "Invalid JSON response from server", response.status_code
            ) from e

    # =========================
    # Folder Operations
    # =========================

    def get_folder(self, folder_id: str) -> RemoteFolder:
        """Get a folder by ID.

        Args:
            folder_id: ID of the folder ("0" is the root)

        Returns:
            The folder

        Raises:
            CarpNotFoundError: If the folder does not exist
        """
        data = self._request("GET", f"/folders/{folder_id}")
        return _expect(entity_from_dict(data), RemoteFolder)

    def list_children(
        self, folder_id: str, marker: str | None = None, limit: int = 1000
    ) -> EntriesPage:
        """List one page of a folder's items.

        Args:
            folder_id: ID of the folder to list
            marker: Continuation marker returned by the previous page
            limit: Maximum number of items per page

        Returns:
            EntriesPage whose ``next_marker`` is None on the last page
        """
        params: dict[str, Any] = {
            "usemarker": "true",
            "limit": limit,
            "fields": ITEM_FIELDS,
        }
        if marker:
            params["marker"] = marker
        data = self._request("GET", f"/folders/{folder_id}/items", params=params)
        return EntriesPage.from_api_response(data, parent_id=folder_id)

    def create_folder(self, parent_id: str, name: str) -> RemoteFolder:
        """Create a new folder.

        Args:
            parent_id: ID of the parent folder
            name: Name of the new folder

        Returns:
            The created folder

        Raises:
            CarpConflictError: If an item with that name already exists
        """
        data = self._request(
            "POST", "/folders", json={"name": name, "parent": {"id": parent_id}}
        )
        return _expect(entity_from_dict(data), RemoteFolder)

    # =========================
    # File Operations
    # =========================

    def get_file(self, file_id: str) -> RemoteFile:
        """Get a file by ID."""
        data = self._request("GET", f"/files/{file_id}")
        return _expect(entity_from_dict(data), RemoteFile)

    def conditional_get(
        self, kind: EntityKind, entity_id: str, etag: str | None
    ) -> RemoteEntity:
        """Fetch an entity unless it still matches the given etag.

        Args:
            kind: Folder or file
            entity_id: ID of the entity
            etag: Etag of the cached copy (None fetches unconditionally)

        Returns:
            The current entity

        Raises:
            CarpNotModifiedError: If the cached copy is still current
            CarpNotFoundError: If the entity no longer exists
        """
        endpoint = "/folders/" if kind == EntityKind.FOLDER else "/files/"
        headers = {"If-None-Match": etag} if etag is not None else {}
        data = self._request("GET", f"{endpoint}{entity_id}", headers=headers)
        entity = entity_from_dict(data)
        if entity is None:
            raise CarpInvalidResponseError(f"Unexpected item for {kind.value} {entity_id}")
        return entity

    def preflight_upload(self, folder_id: str, name: str, size: int | None) -> Any:
        """Check whether a new file can be uploaded.

        Raises:
            CarpConflictError: If a file with that name already exists; the
                existing file is available as ``conflicting_entity``
        """
        payload: dict[str, Any] = {"name": name, "parent": {"id": folder_id}}
        if size is not None:
            payload["size"] = size
        return self._request("OPTIONS", "/files/content", json=payload)

    def preflight_new_version(self, file_id: str, name: str, size: int | None) -> Any:
        """Check whether a new version of a file can be uploaded."""
        payload: dict[str, Any] = {"name": name}
        if size is not None:
            payload["size"] = size
        return self._request("OPTIONS", f"/files/{file_id}/content", json=payload)

    def upload_simple(
        self,
        folder_id: str,
        name: str,
        content: Content,
        attributes: UploadAttributes | None = None,
    ) -> RemoteFile:
        """Upload a new file in a single multipart request.

        Args:
            folder_id: ID of the destination folder
            name: File name
            content: File content (bytes or binary file object)
            attributes: Optional content timestamps

        Returns:
            The uploaded file
        """
        attrs: dict[str, Any] = {"name": name, "parent": {"id": folder_id}}
        attrs.update((attributes or UploadAttributes()).to_dict())
        data = self._request(
            "POST",
            "/files/content",
            base_url=self.upload_url,
            files={
                "attributes": (None, json.dumps(attrs), "application/json"),
                "file": (name, content, "application/octet-stream"),
            },
            timeout=self.upload_timeout,
        )
        return _first_file(data)

    def upload_new_version(
        self,
        file_id: str,
        name: str,
        content: Content,
        attributes: UploadAttributes | None = None,
    ) -> RemoteFile:
        """Upload a new version of an existing file in a single request."""
        attrs = (attributes or UploadAttributes()).to_dict()
        data = self._request(
            "POST",
            f"/files/{file_id}/content",
            base_url=self.upload_url,
            files={
                "attributes": (None, json.dumps(attrs), "application/json"),
                "file": (name, content, "application/octet-stream"),
            },
            timeout=self.upload_timeout,
        )
        return _first_file(data)

    def upload_chunked(
        self,
        folder_id: str,
        size: int,
        name: str,
        content: Content,
        attributes: UploadAttributes | None = None,
    ) -> RemoteFile:
        """Upload a new file through a chunked upload session.

        Args:
            folder_id: ID of the destination folder
            size: Total size of the content in bytes
            name: File name
            content: File content (bytes or binary file object)
            attributes: Optional content timestamps

        Returns:
            The uploaded file
        """
        session = self._request(
            "POST",
            "/files/upload_sessions",
            base_url=self.upload_url,
            json={"folder_id": folder_id, "file_size": size, "file_name": name},
        )
        return self._run_upload_session(session, size, name, content, attributes)

    def upload_new_version_chunked(
        self,
        file_id: str,
        size: int,
        name: str,
        content: Content,
        attributes: UploadAttributes | None = None,
    ) -> RemoteFile:
        """Upload a new version of a file through a chunked upload session."""
        payload: dict[str, Any] = {"file_size": size, "file_name": name}
        session = self._request(
            "POST",
            f"/files/{file_id}/upload_sessions",
            base_url=self.upload_url,
            json=payload,
        )
        return self._run_upload_session(session, size, name, content, attributes)

    def _run_upload_session(
        self,
        session: dict[str, Any],
        size: int,
        name: str,
        content: Content,
        attributes: UploadAttributes | None,
    ) -> RemoteFile:
        """Upload all parts of an upload session and commit it.

        The session is aborted if any part or the commit fails.
        """
        session_id = session.get("id")
        part_size = session.get("part_size")
        if not session_id or not part_size:
            raise CarpUploadError("Failed to create upload session")

        stream = io.BytesIO(content) if isinstance(content, bytes) else content
        file_digest = hashlib.sha1()
        parts = []
        offset = 0

        try:
            while offset < size:
                chunk = stream.read(part_size)
                if not chunk:
                    break
                file_digest.update(chunk)
                end = offset + len(chunk) - 1
                result = self._request(
                    "PUT",
                    f"/files/upload_sessions/{session_id}",
                    base_url=self.upload_url,
                    content=chunk,
                    headers={
                        "Content-Type": "application/octet-stream",
                        "Content-Range": f"bytes {offset}-{end}/{size}",
                        "Digest": f"sha={_b64_sha1(chunk)}",
                    },
                    timeout=self.upload_timeout,
                )
                parts.append(result["part"])
                logger.debug(f"chunk uploaded: {name} {offset}-{end}/{size}")
                offset = end + 1

            if offset != size:
                raise CarpUploadError(
                    f"Content ended after {offset} of {size} bytes for '{name}'"
                )

            commit_body = {
                "parts": parts,
                "attributes": (attributes or UploadAttributes()).to_dict(),
            }
            digest_header = base64.b64encode(file_digest.digest()).decode("ascii")
            for _ in range(MAX_COMMIT_POLLS):
                data = self._commit_upload_session(
                    session_id, commit_body, digest_header
                )
                if data is not None:
                    logger.debug(f"upload complete: {name}")
                    return _first_file(data)
            raise CarpUploadError(f"Upload session for '{name}' was never committed")
        except Exception:
            try:
                self._request(
                    "DELETE",
                    f"/files/upload_sessions/{session_id}",
                    base_url=self.upload_url,
                )
            except CarpAPIError as abort_error:
                logger.debug(f"Failed to abort upload session: {abort_error}")
            raise

    def _commit_upload_session(
        self, session_id: str, body: dict[str, Any], digest: str
    ) -> Any:
        """Commit an upload session.

        Returns:
            The response body, or None while the server is still processing
            the parts (202 Accepted), after waiting for its Retry-After hint
        """
        client = self._get_client()
        url = f"{self.upload_url}/files/upload_sessions/{session_id}/commit"
        try:
            response = client.post(
                url,
                json=body,
                headers={"Digest": f"sha={digest}"},
                timeout=self.upload_timeout,
            )
        except httpx.RequestError as e:
            raise CarpNetworkError(f"Network error: {e}") from e

        if response.status_code == 202:
            delay = _parse_retry_after(response) or 1.0
            logger.debug(f"Upload session {session_id} still processing, {delay}s")
            time.sleep(delay)
            return None

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._error_from_response(e.response) from e
        return response.json()

    # =========================
    # User Operations
    # =========================

    def get_current_user(self) -> Any:
        """Get the user the access token belongs to."""
        return self._request("GET", "/users/me")


def _expect(entity: RemoteEntity | None, cls: type) -> Any:
    if not isinstance(entity, cls):
        raise CarpInvalidResponseError(f"Expected a {cls.__name__} in response")
    return entity


def _first_file(data: Any) -> RemoteFile:
    entries = data.get("entries") if isinstance(data, dict) else None
    if not entries:
        raise CarpUploadError("Upload response contains no file entry")
    return _expect(entity_from_dict(entries[0]), RemoteFile)


def _parse_retry_after(response: httpx.Response) -> float | None:
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            return None
    return None


def _parse_conflicts(body: Any) -> list[RemoteEntity]:
    """Extract conflicting entities from a 409 response body.

    Folder creation reports a list of conflicts, upload preflight a single
    object; both forms are accepted.
    """
    if not isinstance(body, dict):
        return []
    context_info = body.get("context_info") or {}
    conflicts = context_info.get("conflicts") or []
    if isinstance(conflicts, dict):
        conflicts = [conflicts]
    entities = []
    for item in conflicts:
        if isinstance(item, dict):
            entity = entity_from_dict(item)
            if entity is not None:
                entities.append(entity)
    return entities


def _b64_sha1(data: bytes) -> str:
    return base64.b64encode(hashlib.sha1(data).digest()).decode("ascii")

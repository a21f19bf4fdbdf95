"""Unit tests for the Box API client."""

import io
import json
from unittest.mock import patch

import httpx
import pytest

from carpstreamer.api import BoxClient
from carpstreamer.exceptions import (
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
from carpstreamer.models import EntityKind, RemoteFile, RemoteFolder, UploadAttributes

API = "https://api.example.test/2.0"
UPLOAD = "https://upload.example.test/api/2.0"


def make_client(handler):
    """Create a BoxClient whose requests are answered by ``handler``."""
    client = BoxClient(access_token="test_token", api_url=API, upload_url=UPLOAD)
    client._client = httpx.Client(
        transport=httpx.MockTransport(handler),
        headers={"Authorization": "Bearer test_token"},
    )
    return client


def file_item(id="5", name="a.txt", parent="0"):
    return {
        "type": "file",
        "id": id,
        "name": name,
        "etag": "1",
        "sha1": "aaf4c61ddcc5e8a2dabede0f3b482cd9aea9434d",
        "size": 5,
        "parent": {"type": "folder", "id": parent},
    }


class TestBoxClient:
    """Tests for BoxClient initialization."""

    def test_init_with_token(self):
        client = BoxClient(access_token="test_token", api_url=API + "/")
        assert client.access_token == "test_token"
        assert client.api_url == API

    def test_init_without_token_raises_error(self):
        """Test that a missing token is a configuration error."""
        with patch("carpstreamer.api.config") as mock_config:
            mock_config.access_token = None
            with pytest.raises(CarpConfigError, match="Access token not configured"):
                BoxClient(access_token=None)

    def test_default_client_sends_bearer_token(self):
        client = BoxClient(access_token="test_token")
        assert client._get_client().headers["Authorization"] == "Bearer test_token"
        client.close()
        assert client._client is None


class TestErrorMapping:
    """Tests for translating HTTP failures."""

    @pytest.mark.parametrize(
        "status,error",
        [
            (401, CarpAuthenticationError),
            (403, CarpPermissionError),
            (404, CarpNotFoundError),
            (500, CarpAPIError),
        ],
    )
    def test_status_codes(self, status, error):
        client = make_client(lambda request: httpx.Response(status, json={}))

        with pytest.raises(error) as exc_info:
            client.get_folder("1")

        assert exc_info.value.status_code == status

    def test_rate_limit_carries_retry_after(self):
        client = make_client(
            lambda request: httpx.Response(429, headers={"Retry-After": "7"})
        )

        with pytest.raises(CarpRateLimitError) as exc_info:
            client.list_children("0")

        assert exc_info.value.retry_after == 7.0

    def test_conflict_carries_existing_folder(self):
        """Test that a 409 exposes the conflicting item."""
        body = {
            "type": "error",
            "status": 409,
            "code": "item_name_in_use",
            "context_info": {
                "conflicts": [
                    {"type": "folder", "id": "42", "name": "bar", "etag": "0"}
                ]
            },
        }
        client = make_client(lambda request: httpx.Response(409, json=body))

        with pytest.raises(CarpConflictError) as exc_info:
            client.create_folder("0", "bar")

        assert exc_info.value.conflicting_entity == RemoteFolder(
            id="42", name="bar", etag="0"
        )
        assert "item_name_in_use" in str(exc_info.value)

    def test_preflight_conflict_with_single_object(self):
        """Test the single object form used by upload preflight."""
        body = {"code": "item_name_in_use", "context_info": {"conflicts": file_item()}}
        client = make_client(lambda request: httpx.Response(409, json=body))

        with pytest.raises(CarpConflictError) as exc_info:
            client.preflight_upload("0", "a.txt", 5)

        assert isinstance(exc_info.value.conflicting_entity, RemoteFile)

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(CarpNetworkError):
            make_client(handler).get_folder("0")

    def test_invalid_json(self):
        client = make_client(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(CarpInvalidResponseError):
            client.get_current_user()


class TestFolderOperations:
    """Tests for folder endpoints."""

    def test_get_folder(self):
        def handler(request):
            assert request.url == f"{API}/folders/0"
            assert request.headers["Authorization"] == "Bearer test_token"
            return httpx.Response(200, json={"type": "folder", "id": "0", "name": "All Files"})

        assert make_client(handler).get_folder("0") == RemoteFolder(id="0", name="All Files")

    def test_get_folder_rejects_file(self):
        client = make_client(lambda request: httpx.Response(200, json=file_item()))

        with pytest.raises(CarpInvalidResponseError):
            client.get_folder("5")

    def test_list_children_uses_marker_pagination(self):
        """Test query parameters and the continuation marker."""
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return httpx.Response(
                200,
                json={"entries": [file_item()], "next_marker": "m2", "limit": 1000},
            )

        page = make_client(handler).list_children("0", marker="m1")

        assert seen[0]["usemarker"] == "true"
        assert seen[0]["marker"] == "m1"
        assert "sha1" in seen[0]["fields"]
        assert page.next_marker == "m2"
        assert page.entries[0].parent_id == "0"

    def test_first_page_has_no_marker(self):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return httpx.Response(200, json={"entries": []})

        page = make_client(handler).list_children("0")

        assert "marker" not in seen[0]
        assert page.next_marker is None

    def test_create_folder(self):
        def handler(request):
            assert request.method == "POST"
            assert json.loads(request.content) == {"name": "bar", "parent": {"id": "0"}}
            return httpx.Response(
                201,
                json={
                    "type": "folder",
                    "id": "7",
                    "name": "bar",
                    "etag": "0",
                    "parent": {"type": "folder", "id": "0"},
                },
            )

        folder = make_client(handler).create_folder("0", "bar")

        assert folder == RemoteFolder(id="7", name="bar", etag="0", parent_id="0")


class TestConditionalGet:
    """Tests for etag based fetches."""

    def test_not_modified(self):
        def handler(request):
            assert request.headers["If-None-Match"] == "3"
            return httpx.Response(304)

        with pytest.raises(CarpNotModifiedError):
            make_client(handler).conditional_get(EntityKind.FILE, "5", "3")

    def test_modified_returns_entity(self):
        def handler(request):
            assert request.url.path.endswith("/folders/9")
            return httpx.Response(
                200, json={"type": "folder", "id": "9", "name": "x", "etag": "4"}
            )

        entity = make_client(handler).conditional_get(EntityKind.FOLDER, "9", "3")

        assert entity.etag == "4"

    def test_without_etag_sends_no_header(self):
        def handler(request):
            assert "If-None-Match" not in request.headers
            return httpx.Response(200, json=file_item())

        make_client(handler).conditional_get(EntityKind.FILE, "5", None)


class TestUploads:
    """Tests for upload endpoints."""

    def test_preflight_upload(self):
        def handler(request):
            assert request.method == "OPTIONS"
            assert json.loads(request.content) == {
                "name": "a.txt",
                "parent": {"id": "0"},
                "size": 5,
            }
            return httpx.Response(200, json={"upload_url": f"{UPLOAD}/files/content"})

        assert "upload_url" in make_client(handler).preflight_upload("0", "a.txt", 5)

    def test_upload_simple(self):
        """Test the multipart upload with attributes."""

        def handler(request):
            assert str(request.url) == f"{UPLOAD}/files/content"
            body = request.read()
            assert b'"name": "a.txt"' in body
            assert b'"content_modified_at": "1970-01-01T00:01:00Z"' in body
            assert b"hello" in body
            return httpx.Response(201, json={"total_count": 1, "entries": [file_item()]})

        uploaded = make_client(handler).upload_simple(
            "0",
            "a.txt",
            io.BytesIO(b"hello"),
            UploadAttributes(content_modified_at="1970-01-01T00:01:00Z"),
        )

        assert uploaded.id == "5"

    def test_upload_new_version(self):
        def handler(request):
            assert request.url.path.endswith("/files/5/content")
            assert b'filename="a.txt"' in request.read()
            return httpx.Response(201, json={"entries": [file_item()]})

        assert make_client(handler).upload_new_version("5", "a.txt", b"hello").id == "5"

    def test_upload_without_entries_fails(self):
        client = make_client(lambda request: httpx.Response(201, json={"entries": []}))

        with pytest.raises(CarpUploadError):
            client.upload_simple("0", "a.txt", b"hello")


class TestChunkedUpload:
    """Tests for upload sessions."""

    @pytest.fixture
    def session_server(self):
        """Handler emulating an upload session with 4 byte parts."""
        state = {"parts": [], "commits": 0, "aborted": False}

        def handler(request):
            path = request.url.path
            if request.method == "POST" and path.endswith("/upload_sessions"):
                state["session_request"] = json.loads(request.content)
                return httpx.Response(201, json={"id": "S1", "part_size": 4})
            if request.method == "PUT":
                state["parts"].append(
                    (request.headers["Content-Range"], request.headers["Digest"], request.read())
                )
                return httpx.Response(
                    200, json={"part": {"part_id": str(len(state["parts"]))}}
                )
            if path.endswith("/commit"):
                state["commits"] += 1
                state["commit_body"] = json.loads(request.content)
                if state["commits"] == 1:
                    return httpx.Response(202, headers={"Retry-After": "2"})
                return httpx.Response(201, json={"entries": [file_item(name="big.bin")]})
            if request.method == "DELETE":
                state["aborted"] = True
                return httpx.Response(204)
            return httpx.Response(404)

        return state, handler

    def test_parts_and_commit(self, session_server):
        """Test that content is split into parts and the commit is polled."""
        state, handler = session_server

        with patch("carpstreamer.api.time.sleep") as sleep:
            uploaded = make_client(handler).upload_chunked(
                "0", 10, "big.bin", io.BytesIO(b"abcdefghij")
            )

        assert uploaded.name == "big.bin"
        assert state["session_request"] == {
            "folder_id": "0",
            "file_size": 10,
            "file_name": "big.bin",
        }
        assert [p[0] for p in state["parts"]] == [
            "bytes 0-3/10",
            "bytes 4-7/10",
            "bytes 8-9/10",
        ]
        assert b"".join(p[2] for p in state["parts"]) == b"abcdefghij"
        assert all(p[1].startswith("sha=") for p in state["parts"])
        assert len(state["commit_body"]["parts"]) == 3
        sleep.assert_called_once_with(2.0)

    def test_new_version_session(self, session_server):
        state, handler = session_server

        with patch("carpstreamer.api.time.sleep"):
            make_client(handler).upload_new_version_chunked(
                "5", 10, "big.bin", b"abcdefghij"
            )

        assert state["session_request"] == {"file_size": 10, "file_name": "big.bin"}

    def test_short_content_aborts_session(self, session_server):
        """Test that a stream shorter than announced aborts the session."""
        state, handler = session_server

        with pytest.raises(CarpUploadError):
            make_client(handler).upload_chunked("0", 10, "big.bin", io.BytesIO(b"abc"))

        assert state["aborted"]
        assert state["commits"] == 0

    def test_failed_part_aborts_session(self):
        calls = []

        def handler(request):
            calls.append(request.method)
            if request.method == "POST":
                return httpx.Response(201, json={"id": "S1", "part_size": 4})
            if request.method == "PUT":
                return httpx.Response(500, json={"message": "boom"})
            return httpx.Response(204)

        with pytest.raises(CarpAPIError, match="boom"):
            make_client(handler).upload_chunked("0", 8, "big.bin", b"abcdefgh")

        assert calls == ["POST", "PUT", "DELETE"]

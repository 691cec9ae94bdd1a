"""
Tests for the storage backends: local disk and the HTTP object store
(the latter against httpx.MockTransport).
"""

import asyncio
import re

import httpx
import pytest

from errors import ErrorCode, StorageError
from services.storage import LocalStorage, RemoteObjectStorage, build_storage_key, thumbnail_key


class TestKeys:
    def test_storage_key_shape(self):
        key = build_storage_key("conv-1", "Quarterly Report.PDF")
        assert re.fullmatch(r"conversations/conv-1/\d+-[0-9a-f]{8}\.pdf", key)

    def test_keys_are_unique(self):
        assert build_storage_key("c", "a.png") != build_storage_key("c", "a.png")

    def test_thumbnail_beside_original(self):
        assert thumbnail_key("conversations/c/123-abc.png", "holiday.png") == "conversations/c/thumb_holiday.jpg"


class TestLocalStorage:
    def test_put_get_delete(self, tmp_path):
        storage = LocalStorage(str(tmp_path))

        locator = asyncio.run(storage.put(b"hello", "conversations/c/file.txt", "text/plain"))

        assert locator == "/uploads/conversations/c/file.txt"
        assert (tmp_path / "conversations" / "c" / "file.txt").read_bytes() == b"hello"
        assert asyncio.run(storage.get(locator)) == b"hello"

        asyncio.run(storage.delete(locator))
        assert not (tmp_path / "conversations" / "c" / "file.txt").exists()
        # Deleting twice is harmless
        asyncio.run(storage.delete(locator))

    def test_missing_file(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        with pytest.raises(StorageError) as exc_info:
            asyncio.run(storage.get("/uploads/nope.bin"))
        assert exc_info.value.code == ErrorCode.STORAGE_READ_FAILED

    def test_keys_cannot_escape_root(self, tmp_path):
        storage = LocalStorage(str(tmp_path / "uploads"))
        with pytest.raises(StorageError):
            asyncio.run(storage.put(b"x", "../outside.txt"))
        with pytest.raises(StorageError):
            asyncio.run(storage.get("/uploads/../../etc/passwd"))


class TestRemoteObjectStorage:
    def _storage(self, handler, **kwargs):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RemoteObjectStorage(
            bucket="relay-files",
            region="nyc3",
            cdn_url="https://cdn.example.com",
            client=client,
            **kwargs,
        )

    def test_put_returns_public_url(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        storage = self._storage(handler)
        url = asyncio.run(storage.put(b"data", "conversations/c/a.png", "image/png"))

        assert url == "https://cdn.example.com/conversations/c/a.png"
        (request,) = requests
        assert request.method == "PUT"
        assert str(request.url) == "https://nyc3.digitaloceanspaces.com/relay-files/conversations/c/a.png"
        assert request.headers["Content-Type"] == "image/png"
        assert request.headers["x-amz-acl"] == "public-read"
        assert request.content == b"data"

    def test_get_maps_public_url_to_key(self):
        def handler(request):
            assert request.url.path == "/relay-files/conversations/c/a.png"
            return httpx.Response(200, content=b"bytes")

        storage = self._storage(handler)
        assert asyncio.run(storage.get("https://cdn.example.com/conversations/c/a.png")) == b"bytes"

    def test_upload_failure(self):
        storage = self._storage(lambda request: httpx.Response(500))
        with pytest.raises(StorageError) as exc_info:
            asyncio.run(storage.put(b"x", "k"))
        assert exc_info.value.code == ErrorCode.STORAGE_WRITE_FAILED

    def test_download_failure(self):
        storage = self._storage(lambda request: httpx.Response(403))
        with pytest.raises(StorageError) as exc_info:
            asyncio.run(storage.get("https://cdn.example.com/k"))
        assert exc_info.value.code == ErrorCode.STORAGE_READ_FAILED

    def test_delete_tolerates_missing_object(self):
        methods = []

        def handler(request):
            methods.append(request.method)
            return httpx.Response(404)

        storage = self._storage(handler)
        asyncio.run(storage.delete("https://cdn.example.com/conversations/c/a.png"))
        assert methods == ["DELETE"]

    def test_bucket_required(self):
        with pytest.raises(StorageError):
            RemoteObjectStorage(bucket="", region="nyc3")

    def test_auth_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200)

        storage = RemoteObjectStorage(
            bucket="b",
            region="nyc3",
            access_token="secret",
            endpoint="https://objects.example.com",
        )
        storage._client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            headers=storage._client.headers,
        )

        asyncio.run(storage.put(b"x", "k"))

        assert seen["auth"] == "Bearer secret"

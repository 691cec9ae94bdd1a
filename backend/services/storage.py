"""
File Storage - interchangeable local / remote object storage backends.

Both backends share one contract:
    put(data, key, mime_type) -> locator (public URL or /uploads/... path)
    get(locator) -> bytes
    delete(locator)

Keys look like ``conversations/{conversation_id}/{timestamp}-{uuid8}{ext}``.

Usage:
    from services.storage import get_storage

    storage = get_storage()
    url = await storage.put(data, build_storage_key(conversation_id, "report.pdf"))
"""

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

import httpx

from config import runtime_config
from errors import StorageError

logger = logging.getLogger(__name__)

LOCAL_PREFIX = "/uploads/"


def build_storage_key(conversation_id: str, file_name: str) -> str:
    """Unique object key for an upload within a conversation."""
    ext = Path(file_name).suffix.lower()
    return f"conversations/{conversation_id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"


def thumbnail_key(storage_key: str, file_name: str) -> str:
    """Thumbnail key beside the original object."""
    parent = storage_key.rsplit("/", 1)[0]
    return f"{parent}/thumb_{Path(file_name).stem}.jpg"


def is_local_locator(locator: str) -> bool:
    return locator.startswith(LOCAL_PREFIX)


class StorageBackend:
    """Storage contract shared by local and remote backends."""

    name = "base"

    async def put(self, data: bytes, key: str, mime_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    async def get(self, locator: str) -> bytes:
        raise NotImplementedError

    async def delete(self, locator: str) -> None:
        raise NotImplementedError

    def key_from_locator(self, locator: str) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources."""


class LocalStorage(StorageBackend):
    """Files on local disk, served under /uploads/."""

    name = "local"

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def key_from_locator(self, locator: str) -> str:
        return locator[len(LOCAL_PREFIX):] if is_local_locator(locator) else locator

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        # Keys must stay inside the upload root
        if self.root not in path.parents and path != self.root:
            raise StorageError("Invalid storage key", operation="read", locator=key)
        return path

    async def put(self, data: bytes, key: str, mime_type: str = "application/octet-stream") -> str:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError("Failed to write file", details=str(e), operation="write", locator=key) from e
        logger.debug(f"Stored {len(data)} bytes at {path}")
        return f"{LOCAL_PREFIX}{key}"

    async def get(self, locator: str) -> bytes:
        path = self._path(self.key_from_locator(locator))
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError("Failed to read file", details=str(e), operation="read", locator=locator) from e

    async def delete(self, locator: str) -> None:
        path = self._path(self.key_from_locator(locator))
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            logger.warning(f"Failed to delete {path}: {e}")


class RemoteObjectStorage(StorageBackend):
    """S3-compatible object store spoken to over plain HTTP.

    Objects are written with PUT to ``{endpoint}/{bucket}/{key}``; public
    reads go through the CDN URL when configured.
    """

    name = "remote"

    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint: Optional[str] = None,
        cdn_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not bucket:
            raise StorageError("Remote storage requires STORAGE_BUCKET", operation="write")
        self.bucket = bucket
        self.region = region
        self.endpoint = (endpoint or f"https://{region}.digitaloceanspaces.com").rstrip("/")
        self.public_base = (cdn_url or f"https://{bucket}.{region}.digitaloceanspaces.com").rstrip("/")
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    def _object_url(self, key: str) -> str:
        return f"{self.endpoint}/{self.bucket}/{key}"

    def key_from_locator(self, locator: str) -> str:
        if locator.startswith(self.public_base + "/"):
            return locator[len(self.public_base) + 1:]
        if locator.startswith(self.endpoint + "/"):
            return locator[len(self.endpoint) + 1:].split("/", 1)[1]
        return locator

    async def put(self, data: bytes, key: str, mime_type: str = "application/octet-stream") -> str:
        try:
            resp = await self._client.put(
                self._object_url(key),
                content=data,
                headers={"Content-Type": mime_type, "x-amz-acl": "public-read"},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError("Object upload failed", details=str(e), operation="write", locator=key) from e
        return f"{self.public_base}/{key}"

    async def get(self, locator: str) -> bytes:
        key = self.key_from_locator(locator)
        try:
            resp = await self._client.get(self._object_url(key))
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError("Object download failed", details=str(e), operation="read", locator=locator) from e
        return resp.content

    async def delete(self, locator: str) -> None:
        key = self.key_from_locator(locator)
        try:
            resp = await self._client.delete(self._object_url(key))
            if resp.status_code not in (200, 202, 204, 404):
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Object delete failed for {key}: {e}")

    async def close(self) -> None:
        await self._client.aclose()


_storage: Optional[StorageBackend] = None


def get_storage() -> StorageBackend:
    """Get the configured storage backend singleton."""
    global _storage
    if _storage is None:
        if runtime_config.storage_backend == "remote":
            _storage = RemoteObjectStorage(
                bucket=runtime_config.storage_bucket,
                region=runtime_config.storage_region,
                endpoint=runtime_config.storage_endpoint or None,
                cdn_url=runtime_config.storage_cdn_url or None,
                access_token=runtime_config.storage_access_token or None,
            )
        else:
            _storage = LocalStorage(runtime_config.upload_dir)
        logger.info(f"Storage backend: {_storage.name}")
    return _storage


async def close_storage() -> None:
    global _storage
    if _storage is not None:
        await _storage.close()
        _storage = None

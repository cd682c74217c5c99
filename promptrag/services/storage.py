import asyncio
import re
from pathlib import Path
from typing import Protocol

import httpx

from ..config import Settings
from ..errors import BlobStoreError, NotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)

_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(filename: str) -> str:
    return _UNSAFE.sub("_", filename)


def _path_segment(value) -> str:
    return sanitize_filename(str(value)).lstrip(".") or "_"


def generate_file_path(tenant_id: str, prompt_id, file_id, filename: str) -> str:
    """`{tenant}/{prompt}/{file id}_{filename}`, every segment made path-safe."""
    return f"{_path_segment(tenant_id)}/{prompt_id}/{file_id}_{sanitize_filename(filename)}"


class BlobStore(Protocol):
    async def put(self, path: str, data: bytes) -> str: ...

    async def get(self, path: str) -> bytes: ...

    async def delete(self, path: str) -> None: ...

    async def exists(self, path: str) -> bool: ...


class LocalBlobStore:
    """Blobs as files under a root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        full = (self.root / path.lstrip("/")).resolve()
        if self.root not in full.parents and full != self.root:
            raise BlobStoreError(f"Path escapes storage root: {path}")
        return full

    def _write(self, full: Path, data: bytes) -> None:
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)

    async def put(self, path: str, data: bytes) -> str:
        full = self._resolve(path)
        try:
            await asyncio.to_thread(self._write, full, data)
        except OSError as e:
            raise BlobStoreError(f"Failed to upload file {path}: {e}") from e
        logger.info("Stored blob %s (%d bytes)", path, len(data))
        return path

    async def get(self, path: str) -> bytes:
        full = self._resolve(path)
        try:
            return await asyncio.to_thread(full.read_bytes)
        except FileNotFoundError as e:
            raise NotFoundError(f"Blob {path} not found") from e
        except OSError as e:
            raise BlobStoreError(f"Failed to download file {path}: {e}") from e

    async def delete(self, path: str) -> None:
        full = self._resolve(path)
        if not full.exists():
            logger.warning("Blob %s does not exist, skipping deletion", path)
            return
        try:
            await asyncio.to_thread(full.unlink)
        except OSError as e:
            raise BlobStoreError(f"Failed to delete file {path}: {e}") from e

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)


class WebDAVBlobStore:
    """Nextcloud WebDAV backend.

    Paths are relative to ``base_path`` inside the user's files root
    (``{url}/remote.php/dav/files/{username}``).
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        base_path: str = "/prompts",
        *,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_path = "/" + base_path.strip("/")
        self.client = client or httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/remote.php/dav/files/{username}",
            auth=(username, password),
            timeout=httpx.Timeout(60.0),
        )
        logger.info("WebDAV storage initialised: url=%s base_path=%s", url, self.base_path)

    def _full(self, path: str) -> str:
        if path.startswith("/"):
            return path
        return f"{self.base_path}/{path}"

    async def _ensure_dirs(self, full: str) -> None:
        parts = [p for p in full.split("/")[:-1] if p]
        current = ""
        for part in parts:
            current += "/" + part
            resp = await self.client.request("MKCOL", current)
            # 405: collection already exists
            if resp.status_code not in (201, 405):
                resp.raise_for_status()

    async def put(self, path: str, data: bytes) -> str:
        full = self._full(path)
        try:
            await self._ensure_dirs(full)
            resp = await self.client.put(full, content=data)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Failed to upload %s: %s", full, e)
            raise BlobStoreError(f"Failed to upload file: {e}") from e
        logger.info("File uploaded: %s", full)
        return path

    async def get(self, path: str) -> bytes:
        full = self._full(path)
        try:
            resp = await self.client.get(full)
            if resp.status_code == 404:
                raise NotFoundError(f"Blob {path} not found")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Failed to download %s: %s", full, e)
            raise BlobStoreError(f"Failed to download file: {e}") from e
        return resp.content

    async def exists(self, path: str) -> bool:
        full = self._full(path)
        try:
            resp = await self.client.request("PROPFIND", full, headers={"Depth": "0"})
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Failed to stat file: {e}") from e
        return resp.status_code in (200, 207)

    async def delete(self, path: str) -> None:
        if not await self.exists(path):
            logger.warning("File %s does not exist, skipping deletion", path)
            return
        full = self._full(path)
        try:
            resp = await self.client.delete(full)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Failed to delete %s: %s", full, e)
            raise BlobStoreError(f"Failed to delete file: {e}") from e
        logger.info("File deleted: %s", full)

    async def aclose(self) -> None:
        await self.client.aclose()


def build_blob_store(settings: Settings) -> BlobStore:
    backend = (settings.BLOB_BACKEND or "local").lower()
    if backend == "webdav":
        return WebDAVBlobStore(
            settings.NEXTCLOUD_URL,
            settings.NEXTCLOUD_USERNAME,
            settings.NEXTCLOUD_PASSWORD,
            settings.NEXTCLOUD_BASE_PATH,
        )
    if backend == "local":
        return LocalBlobStore(settings.BLOB_LOCAL_ROOT)
    raise ValueError(f"Unknown BLOB_BACKEND: {settings.BLOB_BACKEND}")

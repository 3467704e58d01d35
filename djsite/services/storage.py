"""Object storage for uploaded photos, videos and cover images."""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from pathlib import Path, PurePosixPath
from typing import Protocol, Sequence
from urllib.parse import quote

import httpx

from djsite.config import Settings, settings

logger = logging.getLogger(__name__)

BUCKETS = frozenset({"photos", "videos", "covers"})

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_SUFFIX_LENGTH = 6


class StorageError(RuntimeError):
    """Raised when an upload or removal fails."""


def build_object_path(
    bucket: str,
    filename: str,
    *,
    timestamp_ms: int | None = None,
    suffix: str | None = None,
) -> str:
    """Return ``{bucket}/{timestamp}-{suffix}.{extension}`` for a new upload."""

    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    if suffix is None:
        suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if not extension or "/" in extension:
        extension = "bin"
    return f"{bucket}/{timestamp_ms}-{suffix}.{extension}"


class StorageGateway(Protocol):
    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str: ...

    async def remove(self, bucket: str, paths: Sequence[str]) -> None: ...


def _check_bucket(bucket: str) -> None:
    if bucket not in BUCKETS:
        raise StorageError(f"Unknown bucket: {bucket}")


class LocalStorage:
    """Store objects on disk; served by the app under ``url_prefix``."""

    def __init__(self, root: Path, url_prefix: str = "/media") -> None:
        self._root = Path(root)
        self._url_prefix = url_prefix.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(bucket, path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            raise StorageError(f"Failed to store {bucket}/{path}") from exc
        return f"{self._url_prefix}/{bucket}/{quote(path)}"

    async def remove(self, bucket: str, paths: Sequence[str]) -> None:
        targets = [self._resolve(bucket, path) for path in paths]
        try:
            await asyncio.to_thread(self._unlink_all, targets)
        except OSError as exc:
            raise StorageError(f"Failed to remove objects from {bucket}") from exc

    def _resolve(self, bucket: str, path: str) -> Path:
        _check_bucket(bucket)
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StorageError(f"Invalid object path: {path}")
        return self._root / bucket / Path(*relative.parts)

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    @staticmethod
    def _unlink_all(targets: Sequence[Path]) -> None:
        for target in targets:
            target.unlink(missing_ok=True)


class SupabaseStorage:
    """Supabase Storage REST client holding the service key on the server."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._timeout = timeout
        self._transport = transport

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        _check_bucket(bucket)
        url = f"{self._base_url}/storage/v1/object/{bucket}/{quote(path)}"
        headers = {"content-type": content_type or "application/octet-stream"}
        try:
            async with self._client() as client:
                response = await client.post(url, content=data, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"Failed to upload {bucket}/{path}") from exc
        return self.public_url(bucket, path)

    async def remove(self, bucket: str, paths: Sequence[str]) -> None:
        _check_bucket(bucket)
        if not paths:
            return
        url = f"{self._base_url}/storage/v1/object/{bucket}"
        try:
            async with self._client() as client:
                response = await client.request("DELETE", url, json={"prefixes": list(paths)})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"Failed to remove objects from {bucket}") from exc

    def _client(self) -> httpx.AsyncClient:
        headers = {
            "apikey": self._service_key,
            "authorization": f"Bearer {self._service_key}",
        }
        return httpx.AsyncClient(
            timeout=self._timeout, headers=headers, transport=self._transport
        )


def build_storage(config: Settings = settings) -> StorageGateway:
    if config.storage_backend == "supabase":
        if not (config.supabase_url and config.supabase_service_key):
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY are required for Supabase storage"
            )
        return SupabaseStorage(config.supabase_url, config.supabase_service_key)
    return LocalStorage(config.media_root, config.media_url_prefix)

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from supabase_client import SupabaseClient
from uploads.errors import PhotoNotFoundError, PhotoServiceError


class Storage(Protocol):
    async def put_bytes(
        self,
        *,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> str: ...

    async def get_url(self, *, key: str, expires_in: int = 3600) -> str | None: ...

    async def download(self, *, key: str) -> bytes: ...

    async def delete(self, *, key: str) -> None: ...


class LocalStorage:
    def __init__(self, base_path: Path | str | None = None) -> None:
        path = Path(base_path) if base_path else Path("data/photos")
        self._base = path.resolve()
        self._base.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        normalized_key = key.lstrip("/")
        destination = (self._base / normalized_key).resolve()
        if self._base not in destination.parents:
            raise PhotoServiceError(f"Invalid storage key {key!r}")
        return destination

    async def put_bytes(
        self,
        *,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> str:
        destination = self._resolve(key)
        if destination.exists() and not upsert:
            raise PhotoServiceError(f"Object already exists: {key}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        logging.info("PHOTO store local key=%s bytes=%s", key.lstrip("/"), len(data))
        await asyncio.to_thread(destination.write_bytes, data)
        return key.lstrip("/")

    async def get_url(self, *, key: str, expires_in: int = 3600) -> str | None:
        path = self._resolve(key)
        if not path.exists():
            return None
        return path.as_uri()

    async def download(self, *, key: str) -> bytes:
        path = self._resolve(key)
        if not path.exists():
            raise PhotoNotFoundError(f"Stored file missing at {key}")
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, *, key: str) -> None:
        path = self._resolve(key)
        with contextlib.suppress(FileNotFoundError):
            path.unlink()


@dataclass
class SupabaseStorage:
    client: SupabaseClient
    bucket: str

    async def put_bytes(
        self,
        *,
        key: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> str:
        normalized_key = key.lstrip("/")
        logging.info(
            "PHOTO store supabase key=%s bucket=%s bytes=%s",
            normalized_key,
            self.bucket,
            len(data),
        )
        return await self.client.upload_object(
            bucket=self.bucket,
            key=normalized_key,
            data=data,
            content_type=content_type,
            upsert=upsert,
        )

    async def get_url(self, *, key: str, expires_in: int = 3600) -> str | None:
        normalized_key = key.lstrip("/")
        try:
            return await self.client.create_signed_url(
                bucket=self.bucket, key=normalized_key, expires_in=expires_in
            )
        except PhotoServiceError as exc:
            logging.warning(
                "PHOTO signed-url failed bucket=%s key=%s error=%s",
                self.bucket,
                normalized_key,
                exc,
            )
            return None

    async def download(self, *, key: str) -> bytes:
        return await self.client.download_object(bucket=self.bucket, key=key.lstrip("/"))

    async def delete(self, *, key: str) -> None:
        await self.client.delete_object(bucket=self.bucket, key=key.lstrip("/"))

"""Photo service used by the upload pipeline and the gallery.

Stores image bytes through a :class:`storage.Storage` backend and photo rows
through a :class:`data_access.PhotoRecords` backend.
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from uuid import uuid4

from data_access import PhotoRecords, SqlitePhotoRecords, SupabasePhotoRecords
from observability import context, log_exc, record_photo_delete
from storage import LocalStorage, Storage, SupabaseStorage
from supabase_client import SupabaseClient
from uploads.errors import PhotoNotFoundError, PhotoServiceError
from uploads.intake import (
    ALLOWED_EXTENSIONS,
    ALLOWED_TYPES,
    DEFAULT_MAX_FILE_SIZE,
    validate_photo_file,
)
from uploads.models import SelectedFile
from viewer.models import Photo


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logging.warning("Invalid %s=%s, using %s", name, raw, default)
        return default
    return max(1, value)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        if value <= 0:
            raise ValueError
    except ValueError:
        logging.warning("Invalid %s=%s, using %s", name, raw, default)
        return default
    return value


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip()
    return value or default


@dataclass(slots=True)
class PhotoConfig:
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_types: tuple[str, ...] = ALLOWED_TYPES
    allowed_extensions: tuple[str, ...] = ALLOWED_EXTENSIONS
    bucket_name: str = "diary-photos"
    compression_max_dimension: int = 1920
    signed_url_ttl: int = 3600
    upload_attempts: int = 1
    user_id: str = "local"
    download_dir: Path = field(default_factory=lambda: Path("downloads"))

    @property
    def max_file_size_mb(self) -> float:
        return self.max_file_size / 1024 / 1024


PHOTO_CONFIG = PhotoConfig()


def load_photo_config() -> PhotoConfig:
    max_mb = _env_float("PHOTO_MAX_FILE_MB", PHOTO_CONFIG.max_file_size_mb)
    return PhotoConfig(
        max_file_size=int(max_mb * 1024 * 1024),
        bucket_name=_env_str("PHOTO_BUCKET", PHOTO_CONFIG.bucket_name),
        signed_url_ttl=_env_int("PHOTO_SIGNED_URL_TTL", PHOTO_CONFIG.signed_url_ttl),
        upload_attempts=_env_int("PHOTO_UPLOAD_ATTEMPTS", PHOTO_CONFIG.upload_attempts),
        user_id=_env_str("PHOTO_USER_ID", PHOTO_CONFIG.user_id),
        download_dir=Path(_env_str("PHOTO_DOWNLOAD_DIR", str(PHOTO_CONFIG.download_dir))),
    )


_UNSAFE_CHARS_RE = re.compile(r"[^a-z0-9.-]")
_REPEATED_UNDERSCORE_RE = re.compile(r"_+")


def sanitize_filename(
    filename: str, *, timestamp_ms: int | None = None, token: str | None = None
) -> str:
    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    name = _UNSAFE_CHARS_RE.sub("_", filename.lower())
    name = _REPEATED_UNDERSCORE_RE.sub("_", name).strip("_")
    if token:
        return f"{stamp}_{token}_{name}"
    return f"{stamp}_{name}"


def generate_storage_path(user_id: str, diary_id: str, filename: str) -> str:
    return f"{user_id}/{diary_id}/{filename}"


class PhotoService:
    def __init__(
        self,
        storage: Storage,
        records: PhotoRecords,
        config: PhotoConfig | None = None,
    ) -> None:
        self.storage = storage
        self.records = records
        self.config = config or PHOTO_CONFIG

    async def _with_url(self, row: dict[str, Any]) -> Photo:
        url = await self.get_photo_url(str(row["storage_path"]))
        return Photo.from_row(row, url=url)

    # Upload ------------------------------------------------------------

    async def upload_photo(
        self,
        diary_id: str,
        file: SelectedFile,
        caption: str | None = None,
    ) -> Photo:
        with context(diary_id=diary_id, file_name=file.name):
            valid, error = validate_photo_file(
                file,
                max_file_size=self.config.max_file_size,
                allowed_types=self.config.allowed_types,
                allowed_extensions=self.config.allowed_extensions,
            )
            if not valid:
                raise PhotoServiceError(error or "Invalid file")

            object_name = sanitize_filename(file.name, token=uuid4().hex[:8])
            storage_path = generate_storage_path(self.config.user_id, diary_id, object_name)
            await self.storage.put_bytes(
                key=storage_path, data=file.data, content_type=file.mime_type
            )

            try:
                next_order = await self.records.next_display_order(diary_id)
                row = await self.records.insert(
                    {
                        "diary_id": diary_id,
                        "storage_path": storage_path,
                        "file_name": file.name,
                        "file_size": file.size,
                        "mime_type": file.mime_type,
                        "caption": caption,
                        "display_order": next_order,
                        "uploaded_by": self.config.user_id,
                    }
                )
            except Exception as exc:
                logging.warning(
                    "PHOTO record insert failed, removing stored object %s", storage_path
                )
                try:
                    await self.storage.delete(key=storage_path)
                except PhotoServiceError as cleanup_exc:
                    log_exc("PHOTO rollback delete failed", cleanup_exc)
                if isinstance(exc, PhotoServiceError):
                    raise
                raise PhotoServiceError(f"Could not save photo record: {exc}") from exc

            logging.info("PHOTO upload ok id=%s path=%s", row.get("id"), storage_path)
            return await self._with_url(row)

    async def upload_multiple_photos(
        self, diary_id: str, files: Sequence[SelectedFile]
    ) -> dict[str, list[dict[str, Any]]]:
        """Upload ``files`` one after another without captions."""

        results: dict[str, list[dict[str, Any]]] = {"successful": [], "failed": []}
        for file in files:
            try:
                photo = await self.upload_photo(diary_id, file)
            except PhotoServiceError as exc:
                results["failed"].append({"file": file.name, "error": str(exc)})
            else:
                results["successful"].append({"file": file.name, "photo": photo})
        return results

    # Read --------------------------------------------------------------

    async def get_photos(self, diary_id: str) -> list[Photo]:
        rows = await self.records.list_for_diary(diary_id)
        photos = [await self._with_url(row) for row in rows]
        logging.info("PHOTO list diary=%s count=%s", diary_id, len(photos))
        return photos

    async def get_photo_by_id(self, photo_id: str) -> Photo:
        row = await self.records.get(photo_id)
        if row is None:
            raise PhotoNotFoundError(f"Photo {photo_id} not found")
        return await self._with_url(row)

    async def get_photo_url(self, storage_path: str, expires_in: int | None = None) -> str | None:
        ttl = expires_in if expires_in is not None else self.config.signed_url_ttl
        return await self.storage.get_url(key=storage_path, expires_in=ttl)

    # Update ------------------------------------------------------------

    async def update_photo_caption(self, photo_id: str, caption: str | None) -> Photo:
        row = await self.records.update(photo_id, {"caption": caption})
        if row is None:
            raise PhotoNotFoundError(f"Photo {photo_id} not found")
        logging.info("PHOTO caption updated id=%s", photo_id)
        return await self._with_url(row)

    async def reorder_photos(self, diary_id: str, photo_ids: Sequence[str]) -> bool:
        for index, photo_id in enumerate(photo_ids):
            await self.records.set_display_order(diary_id, photo_id, index)
        logging.info("PHOTO reordered diary=%s count=%s", diary_id, len(photo_ids))
        return True

    # Delete ------------------------------------------------------------

    async def delete_photo(self, photo_id: str) -> None:
        with context(photo_id=photo_id):
            row = await self.records.get(photo_id)
            if row is None:
                record_photo_delete(False)
                raise PhotoNotFoundError(f"Photo {photo_id} not found")
            storage_path = str(row["storage_path"])
            try:
                await self.storage.delete(key=storage_path)
            except PhotoServiceError as exc:
                # not fatal, the row is removed regardless
                logging.warning("PHOTO storage delete failed path=%s error=%s", storage_path, exc)
            try:
                await self.records.delete(photo_id)
            except PhotoServiceError:
                record_photo_delete(False)
                raise
            record_photo_delete(True)
            logging.info("PHOTO deleted id=%s", photo_id)

    async def delete_all_photos_for_diary(self, diary_id: str) -> int:
        deleted = 0
        for photo in await self.get_photos(diary_id):
            try:
                await self.delete_photo(photo.id)
            except PhotoServiceError as exc:
                log_exc(f"PHOTO delete {photo.id} failed", exc)
                continue
            deleted += 1
        logging.info("PHOTO deleted %s photos for diary %s", deleted, diary_id)
        return deleted

    # Statistics and download --------------------------------------------

    async def get_photo_statistics(self, diary_id: str) -> dict[str, Any]:
        rows = await self.records.list_for_diary(diary_id)
        total_size = sum(int(row.get("file_size") or 0) for row in rows)
        return {
            "total_photos": len(rows),
            "total_size": total_size,
            "total_size_mb": f"{total_size / 1024 / 1024:.2f}",
        }

    async def download_photo(self, storage_path: str, file_name: str) -> Path:
        data = await self.storage.download(key=storage_path)
        target_dir = self.config.download_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        destination = target_dir / Path(file_name).name
        destination.write_bytes(data)
        logging.info("PHOTO downloaded %s -> %s", storage_path, destination)
        return destination


def create_photo_service_from_env(
    *,
    config: PhotoConfig | None = None,
    supabase: SupabaseClient | None = None,
) -> PhotoService:
    photo_config = config or load_photo_config()
    backend = (os.getenv("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "supabase":
        client = supabase or SupabaseClient()
        if not client.enabled:
            raise RuntimeError("Supabase storage selected but client is disabled")
        return PhotoService(
            SupabaseStorage(client=client, bucket=photo_config.bucket_name),
            SupabasePhotoRecords(client),
            photo_config,
        )
    if backend and backend != "local":
        logging.warning("Unknown STORAGE_BACKEND=%s, falling back to local", backend)
    storage = LocalStorage(base_path=os.getenv("PHOTO_STORAGE_DIR") or None)
    records = SqlitePhotoRecords.open(os.getenv("PHOTO_DB_PATH") or "data/photos.db")
    return PhotoService(storage, records, photo_config)

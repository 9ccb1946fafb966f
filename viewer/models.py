"""Data structures that describe photo viewer entities."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


UTC = timezone.utc


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _to_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True, slots=True)
class Photo:
    """A persisted diary photo as returned by the photo service."""

    id: str
    diary_id: str
    storage_path: str
    file_name: str
    file_size: int
    url: Optional[str] = None
    caption: Optional[str] = None
    mime_type: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    display_order: int = 0
    uploaded_by: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any], *, url: Optional[str] = None) -> "Photo":
        return cls(
            id=str(row["id"]),
            diary_id=str(row["diary_id"]),
            storage_path=str(row["storage_path"]),
            file_name=str(row["file_name"]),
            file_size=_to_int(row.get("file_size")),
            url=url if url is not None else row.get("url"),
            caption=row.get("caption") or None,
            mime_type=row.get("mime_type"),
            uploaded_at=_parse_timestamp(row.get("uploaded_at")),
            display_order=_to_int(row.get("display_order")),
            uploaded_by=row.get("uploaded_by"),
        )

    @property
    def alt_text(self) -> str:
        return self.caption or self.file_name


@dataclass(frozen=True, slots=True)
class GalleryState:
    """Photos of one diary plus the lightbox position.

    ``current_index`` is meaningful only while ``lightbox_open`` is set and is
    then always a valid index into ``photos``.
    """

    photos: tuple[Photo, ...] = field(default_factory=tuple)
    lightbox_open: bool = False
    current_index: int = 0

    @property
    def current_photo(self) -> Optional[Photo]:
        if not self.lightbox_open or not self.photos:
            return None
        return self.photos[self.current_index]

    def index_of(self, photo_id: str) -> int:
        for index, photo in enumerate(self.photos):
            if photo.id == photo_id:
                return index
        return -1

    def with_photos(self, photos: tuple[Photo, ...]) -> "GalleryState":
        if not photos:
            return GalleryState(photos=(), lightbox_open=False, current_index=0)
        index = min(self.current_index, len(photos) - 1)
        return replace(self, photos=photos, current_index=max(0, index))

"""Data structures shared by the upload pipeline stages."""

from __future__ import annotations

import mimetypes
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from viewer.models import Photo


CaptionMap = dict[str, str]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class SelectedFile:
    """A file picked by the user, held in memory for one batch."""

    name: str
    data: bytes = field(repr=False)
    mime_type: str
    last_modified: int = field(default_factory=_now_ms)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        suffix = Path(self.name).suffix
        return suffix.lower()

    @classmethod
    def from_path(cls, path: str | Path, *, mime_type: str | None = None) -> "SelectedFile":
        source = Path(path)
        guessed = mime_type or mimetypes.guess_type(source.name)[0] or "application/octet-stream"
        stat = source.stat()
        return cls(
            name=source.name,
            data=source.read_bytes(),
            mime_type=guessed,
            last_modified=int(stat.st_mtime * 1000),
        )


@dataclass(frozen=True, slots=True)
class PreviewRecord:
    id: str
    file: SelectedFile = field(repr=False)
    display_name: str
    human_size: str
    size_bytes: int
    thumbnail_data_uri: str = field(repr=False)
    mime_type: str


@dataclass(slots=True)
class UploadProgress:
    """Counter of settled uploads within one batch."""

    total: int
    current: int = 0

    def advance(self) -> "UploadProgress":
        if self.current >= self.total:
            raise ValueError(
                f"Upload progress cannot exceed total ({self.current}/{self.total})"
            )
        self.current += 1
        return self

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.current * 100 / self.total)

    def snapshot(self) -> dict[str, int]:
        return {"current": self.current, "total": self.total}


@dataclass(frozen=True, slots=True)
class UploadOutcome:
    success: bool
    file_name: str
    photo: Photo | None = None
    error: str | None = None


@dataclass(slots=True)
class UploadResult:
    successful: list[UploadOutcome] = field(default_factory=list)
    failed: list[UploadOutcome] = field(default_factory=list)
    error_summary: str | None = None

    def to_payload(self) -> dict[str, list[dict[str, Any]]]:
        """Shape passed to ``on_upload_complete`` hooks."""

        return {
            "successful": [
                {"file": item.file_name, "photo": item.photo} for item in self.successful
            ],
            "failed": [{"file": item.file_name, "error": item.error} for item in self.failed],
        }

"""Validation of raw file selections before any decode work happens."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .errors import BatchTooLargeError, ValidationError
from .models import SelectedFile

MAX_BATCH_FILES = 20
MAX_LISTED_NAMES = 3
DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024
ALLOWED_TYPES: tuple[str, ...] = ("image/jpeg", "image/jpg", "image/png", "image/webp")
ALLOWED_EXTENSIONS: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp")


def format_megabytes(size_bytes: int) -> str:
    value = size_bytes / 1024 / 1024
    if value == int(value):
        return f"{int(value)}MB"
    return f"{value:g}MB"


def summarize_names(names: Sequence[str], limit: int = MAX_LISTED_NAMES) -> str:
    listed = ", ".join(names[:limit])
    if len(names) > limit:
        listed += "..."
    return listed


@dataclass(slots=True)
class RejectionSummary:
    non_image_count: int = 0
    oversized_names: list[str] = field(default_factory=list)
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    @property
    def is_empty(self) -> bool:
        return self.non_image_count == 0 and not self.oversized_names

    def messages(self) -> list[str]:
        result: list[str] = []
        if self.non_image_count:
            result.append(
                f"{self.non_image_count} non-image file(s) skipped. Only images are allowed."
            )
        if self.oversized_names:
            result.append(
                f"{len(self.oversized_names)} file(s) exceed "
                f"{format_megabytes(self.max_file_size)} limit: "
                f"{summarize_names(self.oversized_names)}"
            )
        return result

    @property
    def message(self) -> str | None:
        # single banner; the oversize warning wins
        messages = self.messages()
        if not messages:
            return None
        return messages[-1]


@dataclass(slots=True)
class IntakeResult:
    valid_files: list[SelectedFile]
    rejection: RejectionSummary


def process_files(
    raw_files: Iterable[SelectedFile],
    *,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    max_batch: int = MAX_BATCH_FILES,
) -> IntakeResult:
    files = list(raw_files)
    rejection = RejectionSummary(max_file_size=max_file_size)

    image_files = [f for f in files if f.mime_type.lower().startswith("image/")]
    rejection.non_image_count = len(files) - len(image_files)
    if not image_files:
        raise ValidationError("Please select image files only (JPG, PNG, WEBP)")

    valid_files: list[SelectedFile] = []
    for file in image_files:
        if file.size > max_file_size:
            rejection.oversized_names.append(file.name)
        else:
            valid_files.append(file)

    if not valid_files:
        raise ValidationError(rejection.message or "No valid image files selected")

    if len(valid_files) > max_batch:
        raise BatchTooLargeError(len(valid_files), max_batch)

    return IntakeResult(valid_files=valid_files, rejection=rejection)


def validate_photo_file(
    file: SelectedFile | None,
    *,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    allowed_types: Sequence[str] = ALLOWED_TYPES,
    allowed_extensions: Sequence[str] = ALLOWED_EXTENSIONS,
) -> tuple[bool, str | None]:
    """Check one file against the service limits. Returns ``(valid, error)``."""

    if file is None:
        return False, "No file provided"
    if file.size > max_file_size:
        return False, f"File size exceeds {format_megabytes(max_file_size)} limit"
    if file.mime_type.lower() not in allowed_types:
        return False, "Only JPEG, PNG, and WebP images are allowed"
    if file.extension not in allowed_extensions:
        return False, "Invalid file extension"
    return True, None

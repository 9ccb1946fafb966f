"""Batch photo upload pipeline: intake, previews, compression and upload."""

from .errors import (
    BatchTooLargeError,
    DecodeError,
    PhotoNotFoundError,
    PhotoPipelineError,
    PhotoServiceError,
    TransientStorageError,
    ValidationError,
)
from .models import (
    CaptionMap,
    PreviewRecord,
    SelectedFile,
    UploadOutcome,
    UploadProgress,
    UploadResult,
)

__all__ = [
    "BatchTooLargeError",
    "CaptionMap",
    "DecodeError",
    "PhotoNotFoundError",
    "PhotoPipelineError",
    "PhotoServiceError",
    "PreviewRecord",
    "SelectedFile",
    "TransientStorageError",
    "UploadOutcome",
    "UploadProgress",
    "UploadResult",
    "ValidationError",
]

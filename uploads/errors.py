from __future__ import annotations


class PhotoPipelineError(Exception):
    """Base class for errors raised by the photo upload pipeline."""


class ValidationError(PhotoPipelineError):
    """A selection was rejected during intake."""


class BatchTooLargeError(ValidationError):
    def __init__(self, count: int, limit: int):
        super().__init__(f"Maximum {limit} photos can be uploaded at once")
        self.count = count
        self.limit = limit


class DecodeError(PhotoPipelineError):
    """An image could not be decoded or re-encoded."""

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"Could not read image {file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class PhotoServiceError(PhotoPipelineError):
    """The photo service (storage or records) rejected an operation."""


class PhotoNotFoundError(PhotoServiceError):
    pass


class TransientStorageError(PhotoServiceError):
    """A storage call failed in a way that may succeed when retried."""

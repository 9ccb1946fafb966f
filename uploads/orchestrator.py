from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, TypeVar
from uuid import uuid4

import httpx

import imgio
from observability import context, log_exc, record_compression, record_photo_upload, record_upload_batch
from viewer.models import Photo

from .errors import DecodeError, PhotoPipelineError, TransientStorageError, ValidationError
from .intake import DEFAULT_MAX_FILE_SIZE, MAX_BATCH_FILES, process_files, summarize_names
from .models import CaptionMap, PreviewRecord, SelectedFile, UploadOutcome, UploadProgress, UploadResult
from .previews import PreviewIdGenerator, generate_previews

T = TypeVar("T")

ProgressCallback = Callable[[UploadProgress], None]
UploadCompleteHook = Callable[[dict[str, list[dict[str, Any]]]], Any]

CANCELLED_MESSAGE = "Upload cancelled"


class PhotoUploader(Protocol):
    async def upload_photo(
        self, diary_id: str, file: SelectedFile, caption: str | None = None
    ) -> Photo: ...


class UploadPhase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PREVIEWING = "previewing"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    SETTLED = "settled"


@dataclass(slots=True)
class RetryPolicy:
    """Bounded retry with exponential backoff for transient failures."""

    max_attempts: int = 1
    base_delay: float = 0.5
    max_delay: float = 8.0
    retry_on: tuple[type[BaseException], ...] = (
        TransientStorageError,
        httpx.TimeoutException,
        httpx.TransportError,
    )

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        attempts = max(1, self.max_attempts)
        delay = self.base_delay
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except self.retry_on as exc:
                if attempt >= attempts:
                    raise
                logging.warning(
                    "PHOTO %s failed (attempt %s/%s): %s", label, attempt, attempts, exc
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_delay)
        raise AssertionError("unreachable")  # pragma: no cover


def failure_summary(failed: Sequence[UploadOutcome]) -> str | None:
    if not failed:
        return None
    names = [item.file_name for item in failed]
    return f"{len(failed)} photo(s) failed to upload: {summarize_names(names)}"


class UploadOrchestrator:
    def __init__(
        self,
        uploader: PhotoUploader,
        *,
        retry: RetryPolicy | None = None,
        max_dimension: int = imgio.COMPRESSION_MAX_DIMENSION,
    ) -> None:
        self.uploader = uploader
        self.retry = retry or RetryPolicy()
        self.max_dimension = max_dimension

    async def _compress_one(self, file: SelectedFile) -> SelectedFile:
        try:
            compressed = await imgio.compress_image(file, max_dimension=self.max_dimension)
        except DecodeError as exc:
            logging.warning("PHOTO compression skipped for %s: %s", file.name, exc)
            return file
        if compressed is not file:
            record_compression(file.size, compressed.size)
        return compressed

    async def _upload_one(
        self,
        diary_id: str,
        file: SelectedFile,
        caption: str | None,
        progress: UploadProgress,
        on_progress: ProgressCallback | None,
        cancel_event: asyncio.Event | None,
    ) -> UploadOutcome:
        with context(file_name=file.name):
            try:
                if cancel_event is not None and cancel_event.is_set():
                    raise PhotoPipelineError(CANCELLED_MESSAGE)
                photo = await self.retry.run(
                    lambda: self.uploader.upload_photo(diary_id, file, caption),
                    label=f"upload {file.name}",
                )
            except Exception as exc:
                logging.warning("PHOTO upload failed %s: %s", file.name, exc)
                outcome = UploadOutcome(success=False, file_name=file.name, error=str(exc))
            else:
                outcome = UploadOutcome(success=True, file_name=file.name, photo=photo)
            record_photo_upload(outcome.success)
            progress.advance()
            if on_progress is not None:
                on_progress(progress)
            return outcome

    async def upload(
        self,
        diary_id: str,
        files: Sequence[SelectedFile],
        previews: Sequence[PreviewRecord],
        captions: Mapping[str, str],
        *,
        on_progress: ProgressCallback | None = None,
        on_phase: Callable[[UploadPhase], None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> UploadResult:
        if len(files) != len(previews):
            raise ValueError(
                f"files and previews must align ({len(files)} != {len(previews)})"
            )
        batch_id = uuid4().hex[:12]
        started = time.perf_counter()
        with context(diary_id=diary_id, batch_id=batch_id):
            logging.info("PHOTO batch start files=%s", len(files))
            if on_phase is not None:
                on_phase(UploadPhase.COMPRESSING)
            compressed = await asyncio.gather(*(self._compress_one(file) for file in files))

            if on_phase is not None:
                on_phase(UploadPhase.UPLOADING)
            progress = UploadProgress(total=len(files))
            if on_progress is not None:
                on_progress(progress)
            outcomes = await asyncio.gather(
                *(
                    self._upload_one(
                        diary_id,
                        file,
                        (captions.get(preview.id) or "").strip() or None,
                        progress,
                        on_progress,
                        cancel_event,
                    )
                    for file, preview in zip(compressed, previews)
                )
            )

            result = UploadResult(
                successful=[item for item in outcomes if item.success],
                failed=[item for item in outcomes if not item.success],
            )
            result.error_summary = failure_summary(result.failed)
            duration = time.perf_counter() - started
            record_upload_batch(
                successful=len(result.successful),
                failed=len(result.failed),
                duration=duration,
            )
            logging.info(
                "PHOTO batch settled ok=%s failed=%s in %.3f seconds",
                len(result.successful),
                len(result.failed),
                duration,
            )
            if on_phase is not None:
                on_phase(UploadPhase.SETTLED)
            return result


class PhotoUploadSession:
    """Selection state of one upload form bound to a diary.

    Holds the selected files, their previews and captions, and runs the
    intake, preview, compress and upload sequence.
    """

    def __init__(
        self,
        diary_id: str,
        uploader: PhotoUploader,
        *,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_batch: int = MAX_BATCH_FILES,
        retry: RetryPolicy | None = None,
        on_upload_complete: UploadCompleteHook | None = None,
        on_progress: ProgressCallback | None = None,
        disabled: bool = False,
    ) -> None:
        self.diary_id = diary_id
        self.max_file_size = max_file_size
        self.max_batch = max_batch
        self.on_upload_complete = on_upload_complete
        self.on_progress = on_progress
        self.disabled = disabled
        self.orchestrator = UploadOrchestrator(uploader, retry=retry)
        self.files: list[SelectedFile] = []
        self.previews: list[PreviewRecord] = []
        self.captions: CaptionMap = {}
        self.error: str | None = None
        self.progress: UploadProgress | None = None
        self.phase = UploadPhase.IDLE
        self._ids = PreviewIdGenerator()

    @property
    def busy(self) -> bool:
        return self.phase not in (UploadPhase.IDLE, UploadPhase.SETTLED)

    def _set_phase(self, phase: UploadPhase) -> None:
        logging.debug("PHOTO session phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def _set_progress(self, progress: UploadProgress) -> None:
        self.progress = progress
        if self.on_progress is not None:
            self.on_progress(progress)

    async def select_files(self, raw_files: Iterable[SelectedFile]) -> bool:
        """Validate and preview a new selection, replacing the current one.

        Returns ``False`` when the selection was rejected; ``error`` then
        holds the message to display.
        """

        if self.disabled or self.busy:
            return False
        self.error = None
        self._set_phase(UploadPhase.VALIDATING)
        try:
            intake = process_files(
                raw_files, max_file_size=self.max_file_size, max_batch=self.max_batch
            )
        except ValidationError as exc:
            self.error = str(exc)
            self._set_phase(UploadPhase.IDLE)
            return False
        self.error = intake.rejection.message

        self._set_phase(UploadPhase.PREVIEWING)
        try:
            previews = await generate_previews(intake.valid_files, ids=self._ids)
        except DecodeError as exc:
            self.error = str(exc)
            self._set_phase(UploadPhase.IDLE)
            return False

        self.files = list(intake.valid_files)
        self.previews = previews
        self.captions = {}
        self._set_phase(UploadPhase.IDLE)
        return True

    def update_caption(self, preview_id: str, caption: str) -> None:
        if not any(preview.id == preview_id for preview in self.previews):
            raise KeyError(preview_id)
        self.captions[preview_id] = caption

    def remove_file(self, index: int) -> None:
        removed = self.previews[index]
        del self.files[index]
        del self.previews[index]
        self.captions.pop(removed.id, None)

    def clear_selection(self) -> None:
        self.files = []
        self.previews = []
        self.captions = {}
        self.error = None

    async def upload(self, *, cancel_event: asyncio.Event | None = None) -> UploadResult | None:
        if not self.files or self.busy:
            return None
        self.error = None
        try:
            result = await self.orchestrator.upload(
                self.diary_id,
                self.files,
                self.previews,
                self.captions,
                on_progress=self._set_progress,
                on_phase=self._set_phase,
                cancel_event=cancel_event,
            )
        except Exception as exc:
            log_exc("PHOTO batch upload failed", exc)
            self.error = str(exc) or "Failed to upload photos"
            return None
        finally:
            self.progress = None
            self._set_phase(UploadPhase.IDLE)

        if result.successful:
            self.clear_selection()
        self.error = result.error_summary

        if self.on_upload_complete is not None:
            hook_result = self.on_upload_complete(result.to_payload())
            if asyncio.iscoroutine(hook_result):
                await hook_result
        return result

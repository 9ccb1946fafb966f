from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import replace
from enum import Enum
from typing import Any, Optional, Protocol

from observability import context, log_exc

from .keyboard import ARROW_LEFT, ARROW_RIGHT, ESCAPE, KeyEventSource, KeySubscription
from .models import GalleryState, Photo

Confirmer = Callable[[str], Any]
Alert = Callable[[str], None]
DeletedHook = Callable[[str], Any]

LOAD_ERROR_MESSAGE = "Failed to load photos"
DOWNLOAD_ERROR_MESSAGE = "Failed to download photo"


class GalleryService(Protocol):
    async def get_photos(self, diary_id: str) -> list[Photo]: ...

    async def delete_photo(self, photo_id: str) -> None: ...

    async def download_photo(self, storage_path: str, file_name: str) -> Any: ...


class LoadState(str, Enum):
    LOADING = "loading"
    ERROR = "error"
    READY = "ready"


# Pure lightbox transitions -------------------------------------------------


def open_lightbox(state: GalleryState, index: int) -> GalleryState:
    if not 0 <= index < len(state.photos):
        raise IndexError(f"photo index {index} out of range for {len(state.photos)} photos")
    return replace(state, lightbox_open=True, current_index=index)


def close_lightbox(state: GalleryState) -> GalleryState:
    return replace(state, lightbox_open=False)


def go_to_previous(state: GalleryState) -> GalleryState:
    if not state.lightbox_open or not state.photos:
        return state
    count = len(state.photos)
    index = count - 1 if state.current_index == 0 else state.current_index - 1
    return replace(state, current_index=index)


def go_to_next(state: GalleryState) -> GalleryState:
    if not state.lightbox_open or not state.photos:
        return state
    count = len(state.photos)
    index = 0 if state.current_index == count - 1 else state.current_index + 1
    return replace(state, current_index=index)


def remove_photo(state: GalleryState, photo_id: str) -> GalleryState:
    """Drop ``photo_id`` and keep the lightbox pointing at a valid photo.

    Removing the displayed photo closes the lightbox. Removing an earlier
    photo shifts the index so the same photo stays on screen.
    """

    removed_index = state.index_of(photo_id)
    if removed_index < 0:
        return state
    photos = state.photos[:removed_index] + state.photos[removed_index + 1 :]
    if not state.lightbox_open:
        return GalleryState(photos=photos, lightbox_open=False, current_index=0)
    if not photos or removed_index == state.current_index:
        return GalleryState(photos=photos, lightbox_open=False, current_index=0)
    index = state.current_index
    if removed_index < index:
        index -= 1
    return GalleryState(photos=photos, lightbox_open=True, current_index=index)


# View helpers --------------------------------------------------------------


def format_uploaded_at(photo: Photo) -> str:
    if photo.uploaded_at is None:
        return ""
    return photo.uploaded_at.strftime("%d %b %Y, %H:%M")


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class GalleryViewer:
    """Photo grid plus lightbox for a single diary."""

    def __init__(
        self,
        diary_id: str,
        service: GalleryService,
        *,
        keys: KeyEventSource | None = None,
        confirm: Confirmer | None = None,
        alert: Alert | None = None,
        on_photo_deleted: DeletedHook | None = None,
        can_edit: bool = False,
    ) -> None:
        self.diary_id = diary_id
        self.service = service
        self.keys = keys or KeyEventSource()
        self.confirm = confirm or (lambda _message: False)
        self.alert = alert or (lambda message: logging.warning("PHOTO alert: %s", message))
        self.on_photo_deleted = on_photo_deleted
        self.can_edit = can_edit
        self.state = GalleryState()
        self.load_state = LoadState.LOADING
        self.error: str | None = None
        self.deleting: str | None = None
        self._subscription: KeySubscription | None = None
        self._load_generation = 0

    # Lifecycle -----------------------------------------------------------

    async def mount(self) -> None:
        await self.load_photos()

    def unmount(self) -> None:
        self._load_generation += 1
        self._apply(close_lightbox(self.state))
        self._release_keys()

    async def set_diary(self, diary_id: str) -> None:
        if diary_id == self.diary_id:
            return
        self.diary_id = diary_id
        self._apply(GalleryState())
        await self.load_photos()

    async def load_photos(self) -> list[Photo]:
        self._load_generation += 1
        generation = self._load_generation
        diary_id = self.diary_id
        self.load_state = LoadState.LOADING
        self.error = None
        with context(diary_id=diary_id):
            try:
                photos = await self.service.get_photos(diary_id)
            except Exception as exc:
                if generation != self._load_generation:
                    return list(self.state.photos)
                log_exc("PHOTO gallery load failed", exc)
                self.error = LOAD_ERROR_MESSAGE
                self.load_state = LoadState.ERROR
                return list(self.state.photos)
        if generation != self._load_generation:
            logging.debug("PHOTO stale gallery load for diary %s ignored", diary_id)
            return list(self.state.photos)
        self._apply(self.state.with_photos(tuple(photos)))
        self.load_state = LoadState.READY
        return list(self.state.photos)

    # Read-only view ------------------------------------------------------

    @property
    def photos(self) -> tuple[Photo, ...]:
        return self.state.photos

    @property
    def is_empty(self) -> bool:
        return self.load_state is LoadState.READY and not self.state.photos

    @property
    def lightbox_open(self) -> bool:
        return self.state.lightbox_open

    @property
    def current_index(self) -> int:
        return self.state.current_index

    @property
    def current_photo(self) -> Optional[Photo]:
        return self.state.current_photo

    @property
    def counter_label(self) -> str:
        if not self.state.lightbox_open:
            return ""
        return f"{self.state.current_index + 1} / {len(self.state.photos)}"

    @property
    def keyboard_active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    # Lightbox ------------------------------------------------------------

    def open_lightbox(self, index: int) -> None:
        self._apply(open_lightbox(self.state, index))

    def close_lightbox(self) -> None:
        self._apply(close_lightbox(self.state))

    def go_to_previous(self) -> None:
        self._apply(go_to_previous(self.state))

    def go_to_next(self) -> None:
        self._apply(go_to_next(self.state))

    def _apply(self, state: GalleryState) -> None:
        self.state = state
        if state.lightbox_open and self._subscription is None:
            self._subscription = self.keys.subscribe(self._handle_key)
        elif not state.lightbox_open:
            self._release_keys()

    def _release_keys(self) -> None:
        if self._subscription is not None:
            self._subscription.release()
            self._subscription = None

    def _handle_key(self, key: str) -> None:
        if key == ESCAPE:
            self.close_lightbox()
        elif key == ARROW_LEFT:
            self.go_to_previous()
        elif key == ARROW_RIGHT:
            self.go_to_next()

    # Actions -------------------------------------------------------------

    async def delete_photo(self, photo_id: str) -> bool:
        """Confirm, delete through the service, then drop the photo locally.

        Returns ``True`` when the photo was deleted.
        """

        if not self.can_edit:
            logging.warning("PHOTO delete ignored for read-only gallery photo=%s", photo_id)
            return False
        index = self.state.index_of(photo_id)
        if index < 0:
            return False
        photo = self.state.photos[index]
        if not await _resolve(self.confirm(f'Delete "{photo.file_name}"?')):
            return False

        self.deleting = photo_id
        with context(diary_id=self.diary_id, photo_id=photo_id):
            try:
                await self.service.delete_photo(photo_id)
            except Exception as exc:
                log_exc("PHOTO gallery delete failed", exc)
                self.alert(f"Failed to delete photo: {exc}")
                return False
            finally:
                self.deleting = None

        self._apply(remove_photo(self.state, photo_id))
        if self.on_photo_deleted is not None:
            await _resolve(self.on_photo_deleted(photo_id))
        return True

    async def download_photo(self, photo: Photo) -> bool:
        with context(diary_id=self.diary_id, photo_id=photo.id):
            try:
                await self.service.download_photo(photo.storage_path, photo.file_name)
            except Exception as exc:
                log_exc("PHOTO gallery download failed", exc)
                self.alert(DOWNLOAD_ERROR_MESSAGE)
                return False
        return True

    async def download_current(self) -> bool:
        photo = self.current_photo
        if photo is None:
            return False
        return await self.download_photo(photo)

"""Gallery and lightbox state for diary photos."""

from .models import GalleryState, Photo
from .keyboard import KeyEventSource, KeySubscription
from .gallery import GalleryViewer, LoadState, remove_photo

__all__ = [
    "GalleryState",
    "GalleryViewer",
    "KeyEventSource",
    "KeySubscription",
    "LoadState",
    "Photo",
    "remove_photo",
]

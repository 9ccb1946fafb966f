from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Sequence

import imgio

from .models import PreviewRecord, SelectedFile


def format_file_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB")
    exponent = 0
    scaled = float(size_bytes)
    while scaled >= 1024 and exponent < len(units) - 1:
        scaled /= 1024
        exponent += 1
    value = round(scaled, 2)
    if value == int(value):
        return f"{int(value)} {units[exponent]}"
    return f"{value:g} {units[exponent]}"


class PreviewIdGenerator:
    """Monotonic preview id source owned by one upload session."""

    def __init__(self, prefix: str = "preview") -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def next_id(self) -> str:
        return f"{self._prefix}-{next(self._counter)}"


async def _build_preview(preview_id: str, file: SelectedFile) -> PreviewRecord:
    thumbnail = await imgio.render_thumbnail(file)
    return PreviewRecord(
        id=preview_id,
        file=file,
        display_name=file.name,
        human_size=format_file_size(file.size),
        size_bytes=file.size,
        thumbnail_data_uri=thumbnail,
        mime_type=file.mime_type,
    )


async def generate_previews(
    files: Sequence[SelectedFile],
    *,
    ids: PreviewIdGenerator | None = None,
) -> list[PreviewRecord]:
    """Decode every file concurrently and return previews in input order.

    Ids are assigned before the fan-out so they follow file order regardless
    of which decode finishes first. A single decode failure fails the whole
    call with :class:`~uploads.errors.DecodeError`.
    """

    generator = ids or PreviewIdGenerator()
    assigned = [generator.next_id() for _ in files]
    previews = await asyncio.gather(
        *(_build_preview(preview_id, file) for preview_id, file in zip(assigned, files))
    )
    logging.debug("PHOTO previews ready count=%s", len(previews))
    return list(previews)

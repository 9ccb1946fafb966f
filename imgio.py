from __future__ import annotations

import asyncio
import base64
import io
import logging
import time

from PIL import Image, ImageOps, UnidentifiedImageError

from uploads.errors import DecodeError
from uploads.models import SelectedFile

COMPRESSION_THRESHOLD_BYTES = 500 * 1024
COMPRESSION_MAX_DIMENSION = 1920
COMPRESSION_QUALITY = 0.85
THUMBNAIL_MAX_SIDE = 320

_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}


def _resample_filter() -> int:
    if hasattr(Image, "Resampling"):
        return Image.Resampling.LANCZOS
    return Image.LANCZOS  # type: ignore[attr-defined]  # pragma: no cover - Pillow < 9


def fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Return the size bounded by ``max_dimension`` on the longer side.

    Images already within bounds keep their size; there is no upscaling.
    """

    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width > height:
        new_height = height / width * max_dimension
        new_width = max_dimension
    else:
        new_width = width / height * max_dimension
        new_height = max_dimension
    return max(1, int(new_width)), max(1, int(new_height))


def _open_image(file: SelectedFile) -> Image.Image:
    try:
        with Image.open(io.BytesIO(file.data)) as original:
            original.load()
            transposed = ImageOps.exif_transpose(original)
            if transposed is original:
                transposed = original.copy()
            return transposed
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise DecodeError(file.name, str(exc)) from exc


def _encode(image: Image.Image, pil_format: str, *, quality: int) -> bytes:
    buffer = io.BytesIO()
    if pil_format == "JPEG":
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        image.save(buffer, format="JPEG", quality=quality, optimize=True)
    elif pil_format == "WEBP":
        image.save(buffer, format="WEBP", quality=quality)
    else:
        image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def compress_image_sync(
    file: SelectedFile,
    *,
    threshold: int = COMPRESSION_THRESHOLD_BYTES,
    max_dimension: int = COMPRESSION_MAX_DIMENSION,
    quality: float = COMPRESSION_QUALITY,
) -> SelectedFile:
    if file.size < threshold:
        return file

    pil_format = _PIL_FORMATS.get(file.mime_type.lower(), "JPEG")
    image = _open_image(file)
    try:
        width, height = image.size
        target = fit_within(width, height, max_dimension)
        if target != (width, height):
            resized = image.resize(target, _resample_filter())
            image.close()
            image = resized
        try:
            payload = _encode(image, pil_format, quality=int(round(quality * 100)))
        except (OSError, ValueError) as exc:
            raise DecodeError(file.name, f"re-encode failed: {exc}") from exc
    finally:
        image.close()

    logging.info(
        "PHOTO compressed %s %s -> %s bytes (%sx%s -> %sx%s)",
        file.name,
        file.size,
        len(payload),
        width,
        height,
        target[0],
        target[1],
    )
    return SelectedFile(
        name=file.name,
        data=payload,
        mime_type=file.mime_type,
        last_modified=int(time.time() * 1000),
    )


async def compress_image(
    file: SelectedFile,
    *,
    threshold: int = COMPRESSION_THRESHOLD_BYTES,
    max_dimension: int = COMPRESSION_MAX_DIMENSION,
    quality: float = COMPRESSION_QUALITY,
) -> SelectedFile:
    if file.size < threshold:
        return file
    return await asyncio.to_thread(
        compress_image_sync,
        file,
        threshold=threshold,
        max_dimension=max_dimension,
        quality=quality,
    )


def render_thumbnail_sync(file: SelectedFile, *, max_side: int = THUMBNAIL_MAX_SIDE) -> str:
    """Decode ``file`` and return a JPEG thumbnail as a ``data:`` URI."""

    image = _open_image(file)
    try:
        image.thumbnail((max_side, max_side), _resample_filter())
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=80)
    finally:
        image.close()
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


async def render_thumbnail(file: SelectedFile, *, max_side: int = THUMBNAIL_MAX_SIDE) -> str:
    return await asyncio.to_thread(render_thumbnail_sync, file, max_side=max_side)

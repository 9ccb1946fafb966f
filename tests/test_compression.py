from __future__ import annotations

import base64
import io
import os
import sys

import pytest
from PIL import Image

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
import imgio
from uploads.errors import DecodeError
from uploads.models import SelectedFile


@pytest.mark.parametrize(
    "size, expected",
    [
        ((3000, 2000), (1920, 1280)),
        ((2000, 3000), (1280, 1920)),
        ((4000, 4000), (1920, 1920)),
        ((800, 600), (800, 600)),
        ((1920, 1080), (1920, 1080)),
        ((5000, 1000), (1920, 384)),
    ],
)
def test_fit_within(size, expected):
    assert imgio.fit_within(*size, 1920) == expected


def test_small_file_returned_unchanged():
    blob = SelectedFile(name="tiny.jpg", data=b"\x00" * (400 * 1024), mime_type="image/jpeg")

    assert imgio.compress_image_sync(blob) is blob


@pytest.mark.asyncio
async def test_small_file_returned_unchanged_async():
    blob = SelectedFile(name="tiny.jpg", data=b"\x00" * (400 * 1024), mime_type="image/jpeg")

    assert await imgio.compress_image(blob) is blob


@pytest.mark.asyncio
async def test_large_landscape_is_downscaled(noisy_image_file):
    original = noisy_image_file("site.jpg", size=(3000, 2000))
    assert original.size >= imgio.COMPRESSION_THRESHOLD_BYTES

    compressed = await imgio.compress_image(original)

    assert compressed is not original
    assert compressed.name == "site.jpg"
    assert compressed.mime_type == "image/jpeg"
    with Image.open(io.BytesIO(compressed.data)) as image:
        assert image.size == (1920, 1280)
        assert image.format == "JPEG"
        assert image.size[0] / image.size[1] == pytest.approx(1.5)


def test_large_portrait_is_downscaled(noisy_image_file):
    original = noisy_image_file("tall.jpg", size=(2000, 3000))

    compressed = imgio.compress_image_sync(original)

    with Image.open(io.BytesIO(compressed.data)) as image:
        assert image.size == (1280, 1920)


def test_large_png_keeps_format(noisy_image_file):
    original = noisy_image_file("plan.png", size=(2400, 1200), mime_type="image/png")

    compressed = imgio.compress_image_sync(original)

    assert compressed.mime_type == "image/png"
    with Image.open(io.BytesIO(compressed.data)) as image:
        assert image.format == "PNG"
        assert image.size == (1920, 960)


def test_large_image_within_bounds_keeps_dimensions(noisy_image_file):
    original = noisy_image_file("medium.jpg", size=(1600, 1200))
    assert original.size >= imgio.COMPRESSION_THRESHOLD_BYTES

    compressed = imgio.compress_image_sync(original)

    with Image.open(io.BytesIO(compressed.data)) as image:
        assert image.size == (1600, 1200)


def test_undecodable_large_file_raises():
    blob = SelectedFile(name="corrupt.jpg", data=b"\x01" * (600 * 1024), mime_type="image/jpeg")

    with pytest.raises(DecodeError) as excinfo:
        imgio.compress_image_sync(blob)

    assert excinfo.value.file_name == "corrupt.jpg"


def test_exif_orientation_is_applied():
    image = Image.new("RGB", (60, 30), color=(200, 10, 10))
    exif = image.getexif()
    exif[0x0112] = 6  # rotate 90 CW
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", exif=exif.tobytes())
    file = SelectedFile(name="rotated.jpg", data=buffer.getvalue(), mime_type="image/jpeg")

    uri = imgio.render_thumbnail_sync(file)

    with Image.open(io.BytesIO(base64.b64decode(uri.split(",", 1)[1]))) as thumb:
        assert thumb.size == (30, 60)

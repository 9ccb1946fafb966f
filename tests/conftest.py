import asyncio
import io
import os
import sys

import pytest
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from uploads.models import SelectedFile  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: run test in event loop")


@pytest.fixture
def event_loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    if asyncio.iscoroutinefunction(pyfuncitem.obj):
        loop = pyfuncitem.funcargs.get("event_loop")
        owns_loop = loop is None
        if owns_loop:
            loop = asyncio.new_event_loop()
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        try:
            loop.run_until_complete(pyfuncitem.obj(**kwargs))
        finally:
            if owns_loop:
                loop.close()
        return True
    return None


_FORMATS = {"image/jpeg": "JPEG", "image/png": "PNG", "image/webp": "WEBP"}


def encode_image(image: Image.Image, mime_type: str = "image/jpeg", **save_kwargs) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=_FORMATS[mime_type], **save_kwargs)
    return buffer.getvalue()


def make_image_file(
    name: str = "photo.jpg",
    *,
    size: tuple[int, int] = (64, 48),
    mime_type: str = "image/jpeg",
    color: tuple[int, int, int] = (40, 90, 160),
) -> SelectedFile:
    image = Image.new("RGB", size, color=color)
    try:
        data = encode_image(image, mime_type)
    finally:
        image.close()
    return SelectedFile(name=name, data=data, mime_type=mime_type)


def make_noisy_image_file(
    name: str = "site.jpg",
    *,
    size: tuple[int, int] = (3000, 2000),
    mime_type: str = "image/jpeg",
) -> SelectedFile:
    """Return an image whose encoded size is well above the compression threshold."""

    noise = Image.effect_noise(size, 80)
    image = noise.convert("RGB")
    noise.close()
    try:
        data = encode_image(image, mime_type, quality=95) if mime_type != "image/png" else encode_image(image, mime_type)
    finally:
        image.close()
    return SelectedFile(name=name, data=data, mime_type=mime_type)


@pytest.fixture
def image_file():
    return make_image_file


@pytest.fixture
def noisy_image_file():
    return make_noisy_image_file

"""Shared fixtures: small images encoded in memory with Pillow."""

import io

import numpy as np
import pytest
from PIL import Image, ImageCms

from imageref import ImportParams, load_image_from_buffer
from imageref.config import Interpretation
from imageref.native import NativeImage


def encode(img: Image.Image, fmt: str, **options) -> bytes:
    out = io.BytesIO()
    img.save(out, fmt, **options)
    return out.getvalue()


def gradient(width: int, height: int) -> np.ndarray:
    xs = np.linspace(0, 255, width, dtype=np.float64)
    ys = np.linspace(0, 255, height, dtype=np.float64)
    r = np.tile(xs, (height, 1))
    g = np.tile(ys[:, np.newaxis], (1, width))
    b = np.full((height, width), 128.0)
    return np.stack([r, g, b], axis=2).astype(np.uint8)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return encode(Image.fromarray(gradient(100, 100)), "JPEG", quality=90)


@pytest.fixture
def png_rgba_bytes() -> bytes:
    pixels = np.zeros((48, 64, 4), dtype=np.uint8)
    pixels[:, :, 0] = 200
    pixels[:, :, 1] = 100
    pixels[:, :, 2] = 50
    pixels[:, :32, 3] = 255
    pixels[:, 32:, 3] = 128
    return encode(Image.fromarray(pixels), "PNG")


@pytest.fixture
def gif_bytes() -> bytes:
    """Three 60x80 frames, 100 ms each."""
    frames = [Image.new("RGB", (60, 80), colour) for colour in ((255, 0, 0), (0, 255, 0), (0, 0, 255))]
    return encode(frames[0], "GIF", save_all=True, append_images=frames[1:], duration=100, loop=0)


@pytest.fixture
def icc_png_bytes() -> bytes:
    profile = ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB"))
    return encode(Image.fromarray(gradient(32, 32)), "PNG", icc_profile=profile.tobytes())


@pytest.fixture
def jpeg_ref(jpeg_bytes):
    ref = load_image_from_buffer(jpeg_bytes)
    yield ref
    ref.close()


@pytest.fixture
def rgba_ref(png_rgba_bytes):
    ref = load_image_from_buffer(png_rgba_bytes)
    yield ref
    ref.close()


@pytest.fixture
def gif_ref(gif_bytes):
    ref = load_image_from_buffer(gif_bytes, ImportParams(num_pages=-1))
    yield ref
    ref.close()


@pytest.fixture
def make_native():
    """Build a NativeImage from an array (H, W, bands)."""
    def _make(pixels, interpretation=Interpretation.SRGB, fields=None) -> NativeImage:
        return NativeImage(np.asarray(pixels), interpretation=interpretation, fields=fields)
    return _make

"""
ImageRef - Pillow bridge

Moves pixels between NativeImage arrays and Pillow images. Codecs, ICC
transforms and text rendering all go through Pillow.
"""

from typing import Tuple

import numpy as np
from PIL import Image

from ..config import Interpretation
from ..native import NativeImage
from .helpers import clip_cast

_MODES_8BIT = {1: "L", 2: "LA", 3: "RGB", 4: "RGBA"}


def pil_mode(bands: int, interpretation: Interpretation) -> str:
    if bands == 4 and interpretation == Interpretation.CMYK:
        return "CMYK"
    return _MODES_8BIT[bands]


def to_pil(pixels: np.ndarray, interpretation: Interpretation) -> Image.Image:
    """
    Wrap an 8-bit (any band count up to 4) or 16-bit single band array.

    Raises:
        ValueError: If the array has no Pillow equivalent
    """
    height, width, bands = pixels.shape
    if pixels.dtype == np.uint16 and bands == 1:
        data = np.ascontiguousarray(pixels[:, :, 0]).astype("<u2").tobytes()
        return Image.frombytes("I;16", (width, height), data)
    if pixels.dtype != np.uint8 or bands not in _MODES_8BIT:
        raise ValueError(f"no Pillow mode for {bands} band {pixels.dtype} pixels")
    mode = pil_mode(bands, interpretation)
    return Image.frombytes(mode, (width, height), np.ascontiguousarray(pixels).tobytes())


def native_to_pil(image: NativeImage) -> Image.Image:
    """Pillow view of a native image, cast to 8 bits unless 16-bit grey."""
    pixels = image.pixels
    if not (pixels.dtype == np.uint16 and pixels.shape[2] == 1):
        if pixels.dtype == np.uint16 or image.interpretation in (Interpretation.RGB16, Interpretation.GREY16):
            pixels = clip_cast(pixels / 257.0, np.uint8)
        else:
            pixels = clip_cast(pixels, np.uint8)
    return to_pil(pixels, image.interpretation)


def from_pil(pil_image: Image.Image) -> Tuple[np.ndarray, Interpretation]:
    """
    Convert a decoded Pillow frame into a pixel array and interpretation.

    Returns:
        Tuple of (pixels (H, W, bands), interpretation)
    """
    mode = pil_image.mode
    if mode == "1":
        pil_image, mode = pil_image.convert("L"), "L"
    elif mode in ("P", "PA"):
        has_transparency = mode == "PA" or "transparency" in pil_image.info
        mode = "RGBA" if has_transparency else "RGB"
        pil_image = pil_image.convert(mode)
    elif mode in ("RGBa", "RGBX", "YCbCr", "LAB", "HSV"):
        mode = "RGBA" if mode == "RGBa" else "RGB"
        pil_image = pil_image.convert(mode)
    elif mode == "La":
        pil_image, mode = pil_image.convert("LA"), "LA"

    pixels = np.asarray(pil_image)
    if pixels.ndim == 2:
        pixels = pixels[:, :, np.newaxis]

    if mode.startswith("I;16"):
        return pixels.astype(np.uint16), Interpretation.GREY16
    if mode == "I":
        if pixels.min(initial=0) >= 0 and pixels.max(initial=0) <= 65535:
            return pixels.astype(np.uint16), Interpretation.GREY16
        return pixels, Interpretation.MULTIBAND
    if mode == "F":
        return pixels.astype(np.float32), Interpretation.B_W
    if mode == "CMYK":
        return pixels, Interpretation.CMYK
    if mode in ("L", "LA"):
        return pixels, Interpretation.B_W
    return pixels, Interpretation.SRGB

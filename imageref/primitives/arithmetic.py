"""
Arithmetic Primitives

Pixel arithmetic and statistics. Two-image operations zero-pad the smaller
operand on the bottom and right so both match the larger one.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage

from ..config import BandFormat
from ..errors import PrimitiveError
from ..native import NativeImage
from .helpers import clip_cast, ink, primitive

# Integer sums and products widen to the next size up
_WIDEN = {
    np.dtype("uint8"): np.dtype("uint16"),
    np.dtype("int8"): np.dtype("int16"),
    np.dtype("uint16"): np.dtype("uint32"),
    np.dtype("int16"): np.dtype("int32"),
}


def _align(a: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    h = max(a.shape[0], b.shape[0])
    w = max(a.shape[1], b.shape[1])

    def pad(x):
        if x.shape[:2] == (h, w):
            return x
        return np.pad(x, ((0, h - x.shape[0]), (0, w - x.shape[1]), (0, 0)))

    a, b = pad(a), pad(b)
    if a.shape[2] != b.shape[2] and 1 not in (a.shape[2], b.shape[2]):
        raise PrimitiveError(f"band counts differ: {a.shape[2]} and {b.shape[2]}")
    return a, b


def _widened(a: np.ndarray, b: np.ndarray) -> np.dtype:
    dtype = np.result_type(a.dtype, b.dtype)
    return _WIDEN.get(dtype, dtype)


@primitive("add")
def add(image: NativeImage, addend: NativeImage) -> NativeImage:
    a, b = _align(image.pixels, addend.pixels)
    dtype = _widened(a, b)
    return image.derive(clip_cast(a.astype(np.float64) + b, dtype))


@primitive("multiply")
def multiply(image: NativeImage, multiplier: NativeImage) -> NativeImage:
    a, b = _align(image.pixels, multiplier.pixels)
    dtype = _widened(a, b)
    return image.derive(clip_cast(a.astype(np.float64) * b, dtype))


@primitive("divide")
def divide(image: NativeImage, denominator: NativeImage) -> NativeImage:
    a, b = _align(image.pixels, denominator.pixels)
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.where(b != 0, a.astype(np.float64) / b, 0.0)
    dtype = np.float64 if np.float64 in (a.dtype, b.dtype) else np.float32
    return image.derive(out.astype(dtype))


@primitive("linear")
def linear(image: NativeImage, a: Sequence[float], b: Sequence[float]) -> NativeImage:
    """out = in * a + b per band; one constant applies to every band."""
    if len(a) != len(b):
        raise PrimitiveError("linear: a and b must be of same length")
    if len(a) not in (1, image.bands):
        raise PrimitiveError(f"linear: {len(a)} constants for {image.bands} bands")
    mul = np.asarray(a, dtype=np.float32)
    off = np.asarray(b, dtype=np.float32)
    dtype = np.float64 if image.pixels.dtype == np.float64 else np.float32
    return image.derive((image.pixels.astype(dtype) * mul + off).astype(dtype))


@primitive("linear1")
def linear1(image: NativeImage, a: float, b: float) -> NativeImage:
    return linear(image, [a], [b])


@primitive("invert")
def invert(image: NativeImage) -> NativeImage:
    fmt = image.band_format
    pixels = image.pixels
    if fmt in (BandFormat.UCHAR, BandFormat.USHORT):
        return image.derive(np.iinfo(pixels.dtype).max - pixels)
    return image.derive(clip_cast(-pixels.astype(np.float64), pixels.dtype))


@primitive("average")
def average(image: NativeImage) -> float:
    return float(image.pixels.mean(dtype=np.float64))


@primitive("maplut")
def maplut(image: NativeImage, lut: NativeImage) -> NativeImage:
    """Look every pixel up in a one-row table, band by band."""
    if not image.band_format.is_integer() or image.pixels.min(initial=0) < 0:
        raise PrimitiveError("maplut: image must be unsigned integer")
    table = lut.pixels[0]
    if int(image.pixels.max(initial=0)) >= table.shape[0]:
        raise PrimitiveError(f"maplut: table has only {table.shape[0]} entries")
    index = image.pixels.astype(np.intp)
    if table.shape[1] == 1:
        out = table[index, 0]
    elif table.shape[1] == image.bands:
        out = np.stack([table[index[:, :, k], k] for k in range(image.bands)], axis=2)
    else:
        raise PrimitiveError("maplut: table bands must be 1 or match the image")
    return image.derive(out)


@primitive("find_trim")
def find_trim(image: NativeImage, threshold: float,
              background: Optional[Sequence[float]] = None) -> Tuple[int, int, int, int]:
    """
    Bounding box of everything that differs from the background.

    Returns:
        (left, top, width, height); width and height are 0 when the whole
        image matches the background
    """
    pixels = image.pixels
    bands = pixels.shape[2] - (1 if image.has_alpha else 0)
    colour = pixels[:, :, :bands].astype(np.float64)
    bg = ink(background or (255, 255, 255), bands)
    diff = np.abs(colour - bg).max(axis=2)
    # 3x3 median suppresses isolated noise pixels
    mask = ndimage.median_filter(diff, size=3) > threshold
    rows, cols = np.any(mask, axis=1), np.any(mask, axis=0)
    if not rows.any():
        return 0, 0, 0, 0
    top, bottom = np.argmax(rows), len(rows) - np.argmax(rows[::-1])
    left, right = np.argmax(cols), len(cols) - np.argmax(cols[::-1])
    return int(left), int(top), int(right - left), int(bottom - top)


@primitive("get_point")
def get_point(image: NativeImage, x: int, y: int) -> List[float]:
    if not (0 <= x < image.width and 0 <= y < image.height):
        raise PrimitiveError(f"get_point: {x},{y} outside {image.width}x{image.height}")
    return [float(v) for v in image.pixels[y, x]]


@primitive("rank")
def rank(image: NativeImage, width: int, height: int, index: int) -> NativeImage:
    """Rank filter over a width x height window, per band."""
    if width < 1 or height < 1 or not 0 <= index < width * height:
        raise PrimitiveError(f"rank: index {index} outside a {width}x{height} window")
    out = ndimage.rank_filter(image.pixels, rank=index, size=(height, width, 1), mode="nearest")
    return image.derive(out)

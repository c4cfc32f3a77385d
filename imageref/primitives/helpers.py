"""
Shared machinery for operation primitives.

- primitive: decorator giving every primitive the same failure contract
- clip_cast: numeric conversion with saturation
- ink: expand a colour tuple into one value per band
"""

import functools
import logging
from typing import Sequence

import cv2
import numpy as np

from ..config import BandFormat, Interpretation
from ..errors import ImageRefError, PrimitiveError, ResourceError

logger = logging.getLogger("imageref.primitives")


def primitive(name: str):
    """
    Wrap an engine function so it fails with the package's error taxonomy.

    OpenCV, numpy and value errors become PrimitiveError; allocation
    failures become ResourceError. Errors already in the taxonomy pass
    through unchanged.
    """
    def decorate(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except ImageRefError:
                raise
            except MemoryError as e:
                raise ResourceError(f"{name}: out of memory") from e
            except (cv2.error, ValueError, TypeError, IndexError, OSError) as e:
                logger.debug("[%s] failed: %s", name, e)
                raise PrimitiveError(f"{name}: {e}") from e
        wrapper.primitive_name = name
        return wrapper
    return decorate


def clip_cast(arr: np.ndarray, dtype) -> np.ndarray:
    """Convert to dtype, rounding floats and saturating at the type limits."""
    dtype = np.dtype(dtype)
    if arr.dtype == dtype:
        return arr
    if dtype.kind in "ui":
        info = np.iinfo(dtype)
        if arr.dtype.kind == "f":
            arr = np.rint(arr)
        return np.clip(arr, info.min, info.max).astype(dtype)
    return arr.astype(dtype)


def format_max(fmt: BandFormat) -> float:
    if fmt.is_integer():
        return float(np.iinfo(fmt.dtype).max)
    return 1.0


def ink(values: Sequence[float], bands: int, dtype=np.float64) -> np.ndarray:
    """Match a colour to a band count, padding alpha as opaque."""
    values = [float(v) for v in values]
    if bands <= 2 and len(values) >= 3:
        # luminance for grey targets
        grey = 0.2126 * values[0] + 0.7152 * values[1] + 0.0722 * values[2]
        values = [grey] + values[3:4]
    if len(values) < bands:
        values = values + [255.0] * (bands - len(values))
    return np.asarray(values[:bands], dtype=dtype)


def guess_interpretation(bands: int, fmt: BandFormat, current: Interpretation) -> Interpretation:
    """Interpretation to keep after the band count changed."""
    if bands in (1, 2):
        if current in (Interpretation.RGB16, Interpretation.GREY16) or fmt == BandFormat.USHORT:
            return Interpretation.GREY16
        if current in (Interpretation.SRGB, Interpretation.RGB, Interpretation.B_W, Interpretation.CMYK):
            return Interpretation.B_W
        return current if current != Interpretation.MULTIBAND else Interpretation.B_W
    if bands in (3, 4) and current in (Interpretation.B_W, Interpretation.GREY16):
        return Interpretation.RGB16 if current == Interpretation.GREY16 else Interpretation.SRGB
    return current


def split_pages(pixels: np.ndarray, page_height: int):
    """Yield each page of a vertically stacked multi-page array."""
    for top in range(0, pixels.shape[0], page_height):
        yield pixels[top:top + page_height]

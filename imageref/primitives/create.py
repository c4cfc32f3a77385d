"""
Create Primitives

Images synthesised from nothing: solid black, coordinate and identity tables.
"""

import numpy as np

from ..config import Interpretation
from ..errors import PrimitiveError
from ..native import NativeImage
from .helpers import primitive


@primitive("black")
def black(width: int, height: int, bands: int = 1) -> NativeImage:
    if width <= 0 or height <= 0 or bands <= 0:
        raise PrimitiveError(f"black: bad size {width}x{height}x{bands}")
    interpretation = Interpretation.B_W if bands == 1 else Interpretation.MULTIBAND
    return NativeImage(np.zeros((height, width, bands), np.uint8), interpretation=interpretation)


@primitive("xyz")
def xyz(width: int, height: int) -> NativeImage:
    """Two-band image whose pixels hold their own x and y coordinates."""
    if width <= 0 or height <= 0:
        raise PrimitiveError(f"xyz: bad size {width}x{height}")
    ys, xs = np.mgrid[0:height, 0:width].astype(np.uint32)
    return NativeImage(np.stack([xs, ys], axis=2), interpretation=Interpretation.MULTIBAND)


@primitive("identity")
def identity(ushort: bool = False) -> NativeImage:
    """One-row lookup table mapping every value to itself."""
    if ushort:
        table = np.arange(65536, dtype=np.uint16)
    else:
        table = np.arange(256, dtype=np.uint8)
    return NativeImage(table.reshape(1, -1, 1), interpretation=Interpretation.HISTOGRAM)

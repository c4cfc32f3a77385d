"""
ImageRef - Native Image Object

The engine-side image: a pixel array plus a header. Operation primitives
never write into a pixel array they were given; they build a new
NativeImage instead, sharing whatever did not change.
"""

import itertools
import threading
from typing import Any, Dict, Optional

import numpy as np

from .config import BandFormat, Coding, Interpretation
from .errors import ClosedImageError

_ids = itertools.count(1)
_stats_lock = threading.Lock()
_live = 0


def live_images() -> int:
    """Number of native images created and not yet released."""
    return _live


class NativeImage:
    """
    Reference-counted engine image.

    Attributes:
        interpretation: Colour interpretation of the bands
        xres, yres: Resolution in pixels per millimetre
        xoffset, yoffset: Position hints carried through operations
        fields: Header fields keyed by engine field name
    """

    __slots__ = (
        "_pixels", "interpretation", "xres", "yres", "xoffset", "yoffset",
        "fields", "ident", "release_count",
    )

    def __init__(
        self,
        pixels: np.ndarray,
        interpretation: Interpretation = Interpretation.MULTIBAND,
        xres: float = 1.0,
        yres: float = 1.0,
        xoffset: int = 0,
        yoffset: int = 0,
        fields: Optional[Dict[str, Any]] = None,
    ):
        global _live
        if pixels.ndim == 2:
            pixels = pixels[:, :, np.newaxis]
        if pixels.ndim != 3:
            raise ValueError(f"pixel array must be (height, width, bands), got {pixels.shape}")
        self._pixels = pixels
        self.interpretation = Interpretation(interpretation)
        self.xres = float(xres)
        self.yres = float(yres)
        self.xoffset = int(xoffset)
        self.yoffset = int(yoffset)
        self.fields = dict(fields or {})
        self.ident = next(_ids)
        self.release_count = 0
        with _stats_lock:
            _live += 1

    def __repr__(self):
        if self._pixels is None:
            return f"<NativeImage #{self.ident} released>"
        return (
            f"<NativeImage #{self.ident} {self.width}x{self.height} "
            f"{self.bands}b {self.band_format.value} {self.interpretation.value}>"
        )

    # ---------- Pixels ----------
    @property
    def pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise ClosedImageError(f"native image #{self.ident} has been released")
        return self._pixels

    @property
    def released(self) -> bool:
        return self._pixels is None

    def release(self) -> None:
        """Drop this object's reference to its pixels. Later calls do nothing."""
        global _live
        if self._pixels is None:
            return
        self._pixels = None
        self.release_count += 1
        with _stats_lock:
            _live -= 1

    def derive(self, pixels: Optional[np.ndarray] = None, **header) -> "NativeImage":
        """
        Build a new image from this one.

        Args:
            pixels: Replacement pixel array, or None to share the current one
            **header: interpretation, xres, yres, xoffset, yoffset or fields

        Returns:
            New NativeImage; this image is left untouched
        """
        fields = header.pop("fields", None)
        return NativeImage(
            self.pixels if pixels is None else pixels,
            interpretation=header.pop("interpretation", self.interpretation),
            xres=header.pop("xres", self.xres),
            yres=header.pop("yres", self.yres),
            xoffset=header.pop("xoffset", self.xoffset),
            yoffset=header.pop("yoffset", self.yoffset),
            fields=dict(self.fields) if fields is None else fields,
        )

    # ---------- Geometry ----------
    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def bands(self) -> int:
        return int(self.pixels.shape[2])

    @property
    def band_format(self) -> BandFormat:
        return BandFormat.from_dtype(self.pixels.dtype)

    @property
    def coding(self) -> Coding:
        return Coding.NONE

    @property
    def page_height(self) -> int:
        """Height of one page; the whole height unless the field divides it."""
        height = self.height
        page_height = int(self.fields.get("page-height", 0) or 0)
        if 0 < page_height <= height and height % page_height == 0:
            return page_height
        return height

    @property
    def n_pages(self) -> int:
        n = int(self.fields.get("n-pages", 1) or 1)
        return max(1, n)

    @property
    def orientation(self) -> int:
        try:
            return int(self.fields.get("orientation", 0))
        except (TypeError, ValueError):
            return 0

    @property
    def has_alpha(self) -> bool:
        bands = self.bands
        interpretation = self.interpretation
        if bands == 2 and interpretation in (Interpretation.B_W, Interpretation.GREY16):
            return True
        if bands == 4 and interpretation != Interpretation.CMYK:
            return True
        return bands == 5 and interpretation == Interpretation.CMYK

    @property
    def max_alpha(self) -> float:
        if self.interpretation in (Interpretation.RGB16, Interpretation.GREY16):
            return 65535.0
        if self.band_format == BandFormat.USHORT:
            return 65535.0
        return 255.0

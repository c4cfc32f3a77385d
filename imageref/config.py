"""ImageRef configuration: engine enumerations, defaults and runtime settings."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np


class ImageType(str, Enum):
    """Image container formats known to the engine"""
    UNKNOWN = "unknown"
    GIF = "gif"
    JPEG = "jpeg"
    MAGICK = "magick"
    PDF = "pdf"
    PNG = "png"
    SVG = "svg"
    TIFF = "tiff"
    WEBP = "webp"
    HEIF = "heif"
    BMP = "bmp"
    AVIF = "avif"
    JP2K = "jp2k"

    def get_display_name(self) -> str:
        return self.value.upper()


class BandFormat(str, Enum):
    """Numeric format of every band of a pixel"""
    NOTSET = "notset"
    UCHAR = "uchar"
    CHAR = "char"
    USHORT = "ushort"
    SHORT = "short"
    UINT = "uint"
    INT = "int"
    FLOAT = "float"
    DOUBLE = "double"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_BAND_DTYPES[self])

    @classmethod
    def from_dtype(cls, dtype) -> "BandFormat":
        name = np.dtype(dtype).name
        for fmt, dtype_name in _BAND_DTYPES.items():
            if dtype_name == name:
                return fmt
        return cls.NOTSET

    def is_integer(self) -> bool:
        return self not in (BandFormat.FLOAT, BandFormat.DOUBLE, BandFormat.NOTSET)


_BAND_DTYPES = {
    BandFormat.UCHAR: "uint8",
    BandFormat.CHAR: "int8",
    BandFormat.USHORT: "uint16",
    BandFormat.SHORT: "int16",
    BandFormat.UINT: "uint32",
    BandFormat.INT: "int32",
    BandFormat.FLOAT: "float32",
    BandFormat.DOUBLE: "float64",
}


class Interpretation(str, Enum):
    """How the bands of an image should be understood"""
    ERROR = "error"
    MULTIBAND = "multiband"
    B_W = "b-w"
    HISTOGRAM = "histogram"
    XYZ = "xyz"
    LAB = "lab"
    CMYK = "cmyk"
    LABQ = "labq"
    RGB = "rgb"
    CMC = "cmc"
    LCH = "lch"
    LABS = "labs"
    SRGB = "srgb"
    YXY = "yxy"
    FOURIER = "fourier"
    RGB16 = "rgb16"
    GREY16 = "grey16"
    MATRIX = "matrix"
    SCRGB = "scrgb"
    HSV = "hsv"


class Coding(str, Enum):
    ERROR = "error"
    NONE = "none"
    LABQ = "labq"
    RAD = "rad"


class Angle(int, Enum):
    """Right-angle rotations, clockwise"""
    D0 = 0
    D90 = 90
    D180 = 180
    D270 = 270


class Direction(str, Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


class Kernel(str, Enum):
    """Resampling kernels"""
    AUTO = "auto"
    NEAREST = "nearest"
    LINEAR = "linear"
    CUBIC = "cubic"
    MITCHELL = "mitchell"
    LANCZOS2 = "lanczos2"
    LANCZOS3 = "lanczos3"


class Interesting(str, Enum):
    """Strategy used to pick the region kept by a smart crop"""
    NONE = "none"
    CENTRE = "centre"
    ENTROPY = "entropy"
    ATTENTION = "attention"
    LOW = "low"
    HIGH = "high"
    ALL = "all"


class Size(str, Enum):
    """Which way a thumbnail is allowed to resize"""
    BOTH = "both"
    UP = "up"
    DOWN = "down"
    FORCE = "force"


class ExtendStrategy(str, Enum):
    """How new pixels are generated when embedding"""
    BLACK = "black"
    COPY = "copy"
    REPEAT = "repeat"
    MIRROR = "mirror"
    WHITE = "white"
    BACKGROUND = "background"


class BlendMode(str, Enum):
    CLEAR = "clear"
    SOURCE = "source"
    OVER = "over"
    IN = "in"
    OUT = "out"
    ATOP = "atop"
    DEST = "dest"
    DEST_OVER = "dest-over"
    DEST_IN = "dest-in"
    DEST_OUT = "dest-out"
    DEST_ATOP = "dest-atop"
    XOR = "xor"
    ADD = "add"
    SATURATE = "saturate"
    MULTIPLY = "multiply"
    SCREEN = "screen"
    OVERLAY = "overlay"
    DARKEN = "darken"
    LIGHTEN = "lighten"
    COLOUR_DODGE = "colour-dodge"
    COLOUR_BURN = "colour-burn"
    HARD_LIGHT = "hard-light"
    SOFT_LIGHT = "soft-light"
    DIFFERENCE = "difference"
    EXCLUSION = "exclusion"


class SubsampleMode(str, Enum):
    """Chroma subsampling for JPEG-family encoders"""
    AUTO = "auto"
    ON = "on"
    OFF = "off"


class TiffCompression(str, Enum):
    NONE = "none"
    JPEG = "jpeg"
    DEFLATE = "deflate"
    PACKBITS = "packbits"
    CCITTFAX4 = "ccittfax4"
    LZW = "lzw"
    WEBP = "webp"
    ZSTD = "zstd"


class TiffPredictor(str, Enum):
    NONE = "none"
    HORIZONTAL = "horizontal"
    FLOAT = "float"


class PngFilter(str, Enum):
    NONE = "none"
    SUB = "sub"
    UP = "up"
    AVG = "avg"
    PAETH = "paeth"
    ALL = "all"


class Align(str, Enum):
    LOW = "low"
    CENTRE = "centre"
    HIGH = "high"


# ========== Engine Defaults ==========

class EngineConfig:
    """Process-wide engine defaults applied at startup."""
    CONCURRENCY: int = 0                  # 0 lets OpenCV pick
    MAX_IMAGE_PIXELS: int = 178_956_970   # Pillow decompression-bomb limit
    MAX_SVG_PIXELS: int = 10_000 * 10_000
    SVG_DEFAULT_DPI: int = 72
    LOG_LEVEL: int = logging.WARNING


class ExportDefaults:
    """Lossy fallback used when the current format cannot be encoded."""
    FALLBACK_FORMAT: ImageType = ImageType.JPEG


class ProfileConfig:
    """Built-in ICC profile identifiers chosen by profile optimization."""
    SRGB: str = "srgb"
    SGRAY: str = "sgray"
    CMYK_INPUT: str = "cmyk"


@dataclass
class EngineSettings:
    """Runtime overrides for :class:`EngineConfig`."""
    concurrency: int = EngineConfig.CONCURRENCY
    max_image_pixels: Optional[int] = EngineConfig.MAX_IMAGE_PIXELS
    log_level: int = EngineConfig.LOG_LEVEL


# Header fields that survive remove_metadata() because geometry and display
# depend on them.
PRESERVED_FIELDS = (
    "icc-profile-data",
    "orientation",
    "n-pages",
    "page-height",
    "delay",
    "loop",
)

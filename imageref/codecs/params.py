"""
Codec Parameter Sets

Import options, the generic export parameter set and one parameter
dataclass per codec. Every codec dataclass constructs with its documented
defaults, so ``JpegExportParams()`` is the default JPEG export.
"""

from dataclasses import dataclass
from typing import Optional

from ..config import ImageType, PngFilter, SubsampleMode, TiffCompression, TiffPredictor


def _bool_option(value: bool) -> str:
    return "TRUE" if value else "FALSE"


@dataclass
class ImportParams:
    """
    Decode options. A field left as None is unset and the decoder default
    applies.

    Fields:
        auto_rotate: Rotate upright from the EXIF orientation on load
        fail_on_error: Treat decoder warnings as errors (set to True by default)
        page: First page to load
        num_pages: Number of pages to load, -1 for all
        density: Rasterisation DPI for vector formats
        jpeg_shrink_factor: JPEG shrink-on-load (1, 2, 4 or 8)
        heif_thumbnail: Rendered into option_string() only. Pillow has no
            embedded HEIF thumbnail decode, so loading ignores it
        svg_unlimited: Lift the SVG size limit
    """
    auto_rotate: Optional[bool] = None
    fail_on_error: Optional[bool] = True
    page: Optional[int] = None
    num_pages: Optional[int] = None
    density: Optional[int] = None
    jpeg_shrink_factor: Optional[int] = None
    heif_thumbnail: Optional[bool] = None
    svg_unlimited: Optional[bool] = None

    def option_string(self) -> str:
        """Render the set options as ``n=3,page=1,fail=TRUE``."""
        values = []
        if self.num_pages is not None:
            values.append(f"n={self.num_pages}")
        if self.page is not None:
            values.append(f"page={self.page}")
        if self.density is not None:
            values.append(f"dpi={self.density}")
        if self.fail_on_error is not None:
            values.append(f"fail={_bool_option(self.fail_on_error)}")
        if self.jpeg_shrink_factor is not None:
            values.append(f"shrink={self.jpeg_shrink_factor}")
        if self.auto_rotate is not None:
            values.append(f"autorotate={_bool_option(self.auto_rotate)}")
        if self.svg_unlimited is not None:
            values.append(f"unlimited={_bool_option(self.svg_unlimited)}")
        if self.heif_thumbnail is not None:
            values.append(f"thumbnail={_bool_option(self.heif_thumbnail)}")
        return ",".join(values)


@dataclass
class ExportParams:
    """
    Generic export options, translated into a codec parameter set at
    export time. Fields the target codec has no use for are ignored.

    ``ExportParams()`` carries zero values; use default_export_params() for
    the usual interlaced, quality 80, compression 6 starting point.
    """
    format: ImageType = ImageType.UNKNOWN
    quality: int = 0
    compression: int = 0
    interlaced: bool = False
    lossless: bool = False
    effort: int = 0
    strip_metadata: bool = False
    optimize_coding: bool = False                 # jpeg
    subsample_mode: SubsampleMode = SubsampleMode.AUTO  # jpeg
    trellis_quant: bool = False                   # jpeg
    overshoot_deringing: bool = False             # jpeg
    optimize_scans: bool = False                  # jpeg
    quant_table: int = 0                          # jpeg
    speed: int = 0                                # avif


def default_export_params() -> ExportParams:
    """Export with the current format, interlaced, quality 80, compression 6."""
    return ExportParams(
        format=ImageType.UNKNOWN,
        quality=80,
        compression=6,
        interlaced=True,
        lossless=False,
        effort=4,
    )


def default_jpeg_export_params() -> ExportParams:
    return ExportParams(format=ImageType.JPEG, quality=80, interlaced=True)


def default_png_export_params() -> ExportParams:
    return ExportParams(format=ImageType.PNG, compression=6, interlaced=False)


def default_webp_export_params() -> ExportParams:
    return ExportParams(format=ImageType.WEBP, quality=75, lossless=False, effort=4)


# ========== Codec Parameter Sets ==========

@dataclass
class JpegExportParams:
    strip_metadata: bool = False
    quality: int = 80
    interlace: bool = True
    optimize_coding: bool = False
    subsample_mode: SubsampleMode = SubsampleMode.AUTO
    trellis_quant: bool = False
    overshoot_deringing: bool = False
    optimize_scans: bool = False
    quant_table: int = 0


@dataclass
class PngExportParams:
    strip_metadata: bool = False
    compression: int = 6
    filter: PngFilter = PngFilter.NONE
    interlace: bool = False
    quality: int = 0
    palette: bool = False
    dither: float = 0.0
    bitdepth: int = 0
    profile: str = ""


@dataclass
class WebpExportParams:
    strip_metadata: bool = False
    quality: int = 75
    lossless: bool = False
    near_lossless: bool = False
    reduction_effort: int = 4
    icc_profile: str = ""


@dataclass
class HeifExportParams:
    quality: int = 80
    lossless: bool = False


@dataclass
class TiffExportParams:
    strip_metadata: bool = False
    quality: int = 80
    compression: TiffCompression = TiffCompression.LZW
    predictor: TiffPredictor = TiffPredictor.HORIZONTAL


@dataclass
class GifExportParams:
    strip_metadata: bool = False
    quality: int = 75
    dither: float = 0.0
    effort: int = 7
    bitdepth: int = 8


@dataclass
class AvifExportParams:
    strip_metadata: bool = False
    quality: int = 80
    lossless: bool = False
    speed: int = 5


@dataclass
class Jp2kExportParams:
    quality: int = 80
    lossless: bool = False
    tile_width: int = 512
    tile_height: int = 512
    subsample_mode: SubsampleMode = SubsampleMode.AUTO


# Codec parameter class per encodable format
CODEC_PARAMS = {
    ImageType.JPEG: JpegExportParams,
    ImageType.PNG: PngExportParams,
    ImageType.WEBP: WebpExportParams,
    ImageType.HEIF: HeifExportParams,
    ImageType.TIFF: TiffExportParams,
    ImageType.GIF: GifExportParams,
    ImageType.AVIF: AvifExportParams,
    ImageType.JP2K: Jp2kExportParams,
}

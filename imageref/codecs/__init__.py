"""
ImageRef - Codecs

Decode and encode boundaries:
- params: import options and per-codec export parameter sets
- translation: generic export parameters to codec parameters
- encoders / factory: one Pillow-backed encoder strategy per format
- decoder: buffer to native image
- raw: self-describing native dump
"""

from .decoder import decode, determine_image_type
from .encoders import EncoderStrategy
from .factory import EncoderFactory
from .params import (
    AvifExportParams,
    ExportParams,
    GifExportParams,
    HeifExportParams,
    ImportParams,
    JpegExportParams,
    Jp2kExportParams,
    PngExportParams,
    TiffExportParams,
    WebpExportParams,
    default_export_params,
    default_jpeg_export_params,
    default_png_export_params,
    default_webp_export_params,
)
from .raw import from_raw, to_raw
from .translation import TRANSLATION_TABLE, dropped_fields, translate

__all__ = [
    "decode",
    "determine_image_type",
    "EncoderStrategy",
    "EncoderFactory",
    "ImportParams",
    "ExportParams",
    "JpegExportParams",
    "PngExportParams",
    "WebpExportParams",
    "HeifExportParams",
    "TiffExportParams",
    "GifExportParams",
    "AvifExportParams",
    "Jp2kExportParams",
    "default_export_params",
    "default_jpeg_export_params",
    "default_png_export_params",
    "default_webp_export_params",
    "to_raw",
    "from_raw",
    "TRANSLATION_TABLE",
    "dropped_fields",
    "translate",
]

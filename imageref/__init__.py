"""
ImageRef - Managed handles over native images

Load an image from a buffer, mutate it through an ImageRef and export it:

    ref = load_image_from_buffer(data)
    ref.resize(0.5)
    out, meta = ref.export(default_jpeg_export_params())
    ref.close()
"""

from .codecs import (
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
    determine_image_type,
)
from .codecs.factory import EncoderFactory
from .config import (
    Align,
    Angle,
    BandFormat,
    BlendMode,
    Coding,
    Direction,
    EngineSettings,
    ExtendStrategy,
    ImageType,
    Interesting,
    Interpretation,
    Kernel,
    PngFilter,
    Size,
    SubsampleMode,
    TiffCompression,
    TiffPredictor,
)
from .engine import logging_settings, shutdown, startup
from .errors import (
    ClosedImageError,
    DecodeError,
    ImageRefError,
    ParameterError,
    PrimitiveError,
    ResourceError,
)
from .image_ref import (
    ImageRef,
    black,
    identity,
    load_image_from_buffer,
    load_image_from_raw,
    load_thumbnail_from_buffer,
    new_image_from_buffer,
    new_thumbnail_from_buffer,
    new_thumbnail_with_size_from_buffer,
    pixelate,
    xyz,
)
from .metadata import ImageMetadata, get_rotation_angle_from_exif
from .types import Color, ColorRGBA, ImageComposite, LabelParams

__version__ = "1.0.0"


def is_type_supported(image_type: ImageType) -> bool:
    """True if images can currently be exported as image_type."""
    return EncoderFactory.is_type_supported(image_type)


__all__ = [
    # Handle
    "ImageRef",
    "load_image_from_buffer", "new_image_from_buffer",
    "load_thumbnail_from_buffer", "new_thumbnail_from_buffer",
    "new_thumbnail_with_size_from_buffer", "load_image_from_raw",
    "black", "xyz", "identity", "pixelate",
    # Engine
    "startup", "shutdown", "logging_settings", "is_type_supported",
    "determine_image_type",
    # Parameters
    "ImportParams", "ExportParams",
    "JpegExportParams", "PngExportParams", "WebpExportParams", "HeifExportParams",
    "TiffExportParams", "GifExportParams", "AvifExportParams", "Jp2kExportParams",
    "default_export_params", "default_jpeg_export_params",
    "default_png_export_params", "default_webp_export_params",
    # Values
    "ImageMetadata", "get_rotation_angle_from_exif",
    "Color", "ColorRGBA", "ImageComposite", "LabelParams",
    # Enums
    "ImageType", "BandFormat", "Interpretation", "Coding", "Angle", "Direction",
    "Kernel", "Interesting", "Size", "ExtendStrategy", "BlendMode", "SubsampleMode",
    "TiffCompression", "TiffPredictor", "PngFilter", "Align", "EngineSettings",
    # Errors
    "ImageRefError", "DecodeError", "PrimitiveError", "ParameterError",
    "ResourceError", "ClosedImageError",
]

"""
Generic to Codec Parameter Translation

A fixed table per codec lists which generic ExportParams fields carry over
and under which codec field name, optionally through a converter. Generic
fields absent from a codec's table are dropped without notice; codec
fields absent from the table keep the codec's defaults.
"""

from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Optional, Tuple

from ..config import ImageType, TiffCompression
from ..errors import ParameterError
from .params import CODEC_PARAMS, ExportParams


@dataclass(frozen=True)
class FieldMapping:
    """generic field -> codec field, with an optional value converter"""
    generic: str
    codec: str
    convert: Optional[Callable[[Any], Any]] = None

    def apply(self, value: Any) -> Any:
        return self.convert(value) if self.convert is not None else value


def _same(*names: str) -> Tuple[FieldMapping, ...]:
    return tuple(FieldMapping(name, name) for name in names)


def _tiff_compression(lossless: bool) -> TiffCompression:
    return TiffCompression.NONE if lossless else TiffCompression.LZW


TRANSLATION_TABLE: Dict[ImageType, Tuple[FieldMapping, ...]] = {
    ImageType.JPEG: _same("quality", "strip_metadata") + (
        FieldMapping("interlaced", "interlace"),
    ) + _same("optimize_coding", "subsample_mode", "trellis_quant",
              "overshoot_deringing", "optimize_scans", "quant_table"),
    ImageType.PNG: _same("strip_metadata", "compression") + (
        FieldMapping("interlaced", "interlace"),
    ),
    ImageType.WEBP: _same("strip_metadata", "quality", "lossless") + (
        FieldMapping("effort", "reduction_effort"),
    ),
    ImageType.HEIF: _same("quality", "lossless"),
    ImageType.TIFF: _same("strip_metadata", "quality") + (
        FieldMapping("lossless", "compression", _tiff_compression),
    ),
    ImageType.GIF: _same("quality"),
    ImageType.AVIF: _same("strip_metadata", "quality", "lossless", "speed"),
    ImageType.JP2K: _same("quality", "lossless"),
}


def dropped_fields(image_type: ImageType) -> Tuple[str, ...]:
    """Generic fields that have no counterpart in the given codec."""
    mapped = {m.generic for m in TRANSLATION_TABLE[ImageType(image_type)]}
    return tuple(f.name for f in fields(ExportParams) if f.name != "format" and f.name not in mapped)


def translate(params: ExportParams, image_type: ImageType):
    """
    Build the codec parameter set for image_type from generic params.

    Args:
        params: Generic export parameters
        image_type: Target codec

    Returns:
        Codec parameter dataclass instance

    Raises:
        ParameterError: If the codec has no parameter set
    """
    image_type = ImageType(image_type)
    if image_type not in TRANSLATION_TABLE:
        raise ParameterError(f"cannot save to {image_type.get_display_name()}")
    codec = CODEC_PARAMS[image_type]()
    for mapping in TRANSLATION_TABLE[image_type]:
        setattr(codec, mapping.codec, mapping.apply(getattr(params, mapping.generic)))
    return codec

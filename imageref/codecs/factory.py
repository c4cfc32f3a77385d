"""
Encoder Factory

Maps a container format to its encoder strategy and answers which formats
can currently be written.
"""

from typing import Dict, List, Type

from PIL import Image

from ..config import ImageType
from ..errors import ParameterError
from .encoders import (
    AvifEncoder,
    EncoderStrategy,
    GifEncoder,
    HeifEncoder,
    Jp2kEncoder,
    JpegEncoder,
    PngEncoder,
    TiffEncoder,
    WebpEncoder,
)

_ENCODERS: Dict[ImageType, Type[EncoderStrategy]] = {
    ImageType.JPEG: JpegEncoder,
    ImageType.PNG: PngEncoder,
    ImageType.WEBP: WebpEncoder,
    ImageType.HEIF: HeifEncoder,
    ImageType.TIFF: TiffEncoder,
    ImageType.GIF: GifEncoder,
    ImageType.AVIF: AvifEncoder,
    ImageType.JP2K: Jp2kEncoder,
}


class EncoderFactory:
    """
    Factory for encoder strategies.

    A format is encodable only when it has a strategy here and Pillow has
    a save handler registered for it (plugins such as HEIF are optional).
    """

    @staticmethod
    def is_type_supported(image_type: ImageType) -> bool:
        try:
            image_type = ImageType(image_type)
        except ValueError:
            return False
        encoder = _ENCODERS.get(image_type)
        if encoder is None:
            return False
        Image.init()
        return encoder.PIL_FORMAT in Image.SAVE

    @staticmethod
    def supported_export_types() -> List[ImageType]:
        return [t for t in _ENCODERS if EncoderFactory.is_type_supported(t)]

    @staticmethod
    def create_encoder(image_type: ImageType) -> EncoderStrategy:
        """
        Create the encoder for a format.

        Args:
            image_type: Target container format

        Returns:
            EncoderStrategy instance

        Raises:
            ParameterError: If the format cannot be written
        """
        if not EncoderFactory.is_type_supported(image_type):
            name = image_type.get_display_name() if isinstance(image_type, ImageType) else repr(image_type)
            raise ParameterError(f"cannot save to {name}")
        return _ENCODERS[ImageType(image_type)]()

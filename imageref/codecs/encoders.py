"""
Encoder Strategies

Each strategy encodes a native image into one container format with
Pillow. All strategies share the same preparation step:
1. Bring the pixels into sRGB or grey (CMYK where the codec takes it)
2. Reduce to 8 bits per band (16-bit grey is kept where the codec takes it)
3. Split stacked pages into frames for animated formats
"""

import io
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from PIL import Image

from .. import primitives
from ..config import ImageType, Interpretation, SubsampleMode, TiffCompression
from ..errors import ImageRefError, ParameterError, ResourceError
from ..native import NativeImage
from ..primitives.helpers import clip_cast, split_pages
from ..primitives.pil_bridge import to_pil
from .params import (
    AvifExportParams,
    GifExportParams,
    HeifExportParams,
    JpegExportParams,
    Jp2kExportParams,
    PngExportParams,
    TiffExportParams,
    WebpExportParams,
)

logger = logging.getLogger("imageref")

_GREY = (Interpretation.B_W, Interpretation.GREY16)
_RGB = (Interpretation.SRGB, Interpretation.RGB, Interpretation.RGB16)

_TIFF_COMPRESSION = {
    TiffCompression.NONE: "raw",
    TiffCompression.JPEG: "jpeg",
    TiffCompression.DEFLATE: "tiff_adobe_deflate",
    TiffCompression.PACKBITS: "packbits",
    TiffCompression.CCITTFAX4: "group4",
    TiffCompression.LZW: "tiff_lzw",
    TiffCompression.WEBP: "webp",
    TiffCompression.ZSTD: "zstd",
}


def saveable_pixels(image: NativeImage, alpha: bool = True, cmyk: bool = False,
                    grey16: bool = False) -> Tuple[np.ndarray, Interpretation]:
    """
    Pixels in a layout Pillow can write.

    Args:
        image: Source image
        alpha: Keep an alpha band (otherwise flatten against black)
        cmyk: Keep CMYK as is
        grey16: Keep single band 16-bit grey

    Returns:
        Tuple of (pixels, interpretation) with 1-4 bands
    """
    interpretation = image.interpretation
    converted: Optional[NativeImage] = None
    if interpretation == Interpretation.CMYK and not cmyk:
        converted = primitives.colourspace(image, Interpretation.SRGB)
    elif interpretation not in _GREY + _RGB + (Interpretation.CMYK,):
        if primitives.is_colourspace_supported(image):
            converted = primitives.colourspace(image, Interpretation.SRGB)
    source = converted or image
    try:
        pixels = source.pixels
        interpretation = source.interpretation
        if interpretation not in _GREY + _RGB + (Interpretation.CMYK,):
            # untyped bands: read 1-2 as grey, 3-4 as sRGB
            interpretation = Interpretation.B_W if pixels.shape[2] <= 2 else Interpretation.SRGB
        bands = pixels.shape[2]
        colour_bands = 4 if interpretation == Interpretation.CMYK else (1 if interpretation in _GREY else 3)
        if bands < colour_bands or bands > colour_bands + 1:
            raise ParameterError(f"cannot save a {bands} band {interpretation.value} image")
        has_alpha = bands == colour_bands + 1

        sixteen = pixels.dtype == np.uint16 or interpretation in (Interpretation.RGB16, Interpretation.GREY16)
        if grey16 and sixteen and bands == 1:
            return clip_cast(pixels, np.uint16), Interpretation.GREY16
        pixels = clip_cast(pixels / 257.0 if sixteen else pixels, np.uint8)
        interpretation = Interpretation.B_W if interpretation in _GREY else (
            Interpretation.CMYK if interpretation == Interpretation.CMYK else Interpretation.SRGB)

        if has_alpha and not alpha:
            colour = pixels[:, :, :-1].astype(np.float32)
            a = pixels[:, :, -1:].astype(np.float32) / 255.0
            pixels = clip_cast(colour * a, np.uint8)
        return pixels, interpretation
    finally:
        if converted is not None:
            converted.release()


def frames_of(image: NativeImage, pixels: np.ndarray, interpretation: Interpretation) -> List[Image.Image]:
    page_height = image.page_height
    if image.height > page_height:
        return [to_pil(np.ascontiguousarray(page), interpretation) for page in split_pages(pixels, page_height)]
    return [to_pil(pixels, interpretation)]


def exif_bytes(image: NativeImage) -> Optional[bytes]:
    """EXIF block with the orientation tag synced to the image header."""
    data = image.fields.get("exif-data")
    orientation = image.orientation
    if data is None and orientation <= 1:
        return None
    exif = Image.Exif()
    if data is not None:
        exif.load(bytes(data))
    if orientation > 0:
        exif[274] = orientation
    return exif.tobytes()


def metadata_options(image: NativeImage, strip: bool, icc: bool = True, exif: bool = True) -> Dict[str, Any]:
    if strip:
        return {}
    options = {}
    profile = image.fields.get("icc-profile-data")
    if icc and profile is not None:
        options["icc_profile"] = bytes(profile)
    if exif:
        block = exif_bytes(image)
        if block is not None:
            options["exif"] = block
    return options


def animation_options(image: NativeImage, n_frames: int) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    delay = image.fields.get("delay")
    if delay:
        delays = [int(d) for d in delay][:n_frames]
        delays += [delays[-1]] * (n_frames - len(delays))
        options["duration"] = delays
    loop = image.fields.get("loop")
    if loop is not None:
        options["loop"] = int(loop)
    return options


class EncoderStrategy(ABC):
    """
    Abstract base class for encoders.

    Each strategy is responsible for:
    1. Converting the native image into a form its codec can store
    2. Mapping its codec parameter set onto Pillow save options
    3. Writing the encoded bytes
    """

    PIL_FORMAT: str = ""

    @abstractmethod
    def get_format(self) -> ImageType:
        """Return the container format this strategy writes."""
        pass

    @abstractmethod
    def default_params(self):
        """Return the codec's default parameter set."""
        pass

    @abstractmethod
    def save(self, image: NativeImage, params, out: io.BytesIO) -> None:
        """Write image to out according to params."""
        pass

    @property
    def name(self) -> str:
        return type(self).__name__

    def encode(self, image: NativeImage, params=None) -> bytes:
        """
        Encode image; params None means the codec defaults.

        Raises:
            ParameterError: For images the codec cannot represent
            ResourceError: If the backend fails to write
        """
        if params is None:
            params = self.default_params()
        out = io.BytesIO()
        try:
            self.save(image, params, out)
        except ImageRefError:
            raise
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("[%s] encode failed: %s", self.name, e)
            raise ResourceError(f"failed to encode {self.get_format().get_display_name()}: {e}") from e
        data = out.getvalue()
        logger.debug("[%s] wrote %d bytes", self.name, len(data))
        return data

    def ignored(self, option: str, value) -> None:
        logger.warning("[%s] option %s=%r is not supported by the backend, ignored", self.name, option, value)


class JpegEncoder(EncoderStrategy):
    PIL_FORMAT = "JPEG"

    def get_format(self) -> ImageType:
        return ImageType.JPEG

    def default_params(self) -> JpegExportParams:
        return JpegExportParams()

    def save(self, image: NativeImage, params: JpegExportParams, out: io.BytesIO) -> None:
        pixels, interpretation = saveable_pixels(image, alpha=False, cmyk=True)
        pil = to_pil(pixels, interpretation)
        subsample = SubsampleMode(params.subsample_mode)
        if subsample == SubsampleMode.AUTO:
            subsampling = 0 if params.quality >= 90 else 2
        else:
            subsampling = 2 if subsample == SubsampleMode.ON else 0
        for option in ("trellis_quant", "overshoot_deringing", "optimize_scans"):
            if getattr(params, option):
                self.ignored(option, True)
        if params.quant_table:
            self.ignored("quant_table", params.quant_table)
        pil.save(
            out, self.PIL_FORMAT,
            quality=params.quality,
            progressive=params.interlace,
            optimize=params.optimize_coding,
            subsampling=subsampling,
            **metadata_options(image, params.strip_metadata),
        )


class PngEncoder(EncoderStrategy):
    PIL_FORMAT = "PNG"

    def get_format(self) -> ImageType:
        return ImageType.PNG

    def default_params(self) -> PngExportParams:
        return PngExportParams()

    def save(self, image: NativeImage, params: PngExportParams, out: io.BytesIO) -> None:
        pixels, interpretation = saveable_pixels(image, grey16=params.bitdepth in (0, 16))
        pil = to_pil(pixels, interpretation)
        if params.interlace:
            self.ignored("interlace", True)
        if params.filter.value != "none":
            self.ignored("filter", params.filter.value)
        if params.profile:
            self.ignored("profile", params.profile)
        if params.palette or params.bitdepth in (1, 2, 4):
            colours = 2 ** params.bitdepth if params.bitdepth in (1, 2, 4) else 256
            dither = Image.Dither.FLOYDSTEINBERG if params.dither > 0 else Image.Dither.NONE
            method = Image.Quantize.FASTOCTREE if pil.mode in ("RGBA", "LA") else Image.Quantize.MEDIANCUT
            pil = pil.convert("RGBA" if pil.mode == "LA" else pil.mode).quantize(colours, method=method, dither=dither)
        options = metadata_options(image, params.strip_metadata)
        pil.save(out, self.PIL_FORMAT, compress_level=params.compression, **options)


class WebpEncoder(EncoderStrategy):
    PIL_FORMAT = "WEBP"

    def get_format(self) -> ImageType:
        return ImageType.WEBP

    def default_params(self) -> WebpExportParams:
        return WebpExportParams()

    def save(self, image: NativeImage, params: WebpExportParams, out: io.BytesIO) -> None:
        pixels, interpretation = saveable_pixels(image)
        if interpretation == Interpretation.B_W:
            pixels = np.concatenate([np.repeat(pixels[:, :, :1], 3, axis=2), pixels[:, :, 1:]], axis=2)
            interpretation = Interpretation.SRGB
        frames = frames_of(image, pixels, interpretation)
        if params.near_lossless:
            self.ignored("near_lossless", True)
        options = metadata_options(image, params.strip_metadata)
        if params.icc_profile:
            options["icc_profile"] = primitives.profile_bytes(params.icc_profile) or b""
        options.update(quality=params.quality, lossless=params.lossless,
                       method=max(0, min(6, params.reduction_effort)))
        if len(frames) > 1:
            options.update(animation_options(image, len(frames)))
            frames[0].save(out, self.PIL_FORMAT, save_all=True, append_images=frames[1:], **options)
        else:
            frames[0].save(out, self.PIL_FORMAT, **options)


class HeifEncoder(EncoderStrategy):
    PIL_FORMAT = "HEIF"

    def get_format(self) -> ImageType:
        return ImageType.HEIF

    def default_params(self) -> HeifExportParams:
        return HeifExportParams()

    def save(self, image: NativeImage, params: HeifExportParams, out: io.BytesIO) -> None:
        pixels, interpretation = saveable_pixels(image)
        pil = to_pil(pixels, interpretation)
        quality = -1 if params.lossless else params.quality
        pil.save(out, self.PIL_FORMAT, quality=quality, **metadata_options(image, False))


class TiffEncoder(EncoderStrategy):
    PIL_FORMAT = "TIFF"

    def get_format(self) -> ImageType:
        return ImageType.TIFF

    def default_params(self) -> TiffExportParams:
        return TiffExportParams()

    def save(self, image: NativeImage, params: TiffExportParams, out: io.BytesIO) -> None:
        pixels, interpretation = saveable_pixels(image, cmyk=True, grey16=True)
        frames = frames_of(image, pixels, interpretation)
        compression = TiffCompression(params.compression)
        if compression == TiffCompression.CCITTFAX4:
            frames = [f.convert("L").convert("1") for f in frames]
        if params.predictor.value != "none":
            logger.debug("[%s] predictor %s left to the backend", self.name, params.predictor.value)
        options = metadata_options(image, params.strip_metadata)
        options["compression"] = _TIFF_COMPRESSION[compression]
        if compression == TiffCompression.JPEG:
            options["quality"] = params.quality
        if image.xres > 0 and image.yres > 0:
            options["dpi"] = (image.xres * 25.4, image.yres * 25.4)
        if len(frames) > 1:
            frames[0].save(out, self.PIL_FORMAT, save_all=True, append_images=frames[1:], **options)
        else:
            frames[0].save(out, self.PIL_FORMAT, **options)


class GifEncoder(EncoderStrategy):
    PIL_FORMAT = "GIF"

    def get_format(self) -> ImageType:
        return ImageType.GIF

    def default_params(self) -> GifExportParams:
        return GifExportParams()

    def save(self, image: NativeImage, params: GifExportParams, out: io.BytesIO) -> None:
        pixels, interpretation = saveable_pixels(image)
        frames = frames_of(image, pixels, interpretation)
        bitdepth = params.bitdepth if 1 <= params.bitdepth <= 8 else 8
        dither = Image.Dither.FLOYDSTEINBERG if params.dither > 0 else Image.Dither.NONE
        if bitdepth < 8 and all(f.mode in ("L", "RGB") for f in frames):
            frames = [f.convert("RGB").quantize(2 ** bitdepth, dither=dither) for f in frames]
        elif bitdepth < 8:
            self.ignored("bitdepth", bitdepth)
        options: Dict[str, Any] = {"optimize": params.effort >= 7}
        if len(frames) > 1:
            options.update(animation_options(image, len(frames)))
            frames[0].save(out, self.PIL_FORMAT, save_all=True, append_images=frames[1:], **options)
        else:
            frames[0].save(out, self.PIL_FORMAT, **options)


class AvifEncoder(EncoderStrategy):
    PIL_FORMAT = "AVIF"

    def get_format(self) -> ImageType:
        return ImageType.AVIF

    def default_params(self) -> AvifExportParams:
        return AvifExportParams()

    def save(self, image: NativeImage, params: AvifExportParams, out: io.BytesIO) -> None:
        pixels, interpretation = saveable_pixels(image)
        if interpretation == Interpretation.B_W:
            pixels = np.concatenate([np.repeat(pixels[:, :, :1], 3, axis=2), pixels[:, :, 1:]], axis=2)
            interpretation = Interpretation.SRGB
        pil = to_pil(pixels, interpretation)
        options = metadata_options(image, params.strip_metadata)
        if params.lossless:
            options.update(quality=100, subsampling="4:4:4")
        else:
            options["quality"] = params.quality
        pil.save(out, self.PIL_FORMAT, speed=max(0, min(10, params.speed)), **options)


class Jp2kEncoder(EncoderStrategy):
    PIL_FORMAT = "JPEG2000"

    def get_format(self) -> ImageType:
        return ImageType.JP2K

    def default_params(self) -> Jp2kExportParams:
        return Jp2kExportParams()

    def save(self, image: NativeImage, params: Jp2kExportParams, out: io.BytesIO) -> None:
        pixels, interpretation = saveable_pixels(image)
        pil = to_pil(pixels, interpretation)
        if SubsampleMode(params.subsample_mode) != SubsampleMode.AUTO:
            self.ignored("subsample_mode", params.subsample_mode.value)
        options: Dict[str, Any] = {
            "tile_size": (min(params.tile_width, pil.width), min(params.tile_height, pil.height)),
            "irreversible": not params.lossless,
        }
        if not params.lossless:
            # quality 0..100 onto a PSNR target
            options.update(quality_mode="dB", quality_layers=[20.0 + 0.3 * params.quality])
        pil.save(out, self.PIL_FORMAT, **options)

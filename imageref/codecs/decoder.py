"""
Decode Boundary

Turns an encoded buffer into a NativeImage with Pillow (svglib and
reportlab for SVG). Multi-page sources are loaded as frames stacked
vertically, with the page geometry recorded in the header fields.
"""

import io
import logging
import os
import sys
import threading
import warnings
from typing import Optional, Tuple

import numpy as np
from PIL import ExifTags, Image, UnidentifiedImageError

from .. import primitives
from ..config import EngineConfig, ImageType, Interpretation
from ..errors import DecodeError, ImageRefError
from ..native import NativeImage
from ..primitives.pil_bridge import from_pil
from .params import ImportParams

logger = logging.getLogger("imageref")

# Pillow format name -> (current format, original format)
_PIL_FORMATS = {
    "JPEG": (ImageType.JPEG, ImageType.JPEG),
    "MPO": (ImageType.JPEG, ImageType.JPEG),
    "PNG": (ImageType.PNG, ImageType.PNG),
    "GIF": (ImageType.GIF, ImageType.GIF),
    "WEBP": (ImageType.WEBP, ImageType.WEBP),
    "TIFF": (ImageType.TIFF, ImageType.TIFF),
    "HEIF": (ImageType.HEIF, ImageType.HEIF),
    "AVIF": (ImageType.AVIF, ImageType.AVIF),
    "JPEG2000": (ImageType.JP2K, ImageType.JP2K),
    # the engine keeps BMP content as PNG
    "BMP": (ImageType.PNG, ImageType.BMP),
}

_JPEG_SHRINK_FACTORS = (1, 2, 4, 8)

# Warning capture patches process-wide state in the warnings module
_WARNINGS_LOCK = threading.Lock()
_DECODER_PACKAGES = ("PIL", "svglib", "reportlab")


def is_svg(buf: bytes) -> bool:
    head = buf[:1024].lstrip()
    if head.startswith(b"\xef\xbb\xbf"):
        head = head[3:].lstrip()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in buf[:4096])


def determine_image_type(buf: bytes) -> ImageType:
    """Sniff the container format without decoding pixels."""
    if not buf:
        return ImageType.UNKNOWN
    if is_svg(buf):
        return ImageType.SVG
    try:
        with Image.open(io.BytesIO(buf)) as img:
            return _PIL_FORMATS.get(img.format, (ImageType.UNKNOWN,))[0]
    except (UnidentifiedImageError, OSError):
        return ImageType.UNKNOWN


# ---------- Header fields ----------
def _metadata_fields(img: Image.Image) -> dict:
    fields = {}
    info = img.info
    if info.get("icc_profile"):
        fields["icc-profile-data"] = bytes(info["icc_profile"])
    exif_data = info.get("exif")
    if exif_data:
        fields["exif-data"] = bytes(exif_data)
    exif = img.getexif()
    for tag, value in exif.items():
        name = ExifTags.TAGS.get(tag, f"0x{tag:04x}")
        fields[f"exif-ifd0-{name}"] = value if isinstance(value, (int, float, str)) else str(value)
    orientation = exif.get(274)
    if orientation:
        fields["orientation"] = int(orientation)
    xmp = info.get("xmp") or info.get("XML:com.adobe.xmp")
    if xmp:
        fields["xmp-data"] = xmp.encode("utf-8") if isinstance(xmp, str) else bytes(xmp)
    photoshop = info.get("photoshop")
    if isinstance(photoshop, dict) and photoshop.get(0x0404):
        fields["iptc-data"] = bytes(photoshop[0x0404])
    return fields


def _resolution(img: Image.Image) -> Tuple[float, float]:
    """Pixels per millimetre from the container DPI (72 DPI when absent)."""
    dpi = img.info.get("dpi")
    try:
        xdpi, ydpi = float(dpi[0]), float(dpi[1])
    except (TypeError, ValueError, IndexError):
        xdpi = ydpi = 72.0
    if xdpi <= 0 or ydpi <= 0:
        xdpi = ydpi = 72.0
    return xdpi / 25.4, ydpi / 25.4


# ---------- Frames ----------
def _read_frames(img: Image.Image, page: int, n: int):
    """
    Decode pages page..page+n (n == -1 for the rest).

    Returns:
        Tuple of (frame arrays, interpretation, per-frame delays in ms, total pages)
    """
    total = getattr(img, "n_frames", 1)
    if page < 0 or page >= total:
        raise DecodeError(f"page {page} out of range, image has {total} pages")
    last = total if n == -1 else page + n
    if n == 0 or n < -1 or last > total:
        raise DecodeError(f"cannot load {n} pages from page {page} of {total}")
    pil_frames, delays = [], []
    for index in range(page, last):
        img.seek(index)
        img.load()
        delays.append(int(img.info.get("duration", 0) or 0))
        pil_frames.append(img.copy())

    decoded = [from_pil(frame) for frame in pil_frames]
    if len({(p.shape, p.dtype) for p, _ in decoded}) > 1:
        # frames decoded into different modes: promote all to RGBA
        decoded = [from_pil(frame.convert("RGBA")) for frame in pil_frames]
    return [p for p, _ in decoded], decoded[0][1], delays, total


def _decode_raster(buf: bytes, params: ImportParams) -> Tuple[NativeImage, ImageType, ImageType]:
    try:
        img = Image.open(io.BytesIO(buf))
    except UnidentifiedImageError as e:
        raise DecodeError("unsupported image format") from e
    formats = _PIL_FORMATS.get(img.format)
    if formats is None:
        img.close()
        raise DecodeError(f"unsupported image format {img.format}")
    current, original = formats

    with img:
        shrink = params.jpeg_shrink_factor
        if shrink is not None:
            if shrink not in _JPEG_SHRINK_FACTORS:
                raise DecodeError(f"invalid JPEG shrink factor {shrink}")
            if current == ImageType.JPEG and shrink > 1:
                img.draft(img.mode, (img.width // shrink, img.height // shrink))
        if params.heif_thumbnail:
            logger.debug("[Decoder] HEIF thumbnail preference has no effect with this backend")

        fields = _metadata_fields(img)
        xres, yres = _resolution(img)
        loop = img.info.get("loop")
        page = params.page or 0
        n = params.num_pages if params.num_pages is not None else 1
        frames, interpretation, delays, total = _read_frames(img, page, n)

    pixels = primitives.stack_pages(frames) if len(frames) > 1 else frames[0]
    fields["n-pages"] = total
    if len(frames) > 1:
        fields["page-height"] = frames[0].shape[0]
    if total > 1:
        # one entry per page of the source, 0 for pages not loaded
        fields["delay"] = delays + [0] * (total - len(delays))
        if loop is not None:
            fields["loop"] = int(loop)
    image = NativeImage(pixels, interpretation=interpretation, xres=xres, yres=yres, fields=fields)
    return image, current, original


def _decode_svg(buf: bytes, params: ImportParams) -> NativeImage:
    from reportlab.graphics import renderPM
    from svglib.svglib import svg2rlg

    drawing = svg2rlg(io.BytesIO(buf))
    if drawing is None:
        raise DecodeError("unable to parse SVG")
    dpi = params.density or EngineConfig.SVG_DEFAULT_DPI
    scale = dpi / 72.0
    width, height = int(round(drawing.width * scale)), int(round(drawing.height * scale))
    if width <= 0 or height <= 0:
        raise DecodeError("SVG has no drawable area")
    if not params.svg_unlimited and width * height > EngineConfig.MAX_SVG_PIXELS:
        raise DecodeError(f"SVG of {width}x{height} exceeds the pixel limit")
    logger.debug("[Decoder] rasterising SVG at %s dpi: %dx%d", dpi, width, height)

    # Render on white and on black: covered pixels agree, transparent ones differ
    try:
        pil_white = renderPM.drawToPIL(drawing, dpi=dpi, bg=0xFFFFFF, configPIL={"transparent": False})
        pil_black = renderPM.drawToPIL(drawing, dpi=dpi, bg=0x000000, configPIL={"transparent": False})
    except renderPM.RenderPMError as e:
        raise DecodeError(f"SVG rasteriser unavailable: {e}") from e
    on_white = np.asarray(pil_white.convert("RGB"), dtype=np.float32)
    on_black = np.asarray(pil_black.convert("RGB"), dtype=np.float32)
    alpha = 255.0 - np.clip((on_white - on_black).max(axis=2, keepdims=True), 0.0, 255.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        colour = np.where(alpha > 0, on_black * 255.0 / alpha, 0.0)
    pixels = np.clip(np.concatenate([colour, alpha], axis=2), 0, 255).astype(np.uint8)
    return NativeImage(pixels, interpretation=Interpretation.SRGB, xres=dpi / 25.4, yres=dpi / 25.4,
                       fields={"n-pages": 1})


def _is_decoder_warning(record: warnings.WarningMessage) -> bool:
    """True for warnings raised by Pillow or the SVG rasteriser."""
    if issubclass(record.category, Image.DecompressionBombWarning):
        return True
    filename = os.path.abspath(record.filename or "")
    for name in _DECODER_PACKAGES:
        module = sys.modules.get(name)
        origin = getattr(module, "__file__", None)
        if origin and filename.startswith(os.path.dirname(os.path.abspath(origin)) + os.sep):
            return True
    return False


def decode(buf: bytes, params: Optional[ImportParams] = None) -> Tuple[NativeImage, ImageType, ImageType]:
    """
    Decode a buffer.

    Args:
        buf: Encoded image bytes
        params: Import options, None for the defaults

    Returns:
        Tuple of (native image, current format, original format)

    Raises:
        DecodeError: On malformed or unsupported input, and on decoder
            warnings when fail_on_error is set
    """
    if params is None:
        params = ImportParams()
    if not buf:
        raise DecodeError("empty buffer")
    buf = bytes(buf)
    with _WARNINGS_LOCK, warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            if is_svg(buf):
                image = _decode_svg(buf, params)
                current = original = ImageType.SVG
            else:
                image, current, original = _decode_raster(buf, params)
        except ImageRefError:
            raise
        except (OSError, ValueError, SyntaxError, EOFError, Image.DecompressionBombError) as e:
            raise DecodeError(f"failed to decode {len(buf)} byte buffer: {e}") from e

    # other threads may warn while the recorder is installed
    caught = [w for w in caught if _is_decoder_warning(w)]
    if caught:
        messages = "; ".join(str(w.message) for w in caught)
        if params.fail_on_error:
            image.release()
            raise DecodeError(f"decoder warning: {messages}")
        logger.warning("[Decoder] %s", messages)

    if params.auto_rotate:
        rotated = primitives.autorot(image)
        image.release()
        image = rotated
    logger.debug("[Decoder] loaded %s (%s) as %r", current.value, original.value, image)
    return image, current, original

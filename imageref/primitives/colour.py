"""
Colour Primitives

Colour space conversion goes through a float sRGB hub (0..1) with alpha
carried separately, using OpenCV for the Lab/HSV/XYZ maths. ICC transforms
use Pillow's ImageCms (littleCMS).
"""

import io
import logging
from typing import Optional, Tuple, Union

import cv2
import numpy as np
from PIL import ImageCms

from ..config import Interpretation, ProfileConfig
from ..errors import PrimitiveError
from ..native import NativeImage
from .helpers import clip_cast, primitive
from .pil_bridge import from_pil, native_to_pil, to_pil

logger = logging.getLogger("imageref.primitives")

SUPPORTED_INTERPRETATIONS = frozenset({
    Interpretation.SRGB, Interpretation.RGB, Interpretation.RGB16,
    Interpretation.B_W, Interpretation.GREY16, Interpretation.CMYK,
    Interpretation.LAB, Interpretation.LCH, Interpretation.HSV,
    Interpretation.XYZ, Interpretation.SCRGB,
})

_COLOUR_BANDS = {Interpretation.B_W: 1, Interpretation.GREY16: 1, Interpretation.CMYK: 4}
_PROFILE_MODES = {"RGB": "RGB", "GRAY": "L", "CMYK": "CMYK"}


def is_colourspace_supported(image: NativeImage) -> bool:
    return image.interpretation in SUPPORTED_INTERPRETATIONS


def _to_linear(rgb: np.ndarray) -> np.ndarray:
    return np.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)


def _from_linear(rgb: np.ndarray) -> np.ndarray:
    rgb = np.clip(rgb, 0.0, 1.0)
    return np.where(rgb <= 0.0031308, rgb * 12.92, 1.055 * rgb ** (1 / 2.4) - 0.055)


def _lab_to_rgb(lab: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(np.ascontiguousarray(lab, dtype=np.float32), cv2.COLOR_Lab2RGB)


def to_srgb_float(image: NativeImage) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Decode an image into float sRGB.

    Returns:
        Tuple of (rgb (H, W, 3) in 0..1, alpha (H, W, 1) in 0..1 or None)
    """
    interpretation = image.interpretation
    if interpretation not in SUPPORTED_INTERPRETATIONS:
        raise PrimitiveError(f"colourspace: unsupported source {interpretation.value}")
    pixels = image.pixels
    n_colour = _COLOUR_BANDS.get(interpretation, 3)
    if pixels.shape[2] < n_colour:
        raise PrimitiveError(f"colourspace: {interpretation.value} needs {n_colour} bands")
    colour = pixels[:, :, :n_colour].astype(np.float32)
    alpha = None
    if image.has_alpha:
        alpha = pixels[:, :, -1:].astype(np.float32) / image.max_alpha

    if interpretation in (Interpretation.RGB16, Interpretation.GREY16):
        colour = colour / 65535.0
    elif interpretation in (Interpretation.SRGB, Interpretation.RGB, Interpretation.B_W,
                            Interpretation.CMYK):
        colour = colour / 255.0

    if interpretation in (Interpretation.B_W, Interpretation.GREY16):
        rgb = np.repeat(colour, 3, axis=2)
    elif interpretation == Interpretation.CMYK:
        k = colour[:, :, 3:4]
        rgb = (1.0 - colour[:, :, :3]) * (1.0 - k)
    elif interpretation == Interpretation.LAB:
        rgb = _lab_to_rgb(colour)
    elif interpretation == Interpretation.LCH:
        rad = np.deg2rad(colour[:, :, 2])
        lab = np.stack([colour[:, :, 0], colour[:, :, 1] * np.cos(rad), colour[:, :, 1] * np.sin(rad)], axis=2)
        rgb = _lab_to_rgb(lab)
    elif interpretation == Interpretation.HSV:
        hsv = clip_cast(colour, np.uint8)
        rgb = cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB_FULL).astype(np.float32) / 255.0
    elif interpretation == Interpretation.XYZ:
        rgb = _from_linear(cv2.cvtColor(np.ascontiguousarray(colour / 100.0), cv2.COLOR_XYZ2RGB))
    elif interpretation == Interpretation.SCRGB:
        rgb = _from_linear(colour)
    else:
        rgb = colour
    return np.clip(rgb, 0.0, 1.0).astype(np.float32), alpha


def from_srgb_float(rgb: np.ndarray, alpha: Optional[np.ndarray], target: Interpretation) -> np.ndarray:
    """Encode float sRGB (0..1) into the band layout of target."""
    alpha_scale = 65535.0 if target in (Interpretation.RGB16, Interpretation.GREY16) else 255.0
    rgb = np.ascontiguousarray(rgb, dtype=np.float32)
    if target in (Interpretation.SRGB, Interpretation.RGB):
        colour, dtype = rgb * 255.0, np.uint8
    elif target == Interpretation.RGB16:
        colour, dtype = rgb * 65535.0, np.uint16
    elif target in (Interpretation.B_W, Interpretation.GREY16):
        grey = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)[:, :, np.newaxis]
        colour = grey * (65535.0 if target == Interpretation.GREY16 else 255.0)
        dtype = np.uint16 if target == Interpretation.GREY16 else np.uint8
    elif target == Interpretation.CMYK:
        k = 1.0 - rgb.max(axis=2, keepdims=True)
        with np.errstate(divide="ignore", invalid="ignore"):
            cmy = np.where(k < 1.0, (1.0 - rgb - k) / (1.0 - k), 0.0)
        colour, dtype = np.concatenate([cmy, k], axis=2) * 255.0, np.uint8
    elif target == Interpretation.LAB:
        colour, dtype = cv2.cvtColor(rgb, cv2.COLOR_RGB2Lab), np.float32
    elif target == Interpretation.LCH:
        lab = cv2.cvtColor(rgb, cv2.COLOR_RGB2Lab)
        chroma = np.hypot(lab[:, :, 1], lab[:, :, 2])
        hue = np.mod(np.rad2deg(np.arctan2(lab[:, :, 2], lab[:, :, 1])), 360.0)
        colour, dtype = np.stack([lab[:, :, 0], chroma, hue], axis=2), np.float32
    elif target == Interpretation.HSV:
        hsv = cv2.cvtColor(clip_cast(rgb * 255.0, np.uint8), cv2.COLOR_RGB2HSV_FULL)
        colour, dtype = hsv.astype(np.float32), np.uint8
    elif target == Interpretation.XYZ:
        colour = cv2.cvtColor(np.ascontiguousarray(_to_linear(rgb), dtype=np.float32), cv2.COLOR_RGB2XYZ) * 100.0
        dtype = np.float32
    elif target == Interpretation.SCRGB:
        colour, dtype = _to_linear(rgb), np.float32
    else:
        raise PrimitiveError(f"colourspace: unsupported target {target.value}")
    if alpha is not None:
        colour = np.concatenate([colour, alpha * alpha_scale], axis=2)
    return clip_cast(colour, dtype)


@primitive("colourspace")
def colourspace(image: NativeImage, target: Interpretation) -> NativeImage:
    target = Interpretation(target)
    if target == Interpretation.RGB:
        target = Interpretation.SRGB
    if target not in SUPPORTED_INTERPRETATIONS:
        raise PrimitiveError(f"colourspace: unsupported target {target.value}")
    if target == image.interpretation:
        return image.derive()
    rgb, alpha = to_srgb_float(image)
    return image.derive(from_srgb_float(rgb, alpha, target), interpretation=target)


# ---------- ICC ----------
def profile_bytes(profile: Union[str, bytes]) -> Optional[bytes]:
    """
    Resolve a profile given as raw bytes, a built-in id or a file path.

    Returns:
        ICC bytes, or None for the untagged grey profile id
    """
    if isinstance(profile, (bytes, bytearray)):
        return bytes(profile)
    if profile == ProfileConfig.SRGB:
        return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()
    if profile == ProfileConfig.SGRAY:
        return None
    with open(profile, "rb") as f:
        return f.read()


def _cms_profile(data: bytes) -> ImageCms.ImageCmsProfile:
    return ImageCms.ImageCmsProfile(io.BytesIO(data))


@primitive("icc_transform")
def icc_transform(image: NativeImage, output_profile: Union[str, bytes],
                  input_profile: Optional[str] = None, intent: int = 0,
                  depth: int = 8, embedded: bool = False) -> NativeImage:
    """
    Transform colours from the input profile into the output profile.

    Args:
        image: Source image
        output_profile: ICC bytes, path, or built-in id (srgb/sgray)
        input_profile: Fallback profile when none is embedded ("cmyk" for
            CMYK sources, None for sRGB)
        intent: Rendering intent (ImageCms.Intent value)
        depth: 8 or 16 bit output
        embedded: Prefer the embedded profile when one is present

    Returns:
        Transformed image tagged with the output profile
    """
    out_bytes = profile_bytes(output_profile)
    to_grey = out_bytes is None
    if to_grey:
        out_bytes = profile_bytes(ProfileConfig.SRGB)
    in_bytes = image.fields.get("icc-profile-data") if embedded else None

    alpha = None
    source = image
    if image.has_alpha:
        alpha = image.pixels[:, :, -1:].astype(np.float32) / image.max_alpha
        source = image.derive(image.pixels[:, :, :-1])

    pil_src = None
    if in_bytes is not None:
        in_profile = _cms_profile(in_bytes)
        candidate = native_to_pil(source)
        if _PROFILE_MODES.get(in_profile.profile.xcolor_space.strip()) == candidate.mode:
            pil_src = candidate
    if pil_src is None:
        # untagged (or unusable tag): decode through the sRGB hub; CMYK
        # sources ("cmyk" input profile) take the naive hub conversion
        logger.debug("[icc_transform] no usable embedded profile, input %s", input_profile or "srgb")
        rgb, _ = to_srgb_float(source)
        pil_src = to_pil(from_srgb_float(rgb, None, Interpretation.SRGB), Interpretation.SRGB)
        in_profile = _cms_profile(profile_bytes(ProfileConfig.SRGB))

    out_profile = _cms_profile(out_bytes)
    out_space = out_profile.profile.xcolor_space.strip()
    out_mode = {"GRAY": "L", "CMYK": "CMYK"}.get(out_space, "RGB")
    converted = ImageCms.profileToProfile(
        pil_src, in_profile, out_profile, renderingIntent=ImageCms.Intent(intent), outputMode=out_mode,
    )
    pixels, interpretation = from_pil(converted)
    fields = dict(image.fields)
    fields["icc-profile-data"] = out_bytes

    if to_grey:
        rgb, _ = to_srgb_float(image.derive(pixels, interpretation=interpretation))
        interpretation = Interpretation.GREY16 if depth == 16 else Interpretation.B_W
        pixels = from_srgb_float(rgb, None, interpretation)
        fields.pop("icc-profile-data", None)
    elif depth == 16:
        pixels = clip_cast(pixels.astype(np.float32) * 257.0, np.uint16)
        interpretation = Interpretation.RGB16 if interpretation == Interpretation.SRGB else interpretation

    if alpha is not None:
        scale = 65535.0 if pixels.dtype == np.uint16 else 255.0
        pixels = np.concatenate([pixels, clip_cast(alpha * scale, pixels.dtype)], axis=2)
    logger.debug("[icc_transform] %s -> %s", image.interpretation.value, interpretation.value)
    return image.derive(pixels, interpretation=interpretation, fields=fields)


# ---------- Filters ----------
def _filter_planes(pixels: np.ndarray, fn) -> np.ndarray:
    src = pixels if pixels.dtype in (np.uint8, np.uint16, np.int16, np.float32, np.float64) \
        else pixels.astype(np.float64)
    planes = []
    for start in range(0, src.shape[2], 4):
        chunk = fn(np.ascontiguousarray(src[:, :, start:start + 4]))
        planes.append(chunk if chunk.ndim == 3 else chunk[:, :, np.newaxis])
    return clip_cast(np.concatenate(planes, axis=2), pixels.dtype)


@primitive("gaussian_blur")
def gaussian_blur(image: NativeImage, sigma: float) -> NativeImage:
    if sigma <= 0:
        raise PrimitiveError("gaussian_blur: sigma must be positive")
    out = _filter_planes(image.pixels, lambda p: cv2.GaussianBlur(p, (0, 0), sigmaX=sigma))
    return image.derive(out)


@primitive("sharpen")
def sharpen(image: NativeImage, sigma: float = 0.5, x1: float = 2.0, m2: float = 3.0,
            m1: float = 0.0, y2: float = 10.0, y3: float = 20.0) -> NativeImage:
    """
    Unsharp-mask the lightness channel only.

    Differences below x1 are scaled by m1 (flat areas), others by m2
    (jaggy areas), and the result is limited to darkening by y2 and
    brightening by y3.
    """
    if sigma <= 0:
        raise PrimitiveError("sharpen: sigma must be positive")
    rgb, alpha = to_srgb_float(image)
    lab = cv2.cvtColor(rgb, cv2.COLOR_RGB2Lab)
    lightness = lab[:, :, 0]
    diff = lightness - cv2.GaussianBlur(lightness, (0, 0), sigmaX=sigma)
    boost = np.where(np.abs(diff) <= x1, diff * m1, diff * m2)
    lab[:, :, 0] = np.clip(lightness + np.clip(boost, -y2, y3), 0.0, 100.0)
    target = image.interpretation
    if target == Interpretation.RGB:
        target = Interpretation.SRGB
    out = from_srgb_float(cv2.cvtColor(lab, cv2.COLOR_Lab2RGB), alpha, target)
    return image.derive(out, interpretation=target)

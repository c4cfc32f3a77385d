"""
Compositing Primitives

- composite: Porter-Duff operators and separable blend modes
- insert / flatten / draw_rect
- label: text rendered with Pillow and blended onto the image
"""

from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from ..config import Align, BlendMode
from ..errors import PrimitiveError
from ..native import NativeImage
from .helpers import clip_cast, ink, primitive

# (Fa, Fb) as functions of (alpha_src, alpha_dst)
_PORTER_DUFF: Dict[BlendMode, Callable] = {
    BlendMode.CLEAR: lambda a_s, a_b: (0.0, 0.0),
    BlendMode.SOURCE: lambda a_s, a_b: (1.0, 0.0),
    BlendMode.OVER: lambda a_s, a_b: (1.0, 1.0 - a_s),
    BlendMode.IN: lambda a_s, a_b: (a_b, 0.0),
    BlendMode.OUT: lambda a_s, a_b: (1.0 - a_b, 0.0),
    BlendMode.ATOP: lambda a_s, a_b: (a_b, 1.0 - a_s),
    BlendMode.DEST: lambda a_s, a_b: (0.0, 1.0),
    BlendMode.DEST_OVER: lambda a_s, a_b: (1.0 - a_b, 1.0),
    BlendMode.DEST_IN: lambda a_s, a_b: (0.0, a_s),
    BlendMode.DEST_OUT: lambda a_s, a_b: (0.0, 1.0 - a_s),
    BlendMode.DEST_ATOP: lambda a_s, a_b: (1.0 - a_b, a_s),
    BlendMode.XOR: lambda a_s, a_b: (1.0 - a_b, 1.0 - a_s),
    BlendMode.ADD: lambda a_s, a_b: (1.0, 1.0),
    BlendMode.SATURATE: lambda a_s, a_b: (
        np.minimum(1.0, np.divide(1.0 - a_b, a_s, out=np.ones_like(a_s), where=a_s > 0)), 1.0),
}


def _screen(cb, cs):
    return cb + cs - cb * cs


def _hard_light(cb, cs):
    return np.where(cs <= 0.5, cb * 2 * cs, _screen(cb, 2 * cs - 1))


def _soft_light(cb, cs):
    d = np.where(cb <= 0.25, ((16 * cb - 12) * cb + 4) * cb, np.sqrt(cb))
    return np.where(cs <= 0.5, cb - (1 - 2 * cs) * cb * (1 - cb), cb + (2 * cs - 1) * (d - cb))


def _dodge(cb, cs):
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.minimum(1.0, cb / (1.0 - cs))
    return np.where(cb == 0, 0.0, np.where(cs >= 1.0, 1.0, out))


def _burn(cb, cs):
    with np.errstate(divide="ignore", invalid="ignore"):
        out = 1.0 - np.minimum(1.0, (1.0 - cb) / cs)
    return np.where(cb >= 1.0, 1.0, np.where(cs <= 0, 0.0, out))


_SEPARABLE: Dict[BlendMode, Callable] = {
    BlendMode.MULTIPLY: lambda cb, cs: cb * cs,
    BlendMode.SCREEN: _screen,
    BlendMode.OVERLAY: lambda cb, cs: _hard_light(cs, cb),
    BlendMode.DARKEN: np.minimum,
    BlendMode.LIGHTEN: np.maximum,
    BlendMode.COLOUR_DODGE: _dodge,
    BlendMode.COLOUR_BURN: _burn,
    BlendMode.HARD_LIGHT: _hard_light,
    BlendMode.SOFT_LIGHT: _soft_light,
    BlendMode.DIFFERENCE: lambda cb, cs: np.abs(cb - cs),
    BlendMode.EXCLUSION: lambda cb, cs: cb + cs - 2 * cb * cs,
}


def _with_alpha(image: NativeImage, colour_bands: int) -> np.ndarray:
    """Normalised (0..1) float pixels with exactly colour_bands + alpha."""
    scale = image.max_alpha
    pixels = image.pixels.astype(np.float32) / scale
    if image.has_alpha:
        colour, alpha = pixels[:, :, :-1], pixels[:, :, -1:]
    else:
        colour, alpha = pixels, np.ones(pixels.shape[:2] + (1,), np.float32)
    if colour.shape[2] != colour_bands:
        if colour.shape[2] == 1:
            colour = np.repeat(colour, colour_bands, axis=2)
        else:
            raise PrimitiveError(f"composite: {colour.shape[2]} colour bands, expected {colour_bands}")
    return np.concatenate([colour, alpha], axis=2)


def _blend(dst: np.ndarray, src: np.ndarray, mode: BlendMode) -> np.ndarray:
    cb, a_b = dst[:, :, :-1], dst[:, :, -1:]
    cs, a_s = src[:, :, :-1], src[:, :, -1:]
    if mode in _PORTER_DUFF:
        fa, fb = _PORTER_DUFF[mode](a_s, a_b)
        a_o = np.minimum(1.0, a_s * fa + a_b * fb)
        premul = cs * a_s * fa + cb * a_b * fb
    else:
        b = _SEPARABLE[mode](cb, cs)
        a_o = a_s + a_b * (1.0 - a_s)
        premul = cs * a_s * (1.0 - a_b) + cb * a_b * (1.0 - a_s) + a_s * a_b * b
    with np.errstate(divide="ignore", invalid="ignore"):
        colour = np.where(a_o > 0, premul / a_o, 0.0)
    return np.concatenate([np.clip(colour, 0.0, 1.0), a_o], axis=2)


@primitive("composite")
def composite(base: NativeImage, overlays: Sequence[Tuple[NativeImage, BlendMode, int, int]]) -> NativeImage:
    """
    Blend overlays onto base in order. The result always carries alpha.

    Args:
        base: Bottom image
        overlays: (image, mode, x, y) tuples, x/y relative to base
    """
    colour_bands = base.bands - (1 if base.has_alpha else 0)
    scale = base.max_alpha
    out = _with_alpha(base, colour_bands)
    for overlay, mode, x, y in overlays:
        src = _with_alpha(overlay, colour_bands)
        top, left = max(0, y), max(0, x)
        bottom = min(out.shape[0], y + src.shape[0])
        right = min(out.shape[1], x + src.shape[1])
        if bottom <= top or right <= left:
            continue
        region = src[top - y:bottom - y, left - x:right - x]
        out[top:bottom, left:right] = _blend(out[top:bottom, left:right], region, BlendMode(mode))
    return base.derive(clip_cast(out * scale, base.pixels.dtype))


@primitive("insert")
def insert(base: NativeImage, sub: NativeImage, x: int, y: int, expand: bool = False,
           background: Optional[Sequence[float]] = None) -> NativeImage:
    pixels = base.pixels
    bands = pixels.shape[2]
    sub_px = sub.pixels
    if sub_px.shape[2] != bands:
        if sub_px.shape[2] == 1:
            sub_px = np.repeat(sub_px, bands, axis=2)
        else:
            raise PrimitiveError(f"insert: sub image has {sub_px.shape[2]} bands, base has {bands}")
    sub_px = clip_cast(sub_px, pixels.dtype)
    if expand:
        left, top = min(0, x), min(0, y)
        right = max(pixels.shape[1], x + sub_px.shape[1])
        bottom = max(pixels.shape[0], y + sub_px.shape[0])
        fill = clip_cast(ink(background or (0, 0, 0, 0), bands), pixels.dtype)
        out = np.empty((bottom - top, right - left, bands), pixels.dtype)
        out[:] = fill
        out[-top:-top + pixels.shape[0], -left:-left + pixels.shape[1]] = pixels
        x, y = x - left, y - top
    else:
        out = pixels.copy()
    t, l = max(0, y), max(0, x)
    b = min(out.shape[0], y + sub_px.shape[0])
    r = min(out.shape[1], x + sub_px.shape[1])
    if b > t and r > l:
        out[t:b, l:r] = sub_px[t - y:b - y, l - x:r - x]
    return base.derive(out)


@primitive("flatten")
def flatten(image: NativeImage, background: Sequence[float] = (0, 0, 0)) -> NativeImage:
    """Blend alpha against a solid background and drop the alpha band."""
    if not image.has_alpha:
        return image.derive()
    scale = image.max_alpha
    pixels = image.pixels.astype(np.float32)
    colour, alpha = pixels[:, :, :-1], pixels[:, :, -1:] / scale
    bg = ink(background, colour.shape[2])
    if image.pixels.dtype == np.uint16 or scale > 255:
        bg = bg * 257.0
    out = colour * alpha + bg * (1.0 - alpha)
    return image.derive(clip_cast(out, image.pixels.dtype))


@primitive("draw_rect")
def draw_rect(image: NativeImage, colour: Sequence[float], left: int, top: int,
              width: int, height: int, fill: bool = True) -> NativeImage:
    out = image.pixels.copy()
    value = clip_cast(ink(colour, out.shape[2]), out.dtype)
    t, l = max(0, top), max(0, left)
    b, r = min(out.shape[0], top + height), min(out.shape[1], left + width)
    if b <= t or r <= l:
        return image.derive(out)
    if fill:
        out[t:b, l:r] = value
    else:
        out[t, l:r] = value
        out[b - 1, l:r] = value
        out[t:b, l] = value
        out[t:b, r - 1] = value
    return image.derive(out)


def _load_font(font: str, size: int):
    if font and font.lower().endswith((".ttf", ".otf")):
        return ImageFont.truetype(font, size)
    return ImageFont.load_default(size=size)


@primitive("label")
def label(image: NativeImage, text: str, font: str = "", width: int = 0, height: int = 24,
          offset_x: int = 0, offset_y: int = 0, opacity: float = 1.0,
          colour: Sequence[float] = (255, 255, 255), alignment: Align = Align.LOW) -> NativeImage:
    """Render text into a width-wide box at (offset_x, offset_y) and blend it on."""
    if not text:
        raise PrimitiveError("label: empty text")
    if height <= 0:
        raise PrimitiveError("label: text height must be positive")
    font_obj = _load_font(font, height)
    left, top, right, bottom = ImageDraw.Draw(Image.new("L", (1, 1))).textbbox((0, 0), text, font=font_obj)
    mask_img = Image.new("L", (max(1, right - left), max(1, bottom - top)), 0)
    ImageDraw.Draw(mask_img).text((-left, -top), text, fill=255, font=font_obj)
    box_w = width if width > 0 else mask_img.width
    if mask_img.width > box_w:
        ratio = box_w / mask_img.width
        mask_img = mask_img.resize((box_w, max(1, int(mask_img.height * ratio))), Image.LANCZOS)
    pad = {Align.LOW: 0, Align.CENTRE: (box_w - mask_img.width) // 2,
           Align.HIGH: box_w - mask_img.width}[Align(alignment)]

    mask = np.asarray(mask_img, dtype=np.float32)[:, :, np.newaxis] / 255.0 * float(opacity)
    out = image.pixels.astype(np.float32)
    x, y = offset_x + pad, offset_y
    t, l = max(0, y), max(0, x)
    b, r = min(out.shape[0], y + mask.shape[0]), min(out.shape[1], x + mask.shape[1])
    if b > t and r > l:
        colour_bands = image.bands - (1 if image.has_alpha else 0)
        value = ink(colour, colour_bands, np.float32)
        if image.max_alpha > 255:
            value = value * 257.0
        m = mask[t - y:b - y, l - x:r - x]
        region = out[t:b, l:r, :colour_bands]
        out[t:b, l:r, :colour_bands] = region * (1.0 - m) + value * m
        if image.has_alpha:
            a = out[t:b, l:r, -1:]
            out[t:b, l:r, -1:] = np.maximum(a, m * image.max_alpha)
    return image.derive(clip_cast(out, image.pixels.dtype))

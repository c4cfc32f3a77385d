"""
Resample Primitives

Scaling and geometric warps built on OpenCV:
- resize: independent horizontal/vertical scale with a chosen kernel
- thumbnail: fit or fill a box, honouring the up/down/force size policy
- smart_crop: pick the interesting region of an image
- similarity: scale + rotate + translate by arbitrary amounts
- mapim: resample through a coordinate index image
"""

import math
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from ..config import Interesting, Kernel, Size
from ..errors import PrimitiveError
from ..native import NativeImage
from .helpers import clip_cast, ink, primitive, split_pages

# OpenCV only resamples these dtypes directly
_CV_DTYPES = {np.dtype("uint8"), np.dtype("uint16"), np.dtype("int16"),
              np.dtype("float32"), np.dtype("float64")}

_INTERPOLATION = {
    Kernel.NEAREST: cv2.INTER_NEAREST,
    Kernel.LINEAR: cv2.INTER_LINEAR,
    Kernel.CUBIC: cv2.INTER_CUBIC,
    Kernel.MITCHELL: cv2.INTER_CUBIC,
    Kernel.LANCZOS2: cv2.INTER_LANCZOS4,
    Kernel.LANCZOS3: cv2.INTER_LANCZOS4,
}


def _cv_resize(pixels: np.ndarray, width: int, height: int, interpolation: int) -> np.ndarray:
    """cv2.resize that keeps the band axis and handles any dtype."""
    src = pixels if pixels.dtype in _CV_DTYPES else pixels.astype(np.float64)
    bands = src.shape[2]
    if bands <= 4:
        out = cv2.resize(np.ascontiguousarray(src), (width, height), interpolation=interpolation)
    else:
        out = np.stack([
            cv2.resize(np.ascontiguousarray(src[:, :, b]), (width, height), interpolation=interpolation)
            for b in range(bands)
        ], axis=2)
    if out.ndim == 2:
        out = out[:, :, np.newaxis]
    return clip_cast(out, pixels.dtype)


@primitive("resize")
def resize(image: NativeImage, hscale: float, vscale: float = -1, kernel: Kernel = Kernel.AUTO,
           height: Optional[int] = None) -> NativeImage:
    """
    Resize by scale factors.

    Args:
        image: Source image
        hscale: Horizontal scale factor
        vscale: Vertical scale factor, -1 to reuse hscale
        kernel: Resampling kernel
        height: Exact output height, overriding the vertical rounding

    Returns:
        Resized image
    """
    if vscale == -1:
        vscale = hscale
    if hscale <= 0 or vscale <= 0:
        raise PrimitiveError(f"resize: scale must be positive, got {hscale}, {vscale}")
    width = max(1, int(round(image.width * hscale)))
    height = max(1, int(height) if height is not None else int(round(image.height * vscale)))
    kernel = Kernel(kernel)
    if kernel == Kernel.AUTO:
        interpolation = cv2.INTER_AREA if hscale < 1 and vscale < 1 else cv2.INTER_LANCZOS4
    else:
        interpolation = _INTERPOLATION[kernel]
    out = _cv_resize(image.pixels, width, height, interpolation)
    return image.derive(out, xres=image.xres * hscale, yres=image.yres * vscale)


# ---------- Smart crop ----------
def _entropy(region: np.ndarray) -> float:
    grey = region.mean(axis=2) if region.shape[2] > 1 else region[:, :, 0]
    hist, _ = np.histogram(grey, bins=256)
    total = hist.sum()
    if total == 0:
        return 0.0
    p = hist[hist > 0] / total
    return float(-(p * np.log2(p)).sum())


def _entropy_origin(pixels: np.ndarray, width: int, height: int) -> Tuple[int, int]:
    """Trim whichever edge strip is least busy until the box fits."""
    top, left = 0, 0
    bottom, right = pixels.shape[0], pixels.shape[1]
    while right - left > width:
        step = min(right - left - width, max(1, (right - left) // 20))
        if _entropy(pixels[top:bottom, left:left + step]) < _entropy(pixels[top:bottom, right - step:right]):
            left += step
        else:
            right -= step
    while bottom - top > height:
        step = min(bottom - top - height, max(1, (bottom - top) // 20))
        if _entropy(pixels[top:top + step, left:right]) < _entropy(pixels[bottom - step:bottom, left:right]):
            top += step
        else:
            bottom -= step
    return left, top


def _attention_origin(pixels: np.ndarray, width: int, height: int) -> Tuple[int, int]:
    """Centre the box on the peak of an edge + saturation saliency map."""
    src = clip_cast(pixels[:, :, :3] if pixels.shape[2] >= 3 else pixels[:, :, :1], np.uint8)
    if src.shape[2] == 3:
        grey = cv2.cvtColor(src, cv2.COLOR_RGB2GRAY)
        saturation = cv2.cvtColor(src, cv2.COLOR_RGB2HSV)[:, :, 1].astype(np.float32)
    else:
        grey = src[:, :, 0]
        saturation = np.zeros(grey.shape, np.float32)
    edges = np.hypot(cv2.Sobel(grey, cv2.CV_32F, 1, 0), cv2.Sobel(grey, cv2.CV_32F, 0, 1))
    score = cv2.GaussianBlur(edges + saturation, (0, 0), sigmaX=max(1.0, min(width, height) / 8))
    cy, cx = np.unravel_index(int(np.argmax(score)), score.shape)
    left = int(np.clip(cx - width // 2, 0, pixels.shape[1] - width))
    top = int(np.clip(cy - height // 2, 0, pixels.shape[0] - height))
    return left, top


def crop_origin(pixels: np.ndarray, width: int, height: int, interesting: Interesting) -> Tuple[int, int]:
    in_h, in_w = pixels.shape[:2]
    if interesting == Interesting.LOW:
        return 0, 0
    if interesting == Interesting.HIGH:
        return in_w - width, in_h - height
    if interesting == Interesting.ENTROPY:
        return _entropy_origin(pixels, width, height)
    if interesting == Interesting.ATTENTION:
        return _attention_origin(pixels, width, height)
    return (in_w - width) // 2, (in_h - height) // 2


@primitive("smart_crop")
def smart_crop(image: NativeImage, width: int, height: int,
               interesting: Interesting = Interesting.CENTRE) -> NativeImage:
    if width <= 0 or height <= 0:
        raise PrimitiveError(f"smart_crop: bad size {width}x{height}")
    width, height = min(width, image.width), min(height, image.height)
    left, top = crop_origin(image.pixels, width, height, Interesting(interesting))
    return image.derive(image.pixels[top:top + height, left:left + width])


# ---------- Thumbnail ----------
def thumbnail_scales(in_w: int, in_h: int, width: int, height: int,
                     crop: Interesting, size: Size) -> Tuple[float, float]:
    """Horizontal and vertical scale a thumbnail of width x height needs."""
    hscale, vscale = width / in_w, height / in_h
    if size == Size.FORCE:
        return hscale, vscale
    if crop not in (Interesting.NONE, Interesting.ALL):
        scale = max(hscale, vscale)
    else:
        scale = min(hscale, vscale)
    if size == Size.UP:
        scale = max(scale, 1.0)
    elif size == Size.DOWN:
        scale = min(scale, 1.0)
    return scale, scale


@primitive("thumbnail")
def thumbnail(image: NativeImage, width: int, height: int,
              crop: Interesting = Interesting.NONE, size: Size = Size.BOTH) -> NativeImage:
    """
    Shrink or grow to a box, page by page for multi-page images.

    With a crop strategy other than NONE/ALL the box is filled and the
    overflow cut away; otherwise the image is fitted inside the box.
    """
    if width <= 0 or height <= 0:
        raise PrimitiveError(f"thumbnail: bad size {width}x{height}")
    crop, size = Interesting(crop), Size(size)
    page_height = image.page_height
    n_pages = image.height // page_height
    hscale, vscale = thumbnail_scales(image.width, page_height, width, height, crop, size)
    out_w = max(1, int(round(image.width * hscale)))
    out_ph = max(1, int(round(page_height * vscale)))
    interpolation = cv2.INTER_AREA if hscale < 1 and vscale < 1 else cv2.INTER_CUBIC
    pages = [_cv_resize(p, out_w, out_ph, interpolation) for p in split_pages(image.pixels, page_height)]
    if crop not in (Interesting.NONE, Interesting.ALL) and size != Size.FORCE:
        cw, ch = min(width, out_w), min(height, out_ph)
        left, top = crop_origin(pages[0], cw, ch, crop)
        pages = [p[top:top + ch, left:left + cw] for p in pages]
        out_ph = ch
    fields = dict(image.fields)
    if n_pages > 1:
        fields["page-height"] = out_ph
    return image.derive(np.concatenate(pages, axis=0), fields=fields,
                        xres=image.xres * hscale, yres=image.yres * vscale)


# ---------- Warps ----------
@primitive("similarity")
def similarity(image: NativeImage, scale: float = 1.0, angle: float = 0.0,
               background: Optional[Sequence[float]] = None,
               idx: float = 0.0, idy: float = 0.0, odx: float = 0.0, ody: float = 0.0) -> NativeImage:
    """Scale and rotate (degrees, clockwise) into a box covering the result."""
    if scale <= 0:
        raise PrimitiveError("similarity: scale must be positive")
    rad = math.radians(angle)
    a, b = scale * math.cos(rad), -scale * math.sin(rad)
    c, d = scale * math.sin(rad), scale * math.cos(rad)
    w, h = image.width, image.height
    corners = np.array([[0, 0], [w, 0], [0, h], [w, h]], dtype=np.float64) + [idx, idy]
    xs = a * corners[:, 0] + b * corners[:, 1]
    ys = c * corners[:, 0] + d * corners[:, 1]
    out_w = max(1, int(math.ceil(xs.max() - xs.min())))
    out_h = max(1, int(math.ceil(ys.max() - ys.min())))
    tx = -xs.min() + a * idx + b * idy + odx
    ty = -ys.min() + c * idx + d * idy + ody
    matrix = np.array([[a, b, tx], [c, d, ty]], dtype=np.float64)
    pixels = image.pixels
    src = pixels if pixels.dtype in _CV_DTYPES else pixels.astype(np.float64)
    fill = ink(background or (0, 0, 0, 0), src.shape[2])
    planes = []
    # warpAffine handles at most four channels per call
    for start in range(0, src.shape[2], 4):
        chunk = np.ascontiguousarray(src[:, :, start:start + 4])
        warped = cv2.warpAffine(
            chunk, matrix, (out_w, out_h), flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=tuple(float(v) for v in fill[start:start + 4]),
        )
        planes.append(warped if warped.ndim == 3 else warped[:, :, np.newaxis])
    return image.derive(clip_cast(np.concatenate(planes, axis=2), pixels.dtype))


@primitive("mapim")
def mapim(image: NativeImage, index: NativeImage) -> NativeImage:
    """Output pixel (x, y) takes the input at the coordinates stored in index."""
    if index.bands < 2:
        raise PrimitiveError("mapim: index image needs two bands")
    map_x = np.ascontiguousarray(index.pixels[:, :, 0], dtype=np.float32)
    map_y = np.ascontiguousarray(index.pixels[:, :, 1], dtype=np.float32)
    pixels = image.pixels
    src = pixels if pixels.dtype in _CV_DTYPES else pixels.astype(np.float64)
    planes = [
        cv2.remap(np.ascontiguousarray(src[:, :, b]), map_x, map_y, cv2.INTER_LINEAR,
                  borderMode=cv2.BORDER_CONSTANT, borderValue=0)
        for b in range(src.shape[2])
    ]
    return image.derive(clip_cast(np.stack(planes, axis=2), pixels.dtype))

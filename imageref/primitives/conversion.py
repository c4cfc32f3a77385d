"""
Conversion Primitives

Geometry, band and header operations:
- copy / set_fields / remove_fields: header-only changes
- cast: band format conversion
- extract_area / embed, with per-page variants for stacked frames
- flip / rotate / autorot / grid / zoom / replicate
- join / array_join / band operations / alpha premultiplication
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..config import Angle, BandFormat, Direction, ExtendStrategy
from ..errors import PrimitiveError
from ..native import NativeImage
from .helpers import clip_cast, format_max, guess_interpretation, ink, primitive, split_pages


# ---------- Header ----------
@primitive("copy")
def copy(image: NativeImage) -> NativeImage:
    return image.derive()


@primitive("set_fields")
def set_fields(image: NativeImage, updates: Dict[str, Any]) -> NativeImage:
    fields = dict(image.fields)
    fields.update(updates)
    return image.derive(fields=fields)


@primitive("remove_fields")
def remove_fields(image: NativeImage, should_remove: Callable[[str], bool]) -> NativeImage:
    fields = {k: v for k, v in image.fields.items() if not should_remove(k)}
    return image.derive(fields=fields)


# ---------- Format ----------
@primitive("cast")
def cast(image: NativeImage, fmt: BandFormat) -> NativeImage:
    fmt = BandFormat(fmt)
    if fmt == BandFormat.NOTSET:
        raise PrimitiveError("cast: target band format not set")
    return image.derive(clip_cast(image.pixels, fmt.dtype))


# ---------- Areas ----------
def _check_area(image: NativeImage, left: int, top: int, width: int, height: int, page_height: int):
    if width <= 0 or height <= 0:
        raise PrimitiveError(f"extract_area: bad size {width}x{height}")
    if left < 0 or top < 0 or left + width > image.width or top + height > page_height:
        raise PrimitiveError(
            f"extract_area: area {left},{top} {width}x{height} outside "
            f"{image.width}x{page_height}"
        )


@primitive("extract_area")
def extract_area(image: NativeImage, left: int, top: int, width: int, height: int) -> NativeImage:
    _check_area(image, left, top, width, height, image.height)
    return image.derive(image.pixels[top:top + height, left:left + width])


@primitive("extract_area_multi_page")
def extract_area_multi_page(image: NativeImage, left: int, top: int, width: int, height: int) -> NativeImage:
    """Crop every page to the same area and restack them."""
    page_height = image.page_height
    _check_area(image, left, top, width, height, page_height)
    pages = [p[top:top + height, left:left + width] for p in split_pages(image.pixels, page_height)]
    fields = dict(image.fields)
    fields["page-height"] = height
    return image.derive(np.concatenate(pages, axis=0), fields=fields)


def _extend_index(n_out: int, offset: int, n_in: int, extend: ExtendStrategy):
    idx = np.arange(n_out) - offset
    if extend == ExtendStrategy.COPY:
        return np.clip(idx, 0, n_in - 1), None
    if extend == ExtendStrategy.REPEAT:
        return np.mod(idx, n_in), None
    if extend == ExtendStrategy.MIRROR:
        period = 2 * n_in
        m = np.mod(idx, period)
        return np.where(m < n_in, m, period - 1 - m), None
    inside = (idx >= 0) & (idx < n_in)
    return np.clip(idx, 0, n_in - 1), inside


def _embed_pixels(pixels, left, top, width, height, extend, background, fmt):
    if width <= 0 or height <= 0:
        raise PrimitiveError(f"embed: bad size {width}x{height}")
    in_h, in_w = pixels.shape[:2]
    ys, y_inside = _extend_index(height, top, in_h, extend)
    xs, x_inside = _extend_index(width, left, in_w, extend)
    out = pixels[ys][:, xs]
    if y_inside is None:
        return np.ascontiguousarray(out)
    out = out.copy()
    if extend == ExtendStrategy.WHITE:
        fill = np.full(pixels.shape[2], format_max(fmt))
    elif extend == ExtendStrategy.BACKGROUND:
        fill = ink(background or (0, 0, 0, 255), pixels.shape[2])
    else:
        fill = np.zeros(pixels.shape[2])
    outside = ~(y_inside[:, np.newaxis] & x_inside[np.newaxis, :])
    out[outside] = clip_cast(fill, out.dtype)
    return out


@primitive("embed")
def embed(image: NativeImage, left: int, top: int, width: int, height: int,
          extend: ExtendStrategy = ExtendStrategy.BLACK,
          background: Optional[Sequence[float]] = None) -> NativeImage:
    out = _embed_pixels(image.pixels, left, top, width, height,
                        ExtendStrategy(extend), background, image.band_format)
    return image.derive(out)


@primitive("embed_multi_page")
def embed_multi_page(image: NativeImage, left: int, top: int, width: int, height: int,
                     extend: ExtendStrategy = ExtendStrategy.BLACK,
                     background: Optional[Sequence[float]] = None) -> NativeImage:
    """Embed each page separately so frame boundaries stay aligned."""
    extend = ExtendStrategy(extend)
    pages = [
        _embed_pixels(p, left, top, width, height, extend, background, image.band_format)
        for p in split_pages(image.pixels, image.page_height)
    ]
    fields = dict(image.fields)
    fields["page-height"] = height
    return image.derive(np.concatenate(pages, axis=0), fields=fields)


# ---------- Orientation ----------
@primitive("flip")
def flip(image: NativeImage, direction: Direction) -> NativeImage:
    if Direction(direction) == Direction.HORIZONTAL:
        return image.derive(image.pixels[:, ::-1])
    return image.derive(image.pixels[::-1])


_ROT90_TURNS = {Angle.D0: 0, Angle.D90: -1, Angle.D180: 2, Angle.D270: 1}


@primitive("rotate")
def rotate(image: NativeImage, angle: Angle) -> NativeImage:
    turns = _ROT90_TURNS[Angle(angle)]
    pixels = np.rot90(image.pixels, k=turns) if turns else image.pixels
    header = {}
    if turns in (1, -1):
        header = {"xres": image.yres, "yres": image.xres}
    return image.derive(pixels, **header)


_EXIF_TRANSFORMS = {
    2: lambda p: p[:, ::-1],
    3: lambda p: np.rot90(p, 2),
    4: lambda p: p[::-1],
    5: lambda p: p.transpose(1, 0, 2),
    6: lambda p: np.rot90(p, -1),
    7: lambda p: np.rot90(p, 2).transpose(1, 0, 2),
    8: lambda p: np.rot90(p, 1),
}


@primitive("autorot")
def autorot(image: NativeImage) -> NativeImage:
    """Apply the orientation field to the pixels and reset it to upright."""
    transform = _EXIF_TRANSFORMS.get(image.orientation)
    pixels = transform(image.pixels) if transform else image.pixels
    fields = dict(image.fields)
    fields["orientation"] = 1
    return image.derive(pixels, fields=fields)


@primitive("grid")
def grid(image: NativeImage, tile_height: int, across: int, down: int) -> NativeImage:
    """Lay the tiles of a tall single-column strip out across*down."""
    if tile_height <= 0 or image.height % tile_height != 0:
        raise PrimitiveError(f"grid: tile height {tile_height} does not divide {image.height}")
    tiles = list(split_pages(image.pixels, tile_height))
    if len(tiles) != across * down:
        raise PrimitiveError(f"grid: {len(tiles)} tiles cannot fill {across}x{down}")
    rows = [np.concatenate(tiles[r * across:(r + 1) * across], axis=1) for r in range(down)]
    return image.derive(np.concatenate(rows, axis=0))


@primitive("zoom")
def zoom(image: NativeImage, x_factor: int, y_factor: int) -> NativeImage:
    if x_factor < 1 or y_factor < 1:
        raise PrimitiveError("zoom: factors must be >= 1")
    pixels = np.repeat(np.repeat(image.pixels, y_factor, axis=0), x_factor, axis=1)
    return image.derive(pixels)


@primitive("replicate")
def replicate(image: NativeImage, across: int, down: int) -> NativeImage:
    if across < 1 or down < 1:
        raise PrimitiveError("replicate: counts must be >= 1")
    return image.derive(np.tile(image.pixels, (down, across, 1)))


# ---------- Joining ----------
def _match_bands(a: np.ndarray, b: np.ndarray):
    if a.shape[2] == b.shape[2]:
        return a, b
    if a.shape[2] == 1:
        return np.repeat(a, b.shape[2], axis=2), b
    if b.shape[2] == 1:
        return a, np.repeat(b, a.shape[2], axis=2)
    raise PrimitiveError(f"band counts differ: {a.shape[2]} and {b.shape[2]}")


@primitive("join")
def join(image: NativeImage, other: NativeImage, direction: Direction) -> NativeImage:
    a, b = _match_bands(image.pixels, other.pixels)
    dtype = np.result_type(a.dtype, b.dtype)
    if Direction(direction) == Direction.HORIZONTAL:
        h = min(a.shape[0], b.shape[0])
        out = np.concatenate([a[:h].astype(dtype), b[:h].astype(dtype)], axis=1)
    else:
        w = min(a.shape[1], b.shape[1])
        out = np.concatenate([a[:, :w].astype(dtype), b[:, :w].astype(dtype)], axis=0)
    return image.derive(out)


@primitive("array_join")
def array_join(images: Sequence[NativeImage], across: int) -> NativeImage:
    """Place images row by row into equal cells, wrapping after `across`."""
    if not images or across < 1:
        raise PrimitiveError("array_join: need at least one image and across >= 1")
    arrays = [im.pixels for im in images]
    bands = max(a.shape[2] for a in arrays)
    dtype = np.result_type(*[a.dtype for a in arrays])
    cell_h = max(a.shape[0] for a in arrays)
    cell_w = max(a.shape[1] for a in arrays)
    down = (len(arrays) + across - 1) // across
    out = np.zeros((cell_h * down, cell_w * across, bands), dtype=dtype)
    for i, a in enumerate(arrays):
        if a.shape[2] != bands:
            a, _ = _match_bands(a, out)
        y, x = (i // across) * cell_h, (i % across) * cell_w
        out[y:y + a.shape[0], x:x + a.shape[1]] = a
    return images[0].derive(out)


# ---------- Bands ----------
@primitive("extract_band")
def extract_band(image: NativeImage, band: int, num: int = 1) -> NativeImage:
    if band < 0 or num < 1 or band + num > image.bands:
        raise PrimitiveError(f"extract_band: bands {band}..{band + num - 1} outside {image.bands}")
    pixels = image.pixels[:, :, band:band + num]
    interpretation = guess_interpretation(num, image.band_format, image.interpretation)
    return image.derive(pixels, interpretation=interpretation)


@primitive("band_join")
def band_join(images: Sequence[NativeImage]) -> NativeImage:
    arrays = [im.pixels for im in images]
    if len({a.shape[:2] for a in arrays}) != 1:
        raise PrimitiveError("band_join: images differ in size")
    dtype = np.result_type(*[a.dtype for a in arrays])
    out = np.concatenate([a.astype(dtype, copy=False) for a in arrays], axis=2)
    interpretation = guess_interpretation(out.shape[2], BandFormat.from_dtype(dtype),
                                          images[0].interpretation)
    return images[0].derive(out, interpretation=interpretation)


@primitive("band_join_const")
def band_join_const(image: NativeImage, constants: Iterable[float]) -> NativeImage:
    constants = list(constants)
    if not constants:
        raise PrimitiveError("band_join_const: no constants")
    h, w = image.height, image.width
    extra = np.broadcast_to(np.asarray(constants), (h, w, len(constants)))
    out = np.concatenate([image.pixels, clip_cast(extra, image.pixels.dtype)], axis=2)
    return image.derive(out)


@primitive("add_alpha")
def add_alpha(image: NativeImage) -> NativeImage:
    return band_join_const(image, [image.max_alpha])


@primitive("premultiply")
def premultiply(image: NativeImage) -> NativeImage:
    """Multiply colour bands by alpha; the result is always float."""
    pixels = image.pixels.astype(np.float32)
    alpha = pixels[:, :, -1:] / image.max_alpha
    out = np.concatenate([pixels[:, :, :-1] * alpha, pixels[:, :, -1:]], axis=2)
    return image.derive(out)


@primitive("unpremultiply")
def unpremultiply(image: NativeImage, max_alpha: float = 255.0) -> NativeImage:
    pixels = image.pixels.astype(np.float32)
    alpha = pixels[:, :, -1:] / max_alpha
    with np.errstate(divide="ignore", invalid="ignore"):
        colour = np.where(alpha > 0, pixels[:, :, :-1] / alpha, 0.0)
    out = np.concatenate([colour.astype(np.float32), pixels[:, :, -1:]], axis=2)
    return image.derive(out)


def stack_pages(frames: List[np.ndarray]) -> np.ndarray:
    if len({f.shape for f in frames}) != 1:
        raise PrimitiveError("pages differ in size or bands")
    return np.concatenate(frames, axis=0)

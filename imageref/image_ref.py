"""
ImageRef - Managed Image Handle

ImageRef owns exactly one native image at a time. Every mutation runs one
or more operation primitives against the current native image and then
swaps the result in while releasing the predecessor; on failure the
handle is left exactly as it was.

Lifecycle:
- NativeSlot holds the native image, the retained source buffer and the
  handle lock, and is the only place native images are released
- close() releases the slot explicitly; a weakref finalizer does the same
  when the handle becomes unreachable
- A closed handle raises ClosedImageError on any further use
"""

import dataclasses
import io
import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

from PIL import Image

from . import primitives
from .codecs import decoder, raw
from .codecs.factory import EncoderFactory
from .codecs.params import (
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
)
from .codecs.translation import translate
from .config import (
    PRESERVED_FIELDS,
    Angle,
    BandFormat,
    BlendMode,
    Coding,
    Direction,
    ExportDefaults,
    ExtendStrategy,
    ImageType,
    Interesting,
    Interpretation,
    Kernel,
    ProfileConfig,
    Size,
)
from .engine import startup_if_needed
from .errors import ClosedImageError, ParameterError
from .metadata import ImageMetadata
from .native import NativeImage
from .premultiplication import PremultiplicationTracker
from .types import Color, ColorRGBA, ImageComposite, LabelParams

logger = logging.getLogger("imageref")

# Metadata fields dropped by remove_metadata()
_METADATA_PREFIXES = ("exif-", "xmp-", "iptc-", "photoshop-", "png-comment-", "gif-comment")


class NativeSlot:
    """
    One live native image reference, released exactly once.

    The slot's lock is the handle lock: it guards reads of the current
    image, replace() and release().
    """

    __slots__ = ("lock", "_image", "_buf", "__weakref__")

    def __init__(self, image: NativeImage, buf: Optional[bytes] = None):
        self.lock = threading.RLock()
        self._image: Optional[NativeImage] = image
        self._buf = buf

    @property
    def closed(self) -> bool:
        return self._image is None

    @property
    def buf(self) -> Optional[bytes]:
        return self._buf

    def get(self) -> NativeImage:
        with self.lock:
            if self._image is None:
                raise ClosedImageError("image has been closed")
            return self._image

    def replace(self, image: NativeImage) -> None:
        """Install image and release the previous one; self-replace is a no-op."""
        with self.lock:
            if image is self._image:
                return
            if self._image is None:
                raise ClosedImageError("image has been closed")
            previous = self._image
            self._image = image
            previous.release()

    def release(self) -> bool:
        """
        Release the native image and drop the source buffer.

        Returns:
            True if this call released something, False if already released
        """
        with self.lock:
            if self._image is None:
                return False
            image, self._image, self._buf = self._image, None, None
            image.release()
            return True


def _finalize_slot(slot: NativeSlot, ident: int) -> None:
    # Runs from the garbage collector: never raise
    try:
        if slot.release():
            logger.debug("[ImageRef] finalized unreachable image #%d", ident)
    except Exception:
        logger.exception("[ImageRef] automatic release of image #%d failed", ident)


class _Mutation:
    """
    Private working copy of a handle's state during one mutation.

    Intermediate native images produced while the mutation runs belong to
    the draft and are released as soon as they are superseded, or all at
    once when the mutation is discarded.
    """

    def __init__(self, source: NativeImage, tracker: PremultiplicationTracker, fmt: ImageType):
        self.source = source
        self.image = source
        self.tracker = tracker
        self.format = fmt
        self.optimized_icc_profile: Optional[str] = None

    def apply(self, fn, *args, **kwargs) -> NativeImage:
        self.install(fn(self.image, *args, **kwargs))
        return self.image

    def install(self, image: NativeImage) -> None:
        if image is self.image:
            return
        if self.image is not self.source:
            self.image.release()
        self.image = image

    def premultiply(self) -> None:
        self.install(self.tracker.premultiply(self.image))

    def unpremultiply(self) -> None:
        self.install(self.tracker.unpremultiply(self.image))

    def discard(self) -> None:
        if self.image is not self.source:
            self.image.release()
        self.image = self.source


@contextmanager
def _borrowed(*refs: "ImageRef") -> Iterator[List[NativeImage]]:
    """Stable snapshots of other handles' images, released on exit."""
    snapshots: List[NativeImage] = []
    try:
        for ref in refs:
            snapshots.append(ref._snapshot())
        yield snapshots
    finally:
        for snapshot in snapshots:
            snapshot.release()


def _pages_of(image: NativeImage, fmt: ImageType) -> int:
    # JP2K reports resolution levels as pages
    if fmt == ImageType.JP2K:
        return 1
    return image.n_pages


def _loaded_pages(image: NativeImage) -> int:
    # pages actually stacked in the pixels, which can be fewer than n-pages
    return image.height // image.page_height


def _snapshot_metadata(image: NativeImage, fmt: ImageType) -> ImageMetadata:
    return ImageMetadata(
        format=fmt,
        width=image.width,
        height=image.height,
        colorspace=image.interpretation,
        orientation=image.orientation,
        pages=_pages_of(image, fmt),
    )


def _rgba(colour) -> Optional[Tuple[int, ...]]:
    return colour.to_tuple() if colour is not None else None


class ImageRef:
    """
    Managed handle over one native image.

    Mutating methods return None and raise on failure; queries return
    values. All of them serialize on the handle lock.
    """

    def __init__(self, image: NativeImage, current_format: ImageType = ImageType.UNKNOWN,
                 original_format: Optional[ImageType] = None, buf: Optional[bytes] = None):
        self._slot = NativeSlot(image, buf)
        self._format = ImageType(current_format)
        self._original_format = ImageType(original_format or current_format)
        self._premultiplication = PremultiplicationTracker()
        self._optimized_icc_profile = ""
        self._finalizer = weakref.finalize(self, _finalize_slot, self._slot, image.ident)
        logger.debug("[ImageRef] created %r (%s)", image, self._format.value)

    def __repr__(self):
        if self._slot.closed:
            return "<ImageRef closed>"
        return f"<ImageRef {self._format.value} {self._slot.get()!r}>"

    def __enter__(self) -> "ImageRef":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ========== Lifecycle ==========

    def close(self) -> None:
        """Release the native image now. Calling close() again does nothing."""
        if self._slot.release():
            logger.debug("[ImageRef] closed")
        self._finalizer.detach()

    @property
    def closed(self) -> bool:
        return self._slot.closed

    def _current(self) -> NativeImage:
        return self._slot.get()

    def _snapshot(self) -> NativeImage:
        with self._slot.lock:
            return self._slot.get().derive()

    @contextmanager
    def _mutate(self) -> Iterator[_Mutation]:
        """
        Run a mutation under the handle lock.

        The draft starts from the current state. If the body raises, every
        intermediate is released and the handle is untouched; otherwise the
        final image, pre-multiplication state and format are installed at once.
        """
        with self._slot.lock:
            draft = _Mutation(self._slot.get(), self._premultiplication.copy(), self._format)
            try:
                yield draft
            except BaseException:
                draft.discard()
                raise
            self._slot.replace(draft.image)
            self._premultiplication = draft.tracker
            self._format = draft.format
            if draft.optimized_icc_profile is not None:
                self._optimized_icc_profile = draft.optimized_icc_profile

    def _apply(self, fn, *args, **kwargs) -> None:
        with self._mutate() as m:
            m.apply(fn, *args, **kwargs)

    def copy(self) -> "ImageRef":
        """New handle over a copy of the current image, sharing the source buffer."""
        with self._slot.lock:
            image = primitives.copy(self._slot.get())
            return ImageRef(image, self._format, self._original_format, self._slot.buf)

    # ========== Introspection ==========

    @property
    def format(self) -> ImageType:
        return self._format

    @property
    def original_format(self) -> ImageType:
        """Format of the loaded buffer, which can differ from format (BMP loads as PNG)."""
        return self._original_format

    @property
    def width(self) -> int:
        return self._current().width

    @property
    def height(self) -> int:
        return self._current().height

    @property
    def bands(self) -> int:
        return self._current().bands

    @property
    def band_format(self) -> BandFormat:
        return self._current().band_format

    @property
    def coding(self) -> Coding:
        return self._current().coding

    @property
    def interpretation(self) -> Interpretation:
        return self._current().interpretation

    @property
    def color_space(self) -> Interpretation:
        return self.interpretation

    @property
    def resx(self) -> float:
        return self._current().xres

    @property
    def resy(self) -> float:
        return self._current().yres

    @property
    def offset_x(self) -> int:
        return self._current().xoffset

    @property
    def offset_y(self) -> int:
        return self._current().yoffset

    @property
    def orientation(self) -> int:
        """EXIF orientation, 0 when absent."""
        return self._current().orientation

    @property
    def pages(self) -> int:
        """Number of pages (animation frames); JP2K always reports 1."""
        with self._slot.lock:
            return _pages_of(self._slot.get(), self._format)

    @property
    def page_height(self) -> int:
        return self._current().page_height

    @property
    def has_alpha(self) -> bool:
        return self._current().has_alpha

    @property
    def has_profile(self) -> bool:
        return "icc-profile-data" in self._current().fields

    @property
    def has_icc_profile(self) -> bool:
        return self.has_profile

    @property
    def has_iptc(self) -> bool:
        return "iptc-data" in self._current().fields

    @property
    def has_exif(self) -> bool:
        return any(name.startswith("exif-") for name in self.image_fields())

    @property
    def is_color_space_supported(self) -> bool:
        return primitives.is_colourspace_supported(self._current())

    @property
    def optimized_icc_profile(self) -> str:
        return self._optimized_icc_profile

    @property
    def premultiplied(self) -> bool:
        return self._premultiplication.active

    def image_fields(self) -> List[str]:
        return list(self._current().fields)

    def page_delay(self) -> Optional[List[int]]:
        """Per-page delays in milliseconds, None for single page images."""
        with self._slot.lock:
            image = self._slot.get()
            if image.n_pages <= 1:
                return None
            return [int(d) for d in image.fields.get("delay", [0] * image.n_pages)]

    def metadata(self) -> ImageMetadata:
        """Snapshot of the current state; computed on every call."""
        with self._slot.lock:
            return _snapshot_metadata(self._slot.get(), self._format)

    # ========== Header mutations ==========

    def set_orientation(self, orientation: int) -> None:
        self._apply(primitives.set_fields, {"orientation": int(orientation)})

    def remove_orientation(self) -> None:
        self._apply(primitives.remove_fields, lambda name: name in ("orientation", "exif-ifd0-Orientation"))

    def set_pages(self, pages: int) -> None:
        self._apply(primitives.set_fields, {"n-pages": int(pages)})

    def set_page_height(self, height: int) -> None:
        """Height of one page; used when splitting the image back into frames."""
        self._apply(primitives.set_fields, {"page-height": int(height)})

    def set_page_delay(self, delay: Sequence[int]) -> None:
        self._apply(primitives.set_fields, {"delay": [int(d) for d in delay]})

    def remove_icc_profile(self) -> None:
        """Drop the embedded profile; readers then assume sRGB."""
        self._apply(primitives.remove_fields, lambda name: name == "icc-profile-data")

    def remove_metadata(self, *keep: str) -> None:
        """
        Strip EXIF, XMP, IPTC and similar metadata.

        The ICC profile, orientation and page geometry always survive,
        as do the field names given in keep.
        """
        kept = set(PRESERVED_FIELDS) | set(keep)

        def should_remove(name: str) -> bool:
            return name not in kept and name.startswith(_METADATA_PREFIXES)

        self._apply(primitives.remove_fields, should_remove)

    # ========== Compositing ==========

    def composite(self, overlay: "ImageRef", mode: BlendMode, x: int = 0, y: int = 0) -> None:
        with _borrowed(overlay) as (over,), self._mutate() as m:
            m.apply(primitives.composite, [(over, BlendMode(mode), x, y)])

    def composite_multi(self, overlays: Sequence[ImageComposite]) -> None:
        with _borrowed(*[c.image for c in overlays]) as images, self._mutate() as m:
            layers = [(img, BlendMode(c.blend_mode), c.x, c.y) for img, c in zip(images, overlays)]
            m.apply(primitives.composite, layers)

    def insert(self, sub: "ImageRef", x: int, y: int, expand: bool = False,
               background: Optional[ColorRGBA] = None) -> None:
        with _borrowed(sub) as (sub_image,), self._mutate() as m:
            m.apply(primitives.insert, sub_image, x, y, expand, _rgba(background))

    def join(self, other: "ImageRef", direction: Direction) -> None:
        with _borrowed(other) as (other_image,), self._mutate() as m:
            m.apply(primitives.join, other_image, direction)

    def array_join(self, images: Sequence["ImageRef"], across: int) -> None:
        """Join self followed by images into a grid, across images per row."""
        with _borrowed(*images) as others, self._mutate() as m:
            m.install(primitives.array_join([m.image] + others, across))

    def draw_rect(self, ink: ColorRGBA, left: int, top: int, width: int, height: int,
                  fill: bool = False) -> None:
        self._apply(primitives.draw_rect, ink.to_tuple(), left, top, width, height, fill)

    def label(self, params: LabelParams) -> None:
        self._apply(
            primitives.label,
            params.text,
            font=params.font,
            width=params.width,
            height=params.height,
            offset_x=params.offset_x,
            offset_y=params.offset_y,
            opacity=params.opacity,
            colour=params.color.to_tuple(),
            alignment=params.alignment,
        )

    # ========== Bands ==========

    def mapim(self, index: "ImageRef") -> None:
        with _borrowed(index) as (index_image,), self._mutate() as m:
            m.apply(primitives.mapim, index_image)

    def maplut(self, lut: "ImageRef") -> None:
        with _borrowed(lut) as (lut_image,), self._mutate() as m:
            m.apply(primitives.maplut, lut_image)

    def extract_band(self, band: int, num: int = 1) -> None:
        self._apply(primitives.extract_band, band, num)

    def band_join(self, *images: "ImageRef") -> None:
        with _borrowed(*images) as others, self._mutate() as m:
            m.install(primitives.band_join([m.image] + others))

    def band_join_const(self, constants: Sequence[float]) -> None:
        self._apply(primitives.band_join_const, list(constants))

    def add_alpha(self) -> None:
        """Append an opaque alpha band; no-op if one is already present."""
        with self._mutate() as m:
            if not m.image.has_alpha:
                m.apply(primitives.add_alpha)

    def premultiply_alpha(self) -> None:
        with self._mutate() as m:
            m.premultiply()

    def unpremultiply_alpha(self) -> None:
        with self._mutate() as m:
            m.unpremultiply()

    def cast(self, band_format: BandFormat) -> None:
        self._apply(primitives.cast, band_format)

    # ========== Arithmetic ==========

    def add(self, addend: "ImageRef") -> None:
        with _borrowed(addend) as (other,), self._mutate() as m:
            m.apply(primitives.add, other)

    def multiply(self, multiplier: "ImageRef") -> None:
        with _borrowed(multiplier) as (other,), self._mutate() as m:
            m.apply(primitives.multiply, other)

    def divide(self, denominator: "ImageRef") -> None:
        with _borrowed(denominator) as (other,), self._mutate() as m:
            m.apply(primitives.divide, other)

    def linear(self, a: Sequence[float], b: Sequence[float]) -> None:
        """
        out = in * a + b, per band.

        Raises:
            ParameterError: If a and b differ in length
        """
        if len(a) != len(b):
            raise ParameterError("a and b must be of same length")
        self._apply(primitives.linear, list(a), list(b))

    def linear1(self, a: float, b: float) -> None:
        self._apply(primitives.linear1, a, b)

    def invert(self) -> None:
        self._apply(primitives.invert)

    def rank(self, width: int, height: int, index: int) -> None:
        self._apply(primitives.rank, width, height, index)

    def average(self) -> float:
        with self._slot.lock:
            return primitives.average(self._slot.get())

    def find_trim(self, threshold: float, background: Optional[Color] = None) -> Tuple[int, int, int, int]:
        """Bounding box (left, top, width, height) of the non-background area."""
        with self._slot.lock:
            return primitives.find_trim(self._slot.get(), threshold, _rgba(background))

    def get_point(self, x: int, y: int) -> List[float]:
        with self._slot.lock:
            return primitives.get_point(self._slot.get(), x, y)

    # ========== Colour ==========

    def to_color_space(self, interpretation: Interpretation) -> None:
        self._apply(primitives.colourspace, interpretation)

    def transform_icc_profile(self, output_profile: str) -> None:
        """
        Transform into output_profile (a path, raw ICC bytes or a built-in id).

        The embedded profile is used as input when present, sRGB otherwise.
        """
        with self._mutate() as m:
            embedded = "icc-profile-data" in m.image.fields
            try:
                m.apply(primitives.icc_transform, output_profile, ProfileConfig.SRGB, 0, 8, embedded)
            except Exception as e:
                logger.error("[ImageRef] failed to do icc transform: %s", e)
                raise

    def optimize_icc_profile(self) -> None:
        """
        Convert to a compact built-in profile: grey for 1-2 band images,
        sRGB otherwise. Untagged non-CMYK images are left alone.
        """
        with self._mutate() as m:
            image = m.image
            input_profile = ProfileConfig.CMYK_INPUT if image.interpretation == Interpretation.CMYK else ""
            embedded = "icc-profile-data" in image.fields
            if not embedded and not input_profile:
                return
            optimized = ProfileConfig.SGRAY if image.bands <= 2 else ProfileConfig.SRGB
            depth = 8 if image.band_format in (BandFormat.UCHAR, BandFormat.CHAR, BandFormat.NOTSET) else 16
            try:
                m.apply(primitives.icc_transform, optimized, input_profile or None, 0, depth, embedded)
            except Exception as e:
                logger.error("[ImageRef] failed to do icc transform: %s", e)
                raise
            m.optimized_icc_profile = optimized

    def flatten(self, background: Optional[Color] = None) -> None:
        self._apply(primitives.flatten, (background or Color()).to_tuple())

    def gaussian_blur(self, sigma: float) -> None:
        self._apply(primitives.gaussian_blur, sigma)

    def sharpen(self, sigma: float, x1: float, m2: float) -> None:
        """
        Args:
            sigma: Sigma of the gaussian
            x1: Flat/jaggy threshold
            m2: Slope for jaggy areas
        """
        self._apply(primitives.sharpen, sigma, x1, m2)

    def modulate(self, brightness: float, saturation: float, hue: float) -> None:
        """Scale lightness and chroma and rotate hue (degrees) in LCh."""
        with self._mutate() as m:
            target = m.image.interpretation
            if target == Interpretation.RGB:
                target = Interpretation.SRGB
            multiplications = [brightness, saturation, 1.0]
            additions = [0.0, 0.0, hue]
            if m.image.has_alpha:
                multiplications.append(1.0)
                additions.append(0.0)
            m.apply(primitives.colourspace, Interpretation.LCH)
            m.apply(primitives.linear, multiplications, additions)
            m.apply(primitives.colourspace, target)

    def modulate_hsv(self, brightness: float, saturation: float, hue: int) -> None:
        """Scale value and saturation and shift hue (0-255 scale) in HSV."""
        with self._mutate() as m:
            target = m.image.interpretation
            if target == Interpretation.RGB:
                target = Interpretation.SRGB
            multiplications = [1.0, saturation, brightness]
            additions = [float(hue), 0.0, 0.0]
            if m.image.has_alpha:
                multiplications.append(1.0)
                additions.append(0.0)
            m.apply(primitives.colourspace, Interpretation.HSV)
            m.apply(primitives.linear, multiplications, additions)
            m.apply(primitives.colourspace, target)

    # ========== Geometry ==========

    def auto_rotate(self) -> None:
        """Rotate and mirror upright from the EXIF orientation, then set it to 1."""
        self._apply(primitives.autorot)

    def extract_area(self, left: int, top: int, width: int, height: int) -> None:
        with self._mutate() as m:
            if m.image.height > m.image.page_height:
                m.apply(primitives.extract_area_multi_page, left, top, width, height)
            else:
                m.apply(primitives.extract_area, left, top, width, height)

    def _embed(self, left, top, width, height, extend, background=None) -> None:
        with self._mutate() as m:
            if m.image.height > m.image.page_height:
                m.apply(primitives.embed_multi_page, left, top, width, height, extend, background)
            else:
                m.apply(primitives.embed, left, top, width, height, extend, background)

    def embed(self, left: int, top: int, width: int, height: int, extend: ExtendStrategy) -> None:
        """Place the image on a larger canvas; the opposite of extract_area."""
        self._embed(left, top, width, height, ExtendStrategy(extend))

    def embed_background(self, left: int, top: int, width: int, height: int, background: Color) -> None:
        rgba = ColorRGBA(background.r, background.g, background.b, 255)
        self._embed(left, top, width, height, ExtendStrategy.BACKGROUND, rgba.to_tuple())

    def embed_background_rgba(self, left: int, top: int, width: int, height: int,
                              background: ColorRGBA) -> None:
        self._embed(left, top, width, height, ExtendStrategy.BACKGROUND, background.to_tuple())

    def zoom(self, x_factor: int, y_factor: int) -> None:
        self._apply(primitives.zoom, x_factor, y_factor)

    def flip(self, direction: Direction) -> None:
        self._apply(primitives.flip, direction)

    def rotate(self, angle: Angle) -> None:
        """
        Rotate by a multiple of 90 degrees; use similarity() for other angles.

        Multi-page images are laid out as a row of pages for 90/270 so each
        frame rotates on its own, and the page height becomes the old width.
        """
        angle = Angle(angle)
        with self._mutate() as m:
            width = m.image.width
            multi_page = _loaded_pages(m.image) > 1 and angle in (Angle.D90, Angle.D270)
            if multi_page:
                if angle == Angle.D270:
                    m.apply(primitives.flip, Direction.HORIZONTAL)
                m.apply(primitives.grid, m.image.page_height, _loaded_pages(m.image), 1)
                if angle == Angle.D270:
                    m.apply(primitives.flip, Direction.HORIZONTAL)
            m.apply(primitives.rotate, angle)
            if multi_page:
                m.apply(primitives.set_fields, {"page-height": width})

    def similarity(self, scale: float = 1.0, angle: float = 0.0, background: Optional[ColorRGBA] = None,
                   idx: float = 0.0, idy: float = 0.0, odx: float = 0.0, ody: float = 0.0) -> None:
        """Scale, rotate (degrees) and offset in one step, filling new pixels with background."""
        self._apply(primitives.similarity, scale, angle, _rgba(background), idx, idy, odx, ody)

    def grid(self, tile_height: int, across: int, down: int) -> None:
        self._apply(primitives.grid, tile_height, across, down)

    def smart_crop(self, width: int, height: int, interesting: Interesting) -> None:
        self._apply(primitives.smart_crop, width, height, interesting)

    def replicate(self, across: int, down: int) -> None:
        self._apply(primitives.replicate, across, down)

    # ========== Resampling ==========

    @staticmethod
    def _resize_in(m: _Mutation, hscale: float, vscale: float, kernel: Kernel) -> None:
        """Resize inside a draft, premultiplied and with page height rescaled."""
        was_premultiplied = m.tracker.active
        m.premultiply()
        pages = _loaded_pages(m.image)
        if pages > 1:
            # total height stays a whole number of pages
            scale = vscale if vscale != -1 else hscale
            new_page_height = max(1, int(m.image.page_height * scale))
            m.apply(primitives.resize, hscale, vscale, kernel, new_page_height * pages)
            m.apply(primitives.set_fields, {"page-height": new_page_height})
        else:
            m.apply(primitives.resize, hscale, vscale, kernel)
        if not was_premultiplied:
            m.unpremultiply()

    def resize(self, scale: float, kernel: Kernel = Kernel.AUTO) -> None:
        """Resize keeping the aspect ratio."""
        self.resize_with_vscale(scale, -1, kernel)

    def resize_with_vscale(self, hscale: float, vscale: float, kernel: Kernel = Kernel.AUTO) -> None:
        """
        Resize with independent horizontal and vertical scale factors.

        Args:
            hscale: Horizontal scale factor
            vscale: Vertical scale factor, -1 to reuse hscale
            kernel: Resampling kernel
        """
        with self._mutate() as m:
            self._resize_in(m, hscale, vscale, Kernel(kernel))

    def thumbnail(self, width: int, height: int, crop: Interesting) -> None:
        self.thumbnail_with_size(width, height, crop, Size.BOTH)

    def thumbnail_with_size(self, width: int, height: int, crop: Interesting, size: Size) -> None:
        """Fit (or, with a crop strategy, fill) width x height; size limits up/down scaling."""
        self._apply(primitives.thumbnail, width, height, crop, size)

    # ========== Export ==========

    def _export(self, image_type: ImageType, params=None) -> Tuple[bytes, ImageMetadata]:
        encoder = EncoderFactory.create_encoder(image_type)
        with self._slot.lock:
            image = self._slot.get()
            data = encoder.encode(image, params)
            return data, _snapshot_metadata(image, image_type)

    def export(self, params: Optional[ExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        """
        Encode with generic parameters.

        With no params, or params.format UNKNOWN, this is export_native().
        Generic fields are translated to the target codec's parameters;
        fields the codec has no counterpart for are ignored.

        Returns:
            Tuple of (encoded bytes, metadata snapshot)

        Raises:
            ParameterError: If the format cannot be written (before any encode)
        """
        if params is None or params.format == ImageType.UNKNOWN:
            return self.export_native()
        image_type = ImageType(params.format)
        if not EncoderFactory.is_type_supported(image_type):
            raise ParameterError(f"cannot save to {image_type.get_display_name()}")
        codec_params = translate(params, image_type)
        if image_type == ImageType.WEBP:
            return self.export_webp(codec_params)
        return self._export(image_type, codec_params)

    def export_native(self) -> Tuple[bytes, ImageMetadata]:
        """Encode in the current format with its defaults, JPEG when it cannot be written."""
        image_type = self._format
        if not EncoderFactory.is_type_supported(image_type):
            logger.debug("[ImageRef] %s cannot be written, exporting as %s",
                         image_type.value, ExportDefaults.FALLBACK_FORMAT.value)
            image_type = ExportDefaults.FALLBACK_FORMAT
        if image_type == ImageType.WEBP:
            return self.export_webp()
        return self._export(image_type)

    def export_jpeg(self, params: Optional[JpegExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        return self._export(ImageType.JPEG, params or JpegExportParams())

    def export_png(self, params: Optional[PngExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        return self._export(ImageType.PNG, params or PngExportParams())

    def export_webp(self, params: Optional[WebpExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        """WEBP export always embeds the handle's optimized profile, whatever params say."""
        params = dataclasses.replace(params or WebpExportParams(), icc_profile=self._optimized_icc_profile)
        return self._export(ImageType.WEBP, params)

    def export_heif(self, params: Optional[HeifExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        return self._export(ImageType.HEIF, params or HeifExportParams())

    def export_tiff(self, params: Optional[TiffExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        return self._export(ImageType.TIFF, params or TiffExportParams())

    def export_gif(self, params: Optional[GifExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        return self._export(ImageType.GIF, params or GifExportParams())

    def export_avif(self, params: Optional[AvifExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        return self._export(ImageType.AVIF, params or AvifExportParams())

    def export_jp2k(self, params: Optional[Jp2kExportParams] = None) -> Tuple[bytes, ImageMetadata]:
        return self._export(ImageType.JP2K, params or Jp2kExportParams())

    def to_bytes(self) -> bytes:
        """Raw dump of the native image, readable by load_image_from_raw()."""
        with self._slot.lock:
            return raw.to_raw(self._slot.get())

    def to_image(self, params: Optional[ExportParams] = None) -> Image.Image:
        """Export, then decode the result into a Pillow image."""
        data, _ = self.export(params)
        pil = Image.open(io.BytesIO(data))
        pil.load()
        return pil


# ========== Loaders and factories ==========

def load_image_from_buffer(buf: bytes, params: Optional[ImportParams] = None) -> ImageRef:
    """
    Decode buf into a new handle.

    Args:
        buf: Encoded image bytes; retained by the handle until it is closed
        params: Import options, None for the defaults

    Raises:
        DecodeError: On malformed or unsupported input
    """
    startup_if_needed()
    image, current, original = decoder.decode(buf, params)
    return ImageRef(image, current, original, buf)


def new_image_from_buffer(buf: bytes) -> ImageRef:
    return load_image_from_buffer(buf, None)


def load_thumbnail_from_buffer(buf: bytes, width: int, height: int, crop: Interesting,
                               size: Size = Size.BOTH, params: Optional[ImportParams] = None) -> ImageRef:
    startup_if_needed()
    image, current, original = decoder.decode(buf, params)
    try:
        thumb = primitives.thumbnail(image, width, height, crop, size)
    finally:
        image.release()
    return ImageRef(thumb, current, original, buf)


def new_thumbnail_from_buffer(buf: bytes, width: int, height: int, crop: Interesting) -> ImageRef:
    return load_thumbnail_from_buffer(buf, width, height, crop, Size.BOTH)


def new_thumbnail_with_size_from_buffer(buf: bytes, width: int, height: int,
                                        crop: Interesting, size: Size) -> ImageRef:
    return load_thumbnail_from_buffer(buf, width, height, crop, size)


def load_image_from_raw(buf: bytes) -> ImageRef:
    """Rebuild a handle from ImageRef.to_bytes() output."""
    startup_if_needed()
    return ImageRef(raw.from_raw(buf))


def black(width: int, height: int) -> ImageRef:
    startup_if_needed()
    return ImageRef(primitives.black(width, height))


def xyz(width: int, height: int) -> ImageRef:
    """Two-band uint32 image holding each pixel's x and y coordinate."""
    startup_if_needed()
    return ImageRef(primitives.xyz(width, height))


def identity(ushort: bool = False) -> ImageRef:
    """Identity lookup table for maplut(): 256 entries, or 65536 with ushort."""
    startup_if_needed()
    return ImageRef(primitives.identity(ushort))


def pixelate(image_ref: ImageRef, factor: float) -> None:
    """
    Pixelate by shrinking by factor and scaling back with nearest neighbour.

    Raises:
        ParameterError: If factor is below 1
    """
    if factor < 1:
        raise ParameterError("factor must be greater then 1")
    with image_ref._mutate() as m:
        width, height = m.image.width, m.image.height
        ImageRef._resize_in(m, 1 / factor, -1, Kernel.AUTO)
        hscale = width / m.image.width
        vscale = height / m.image.height
        ImageRef._resize_in(m, hscale, vscale, Kernel.NEAREST)

"""ImageRef - Small value types shared by operations."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Tuple

from .config import Align, BlendMode

if TYPE_CHECKING:
    from .image_ref import ImageRef


@dataclass(frozen=True)
class Color:
    """Opaque RGB colour"""
    r: int = 0
    g: int = 0
    b: int = 0

    def to_tuple(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)


@dataclass(frozen=True)
class ColorRGBA:
    """RGB colour with alpha"""
    r: int = 0
    g: int = 0
    b: int = 0
    a: int = 255

    def to_tuple(self) -> Tuple[int, int, int, int]:
        return (self.r, self.g, self.b, self.a)


@dataclass
class ImageComposite:
    """One overlay in a composite_multi() call."""
    image: "ImageRef"
    blend_mode: BlendMode = BlendMode.OVER
    x: int = 0
    y: int = 0


@dataclass
class LabelParams:
    """
    Text overlay options for ImageRef.label().

    Fields:
        text: Text to draw
        font: Path to a TrueType/OpenType file, empty for Pillow's default font
        width: Box width in pixels the text is fitted into
        height: Text size in pixels
        offset_x, offset_y: Top-left corner of the box
        opacity: 0..1 multiplier on the text colour
        color: Text colour
        alignment: Horizontal alignment inside the box
    """
    text: str = ""
    font: str = ""
    width: int = 0
    height: int = 24
    offset_x: int = 0
    offset_y: int = 0
    opacity: float = 1.0
    color: Color = field(default_factory=lambda: Color(255, 255, 255))
    alignment: Align = Align.LOW

"""ImageRef - Metadata snapshot and EXIF orientation helpers."""

from dataclasses import dataclass
from typing import Tuple

from .config import ImageType, Interpretation


@dataclass(frozen=True)
class ImageMetadata:
    """Point-in-time summary of a handle; never cached by the handle."""
    format: ImageType
    width: int
    height: int
    colorspace: Interpretation
    orientation: int
    pages: int


def get_rotation_angle_from_exif(orientation: int) -> Tuple[int, bool]:
    """
    Map an EXIF orientation tag to the rotation that undoes it.

    Args:
        orientation: EXIF orientation value (0-8, 0 meaning unset)

    Returns:
        Tuple of (clockwise rotation in degrees, whether a mirror is involved)
    """
    if orientation in (0, 1, 2):
        return 0, orientation == 2
    if orientation in (3, 4):
        return 180, orientation == 4
    if orientation in (5, 8):
        return 90, orientation == 5
    if orientation in (6, 7):
        return 270, orientation == 7
    return 0, False

"""
ImageRef - Pre-multiplication State

Tracks whether a handle's pixels are currently alpha pre-multiplied and,
if so, which band format they had before. Pre-multiplying turns pixels
into floats; un-premultiplying casts back to the recorded format.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from . import primitives
from .config import BandFormat, Interpretation
from .native import NativeImage

logger = logging.getLogger("imageref")


@dataclass(frozen=True)
class PremultiplicationState:
    """Active pre-multiplication; band_format is the format to restore."""
    band_format: BandFormat


class PremultiplicationTracker:
    """
    Inactive / Active(saved band format) state machine.

    Both transitions return a new native image (or the input unchanged for
    a no-op) and only update the state once the primitive has succeeded.
    Releasing images is the caller's business.
    """

    def __init__(self, state: Optional[PremultiplicationState] = None):
        self._state = state

    @property
    def state(self) -> Optional[PremultiplicationState]:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is not None

    def copy(self) -> "PremultiplicationTracker":
        return PremultiplicationTracker(self._state)

    def premultiply(self, image: NativeImage) -> NativeImage:
        """No-op when already active or when the image has no alpha."""
        if self._state is not None or not image.has_alpha:
            return image
        saved = image.band_format
        out = primitives.premultiply(image)
        self._state = PremultiplicationState(saved)
        logger.debug("[Premultiply] active, saved format %s", saved.value)
        return out

    def unpremultiply(self, image: NativeImage) -> NativeImage:
        """No-op when inactive; otherwise divides by alpha and casts back."""
        if self._state is None:
            return image
        saved = self._state.band_format
        max_alpha = 65535.0 if (
            saved == BandFormat.USHORT
            or image.interpretation in (Interpretation.RGB16, Interpretation.GREY16)
        ) else 255.0
        divided = primitives.unpremultiply(image, max_alpha)
        try:
            out = primitives.cast(divided, saved)
        finally:
            divided.release()
        self._state = None
        logger.debug("[Premultiply] inactive, restored format %s", saved.value)
        return out

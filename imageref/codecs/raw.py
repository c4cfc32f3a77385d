"""
Raw Serialization

Self-describing dump of a native image for storage or transport between
processes running this package: an ``.npz`` container holding the pixel
array and a JSON header. Not an interchange image format.
"""

import base64
import io
import json
import logging
from typing import Any, Dict

import numpy as np

from ..config import Interpretation
from ..errors import DecodeError, ResourceError
from ..native import NativeImage

logger = logging.getLogger("imageref")

RAW_VERSION = 1
_BYTES_TAG = "__bytes__"


def _encode_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_TAG: base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, (list, tuple)):
        return [_encode_value(v) for v in value]
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (int, float, str, bool)) or value is None:
        return value
    return str(value)


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict) and _BYTES_TAG in value:
        return base64.b64decode(value[_BYTES_TAG])
    if isinstance(value, list):
        return [_decode_value(v) for v in value]
    return value


def to_raw(image: NativeImage) -> bytes:
    """
    Serialize pixels and header.

    Raises:
        ResourceError: If the container cannot be written
    """
    header: Dict[str, Any] = {
        "version": RAW_VERSION,
        "interpretation": image.interpretation.value,
        "xres": image.xres,
        "yres": image.yres,
        "xoffset": image.xoffset,
        "yoffset": image.yoffset,
        "fields": {k: _encode_value(v) for k, v in image.fields.items()},
    }
    out = io.BytesIO()
    try:
        np.savez(
            out,
            pixels=image.pixels,
            header=np.frombuffer(json.dumps(header).encode("utf-8"), dtype=np.uint8),
        )
    except (OSError, ValueError, TypeError) as e:
        raise ResourceError(f"failed to write image to memory: {e}") from e
    return out.getvalue()


def from_raw(buf: bytes) -> NativeImage:
    """
    Rebuild a native image from to_raw() output.

    Raises:
        DecodeError: If the buffer is not a raw dump
    """
    try:
        with np.load(io.BytesIO(buf), allow_pickle=False) as archive:
            pixels = archive["pixels"]
            header = json.loads(archive["header"].tobytes().decode("utf-8"))
    except (OSError, ValueError, KeyError, EOFError) as e:
        raise DecodeError(f"not a raw image buffer: {e}") from e
    if header.get("version") != RAW_VERSION:
        raise DecodeError(f"unsupported raw version {header.get('version')}")
    if pixels.ndim != 3:
        raise DecodeError(f"raw pixel array has {pixels.ndim} dimensions")
    fields = {k: _decode_value(v) for k, v in header.get("fields", {}).items()}
    logger.debug("[Raw] restored %s image", pixels.shape)
    return NativeImage(
        pixels,
        interpretation=Interpretation(header["interpretation"]),
        xres=header["xres"],
        yres=header["yres"],
        xoffset=header["xoffset"],
        yoffset=header["yoffset"],
        fields=fields,
    )

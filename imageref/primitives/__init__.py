"""
ImageRef - Operation Primitives

Pure engine functions: each takes NativeImage inputs and returns a new
NativeImage (or a plain value for queries). Inputs are never modified.

Modules:
- conversion: geometry, band and header operations
- resample: resize, thumbnail, smart crop and warps
- arithmetic: pixel arithmetic and statistics
- colour: colour spaces, ICC transforms and filters
- compositing: blending, insertion and drawing
- create: synthesised images
"""

from .arithmetic import (
    add,
    average,
    divide,
    find_trim,
    get_point,
    invert,
    linear,
    linear1,
    maplut,
    multiply,
    rank,
)
from .colour import (
    colourspace,
    gaussian_blur,
    icc_transform,
    is_colourspace_supported,
    profile_bytes,
    sharpen,
)
from .compositing import composite, draw_rect, flatten, insert, label
from .conversion import (
    add_alpha,
    array_join,
    autorot,
    band_join,
    band_join_const,
    cast,
    copy,
    embed,
    embed_multi_page,
    extract_area,
    extract_area_multi_page,
    extract_band,
    flip,
    grid,
    join,
    premultiply,
    remove_fields,
    replicate,
    rotate,
    set_fields,
    stack_pages,
    unpremultiply,
    zoom,
)
from .create import black, identity, xyz
from .helpers import primitive
from .resample import mapim, resize, similarity, smart_crop, thumbnail

__all__ = [
    # Conversion
    "copy", "set_fields", "remove_fields", "cast",
    "extract_area", "extract_area_multi_page", "embed", "embed_multi_page",
    "flip", "rotate", "autorot", "grid", "zoom", "replicate",
    "join", "array_join", "extract_band", "band_join", "band_join_const",
    "add_alpha", "premultiply", "unpremultiply", "stack_pages",
    # Resample
    "resize", "thumbnail", "smart_crop", "similarity", "mapim",
    # Arithmetic
    "add", "multiply", "divide", "linear", "linear1", "invert",
    "average", "maplut", "find_trim", "get_point", "rank",
    # Colour
    "colourspace", "icc_transform", "is_colourspace_supported", "profile_bytes",
    "gaussian_blur", "sharpen",
    # Compositing
    "composite", "insert", "flatten", "draw_rect", "label",
    # Create
    "black", "xyz", "identity",
    "primitive",
]

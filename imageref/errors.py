"""ImageRef - Error taxonomy"""


class ImageRefError(Exception):
    """Base class for every error raised by the package."""


class DecodeError(ImageRefError):
    """Malformed or unsupported input at load time."""


class PrimitiveError(ImageRefError):
    """An operation primitive rejected its input or parameters."""


class ParameterError(ImageRefError, ValueError):
    """Caller passed arguments that are rejected before any primitive runs."""


class ResourceError(ImageRefError):
    """The engine failed to allocate, read or write."""


class ClosedImageError(ResourceError):
    """The handle (or a native image) was used after it was released."""

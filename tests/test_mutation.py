"""A failed mutation leaves the handle exactly as it was."""

import numpy as np
import pytest

from imageref import ParameterError, PrimitiveError, pixelate, primitives
from imageref.errors import ImageRefError


def _spy(monkeypatch, name):
    """Record every image a primitive returns."""
    produced = []
    real = getattr(primitives, name)

    def wrapper(*args, **kwargs):
        out = real(*args, **kwargs)
        produced.append(out)
        return out

    monkeypatch.setattr(primitives, name, wrapper)
    return produced


def _fail(monkeypatch, name):
    def boom(*args, **kwargs):
        raise PrimitiveError(f"{name}: injected failure")
    monkeypatch.setattr(primitives, name, boom)


def test_failed_primitive_keeps_current_image(jpeg_ref):
    before = jpeg_ref._current()
    with pytest.raises(PrimitiveError):
        jpeg_ref.extract_area(0, 0, 1000, 1000)
    assert jpeg_ref._current() is before
    assert not before.released
    assert jpeg_ref.width == 100


def test_linear_length_mismatch(jpeg_ref):
    before = jpeg_ref._current()
    with pytest.raises(ParameterError):
        jpeg_ref.linear([1.0, 1.0], [0.0])
    assert jpeg_ref._current() is before


def test_modulate_failure_releases_intermediates(monkeypatch, jpeg_ref):
    before = jpeg_ref._current()
    produced = _spy(monkeypatch, "colourspace")
    _fail(monkeypatch, "linear")
    with pytest.raises(PrimitiveError):
        jpeg_ref.modulate(1.1, 1.0, 30)
    assert len(produced) == 1
    assert produced[0].released
    assert jpeg_ref._current() is before
    assert not before.released


def test_multipage_rotate_failure_is_atomic(monkeypatch, gif_ref):
    before = gif_ref._current()
    produced = _spy(monkeypatch, "grid")
    _fail(monkeypatch, "rotate")
    with pytest.raises(PrimitiveError):
        gif_ref.rotate(90)
    assert produced and all(image.released for image in produced)
    assert gif_ref._current() is before
    assert gif_ref.page_height == 80


def test_resize_failure_keeps_premultiplication_state(monkeypatch, rgba_ref):
    _fail(monkeypatch, "resize")
    with pytest.raises(PrimitiveError):
        rgba_ref.resize(0.5)
    assert not rgba_ref.premultiplied
    assert rgba_ref.band_format == "uchar"


def test_successful_composite_mutation_releases_intermediates(monkeypatch, jpeg_ref):
    before = jpeg_ref._current()
    produced = _spy(monkeypatch, "colourspace")
    jpeg_ref.modulate_hsv(1.0, 1.0, 0)
    assert len(produced) == 2
    assert produced[0].released
    assert jpeg_ref._current() is produced[1]
    assert before.released


def test_pixelate_rejects_small_factor(jpeg_ref):
    before = jpeg_ref._current()
    with pytest.raises(ParameterError):
        pixelate(jpeg_ref, 0.5)
    assert jpeg_ref._current() is before


def test_pixelate_failure_in_second_resize(monkeypatch, jpeg_ref):
    before = jpeg_ref._current()
    real = primitives.resize
    calls = []

    def second_fails(image, *args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise PrimitiveError("resize: injected failure")
        return real(image, *args, **kwargs)

    monkeypatch.setattr(primitives, "resize", second_fails)
    with pytest.raises(ImageRefError):
        pixelate(jpeg_ref, 4)
    assert jpeg_ref._current() is before
    assert jpeg_ref.width == 100


def test_pixelate_keeps_size(jpeg_ref):
    pixelate(jpeg_ref, 10)
    assert (jpeg_ref.width, jpeg_ref.height) == (100, 100)
    pixels = jpeg_ref._current().pixels
    # each 10x10 block is flat
    np.testing.assert_array_equal(pixels[0, 0], pixels[9, 9])

"""Handle operations against small synthetic images."""

import numpy as np
import pytest

from imageref import (
    BandFormat,
    BlendMode,
    Color,
    ColorRGBA,
    Direction,
    ImageComposite,
    ImageRef,
    Interesting,
    Interpretation,
    LabelParams,
    black,
    identity,
    xyz,
)


@pytest.fixture
def grey_ref(make_native):
    pixels = np.full((20, 30, 3), 100, np.uint8)
    with ImageRef(make_native(pixels)) as ref:
        yield ref


def px(ref, x, y):
    return [int(v) for v in ref._current().pixels[y, x]]


# ---------- factories ----------

def test_black():
    with black(8, 4) as ref:
        assert (ref.width, ref.height, ref.bands) == (8, 4, 1)
        assert ref.average() == 0.0
        assert ref.format.value == "unknown"


def test_xyz():
    with xyz(5, 3) as ref:
        assert ref.bands == 2
        assert ref.get_point(4, 2) == [4.0, 2.0]


def test_identity_lut_maps_to_itself(jpeg_ref):
    before = np.array(jpeg_ref._current().pixels)
    with identity() as lut:
        assert (lut.width, lut.height) == (256, 1)
        jpeg_ref.maplut(lut)
    np.testing.assert_array_equal(jpeg_ref._current().pixels, before)


def test_identity_ushort():
    with identity(ushort=True) as lut:
        assert lut.width == 65536
        assert lut.band_format == BandFormat.USHORT


# ---------- queries ----------

def test_get_point_returns_every_band(rgba_ref):
    assert rgba_ref.get_point(0, 0) == [200.0, 100.0, 50.0, 255.0]
    assert rgba_ref.get_point(40, 0)[3] == 128.0


def test_average(grey_ref):
    assert grey_ref.average() == pytest.approx(100.0)


def test_find_trim(make_native):
    pixels = np.full((40, 50, 3), 255, np.uint8)
    pixels[10:20, 5:25] = 0
    with ImageRef(make_native(pixels)) as ref:
        assert ref.find_trim(40, Color(255, 255, 255)) == (5, 10, 20, 10)


def test_find_trim_uniform(grey_ref):
    assert grey_ref.find_trim(10, Color(100, 100, 100)) == (0, 0, 0, 0)


# ---------- bands ----------

def test_add_alpha_once(jpeg_ref):
    jpeg_ref.add_alpha()
    assert jpeg_ref.bands == 4
    assert jpeg_ref.has_alpha
    before = jpeg_ref._current()
    jpeg_ref.add_alpha()
    assert jpeg_ref.bands == 4
    assert jpeg_ref._current() is before


def test_extract_and_join_bands(jpeg_ref):
    red = jpeg_ref.copy()
    try:
        red.extract_band(0)
        assert red.bands == 1
        jpeg_ref.band_join(red)
        assert jpeg_ref.bands == 4
    finally:
        red.close()


def test_band_join_const(grey_ref):
    grey_ref.band_join_const([255])
    assert grey_ref.bands == 4
    assert px(grey_ref, 0, 0) == [100, 100, 100, 255]


def test_cast(grey_ref):
    grey_ref.cast(BandFormat.FLOAT)
    assert grey_ref.band_format == BandFormat.FLOAT


# ---------- arithmetic ----------

def test_linear(grey_ref):
    grey_ref.linear([2, 1, 1], [0, 10, 0])
    assert [round(v) for v in grey_ref.get_point(0, 0)] == [200, 110, 100]


def test_linear1(grey_ref):
    grey_ref.linear1(0.5, 1)
    assert grey_ref.get_point(3, 3) == [51.0, 51.0, 51.0]


def test_invert(grey_ref):
    grey_ref.invert()
    assert px(grey_ref, 0, 0) == [155, 155, 155]


def test_add_multiply_divide(make_native, grey_ref):
    with ImageRef(make_native(np.full((20, 30, 3), 2, np.uint8))) as two:
        grey_ref.add(two)
        assert grey_ref.get_point(0, 0)[0] == 102
        grey_ref.multiply(two)
        assert grey_ref.get_point(0, 0)[0] == 204
        grey_ref.divide(two)
        assert grey_ref.get_point(0, 0)[0] == pytest.approx(102)


def test_rank_median_removes_speck(make_native):
    pixels = np.zeros((9, 9, 1), np.uint8)
    pixels[4, 4] = 255
    with ImageRef(make_native(pixels, Interpretation.B_W)) as ref:
        ref.rank(3, 3, 4)
        assert ref.get_point(4, 4) == [0.0]


# ---------- colour ----------

def test_to_color_space(jpeg_ref):
    jpeg_ref.to_color_space(Interpretation.B_W)
    assert jpeg_ref.bands == 1
    assert jpeg_ref.interpretation == Interpretation.B_W


def test_modulate_identity_is_close(grey_ref):
    grey_ref.modulate(1.0, 1.0, 0)
    assert grey_ref.interpretation == Interpretation.SRGB
    assert all(abs(v - 100) <= 2 for v in px(grey_ref, 0, 0))


def test_modulate_brightness(grey_ref):
    grey_ref.modulate(1.5, 1.0, 0)
    assert px(grey_ref, 0, 0)[0] > 120


def test_modulate_hsv_keeps_alpha(rgba_ref):
    rgba_ref.modulate_hsv(0.5, 1.0, 0)
    assert rgba_ref.bands == 4
    assert rgba_ref.get_point(40, 0)[3] == 128.0
    assert rgba_ref.get_point(0, 0)[0] < 200


def test_flatten(rgba_ref):
    rgba_ref.flatten(Color(0, 0, 0))
    assert rgba_ref.bands == 3
    assert px(rgba_ref, 0, 0) == [200, 100, 50]
    assert abs(px(rgba_ref, 40, 0)[0] - 100) <= 1


def test_gaussian_blur_and_sharpen(jpeg_ref):
    jpeg_ref.gaussian_blur(1.5)
    assert (jpeg_ref.width, jpeg_ref.height) == (100, 100)
    jpeg_ref.sharpen(0.5, 2.0, 3.0)
    assert jpeg_ref.band_format == BandFormat.UCHAR


def test_transform_and_optimize_profile(icc_png_bytes):
    from imageref import load_image_from_buffer

    with load_image_from_buffer(icc_png_bytes) as ref:
        ref.transform_icc_profile("srgb")
        assert ref.bands == 3
        ref.optimize_icc_profile()
        assert ref.optimized_icc_profile == "srgb"
        assert ref.has_profile


# ---------- compositing ----------

def test_composite_over(make_native, grey_ref):
    overlay = np.zeros((5, 5, 4), np.uint8)
    overlay[..., 0] = 255
    overlay[..., 3] = 255
    with ImageRef(make_native(overlay)) as over:
        grey_ref.composite(over, BlendMode.OVER, 2, 3)
    assert grey_ref.has_alpha
    assert px(grey_ref, 2, 3) == [255, 0, 0, 255]
    assert px(grey_ref, 0, 0) == [100, 100, 100, 255]


def test_composite_multi(make_native, grey_ref):
    red = np.zeros((2, 2, 4), np.uint8)
    red[..., 0] = red[..., 3] = 255
    blue = np.zeros((2, 2, 4), np.uint8)
    blue[..., 2] = blue[..., 3] = 255
    with ImageRef(make_native(red)) as r, ImageRef(make_native(blue)) as b:
        grey_ref.composite_multi([
            ImageComposite(r, BlendMode.OVER, 0, 0),
            ImageComposite(b, BlendMode.OVER, 1, 1),
        ])
    assert px(grey_ref, 0, 0)[:3] == [255, 0, 0]
    assert px(grey_ref, 1, 1)[:3] == [0, 0, 255]


def test_insert(make_native, grey_ref):
    with ImageRef(make_native(np.zeros((4, 4, 3), np.uint8))) as sub:
        grey_ref.insert(sub, 1, 1)
        assert px(grey_ref, 1, 1) == [0, 0, 0]
        assert (grey_ref.width, grey_ref.height) == (30, 20)
        grey_ref.insert(sub, -2, -2, expand=True, background=ColorRGBA(9, 9, 9, 255))
        assert (grey_ref.width, grey_ref.height) == (32, 22)
        assert px(grey_ref, 31, 0) == [9, 9, 9]


def test_join_and_array_join(make_native, grey_ref):
    with ImageRef(make_native(np.zeros((20, 10, 3), np.uint8))) as other:
        grey_ref.join(other, Direction.HORIZONTAL)
        assert (grey_ref.width, grey_ref.height) == (40, 20)
        grey_ref.array_join([other, other], 2)
        assert (grey_ref.width, grey_ref.height) == (80, 40)


def test_draw_rect(grey_ref):
    grey_ref.draw_rect(ColorRGBA(255, 0, 0, 255), 2, 2, 5, 5, fill=True)
    assert px(grey_ref, 4, 4) == [255, 0, 0]
    grey_ref.draw_rect(ColorRGBA(0, 255, 0, 255), 10, 10, 5, 5)
    assert px(grey_ref, 10, 12) == [0, 255, 0]
    assert px(grey_ref, 12, 12) == [100, 100, 100]


def test_label_draws_text(make_native):
    with ImageRef(make_native(np.zeros((40, 120, 3), np.uint8))) as ref:
        ref.label(LabelParams(text="Hello", width=100, height=20, offset_x=5, offset_y=5))
        assert ref._current().pixels.max() > 0
        assert (ref.width, ref.height) == (120, 40)


# ---------- geometry ----------

def test_flip(make_native):
    pixels = np.zeros((2, 3, 1), np.uint8)
    pixels[0, 0] = 7
    with ImageRef(make_native(pixels, Interpretation.B_W)) as ref:
        ref.flip(Direction.HORIZONTAL)
        assert ref.get_point(2, 0) == [7.0]
        ref.flip(Direction.VERTICAL)
        assert ref.get_point(2, 1) == [7.0]


def test_zoom_and_replicate(grey_ref):
    grey_ref.zoom(2, 3)
    assert (grey_ref.width, grey_ref.height) == (60, 60)
    grey_ref.replicate(2, 1)
    assert (grey_ref.width, grey_ref.height) == (120, 60)


def test_grid(make_native):
    with ImageRef(make_native(np.zeros((40, 10, 3), np.uint8))) as ref:
        ref.grid(10, 2, 2)
        assert (ref.width, ref.height) == (20, 20)


def test_smart_crop(jpeg_ref):
    jpeg_ref.smart_crop(30, 40, Interesting.ATTENTION)
    assert (jpeg_ref.width, jpeg_ref.height) == (30, 40)


def test_similarity_grows_canvas(grey_ref):
    grey_ref.similarity(angle=45, background=ColorRGBA(0, 0, 0, 255))
    assert grey_ref.width > 30 and grey_ref.height > 20


def test_mapim_with_xyz_is_identity(grey_ref):
    before = np.array(grey_ref._current().pixels)
    with xyz(30, 20) as index:
        grey_ref.mapim(index)
    np.testing.assert_array_equal(grey_ref._current().pixels, before)


def test_thumbnail_with_size(jpeg_ref):
    from imageref import Size

    jpeg_ref.thumbnail_with_size(300, 300, Interesting.NONE, Size.DOWN)
    assert jpeg_ref.width == 100
    jpeg_ref.thumbnail(50, 25, Interesting.CENTRE)
    assert (jpeg_ref.width, jpeg_ref.height) == (50, 25)


def test_embed_background_rgba(grey_ref):
    grey_ref.add_alpha()
    grey_ref.embed_background_rgba(2, 2, 34, 24, ColorRGBA(1, 2, 3, 0))
    assert px(grey_ref, 0, 0) == [1, 2, 3, 0]
    assert px(grey_ref, 2, 2) == [100, 100, 100, 255]

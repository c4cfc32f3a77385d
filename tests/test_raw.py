import numpy as np
import pytest

from imageref import DecodeError, load_image_from_buffer, load_image_from_raw
from imageref.codecs.raw import from_raw


def test_raw_roundtrip_keeps_pixels_and_header(icc_png_bytes):
    with load_image_from_buffer(icc_png_bytes) as ref:
        ref.set_orientation(3)
        dump = ref.to_bytes()
        pixels = np.array(ref._current().pixels)
        fields = dict(ref._current().fields)
        resx = ref.resx

    with load_image_from_raw(dump) as restored:
        np.testing.assert_array_equal(restored._current().pixels, pixels)
        assert restored.orientation == 3
        assert restored.resx == pytest.approx(resx)
        assert restored._current().fields["icc-profile-data"] == fields["icc-profile-data"]
        assert restored.has_icc_profile


def test_raw_multipage(gif_ref):
    with load_image_from_raw(gif_ref.to_bytes()) as restored:
        assert restored.page_height == 80
        assert restored.page_delay() == [100, 100, 100]


@pytest.mark.parametrize("buf", [b"", b"definitely not npz"])
def test_from_raw_rejects_garbage(buf):
    with pytest.raises(DecodeError):
        from_raw(buf)

import threading
import warnings

import pytest
from PIL import Image

from imageref import (
    DecodeError,
    ImageType,
    ImportParams,
    determine_image_type,
    load_image_from_buffer,
    load_thumbnail_from_buffer,
    new_image_from_buffer,
    new_thumbnail_from_buffer,
)
from imageref.codecs import decoder
from imageref.config import Interesting, Interpretation, Size

from .conftest import encode

SVG = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="40" height="30">'
    b'<rect x="0" y="0" width="20" height="30" fill="#ff0000"/></svg>'
)


def _svg_backend_available() -> bool:
    from reportlab.graphics import renderPM
    from reportlab.graphics.shapes import Drawing

    try:
        renderPM.drawToPIL(Drawing(2, 2))
    except renderPM.RenderPMError:
        return False
    return True


needs_svg = pytest.mark.skipif(not _svg_backend_available(), reason="no renderPM backend installed")


def _oriented_jpeg(orientation: int) -> bytes:
    exif = Image.Exif()
    exif[274] = orientation
    return encode(Image.new("RGB", (100, 50), (40, 80, 120)), "JPEG", exif=exif.tobytes())


def test_option_string_defaults():
    assert ImportParams().option_string() == "fail=TRUE"


def test_option_string_all_set():
    params = ImportParams(
        auto_rotate=True, fail_on_error=False, page=1, num_pages=-1, density=150,
        jpeg_shrink_factor=2, heif_thumbnail=False, svg_unlimited=True,
    )
    assert params.option_string() == (
        "n=-1,page=1,dpi=150,fail=FALSE,shrink=2,autorotate=TRUE,unlimited=TRUE,thumbnail=FALSE"
    )


def test_determine_image_type(jpeg_bytes, png_rgba_bytes, gif_bytes):
    assert determine_image_type(jpeg_bytes) == ImageType.JPEG
    assert determine_image_type(png_rgba_bytes) == ImageType.PNG
    assert determine_image_type(gif_bytes) == ImageType.GIF
    assert determine_image_type(SVG) == ImageType.SVG
    assert determine_image_type(b"not an image") == ImageType.UNKNOWN
    assert determine_image_type(b"") == ImageType.UNKNOWN


@pytest.mark.parametrize("buf", [b"", b"garbage bytes", b"\x89PNG\r\n\x1a\n broken"])
def test_malformed_input(buf):
    with pytest.raises(DecodeError):
        load_image_from_buffer(buf)


def test_load_keeps_source_buffer(jpeg_bytes):
    ref = new_image_from_buffer(jpeg_bytes)
    assert ref._slot.buf == jpeg_bytes
    ref.close()
    assert ref._slot.buf is None


def test_jpeg_shrink_on_load(jpeg_bytes):
    with load_image_from_buffer(jpeg_bytes, ImportParams(jpeg_shrink_factor=2)) as ref:
        assert (ref.width, ref.height) == (50, 50)


def test_invalid_shrink_factor(jpeg_bytes):
    with pytest.raises(DecodeError):
        load_image_from_buffer(jpeg_bytes, ImportParams(jpeg_shrink_factor=3))


def test_page_selection(gif_bytes):
    with load_image_from_buffer(gif_bytes, ImportParams(page=1, num_pages=2)) as ref:
        assert ref.height == 160
        assert ref.page_height == 80
        assert list(ref.get_point(0, 0)[:3]) == [0.0, 255.0, 0.0]


def test_page_out_of_range(gif_bytes):
    with pytest.raises(DecodeError):
        load_image_from_buffer(gif_bytes, ImportParams(page=5))


def test_orientation_is_read():
    with load_image_from_buffer(_oriented_jpeg(6)) as ref:
        assert ref.orientation == 6
        assert (ref.width, ref.height) == (100, 50)


def test_auto_rotate_on_load():
    with load_image_from_buffer(_oriented_jpeg(6), ImportParams(auto_rotate=True)) as ref:
        assert ref.orientation == 1
        assert (ref.width, ref.height) == (50, 100)


def test_auto_rotate_method():
    with load_image_from_buffer(_oriented_jpeg(8)) as ref:
        ref.auto_rotate()
        assert ref.orientation == 1
        assert (ref.width, ref.height) == (50, 100)


def test_decoder_warnings_fail_by_default(monkeypatch, jpeg_bytes):
    real = decoder._decode_raster

    def noisy(buf, params):
        warnings.warn("image size exceeds limit", Image.DecompressionBombWarning)
        return real(buf, params)

    monkeypatch.setattr(decoder, "_decode_raster", noisy)
    with pytest.raises(DecodeError):
        load_image_from_buffer(jpeg_bytes)
    with load_image_from_buffer(jpeg_bytes, ImportParams(fail_on_error=False)) as ref:
        assert ref.width == 100


def test_pillow_bomb_warning_fails_decode(monkeypatch, jpeg_bytes):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 6000)
    with pytest.raises(DecodeError, match="decoder warning"):
        decoder.decode(jpeg_bytes)
    image, _, _ = decoder.decode(jpeg_bytes, ImportParams(fail_on_error=False))
    assert (image.width, image.height) == (100, 100)
    image.release()


@pytest.mark.filterwarnings("ignore:unrelated warning")
def test_warnings_from_other_threads_do_not_fail_decode(jpeg_bytes):
    stop = threading.Event()

    def chatter():
        while not stop.is_set():
            warnings.warn("unrelated warning", UserWarning)

    thread = threading.Thread(target=chatter)
    thread.start()
    try:
        for _ in range(200):
            with load_image_from_buffer(jpeg_bytes) as ref:
                assert ref.width == 100
    finally:
        stop.set()
        thread.join()


def test_concurrent_loads(jpeg_bytes, png_rgba_bytes, gif_bytes):
    buffers = [jpeg_bytes, png_rgba_bytes, gif_bytes] * 10
    results, errors = [], []

    def load(buf):
        try:
            with load_image_from_buffer(buf, ImportParams(num_pages=-1)) as ref:
                results.append((ref.format, ref.width, ref.height))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=load, args=(buf,)) for buf in buffers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert results.count((ImageType.JPEG, 100, 100)) == 10
    assert results.count((ImageType.PNG, 64, 48)) == 10
    assert results.count((ImageType.GIF, 60, 240)) == 10


def test_heif_thumbnail_preference_is_ignored(jpeg_bytes):
    with load_image_from_buffer(jpeg_bytes, ImportParams(heif_thumbnail=True)) as ref:
        assert (ref.width, ref.height) == (100, 100)


@needs_svg
def test_svg_decode():
    with load_image_from_buffer(SVG, ImportParams(fail_on_error=False)) as ref:
        assert ref.format == ImageType.SVG
        assert (ref.width, ref.height) == (40, 30)
        assert ref.bands == 4
        assert ref.interpretation == Interpretation.SRGB
        left = ref.get_point(5, 5)
        right = ref.get_point(35, 5)
    assert left[0] == 255.0 and left[3] == 255.0
    assert right[3] == 0.0


@needs_svg
def test_svg_density():
    with load_image_from_buffer(SVG, ImportParams(density=144, fail_on_error=False)) as ref:
        assert (ref.width, ref.height) == (80, 60)


def test_thumbnail_loader(jpeg_bytes):
    with new_thumbnail_from_buffer(jpeg_bytes, 40, 20, Interesting.NONE) as ref:
        assert (ref.width, ref.height) == (20, 20)
        assert ref.format == ImageType.JPEG
    with load_thumbnail_from_buffer(jpeg_bytes, 40, 20, Interesting.CENTRE) as ref:
        assert (ref.width, ref.height) == (40, 20)


def test_thumbnail_loader_size_down(jpeg_bytes):
    with load_thumbnail_from_buffer(jpeg_bytes, 400, 400, Interesting.NONE, Size.DOWN) as ref:
        assert (ref.width, ref.height) == (100, 100)

import io

import numpy as np
import pytest
from PIL import Image

from imageref import (
    ExportParams,
    ImageRef,
    ImageType,
    JpegExportParams,
    ParameterError,
    PngExportParams,
    WebpExportParams,
    default_export_params,
    default_jpeg_export_params,
    default_png_export_params,
    default_webp_export_params,
    determine_image_type,
    is_type_supported,
    load_image_from_buffer,
)
from imageref.codecs.encoders import WebpEncoder

from .conftest import encode

webp_only = pytest.mark.skipif(not is_type_supported(ImageType.WEBP), reason="Pillow built without WEBP")


def _decoded(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def test_export_native_jpeg(jpeg_ref):
    data, meta = jpeg_ref.export_native()
    assert data[:2] == b"\xff\xd8"
    assert meta.format == ImageType.JPEG
    assert (meta.width, meta.height) == (100, 100)
    assert meta.pages == 1


def test_export_without_params_is_native(rgba_ref):
    data, meta = rgba_ref.export()
    assert data[:8] == b"\x89PNG\r\n\x1a\n"
    assert meta.format == ImageType.PNG
    assert _decoded(data).mode == "RGBA"


def test_export_generic_to_png(jpeg_ref):
    data, meta = jpeg_ref.export(ExportParams(format=ImageType.PNG, compression=9))
    assert data[:4] == b"\x89PNG"
    assert meta.format == ImageType.PNG
    assert jpeg_ref.format == ImageType.JPEG


def test_export_generic_quality_reaches_jpeg(jpeg_ref):
    small, _ = jpeg_ref.export(ExportParams(format=ImageType.JPEG, quality=10))
    large, _ = jpeg_ref.export(ExportParams(format=ImageType.JPEG, quality=95))
    assert len(small) < len(large)


@pytest.mark.parametrize("fmt", [ImageType.SVG, ImageType.MAGICK, ImageType.PDF, ImageType.BMP])
def test_unsupported_format_raises_before_encoding(jpeg_ref, fmt):
    before = jpeg_ref._current()
    with pytest.raises(ParameterError):
        jpeg_ref.export(ExportParams(format=fmt))
    assert jpeg_ref._current() is before
    assert not before.released


def test_native_export_falls_back_to_jpeg(make_native):
    native = make_native(np.full((8, 8, 3), 90, np.uint8))
    with ImageRef(native, ImageType.SVG) as ref:
        data, meta = ref.export_native()
    assert data[:2] == b"\xff\xd8"
    assert meta.format == ImageType.JPEG


def test_bmp_loads_and_exports_as_png():
    buf = encode(Image.new("RGB", (10, 6), (1, 2, 3)), "BMP")
    with load_image_from_buffer(buf) as ref:
        assert ref.format == ImageType.PNG
        assert ref.original_format == ImageType.BMP
        data, meta = ref.export_native()
    assert data[:4] == b"\x89PNG"
    assert meta.format == ImageType.PNG


def test_jpeg_export_flattens_alpha(rgba_ref):
    data, _ = rgba_ref.export_jpeg(JpegExportParams(quality=90))
    assert _decoded(data).mode == "RGB"


def test_strip_metadata_drops_exif():
    exif = Image.Exif()
    exif[0x010F] = "Camera"
    buf = encode(Image.new("RGB", (16, 16), (10, 20, 30)), "JPEG", exif=exif.tobytes())
    with load_image_from_buffer(buf) as ref:
        assert ref.has_exif
        kept, _ = ref.export_jpeg(JpegExportParams())
        stripped, _ = ref.export_jpeg(JpegExportParams(strip_metadata=True))
    assert _decoded(kept).getexif().get(0x010F) == "Camera"
    assert not _decoded(stripped).getexif()


def test_png_palette_export(jpeg_ref):
    data, _ = jpeg_ref.export_png(PngExportParams(palette=True))
    assert _decoded(data).mode == "P"


def test_default_parameter_sets():
    generic = default_export_params()
    assert generic.format == ImageType.UNKNOWN
    assert (generic.quality, generic.compression, generic.interlaced, generic.effort) == (80, 6, True, 4)
    assert default_jpeg_export_params().quality == 80
    assert default_png_export_params().compression == 6
    webp = default_webp_export_params()
    assert (webp.quality, webp.lossless, webp.effort) == (75, False, 4)

    assert ExportParams().quality == 0
    assert JpegExportParams().quality == 80
    assert JpegExportParams().interlace is True
    assert PngExportParams().compression == 6
    assert WebpExportParams().reduction_effort == 4


def _capture_webp_params(monkeypatch):
    captured = []

    def save(self, image, params, out):
        captured.append(params)
        out.write(b"RIFF")

    monkeypatch.setattr(WebpEncoder, "save", save)
    return captured


@webp_only
def test_webp_export_uses_handle_profile(monkeypatch, jpeg_ref):
    captured = _capture_webp_params(monkeypatch)
    jpeg_ref.export_webp(WebpExportParams(icc_profile="/tmp/other.icc"))
    assert captured[0].icc_profile == ""


@webp_only
def test_webp_export_after_profile_optimization(monkeypatch, icc_png_bytes):
    captured = _capture_webp_params(monkeypatch)
    with load_image_from_buffer(icc_png_bytes) as ref:
        ref.optimize_icc_profile()
        assert ref.optimized_icc_profile == "srgb"
        ref.export(ExportParams(format=ImageType.WEBP, quality=60))
    assert captured[0].icc_profile == "srgb"
    assert captured[0].quality == 60


@webp_only
def test_webp_roundtrip(rgba_ref):
    data, meta = rgba_ref.export_webp()
    assert data[:4] == b"RIFF"
    assert meta.format == ImageType.WEBP
    assert _decoded(data).size == (64, 48)


def test_animated_gif_export(gif_ref):
    data, meta = gif_ref.export_gif()
    assert meta.pages == 3
    img = Image.open(io.BytesIO(data))
    assert img.n_frames == 3
    assert img.size == (60, 80)


def test_tiff_export(jpeg_ref):
    data, meta = jpeg_ref.export_tiff()
    assert data[:2] in (b"II", b"MM")
    assert meta.format == ImageType.TIFF


def test_to_image(jpeg_ref):
    img = jpeg_ref.to_image(ExportParams(format=ImageType.PNG))
    assert img.size == (100, 100)
    assert img.format == "PNG"


def test_resize_then_default_jpeg_export(jpeg_bytes):
    with load_image_from_buffer(jpeg_bytes) as ref:
        ref.resize(0.5)
        data, meta = ref.export_jpeg(default_jpeg_export_params())
    assert (meta.width, meta.height) == (50, 50)
    assert determine_image_type(data) == ImageType.JPEG
    with load_image_from_buffer(data) as decoded:
        assert decoded.format == ImageType.JPEG
        assert (decoded.width, decoded.height) == (50, 50)

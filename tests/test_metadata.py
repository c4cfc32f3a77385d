import logging

import numpy as np
import pytest

from imageref import (
    EngineSettings,
    ImageRef,
    ImageType,
    engine,
    get_rotation_angle_from_exif,
    load_image_from_buffer,
    primitives,
)
from imageref.config import Interpretation


@pytest.mark.parametrize("orientation, expected", [
    (0, (0, False)),
    (1, (0, False)),
    (2, (0, True)),
    (3, (180, False)),
    (4, (180, True)),
    (5, (90, True)),
    (6, (270, False)),
    (7, (270, True)),
    (8, (90, False)),
    (9, (0, False)),
])
def test_rotation_angle_from_exif(orientation, expected):
    assert get_rotation_angle_from_exif(orientation) == expected


def test_metadata_snapshot(jpeg_ref):
    meta = jpeg_ref.metadata()
    assert meta.format == ImageType.JPEG
    assert (meta.width, meta.height) == (100, 100)
    assert meta.colorspace == Interpretation.SRGB
    assert meta.pages == 1
    jpeg_ref.resize(0.5)
    # snapshots are not live
    assert meta.width == 100
    assert jpeg_ref.metadata().width == 50


def test_jp2k_reports_one_page(make_native):
    native = make_native(np.zeros((4, 4, 3), np.uint8), fields={"n-pages": 5})
    with ImageRef(native, ImageType.JP2K) as ref:
        assert ref.pages == 1
        assert ref.metadata().pages == 1


def test_remove_metadata_keeps_profile_and_geometry(icc_png_bytes):
    with load_image_from_buffer(icc_png_bytes) as ref:
        ref._apply(
            primitives.set_fields,
            {"exif-ifd0-Make": "Camera", "xmp-data": b"<x/>", "orientation": 6, "iptc-data": b"\x1c"},
        )
        assert ref.has_iptc
        ref.remove_metadata()
        names = ref.image_fields()
        assert "icc-profile-data" in names
        assert "orientation" in names
        assert "xmp-data" not in names
        assert "exif-ifd0-Make" not in names
        assert not ref.has_iptc


def test_remove_metadata_keep_list(icc_png_bytes):
    with load_image_from_buffer(icc_png_bytes) as ref:
        ref._apply(
            primitives.set_fields,
            {"exif-ifd0-Copyright": "me", "exif-ifd0-Make": "Camera"},
        )
        ref.remove_metadata("exif-ifd0-Copyright")
        names = ref.image_fields()
        assert "exif-ifd0-Copyright" in names
        assert "exif-ifd0-Make" not in names


def test_orientation_setters(jpeg_ref):
    jpeg_ref.set_orientation(6)
    assert jpeg_ref.orientation == 6
    jpeg_ref.remove_orientation()
    assert jpeg_ref.orientation == 0


def test_icc_profile_removal(icc_png_bytes):
    with load_image_from_buffer(icc_png_bytes) as ref:
        assert ref.has_profile
        ref.remove_icc_profile()
        assert not ref.has_profile


def test_optimize_profile_untagged_is_noop(jpeg_ref):
    before = jpeg_ref._current()
    jpeg_ref.optimize_icc_profile()
    assert jpeg_ref._current() is before
    assert jpeg_ref.optimized_icc_profile == ""


def test_engine_startup_twice_warns(caplog):
    engine.shutdown()
    engine.startup(EngineSettings(log_level=logging.DEBUG))
    assert engine.is_started()
    assert engine.settings().log_level == logging.DEBUG
    with caplog.at_level(logging.WARNING, logger="imageref"):
        engine.startup()
    assert any("[Engine]" in record.getMessage() for record in caplog.records)
    engine.shutdown()
    assert not engine.is_started()


def test_loaders_start_the_engine(jpeg_bytes):
    engine.shutdown()
    with load_image_from_buffer(jpeg_bytes):
        assert engine.is_started()

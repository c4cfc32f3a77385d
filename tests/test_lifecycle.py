"""Handle lifecycle: exactly-once release, closing and reclamation."""

import gc
import threading

import numpy as np
import pytest

from imageref import ClosedImageError, ImageRef, ImageType
from imageref.image_ref import NativeSlot


def test_close_releases_native_once(make_native):
    native = make_native(np.zeros((4, 4, 3), np.uint8))
    ref = ImageRef(native, ImageType.PNG)
    ref.close()
    ref.close()
    assert ref.closed
    assert native.released
    assert native.release_count == 1


def test_use_after_close_raises(jpeg_ref):
    jpeg_ref.close()
    with pytest.raises(ClosedImageError):
        _ = jpeg_ref.width
    with pytest.raises(ClosedImageError):
        jpeg_ref.invert()
    with pytest.raises(ClosedImageError):
        jpeg_ref.export_native()


def test_context_manager_closes(make_native):
    native = make_native(np.zeros((4, 4, 3), np.uint8))
    with ImageRef(native) as ref:
        assert ref.width == 4
    assert ref.closed
    assert native.released


def test_unreachable_handle_is_reclaimed(make_native):
    native = make_native(np.zeros((4, 4, 3), np.uint8))
    ref = ImageRef(native)
    del ref
    gc.collect()
    assert native.released
    assert native.release_count == 1


def test_close_then_collect_does_not_release_twice(make_native):
    native = make_native(np.zeros((4, 4, 3), np.uint8))
    ref = ImageRef(native)
    ref.close()
    del ref
    gc.collect()
    assert native.release_count == 1


def test_mutation_releases_previous_image(jpeg_ref):
    before = jpeg_ref._current()
    jpeg_ref.invert()
    after = jpeg_ref._current()
    assert after is not before
    assert before.released
    assert before.release_count == 1
    assert not after.released


def test_replace_with_same_image_is_noop(make_native):
    native = make_native(np.zeros((4, 4, 3), np.uint8))
    slot = NativeSlot(native)
    slot.replace(native)
    assert not native.released
    assert slot.get() is native


def test_slot_release_is_idempotent(make_native):
    native = make_native(np.zeros((2, 2, 1), np.uint8))
    slot = NativeSlot(native, b"source")
    assert slot.release() is True
    assert slot.release() is False
    assert slot.buf is None
    with pytest.raises(ClosedImageError):
        slot.get()


def test_copy_is_independent(jpeg_ref):
    clone = jpeg_ref.copy()
    try:
        clone.resize(0.5)
        assert clone.width == 50
        assert jpeg_ref.width == 100
        assert clone.format == jpeg_ref.format
        assert clone.original_format == jpeg_ref.original_format
    finally:
        clone.close()
    assert jpeg_ref.width == 100


def test_concurrent_mutations_serialize(jpeg_ref):
    original = np.array(jpeg_ref._current().pixels)

    def worker():
        for _ in range(5):
            jpeg_ref.invert()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    # 20 inversions cancel out
    np.testing.assert_array_equal(jpeg_ref._current().pixels, original)


def test_operand_handle_may_be_self(jpeg_ref):
    jpeg_ref.join(jpeg_ref, "horizontal")
    assert jpeg_ref.width == 200
    assert jpeg_ref.height == 100

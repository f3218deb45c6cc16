"""Tests for fx.kaleidoscope: validation, end-to-end mosaic, rotation and write order."""

import math
import time

import numpy as np
import pytest

import effects.geometry as geometry_mod
from effects.fx.kaleidoscope import (
    EFFECT_ID,
    PARAMS,
    apply,
    kaleidoscope,
    rotation_targets,
    stamp,
)
from effects.geometry import slice_triangle
from effects.util.dim import dim
from engine.pipeline import EFFECT_WARN_MS
from imaging.buffer import AllocationError, DimMode, PixelBuffer, SampledPoints


def _buffer(h=60, w=60, seed=42):
    rng = np.random.default_rng(seed)
    return PixelBuffer.from_array(rng.integers(0, 256, (h, w, 3), dtype=np.uint8))


def _white(h=100, w=100):
    return PixelBuffer.from_array(np.full((h, w, 3), 255, dtype=np.uint8))


def _reference_kaleidoscope(buf, n, dim_factor, shrink):
    """Point-at-a-time composition on a copy of ``buf``."""
    points = slice_triangle(buf, n, shrink)
    out = dim(buf, dim_factor, DimMode.INTO_NEW)
    w, h = out.width, out.height
    for idx in range(n):
        angle = math.radians(idx * 360.0 / n)
        cos_v, sin_v = math.cos(angle), math.sin(angle)
        for x, y, color in zip(points.xs.tolist(), points.ys.tolist(), points.colors):
            new_x = math.trunc(x * cos_v + y * sin_v) + w // 2
            new_y = math.trunc(y * cos_v - x * sin_v) + h // 2
            if 0 < new_x < w and 0 < new_y < h:
                out.data[new_y, new_x] = color
    return out


# --- Validation ---


@pytest.mark.smoke
@pytest.mark.parametrize(
    "n,dim_factor,shrink",
    [
        (-1, 0.5, 0.3),
        (0, 0.5, 0.3),
        (4, 0.5, 0.51),
        (4, 0.5, -0.1),
        (4, -0.01, 0.3),
        (4, float("nan"), 0.3),
        (4, 0.5, float("nan")),
        (2.5, 0.5, 0.3),
    ],
)
def test_invalid_params_rejected_without_mutation(n, dim_factor, shrink):
    buf = _buffer()
    before = buf.data.copy()
    with pytest.raises(ValueError):
        kaleidoscope(buf, n, dim_factor, shrink)
    np.testing.assert_array_equal(buf.data, before)


@pytest.mark.smoke
def test_absent_image_rejected():
    with pytest.raises(ValueError):
        kaleidoscope(None, 4, 0.5, 0.3)
    with pytest.raises(ValueError):
        kaleidoscope(PixelBuffer(width=0, height=0), 4, 0.5, 0.3)


def test_slice_failure_leaves_image_untouched(monkeypatch):
    buf = _buffer()
    before = buf.data.copy()
    monkeypatch.setattr(geometry_mod, "QUANTIZATION_SCALE", 0.0)
    with pytest.raises(AllocationError):
        kaleidoscope(buf, 6, 0.5, 0.3)
    np.testing.assert_array_equal(buf.data, before)


# --- End-to-end ---


@pytest.mark.smoke
def test_white_square_four_slices():
    """Corners keep the dimmed value, the four axis wedges stay white."""
    buf = _white()
    out = kaleidoscope(buf, 4, 0.5, 0.3)
    assert out is buf
    assert set(np.unique(buf.data).tolist()) <= {127, 255}

    for y, x in [(5, 5), (5, 94), (94, 5), (94, 94)]:
        np.testing.assert_array_equal(buf.data[y, x], [127, 127, 127])

    # 10 px from center along each axis
    for y, x in [(60, 50), (50, 60), (40, 50), (50, 40)]:
        np.testing.assert_array_equal(buf.data[y, x], [255, 255, 255])


def test_white_square_is_fourfold_symmetric():
    buf = _white()
    kaleidoscope(buf, 4, 0.5, 0.3)
    bright = buf.data[:, :, 0] == 255
    ys, xs = np.nonzero(bright)
    # Rotating a bright pixel by 90 degrees about (50, 50) lands on a bright
    # pixel, up to one pixel of truncation
    hits = 0
    for y, x in zip(ys, xs):
        ry, rx = 50 - (x - 50), 50 + (y - 50)
        window = bright[max(ry - 1, 0) : ry + 2, max(rx - 1, 0) : rx + 2]
        hits += bool(window.any())
    assert hits == len(ys)


@pytest.mark.parametrize("n", [3, 5, 8])
def test_matches_pointwise_reference(n):
    buf = _buffer()
    expected = _reference_kaleidoscope(buf.copy(), n, 0.4, 0.35)
    kaleidoscope(buf, n, 0.4, 0.35)
    np.testing.assert_array_equal(buf.data, expected.data)


def test_single_slice_is_wedge_over_dimmed_background():
    """n=1 stamps only rotation 0: the wedge's own shrunk points, nothing else."""
    buf = _buffer()
    original = buf.copy()
    points = slice_triangle(original, 1, 0.3)
    expected = dim(original, 0.5, DimMode.INTO_NEW)
    xs, ys, inside = rotation_targets(points, 1, 0, buf.width, buf.height)
    expected.data[ys[inside], xs[inside]] = points.colors[inside]

    kaleidoscope(buf, 1, 0.5, 0.3)
    np.testing.assert_array_equal(buf.data, expected.data)


def test_zero_dim_keeps_only_wedges():
    buf = _white()
    kaleidoscope(buf, 6, 0.0, 0.4)
    assert buf.data[1, 1].tolist() == [0, 0, 0]
    assert (buf.data == 255).any()


def test_determinism():
    a, b = _buffer(), _buffer()
    kaleidoscope(a, 7, 0.6, 0.25)
    kaleidoscope(b, 7, 0.6, 0.25)
    np.testing.assert_array_equal(a.data, b.data)


def test_non_square_image():
    buf = _buffer(h=48, w=90)
    kaleidoscope(buf, 6, 0.5, 0.5)
    assert buf.data.shape == (48, 90, 3)


# --- Rotation ---


@pytest.mark.parametrize("n", [3, 4, 6, 8])
def test_rotation_targets_are_rigid_rotations(n):
    """Rotation idx writes the idx-0 targets turned by idx * 360 / n degrees."""
    w = h = 80
    points = slice_triangle(_buffer(h, w), n, 0.4)
    x0, y0, _ = rotation_targets(points, n, 0, w, h)
    rx, ry = x0 - w // 2, y0 - h // 2
    for idx in range(1, n):
        a = math.radians(idx * 360.0 / n)
        xi, yi, _ = rotation_targets(points, n, idx, w, h)
        ex = rx * math.cos(a) + ry * math.sin(a)
        ey = ry * math.cos(a) - rx * math.sin(a)
        assert np.all(np.abs((xi - w // 2) - ex) < 1.0)
        assert np.all(np.abs((yi - h // 2) - ey) < 1.0)


def test_rotation_zero_is_translation():
    pts = SampledPoints(
        xs=np.array([-3, 0, 4]),
        ys=np.array([2, 0, -1]),
        colors=np.zeros((3, 3), dtype=np.uint8),
        capacity=3,
    )
    xs, ys, inside = rotation_targets(pts, 4, 0, 20, 10)
    np.testing.assert_array_equal(xs, [7, 10, 14])
    np.testing.assert_array_equal(ys, [7, 5, 4])
    assert inside.all()


def test_row_and_column_zero_never_written():
    pts = SampledPoints(
        xs=np.array([-5, 0, 0]),
        ys=np.array([0, -5, 4]),
        colors=np.full((3, 3), 200, dtype=np.uint8),
        capacity=3,
    )
    _, _, inside = rotation_targets(pts, 1, 0, 10, 10)
    assert inside.tolist() == [False, False, True]


def test_stamp_later_point_wins():
    buf = PixelBuffer.allocate(10, 10)
    pts = SampledPoints(
        xs=np.array([1, 1, 2]),
        ys=np.array([1, 1, 1]),
        colors=np.array([[10, 10, 10], [20, 20, 20], [30, 30, 30]], dtype=np.uint8),
        capacity=3,
    )
    written = stamp(buf, pts, 1, 0)
    assert written == 2
    assert buf.data[6, 6].tolist() == [20, 20, 20]
    assert buf.data[6, 7].tolist() == [30, 30, 30]


def test_later_rotation_overwrites_earlier():
    """A point on the center row at rotation 180 lands where another sat at 0."""
    buf = PixelBuffer.allocate(10, 10)
    pts = SampledPoints(
        xs=np.array([2, -2]),
        ys=np.array([0, 0]),
        colors=np.array([[10, 10, 10], [90, 90, 90]], dtype=np.uint8),
        capacity=2,
    )
    stamp(buf, pts, 2, 0)
    assert buf.data[5, 7].tolist() == [10, 10, 10]
    stamp(buf, pts, 2, 1)
    # (-2, 0) rotated by 180 degrees is (2, 0)
    assert buf.data[5, 7].tolist() == [90, 90, 90]


# --- Registry adapter ---


def test_apply_defaults():
    a = _buffer()
    b = a.copy()
    apply(a, {})
    kaleidoscope(
        b,
        PARAMS["slices"]["default"],
        PARAMS["dim"]["default"],
        PARAMS["shrink"]["default"],
    )
    np.testing.assert_array_equal(a.data, b.data)


def test_apply_params():
    a = _buffer()
    b = a.copy()
    apply(a, {"slices": 5, "dim": 0.2, "shrink": 0.45})
    kaleidoscope(b, 5, 0.2, 0.45)
    np.testing.assert_array_equal(a.data, b.data)


def test_effect_id():
    assert EFFECT_ID == "fx.kaleidoscope"


@pytest.mark.perf
def test_1080p_under_warn_threshold():
    """A 1080p frame with 6 slices stays below the pipeline's slow-step warning."""
    frame = np.random.default_rng(42).integers(0, 256, (1080, 1920, 3), dtype=np.uint8)
    buf = PixelBuffer.from_array(frame)
    t0 = time.perf_counter()
    kaleidoscope(buf, 6, 0.5, 0.3)
    elapsed = (time.perf_counter() - t0) * 1000
    assert elapsed < EFFECT_WARN_MS, (
        f"kaleidoscope took {elapsed:.1f}ms at 1080p, limit is {EFFECT_WARN_MS}ms"
    )

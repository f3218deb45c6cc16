"""Kaleidoscope: stamp n rotated copies of one wedge onto a dimmed image."""

import logging
import math

import numpy as np

from effects.geometry import slice_triangle
from effects.util.dim import dim
from imaging.buffer import DimMode, PixelBuffer, SampledPoints

logger = logging.getLogger(__name__)

EFFECT_ID = "fx.kaleidoscope"
EFFECT_NAME = "Kaleidoscope"
EFFECT_CATEGORY = "fx"

MAX_SHRINK = 0.5

PARAMS: dict = {
    "slices": {
        "type": "int",
        "min": 1,
        "max": 64,
        "default": 6,
        "label": "Slices",
        "curve": "linear",
        "unit": "count",
        "description": "Number of rotated wedge copies",
    },
    "dim": {
        "type": "float",
        "min": 0.0,
        "max": 1.0,
        "default": 0.5,
        "label": "Background",
        "curve": "linear",
        "unit": "x",
        "description": "Brightness multiplier for the background",
    },
    "shrink": {
        "type": "float",
        "min": 0.0,
        "max": MAX_SHRINK,
        "default": 0.3,
        "label": "Shrink",
        "curve": "linear",
        "unit": "x",
        "description": "Scale of the mosaic relative to the image",
    },
}


def _validate(image: PixelBuffer | None, n: int, dim_factor: float, shrink: float):
    if image is None or not image.is_valid:
        raise ValueError("kaleidoscope requires a valid image buffer")
    if int(n) != n or n <= 0:
        raise ValueError(f"slice count must be a positive integer, got {n}")
    if not math.isfinite(shrink) or shrink < 0.0 or shrink > MAX_SHRINK:
        raise ValueError(f"shrink must be within [0, {MAX_SHRINK}], got {shrink}")
    if not math.isfinite(dim_factor) or dim_factor < 0.0:
        raise ValueError(f"dim factor must be a finite value >= 0, got {dim_factor}")


def rotation_targets(
    points: SampledPoints, n: int, idx: int, width: int, height: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Absolute coordinates of ``points`` rotated by ``idx * 360 / n`` degrees.

    Returns (xs, ys, inside) where ``inside`` marks coordinates strictly
    within the image (row 0 and column 0 are never written).
    """
    angle = math.radians(idx * 360.0 / n)
    cos_v = math.cos(angle)
    sin_v = math.sin(angle)

    # y grows downward, so positive angles turn counter-clockwise on screen
    xs = np.trunc(points.xs * cos_v + points.ys * sin_v).astype(np.int64) + width // 2
    ys = np.trunc(points.ys * cos_v - points.xs * sin_v).astype(np.int64) + height // 2
    inside = (xs > 0) & (xs < width) & (ys > 0) & (ys < height)
    return xs, ys, inside


def stamp(image: PixelBuffer, points: SampledPoints, n: int, idx: int) -> int:
    """Write one rotated copy of ``points`` into ``image``. Returns pixels written.

    When several points land on the same pixel the later point in list
    order wins.
    """
    xs, ys, inside = rotation_targets(points, n, idx, image.width, image.height)
    xs, ys, colors = xs[inside], ys[inside], points.colors[inside]
    if len(xs) == 0:
        return 0

    # Last occurrence per pixel, so the assignment below has no duplicates
    linear = ys * image.width + xs
    _, first_from_end = np.unique(linear[::-1], return_index=True)
    last = len(linear) - 1 - first_from_end

    image.data[ys[last], xs[last]] = colors[last]
    return len(last)


def kaleidoscope(
    image: PixelBuffer, n: int, dim_factor: float, shrink: float
) -> PixelBuffer:
    """Build an n-fold kaleidoscope mosaic in place.

    Slices one wedge from the undimmed image, dims the image in place, then
    stamps the wedge rotated through n equally spaced angles. Rotation index
    order is preserved, so later rotations overwrite earlier ones.

    Raises:
        ValueError: On an empty image, n <= 0, shrink outside [0, 0.5], or a
            negative dim factor. Nothing is mutated.
        AllocationError: If the wedge point list cannot be allocated. Nothing
            is mutated.
    """
    _validate(image, n, dim_factor, shrink)
    n = int(n)

    points = slice_triangle(image, n, shrink)
    dim(image, dim_factor, DimMode.IN_PLACE)

    written = 0
    for idx in range(n):
        written += stamp(image, points, n, idx)

    logger.debug(
        "Kaleidoscope n=%d on %dx%d: %d points, %d pixel writes",
        n,
        image.width,
        image.height,
        points.count,
        written,
    )
    return image


def apply(buffer: PixelBuffer, params: dict) -> PixelBuffer:
    """Registry entry point."""
    slices = params.get("slices", PARAMS["slices"]["default"])
    if isinstance(slices, float) and not math.isfinite(slices):
        raise ValueError(f"slice count must be finite, got {slices}")
    return kaleidoscope(
        buffer,
        int(slices),
        float(params.get("dim", PARAMS["dim"]["default"])),
        float(params.get("shrink", PARAMS["shrink"]["default"])),
    )

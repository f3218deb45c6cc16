"""Wedge geometry and triangle slicing.

The wedge is an isosceles triangle with its apex at the image center and
its base toward the bottom edge. Slicing copies every pixel inside it into
a SampledPoints list of center-relative, shrunk coordinates.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from imaging.buffer import PixelBuffer, SampledPoints

logger = logging.getLogger(__name__)

# Mathematical wedge area differs from pixel area because of quantization
QUANTIZATION_SCALE = 1.1


@dataclass(frozen=True)
class WedgeGeometry:
    half_angle_deg: float
    tan_half: float
    pre_move_height: int  # source row of the wedge apex
    move_height: int  # re-centering shift applied after shrink
    row_count: int


def wedge_geometry(width: int, height: int, n: int, shrink: float) -> WedgeGeometry:
    """Derive wedge parameters for an image of ``width`` x ``height``.

    Raises:
        ValueError: If n <= 0.
    """
    if n <= 0:
        raise ValueError(f"slice count must be > 0, got {n}")
    half_angle_deg = (360.0 / n) / 2
    tan_half = math.tan(math.radians(half_angle_deg))
    pre_move_height = abs(int(width / (4 * tan_half)) - height // 2)
    move_height = int((height // 2) * shrink)
    return WedgeGeometry(
        half_angle_deg=half_angle_deg,
        tan_half=tan_half,
        pre_move_height=pre_move_height,
        move_height=move_height,
        row_count=max(height - pre_move_height, 0),
    )


def wedge_capacity(height: int, tan_half: float) -> int:
    """Approximate upper bound on the number of wedge pixels."""
    return max(int(height * height * tan_half * QUANTIZATION_SCALE), 0)


def round_half_away(values: np.ndarray) -> np.ndarray:
    """Round to nearest integer, ties away from zero (not banker's rounding)."""
    return (np.sign(values) * np.floor(np.abs(values) + 0.5)).astype(np.int64)


def row_spans(width: int, geometry: WedgeGeometry) -> tuple[np.ndarray, np.ndarray]:
    """Per-row [start, end) pixel columns of the wedge, clamped to the image."""
    idx = np.arange(geometry.row_count, dtype=np.float64)
    half_widths = np.clip(idx * geometry.tan_half, 0, width).astype(np.int64)
    center = width // 2
    starts = np.maximum(center - half_widths, 0)
    ends = np.minimum(center + half_widths, width)
    return starts, ends


def slice_triangle(source: PixelBuffer, n: int, shrink: float) -> SampledPoints:
    """Copy the pixels of one wedge of ``source`` into a point list.

    Points are ordered row by row from the apex down, left to right within
    a row. x is the column offset from center scaled by ``shrink``; y is the
    shrunk row offset re-centered by the geometry's move height.

    Raises:
        ValueError: If source is empty or n <= 0.
        AllocationError: If the exact point count would exceed the
            approximate capacity, or the list cannot be allocated.
    """
    if source is None or not source.is_valid:
        raise ValueError("slice_triangle requires a valid source buffer")

    width, height = source.width, source.height
    geometry = wedge_geometry(width, height, n, shrink)
    capacity = wedge_capacity(height, geometry.tan_half)

    starts, ends = row_spans(width, geometry)
    lengths = ends - starts
    count = int(lengths.sum())
    points = SampledPoints.allocate(count, capacity)
    if count == 0:
        return points

    rows = np.repeat(np.arange(geometry.row_count, dtype=np.int64), lengths)
    row_first = np.repeat(np.cumsum(lengths) - lengths, lengths)
    cols = np.repeat(starts, lengths) + (np.arange(count, dtype=np.int64) - row_first)

    points.xs[:] = round_half_away((cols - width // 2) * shrink)
    points.ys[:] = round_half_away((rows - height // 2) * shrink) + geometry.move_height
    points.colors[:] = source.data[rows + geometry.pre_move_height, cols]

    logger.debug(
        "Sliced wedge n=%d: %d points (capacity %d, apex row %d)",
        n,
        count,
        capacity,
        geometry.pre_move_height,
    )
    return points

"""Pixel buffer and sampled point containers.

A PixelBuffer owns a row-major (H, W, 3) uint8 array. ``data is None`` is
the canonical empty state (after release, or before a decode fills it).
Every allocation goes through a size check so callers get AllocationError
instead of an unbounded numpy allocation.
"""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

COLOR_COMPONENTS = 3

# Hard cap on any single pixel or point allocation (1 GiB)
MAX_BUFFER_BYTES = 1024 * 1024 * 1024


class AllocationError(MemoryError):
    """Backing storage for a buffer or point list could not be obtained."""


class DimMode(Enum):
    IN_PLACE = "in_place"
    INTO_NEW = "into_new"


def _checked_empty(shape: tuple[int, ...], dtype) -> np.ndarray:
    """np.empty with a MAX_BUFFER_BYTES guard."""
    nbytes = int(np.prod(shape, dtype=np.int64)) * np.dtype(dtype).itemsize
    if nbytes > MAX_BUFFER_BYTES:
        raise AllocationError(
            f"Requested {nbytes} bytes exceeds limit of {MAX_BUFFER_BYTES} bytes"
        )
    try:
        return np.empty(shape, dtype=dtype)
    except MemoryError as e:
        raise AllocationError(f"Could not allocate {nbytes} bytes") from e


@dataclass
class PixelBuffer:
    """RGB pixels plus the encoded-stream size they were decoded from.

    ``size`` is informational only; the pixel count comes from width/height.
    """

    width: int
    height: int
    size: int = 0
    data: np.ndarray | None = field(default=None, repr=False)

    def __post_init__(self):
        if self.data is None:
            return
        expected = (self.height, self.width, COLOR_COMPONENTS)
        if self.data.shape != expected:
            raise ValueError(
                f"Pixel data shape {self.data.shape} does not match {expected}"
            )
        if self.data.dtype != np.uint8:
            raise ValueError(f"Pixel data must be uint8, got {self.data.dtype}")

    @classmethod
    def allocate(cls, width: int, height: int, size: int = 0) -> "PixelBuffer":
        """Allocate a fresh zero-filled buffer. Raises AllocationError."""
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid buffer extent {width}x{height}")
        data = _checked_empty((height, width, COLOR_COMPONENTS), np.uint8)
        data.fill(0)
        return cls(width=width, height=height, size=size, data=data)

    @classmethod
    def from_array(cls, pixels: np.ndarray, size: int = 0) -> "PixelBuffer":
        """Copy an (H, W, 3) array into a new buffer."""
        if pixels.ndim != 3 or pixels.shape[2] != COLOR_COMPONENTS:
            raise ValueError(
                f"Expected (H, W, {COLOR_COMPONENTS}) array, got {pixels.shape}"
            )
        h, w = pixels.shape[:2]
        buf = cls.allocate(w, h, size)
        buf.data[...] = np.asarray(pixels, dtype=np.uint8)
        return buf

    @property
    def is_valid(self) -> bool:
        return self.data is not None and self.width > 0 and self.height > 0

    @property
    def nbytes(self) -> int:
        return self.width * self.height * COLOR_COMPONENTS if self.is_valid else 0

    def copy(self) -> "PixelBuffer":
        """Deep copy; the new buffer shares no memory with this one."""
        if not self.is_valid:
            raise ValueError("Cannot copy an empty pixel buffer")
        buf = PixelBuffer.allocate(self.width, self.height, self.size)
        buf.data[...] = self.data
        return buf

    def release(self):
        """Drop pixel data and reset to the empty state."""
        self.data = None
        self.width = 0
        self.height = 0
        self.size = 0


@dataclass
class SampledPoints:
    """Center-relative wedge points, stored as parallel arrays.

    ``count`` is authoritative. ``capacity`` is the approximate sizing
    bound the list was checked against and is usually larger.
    """

    xs: np.ndarray
    ys: np.ndarray
    colors: np.ndarray
    capacity: int = 0

    @classmethod
    def allocate(cls, count: int, capacity: int) -> "SampledPoints":
        if count > capacity:
            raise AllocationError(
                f"Point count {count} exceeds allocated capacity {capacity}"
            )
        return cls(
            xs=_checked_empty((count,), np.int64),
            ys=_checked_empty((count,), np.int64),
            colors=_checked_empty((count, COLOR_COMPONENTS), np.uint8),
            capacity=capacity,
        )

    @classmethod
    def empty(cls) -> "SampledPoints":
        return cls.allocate(0, 0)

    @property
    def count(self) -> int:
        return len(self.xs)

    def __len__(self) -> int:
        return self.count

"""Background dimmer: scale every channel of every pixel by a factor."""

import math

import numpy as np

from imaging.buffer import DimMode, PixelBuffer

EFFECT_ID = "util.dim"
EFFECT_NAME = "Dim"
EFFECT_CATEGORY = "util"

PARAMS: dict = {
    "factor": {
        "type": "float",
        "min": 0.0,
        "max": 1.0,
        "default": 0.5,
        "label": "Brightness",
        "curve": "linear",
        "unit": "x",
        "description": "Multiplier applied to every color channel",
    },
}


def dim(
    source: PixelBuffer,
    factor: float,
    mode: DimMode = DimMode.IN_PLACE,
) -> PixelBuffer:
    """Multiply every channel sample by ``factor``.

    The product is not clamped: values above 255 wrap modulo 256, the same
    way a native unsigned-byte store would.

    Args:
        source: Buffer to read from.
        factor: Non-negative multiplier.
        mode:   IN_PLACE overwrites ``source``; INTO_NEW writes into a freshly
                allocated buffer with the source's width/height/size.

    Returns:
        The buffer that was written (``source`` itself for IN_PLACE).

    Raises:
        ValueError: If source is empty or factor is negative or non-finite.
        AllocationError: If INTO_NEW cannot allocate the destination.
    """
    if source is None or not source.is_valid:
        raise ValueError("dim requires a valid source buffer")
    if not math.isfinite(factor) or factor < 0.0:
        raise ValueError(f"dim factor must be a finite value >= 0, got {factor}")

    if mode is DimMode.INTO_NEW:
        out = PixelBuffer.allocate(source.width, source.height, source.size)
    else:
        out = source

    scaled = np.trunc(source.data.astype(np.float64) * factor)
    out.data[...] = np.fmod(scaled, 256.0).astype(np.uint8)
    return out


def apply(buffer: PixelBuffer, params: dict) -> PixelBuffer:
    """Registry entry point. Dims in place."""
    factor = float(params.get("factor", PARAMS["factor"]["default"]))
    return dim(buffer, factor)

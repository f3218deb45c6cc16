"""JPEG decode/encode between files and PixelBuffers (Pillow)."""

import io
import logging
import os

import numpy as np
from PIL import Image, UnidentifiedImageError

from imaging.buffer import AllocationError, PixelBuffer

logger = logging.getLogger(__name__)

JPEG_QUALITY = 95
# Pillow subsampling=0 is 4:4:4 (no chroma subsampling)
JPEG_SUBSAMPLING = 0


class CodecError(Exception):
    """Image file could not be read, parsed or written."""


def _to_rgb_array(img: Image.Image) -> np.ndarray:
    return np.array(img.convert("RGB"))


def decode_bytes(data: bytes) -> PixelBuffer:
    """Decode an encoded image into an RGB PixelBuffer."""
    if not data:
        raise CodecError("Empty image stream")
    try:
        with Image.open(io.BytesIO(data)) as img:
            pixels = _to_rgb_array(img)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as e:
        raise CodecError(f"Failed to parse image: {type(e).__name__}") from e
    except MemoryError as e:
        raise AllocationError(f"Not enough memory to decode image ({len(data)} bytes)") from e
    return PixelBuffer.from_array(pixels, size=len(data))


def encode_bytes(
    buffer: PixelBuffer,
    quality: int = JPEG_QUALITY,
) -> bytes:
    """Encode a PixelBuffer to JPEG bytes. The buffer is left untouched."""
    if not buffer.is_valid:
        raise CodecError("Cannot encode an empty pixel buffer")
    img = Image.fromarray(buffer.data)
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality, subsampling=JPEG_SUBSAMPLING)
    return out.getvalue()


def decode(path: str) -> PixelBuffer:
    """Read and decode an image file.

    Raises:
        CodecError: If the path is unreadable, the file is empty, or the
            stream is not a decodable image.
        AllocationError: If the decoded pixels do not fit in memory.
    """
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise CodecError(f"Cannot read {os.path.basename(path)}: {e.strerror}") from e
    buffer = decode_bytes(data)
    logger.debug(
        "Decoded %s: %dx%d (%d bytes)",
        os.path.basename(path),
        buffer.width,
        buffer.height,
        buffer.size,
    )
    return buffer


def encode(path: str, buffer: PixelBuffer, quality: int = JPEG_QUALITY) -> int:
    """Encode ``buffer`` as JPEG into ``path`` and release it.

    The write consumes the buffer: on success its pixel data is dropped.
    On failure the buffer is left intact. Returns the number of bytes written.
    """
    data = encode_bytes(buffer, quality=quality)
    try:
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise CodecError(f"Cannot write {os.path.basename(path)}: {e.strerror}") from e
    buffer.release()
    return len(data)

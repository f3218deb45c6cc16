import shutil
import uuid
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from engine.pipeline import flush_timing
from imaging.buffer import PixelBuffer


def _solid_buffer(w=100, h=100, value=255) -> PixelBuffer:
    return PixelBuffer.from_array(np.full((h, w, 3), value, dtype=np.uint8))


def _random_buffer(w=100, h=100, seed=42) -> PixelBuffer:
    rng = np.random.default_rng(seed)
    return PixelBuffer.from_array(rng.integers(0, 256, (h, w, 3), dtype=np.uint8))


@pytest.fixture
def white_buffer():
    """100x100 solid-white buffer."""
    return _solid_buffer()


@pytest.fixture
def noise_buffer():
    """100x100 deterministic noise buffer."""
    return _random_buffer()


@pytest.fixture
def jpeg_path(tmp_path):
    """Smooth-gradient 120x80 JPEG on disk."""
    frame = np.zeros((80, 120, 3), dtype=np.uint8)
    frame[:, :, 0] = np.linspace(0, 255, 120, dtype=np.uint8)[None, :]
    frame[:, :, 1] = np.linspace(0, 255, 80, dtype=np.uint8)[:, None]
    frame[:, :, 2] = 128
    path = tmp_path / "input.jpg"
    Image.fromarray(frame).save(path, format="JPEG", quality=95)
    return path


@pytest.fixture(autouse=True)
def _reset_timing():
    yield
    flush_timing()


@pytest.fixture
def home_tmp_path():
    """tmp_path equivalent under ~/ (tmp dirs can sit under blocked prefixes on macOS)."""
    base = Path.home() / ".cache" / "kaleido" / "test-tmp"
    base.mkdir(parents=True, exist_ok=True)
    d = base / f"test_{uuid.uuid4().hex[:8]}"
    d.mkdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)

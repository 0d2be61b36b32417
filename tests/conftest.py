import numpy as np
import pytest
from PIL import Image

from engine.pipeline import flush_timing


def make_frame(h=24, w=32, channels=4, seed=42):
    """Deterministic frame with varied pixel values and opaque alpha."""
    rng = np.random.default_rng(seed)
    frame = rng.integers(0, 256, (h, w, channels), dtype=np.uint8)
    if channels == 4:
        frame[:, :, 3] = 255
    return frame


@pytest.fixture(autouse=True)
def _clean_timing():
    flush_timing()
    yield
    flush_timing()


@pytest.fixture
def frame():
    return make_frame()


@pytest.fixture
def png_path(tmp_path):
    """A 32x24 RGBA PNG on disk with the pixels of make_frame()."""
    path = tmp_path / "source.png"
    Image.fromarray(make_frame()).save(path)
    return path

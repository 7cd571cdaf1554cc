"""Shared test fixtures."""

from __future__ import annotations

import numpy as np
import pytest
from PIL import Image


@pytest.fixture
def gradient_rgb() -> np.ndarray:
    """64x32 RGB image, black on the left to white on the right."""
    ramp = np.linspace(0, 255, 64).astype(np.uint8)
    row = np.repeat(ramp[:, np.newaxis], 3, axis=1)
    return np.repeat(row[np.newaxis, :, :], 32, axis=0)


@pytest.fixture
def image_file(tmp_path):
    """Factory saving a Pillow image into tmp_path and returning its path."""

    def _make(mode="RGB", size=(40, 20), color=(255, 255, 255), name="img.png"):
        path = tmp_path / name
        Image.new(mode, size, color).save(path)
        return str(path)

    return _make

"""
test_image.py
~~~~~~~~~~~~~

Unit tests for the image container, synthetic patterns and file loading.
"""

import pytest
import os
import sys

import numpy as np
from PIL import Image as PILImage

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tinycnn.image import (
    Image,
    generate_synthetic,
    image_create,
    load_image_file,
    normalize,
    resize_nearest,
)


@pytest.fixture
def gradient_png(tmp_path):
    """Write a 20x10 horizontal gradient PNG."""
    pixels = np.tile(np.arange(20, dtype=np.uint8) * 12, (10, 1))
    path = tmp_path / "gradient.png"
    PILImage.fromarray(pixels).save(path)
    return path


@pytest.mark.unit
class TestImage:
    """Test the container and synthetic generator."""

    def test_image_create(self):
        """Test that new images are zero-filled with (height, width) data."""
        im = image_create(5, 3)

        assert (im.width, im.height) == (5, 3)
        assert im.data.shape == (3, 5)
        assert np.all(im.data == 0.0)

    def test_shape_is_validated(self):
        """Test that data must match the declared size."""
        with pytest.raises(ValueError):
            Image(4, 4, np.zeros((4, 5)))

    def test_synthetic_cat_is_a_disc(self):
        """Test the disc with a soft rim."""
        im = generate_synthetic(16, 16, True)

        assert im.data[8, 8] == 1.0
        assert im.data[0, 0] == 0.0
        assert np.any(im.data == 0.6)
        assert set(np.unique(im.data)) <= {0.0, 0.6, 1.0}

    def test_synthetic_dog_is_striped(self):
        """Test the diagonal stripes of width three."""
        im = generate_synthetic(16, 16, False)

        assert im.data[0, 0] == 0.0
        assert im.data[0, 3] == 1.0
        assert im.data[1, 2] == 1.0
        assert im.data[3, 3] == 0.0
        assert np.array_equal(im.data, im.data.T)

    def test_resize_nearest(self):
        """Test nearest-neighbour index mapping."""
        data = np.arange(16, dtype=float).reshape(4, 4)

        out = resize_nearest(data, 2, 2)

        assert np.array_equal(out, np.array([[0.0, 2.0], [8.0, 10.0]]))
        assert resize_nearest(data, 8, 8).shape == (8, 8)

    def test_normalize(self):
        """Test zero mean and unit variance."""
        out = normalize(np.arange(10, dtype=float))

        assert out.mean() == pytest.approx(0.0, abs=1e-12)
        assert out.std() == pytest.approx(1.0, abs=1e-6)


@pytest.mark.unit
class TestLoadImageFile:
    """Test decoding images from disk."""

    def test_load_and_resize(self, gradient_png):
        """Test that a file is resized and normalized."""
        im = load_image_file(gradient_png, 8, 6)

        assert im is not None
        assert (im.width, im.height) == (8, 6)
        assert im.data.mean() == pytest.approx(0.0, abs=1e-9)
        # left to right gradient survives resizing
        assert np.all(np.diff(im.data[0]) > 0)

    def test_load_rgb(self, tmp_path):
        """Test that colour images are reduced to luminance."""
        rgb = np.zeros((4, 4, 3), dtype=np.uint8)
        rgb[:, 2:, 1] = 255
        path = tmp_path / "green.png"
        PILImage.fromarray(rgb).save(path)

        im = load_image_file(path, 4, 4)

        assert im.data[0, 3] > 0 > im.data[0, 0]

    def test_load_pgm(self, tmp_path):
        """Test the binary PGM format."""
        path = tmp_path / "image.pgm"
        PILImage.fromarray(np.eye(4, dtype=np.uint8) * 255).save(path)

        im = load_image_file(path, 4, 4)

        assert im is not None
        assert im.data[0, 0] > im.data[0, 1]

    def test_unreadable_file_returns_none(self, tmp_path):
        """Test that garbage and missing files yield None."""
        path = tmp_path / "notes.txt"
        path.write_text("not an image")

        assert load_image_file(path, 4, 4) is None
        assert load_image_file(tmp_path / "missing.png", 4, 4) is None

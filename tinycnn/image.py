"""
image.py
~~~~~~~~

Grayscale image container plus the helpers that produce network inputs:
synthetic cat/dog patterns and a file loader built on Pillow.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image as PILImage

logger = logging.getLogger(__name__)

# BT.709 luma coefficients
_LUMA = np.array([0.2126, 0.7152, 0.0722])


@dataclass
class Image:
    """Single-channel float image, ``data`` has shape (height, width)."""

    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        self.data = np.asarray(self.data, dtype=np.float64)
        if self.data.shape != (self.height, self.width):
            raise ValueError(
                f"Image data has shape {self.data.shape}, "
                f"expected ({self.height}, {self.width})"
            )


def image_create(width: int, height: int) -> Image:
    """Return an all-zero image."""
    return Image(width, height, np.zeros((height, width)))


def generate_synthetic(width: int, height: int, cat: bool) -> Image:
    """
    Generate a synthetic training pattern with values in [0, 1].

    Cats are a filled disc with a soft rim, dogs are diagonal stripes.

    Args:
        width: Image width
        height: Image height
        cat: Draw the cat (disc) pattern instead of the dog (stripes) one

    Returns:
        Image: The generated pattern
    """
    image = image_create(width, height)
    ys, xs = np.mgrid[0:height, 0:width]
    if cat:
        cx, cy = width / 2.0, height / 2.0
        radius = min(width, height) * 0.28
        d = np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2)
        image.data[d < radius] = 1.0
        image.data[(d < radius + 1.5) & (d > radius - 1.5)] = 0.6
    else:
        image.data[((xs + ys) // 3) % 2 == 1] = 1.0
    return image


def resize_nearest(data: np.ndarray, width: int, height: int) -> np.ndarray:
    """Nearest-neighbour resize of a 2-D array to (height, width)."""
    src_h, src_w = data.shape
    rows = np.arange(height) * src_h // height
    cols = np.arange(width) * src_w // width
    return data[np.ix_(rows, cols)]


def normalize(data: np.ndarray) -> np.ndarray:
    """Scale to zero mean and unit variance."""
    mean = data.mean()
    var = (data * data).mean() - mean * mean
    return (data - mean) / np.sqrt(var + 1e-6)


def load_image_file(path, width: int, height: int) -> Optional[Image]:
    """
    Load an image file as a normalized grayscale network input.

    Args:
        path: Path of any format Pillow can decode
        width: Target width
        height: Target height

    Returns:
        Image or None if the file could not be read
    """
    try:
        with PILImage.open(path) as img:
            rgb = np.asarray(img.convert('RGB'), dtype=np.float64) / 255.0
    except OSError as e:
        logger.warning(f"Could not load image '{path}': {e}")
        return None

    gray = rgb @ _LUMA
    if gray.shape != (height, width):
        gray = resize_nearest(gray, width, height)

    logger.debug(f"Loaded image '{path}' as {width}x{height}")
    return Image(width, height, normalize(gray))

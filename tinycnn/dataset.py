"""
dataset.py
~~~~~~~~~~

Labeled (image, label) samples for training: images found on disk,
topped up with synthetic patterns. Label 1 means "cat", 0 means "dog".
"""

import logging
from pathlib import Path
from typing import List, Tuple

from .image import Image, generate_synthetic, load_image_file

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_COUNT = 200

Sample = Tuple[Image, int]


def label_from_filename(name: str) -> int:
    """1 if the file name mentions a cat, else 0."""
    return 1 if 'cat' in name.lower() else 0


def _synthetic_sample(width: int, height: int, index: int, count: int) -> Sample:
    label = 1 if index < count // 2 else 0
    return generate_synthetic(width, height, bool(label)), label


def synthetic_dataset(width: int, height: int,
                      count: int = DEFAULT_SAMPLE_COUNT) -> List[Sample]:
    """First half cats, second half dogs."""
    return [_synthetic_sample(width, height, i, count) for i in range(count)]


def load_dataset(data_dir, width: int, height: int,
                 count: int = DEFAULT_SAMPLE_COUNT) -> List[Sample]:
    """
    Build a dataset of ``count`` samples from a directory or a single file.

    From a directory, up to ``count`` readable images are taken in name
    order (hidden files skipped) and labeled by file name. A single file
    becomes the first sample with label 0. Missing samples are filled with
    synthetic patterns.

    Args:
        data_dir: Directory of images, or one image file
        width: Network input width
        height: Network input height
        count: Total number of samples to return

    Returns:
        list: ``(Image, label)`` pairs

    Raises:
        FileNotFoundError: If ``data_dir`` does not exist
        ValueError: If nothing could be loaded
    """
    path = Path(data_dir)
    samples: List[Sample] = []

    if path.is_dir():
        for entry in sorted(path.iterdir()):
            if len(samples) >= count:
                break
            if entry.name.startswith('.') or not entry.is_file():
                continue
            image = load_image_file(entry, width, height)
            if image is None:
                continue
            samples.append((image, label_from_filename(entry.name)))
        if not samples:
            raise ValueError(f"No images loaded from {path}")
        logger.info(f"Loaded {len(samples)} image(s) from {path}")
    elif path.exists():
        image = load_image_file(path, width, height)
        if image is None:
            raise ValueError(f"Failed to load image {path}")
        samples.append((image, 0))
    else:
        raise FileNotFoundError(f"No such file or directory: {path}")

    filled = count - len(samples)
    samples.extend(
        _synthetic_sample(width, height, i, count) for i in range(len(samples), count)
    )
    if filled > 0:
        logger.info(f"Filled {filled} sample(s) with synthetic images")
    return samples

"""
tinycnn package
~~~~~~~~~~~~~~~

A tiny two-layer depthwise convolutional binary classifier with a
hand-written forward and backward pass. Contains the network engine,
model persistence, image/dataset providers and the training driver.
"""

from .config import EngineConfig
from .image import Image
from .network import GradCheckResult, ImageShapeError, TinyCNN

__version__ = "1.0.0"

__all__ = ['EngineConfig', 'GradCheckResult', 'Image', 'ImageShapeError', 'TinyCNN']

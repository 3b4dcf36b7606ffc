"""
utils.py
~~~~~~~~

Primitive numeric helpers: a seeded generator for weight initialization,
the logistic function and the binary cross-entropy loss.
"""

from typing import Tuple, Union

import numpy as np

_LCG_MULTIPLIER = 1664525
_LCG_INCREMENT = 1013904223
_LCG_MASK = 0xFFFFFFFF
_MANTISSA_MASK = 0xFFFFFF

INIT_SCALE = 0.1
LOSS_EPSILON = 1e-8


class LcgRandom:
    """Linear congruential generator producing floats in [-1, 1]."""

    def __init__(self, seed: int):
        self.state = seed & _LCG_MASK

    def next_uint(self) -> int:
        self.state = (_LCG_MULTIPLIER * self.state + _LCG_INCREMENT) & _LCG_MASK
        return self.state

    def uniform(self, n: int) -> np.ndarray:
        """
        Draw ``n`` float32 values in [-1, 1].

        Args:
            n: Number of values to draw

        Returns:
            np.ndarray: float32 array of shape (n,)
        """
        raw = np.fromiter(
            (self.next_uint() & _MANTISSA_MASK for _ in range(n)),
            dtype=np.float32,
            count=n
        )
        return raw / np.float32(_MANTISSA_MASK) * np.float32(2.0) - np.float32(1.0)


def he_init(rng: LcgRandom, shape: Union[int, Tuple[int, ...]]) -> np.ndarray:
    """
    Initialize a weight tensor with uniform values in [-0.1, 0.1].

    Despite the name this does not scale by fan-in; every layer gets the
    same fixed range. Values are float32-representable.

    Args:
        rng: Generator to draw from
        shape: Shape of the tensor

    Returns:
        np.ndarray: float64 array of the requested shape
    """
    shape = (shape,) if isinstance(shape, int) else tuple(shape)
    n = int(np.prod(shape))
    values = rng.uniform(n) * np.float32(INIT_SCALE)
    return values.astype(np.float64).reshape(shape)


def sigmoid(x):
    """Numerically stable logistic function."""
    x = np.asarray(x, dtype=np.float64)
    return np.where(
        x >= 0,
        1.0 / (1.0 + np.exp(-np.abs(x))),
        np.exp(-np.abs(x)) / (1.0 + np.exp(-np.abs(x)))
    )


def binary_cross_entropy(p: float, label: int, eps: float = LOSS_EPSILON) -> float:
    """
    BCE loss of a single probability against a 0/1 label.

    The probability is clamped to [eps, 1 - eps] so the loss stays finite.
    """
    p = min(max(float(p), eps), 1.0 - eps)
    if label:
        return -float(np.log(p))
    return -float(np.log(1.0 - p))

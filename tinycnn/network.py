"""
network.py
~~~~~~~~~~

A tiny convolutional binary classifier with a hand-written backward pass.

Topology (fixed)::

    input (H x W)
      -> depthwise conv1 (F kernels, valid) -> ReLU
      -> depthwise conv2 (channel f reads only channel f) -> ReLU
      -> max-pool (non-overlapping, remainder dropped)
      -> flatten -> dense (hidden_size, ReLU) -> dense (1) -> sigmoid

All arithmetic is float64; the model file stores float32.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .config import EngineConfig
from .image import Image
from .utils import LcgRandom, binary_cross_entropy, he_init, sigmoid

logger = logging.getLogger(__name__)

PARAMETER_NAMES = (
    'kernels1', 'bias1',
    'kernels2', 'bias2',
    'dense_w', 'dense_b',
    'dense2_w', 'dense2_b',
)


class ImageShapeError(ValueError):
    """Raised when an input image does not match the network input size."""


@dataclass
class ForwardCache:
    """
    Activations of one forward pass, consumed by the following backward.

    ``generation`` identifies the forward call that produced the cache;
    gradients are only computed from the cache of the latest call.
    """

    generation: int
    pixels: np.ndarray
    conv1: np.ndarray
    conv2: np.ndarray
    pool_indices: np.ndarray
    pooled: np.ndarray
    hidden_pre: np.ndarray
    hidden: np.ndarray
    output: float


@dataclass
class GradCheckResult:
    """Analytic vs. numeric gradient of one probed parameter."""

    name: str
    analytic: float
    numeric: float
    relative_error: float


def conv2d_depthwise(maps: np.ndarray, kernels: np.ndarray,
                     bias: np.ndarray) -> np.ndarray:
    """
    Valid, stride-1 depthwise correlation.

    Args:
        maps: Input of shape (F, H, W), or (1, H, W) to apply every
            kernel to the same single channel
        kernels: Kernels of shape (F, k, k)
        bias: Biases of shape (F,)

    Returns:
        np.ndarray: Output of shape (F, H - k + 1, W - k + 1)
    """
    filters, ksize = kernels.shape[0], kernels.shape[1]
    out_h = maps.shape[1] - ksize + 1
    out_w = maps.shape[2] - ksize + 1
    out = np.empty((filters, out_h, out_w))
    out[:] = bias[:, None, None]
    for ky in range(ksize):
        for kx in range(ksize):
            out += maps[:, ky:ky + out_h, kx:kx + out_w] * kernels[:, ky, kx, None, None]
    return out


def maxpool_forward(maps: np.ndarray, pool: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Non-overlapping max-pool that remembers the winning positions.

    Rows and columns beyond a multiple of ``pool`` are dropped. Ties go to
    the first position in row-major scan order within the window.

    Args:
        maps: Activations of shape (F, H, W)
        pool: Window size

    Returns:
        tuple: ``(pooled, indices)``, both of shape (F, H // pool, W // pool);
        ``indices`` are flat offsets into ``maps``
    """
    filters, height, width = maps.shape
    ph, pw = height // pool, width // pool
    windows = (maps[:, :ph * pool, :pw * pool]
               .reshape(filters, ph, pool, pw, pool)
               .transpose(0, 1, 3, 2, 4)
               .reshape(filters, ph, pw, pool * pool))
    local = windows.argmax(axis=-1)
    pooled = np.take_along_axis(windows, local[..., None], axis=-1)[..., 0]

    dy, dx = np.divmod(local, pool)
    rows = np.arange(ph)[None, :, None] * pool + dy
    cols = np.arange(pw)[None, None, :] * pool + dx
    channels = np.arange(filters)[:, None, None]
    indices = (channels * height + rows) * width + cols
    return pooled, indices


def _kernel_gradient(d_out: np.ndarray, inputs: np.ndarray, ksize: int) -> np.ndarray:
    """Correlate an output gradient against the layer input, per channel."""
    out_h, out_w = d_out.shape[1:]
    grad = np.empty((d_out.shape[0], ksize, ksize))
    for ky in range(ksize):
        for kx in range(ksize):
            window = inputs[:, ky:ky + out_h, kx:kx + out_w]
            grad[:, ky, kx] = (d_out * window).sum(axis=(1, 2))
    return grad


class TinyCNN:
    """
    Two-stage depthwise CNN with a dense head and sigmoid output.

    An instance is not safe for concurrent use: ``forward`` and
    ``backward_and_update`` share one activation cache and mutate the
    parameters in place. Give each worker its own instance.
    """

    def __init__(self, in_w: int, in_h: int, filters: int, ksize: int, pool: int,
                 config: Optional[EngineConfig] = None):
        """
        Allocate and initialize a network.

        Args:
            in_w: Input image width
            in_h: Input image height
            filters: Number of depthwise channels
            ksize: Side length of the square kernels
            pool: Side length of the max-pool window
            config: Engine tunables, defaults to ``EngineConfig()``

        Raises:
            ValueError: If the sizes do not describe a usable network
        """
        for name, value in (('in_w', in_w), ('in_h', in_h), ('filters', filters),
                            ('ksize', ksize), ('pool', pool)):
            if not isinstance(value, (int, np.integer)) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if ksize > min(in_w, in_h):
            raise ValueError(
                f"ksize={ksize} does not fit a {in_w}x{in_h} input"
            )

        self.config = config or EngineConfig()
        self.in_w, self.in_h = int(in_w), int(in_h)
        self.filters = int(filters)
        self.ksize = int(ksize)
        self.pool = int(pool)

        self.out1_w = self.in_w - self.ksize + 1
        self.out1_h = self.in_h - self.ksize + 1
        self.out2_w = self.out1_w - self.ksize + 1
        self.out2_h = self.out1_h - self.ksize + 1
        if self.out2_w < self.pool or self.out2_h < self.pool:
            raise ValueError(
                f"conv2 output {self.out2_w}x{self.out2_h} is smaller than "
                f"the pooling window {self.pool}"
            )
        self.pooled_w = self.out2_w // self.pool
        self.pooled_h = self.out2_h // self.pool
        self.flat_size = self.filters * self.pooled_w * self.pooled_h
        self.hidden_size = self.config.hidden_size

        rng = LcgRandom(self.config.seed)
        self.kernels1 = he_init(rng, (self.filters, self.ksize, self.ksize))
        self.bias1 = np.zeros(self.filters)
        self.kernels2 = he_init(rng, (self.filters, self.ksize, self.ksize))
        self.bias2 = np.zeros(self.filters)
        self.dense_w = he_init(rng, (self.hidden_size, self.flat_size))
        self.dense_b = np.zeros(self.hidden_size)
        self.dense2_w = he_init(rng, self.hidden_size)
        self.dense2_b = np.zeros(())

        self._cache: Optional[ForwardCache] = None
        self._generation = 0

        logger.debug(
            f"Created TinyCNN in={self.in_w}x{self.in_h} filters={self.filters} "
            f"ksize={self.ksize} pool={self.pool} flat={self.flat_size} "
            f"hidden={self.hidden_size}"
        )

    def __repr__(self) -> str:
        return (f"TinyCNN(in_w={self.in_w}, in_h={self.in_h}, filters={self.filters}, "
                f"ksize={self.ksize}, pool={self.pool})")

    def parameters(self) -> 'OrderedDict[str, np.ndarray]':
        """Live parameter arrays in model file order."""
        return OrderedDict((name, getattr(self, name)) for name in PARAMETER_NAMES)

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def _pixels(self, image) -> np.ndarray:
        pixels = image.data if isinstance(image, Image) else np.asarray(image, dtype=np.float64)
        if pixels.shape != (self.in_h, self.in_w):
            raise ImageShapeError(
                f"Expected a {self.in_w}x{self.in_h} image, got array of shape {pixels.shape}"
            )
        return pixels

    def forward(self, image) -> float:
        """
        Run inference on one image.

        Args:
            image: ``Image`` or array of shape (in_h, in_w)

        Returns:
            float: Probability of the positive class, in (0, 1)

        Raises:
            ImageShapeError: If the image size does not match the network
        """
        pixels = self._pixels(image)

        conv1 = conv2d_depthwise(pixels[None], self.kernels1, self.bias1)
        np.maximum(conv1, 0.0, out=conv1)
        conv2 = conv2d_depthwise(conv1, self.kernels2, self.bias2)
        np.maximum(conv2, 0.0, out=conv2)

        pooled, pool_indices = maxpool_forward(conv2, self.pool)
        pooled = pooled.reshape(-1)

        hidden_pre = self.dense_w @ pooled + self.dense_b
        hidden = np.maximum(hidden_pre, 0.0)
        if self.config.debug:
            logger.debug(f"Dense1 activations: {np.array2string(hidden[:4], precision=3)} ...")

        output = float(sigmoid(self.dense2_w @ hidden + self.dense2_b))

        self._generation += 1
        self._cache = ForwardCache(
            generation=self._generation,
            pixels=pixels,
            conv1=conv1,
            conv2=conv2,
            pool_indices=pool_indices.reshape(-1),
            pooled=pooled,
            hidden_pre=hidden_pre,
            hidden=hidden,
            output=output
        )
        return output

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def _gradients(self, cache: ForwardCache, label: int) -> Dict[str, np.ndarray]:
        """
        Raw loss gradients for every parameter, from pre-update values.

        No regularization or clipping is applied here.
        """
        if cache is None or cache.generation != self._generation:
            raise RuntimeError("Forward cache is stale; run forward() on this input first")

        ds = cache.output - float(label)

        g_dense2_w = ds * cache.hidden
        g_dense2_b = np.array(ds)

        d_hidden = ds * self.dense2_w
        d_hidden[cache.hidden_pre <= 0.0] = 0.0

        g_dense_w = np.outer(d_hidden, cache.pooled)
        g_dense_b = d_hidden.copy()

        d_pooled = self.dense_w.T @ d_hidden

        # route each window's gradient to its arg-max only
        d_conv2 = np.zeros(cache.conv2.size)
        np.add.at(d_conv2, cache.pool_indices, d_pooled)
        d_conv2 = d_conv2.reshape(cache.conv2.shape)
        d_conv2[cache.conv2 <= 0.0] = 0.0

        g_kernels2 = _kernel_gradient(d_conv2, cache.conv1, self.ksize)
        g_bias2 = d_conv2.sum(axis=(1, 2))

        # scatter through conv2 with the kernel unflipped
        d_conv1 = np.zeros_like(cache.conv1)
        out_h, out_w = d_conv2.shape[1:]
        for ky in range(self.ksize):
            for kx in range(self.ksize):
                d_conv1[:, ky:ky + out_h, kx:kx + out_w] += (
                    d_conv2 * self.kernels2[:, ky, kx, None, None]
                )
        d_conv1[cache.conv1 <= 0.0] = 0.0

        g_kernels1 = _kernel_gradient(d_conv1, cache.pixels[None], self.ksize)
        g_bias1 = d_conv1.sum(axis=(1, 2))

        return {
            'kernels1': g_kernels1,
            'bias1': g_bias1,
            'kernels2': g_kernels2,
            'bias2': g_bias2,
            'dense_w': g_dense_w,
            'dense_b': g_dense_b,
            'dense2_w': g_dense2_w,
            'dense2_b': g_dense2_b,
        }

    def backward_and_update(self, image, label: int, learning_rate: float) -> float:
        """
        One SGD step on a single labeled image.

        A fresh forward pass is run first. All gradients are computed
        before any parameter changes; each one then gets the L2 term added
        and is clipped before the update.

        Args:
            image: ``Image`` or array of shape (in_h, in_w)
            label: 0 or 1
            learning_rate: Step size, must be positive

        Returns:
            float: Binary cross-entropy loss before the update

        Raises:
            ValueError: On an invalid label or learning rate
            ImageShapeError: If the image size does not match the network
        """
        if label not in (0, 1):
            raise ValueError(f"label must be 0 or 1, got {label!r}")
        if not learning_rate > 0:
            raise ValueError(f"learning_rate must be positive, got {learning_rate!r}")

        output = self.forward(image)
        loss = binary_cross_entropy(output, label)
        grads = self._gradients(self._cache, label)

        l2 = self.config.l2
        clip = self.config.grad_clip
        for name, param in self.parameters().items():
            g = np.clip(grads[name] + l2 * param, -clip, clip)
            param -= learning_rate * g

        return loss

    # ------------------------------------------------------------------
    # Gradient check
    # ------------------------------------------------------------------

    def _objective(self, image, label: int) -> float:
        """BCE plus the L2 penalty whose gradient is ``l2 * w``."""
        loss = binary_cross_entropy(self.forward(image), label)
        penalty = sum(float(np.sum(p * p)) for p in self.parameters().values())
        return loss + 0.5 * self.config.l2 * penalty

    def gradcheck(self, image, label: int, epsilon: float = 1e-3) -> List[GradCheckResult]:
        """
        Compare analytic gradients with central finite differences.

        Probes the first output weight, the first hidden weight and the
        first element of the first conv1 kernel. Parameters are restored
        exactly after each probe.

        Args:
            image: ``Image`` or array of shape (in_h, in_w)
            label: 0 or 1
            epsilon: Finite difference step

        Returns:
            list: One ``GradCheckResult`` per probed parameter

        Raises:
            ValueError: On an invalid label or a non-positive epsilon
        """
        if label not in (0, 1):
            raise ValueError(f"label must be 0 or 1, got {label!r}")
        if not epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {epsilon!r}")

        self.forward(image)
        grads = self._gradients(self._cache, label)
        l2 = self.config.l2

        probes = (
            ('dense2_w[0]', 'dense2_w'),
            ('dense_w[0,0]', 'dense_w'),
            ('kernels1[0,0,0]', 'kernels1'),
        )
        results = []
        for display_name, name in probes:
            param = getattr(self, name)
            original = param.flat[0]
            analytic = float(grads[name].flat[0] + l2 * original)

            param.flat[0] = original + epsilon
            loss_plus = self._objective(image, label)
            param.flat[0] = original - epsilon
            loss_minus = self._objective(image, label)
            param.flat[0] = original

            numeric = (loss_plus - loss_minus) / (2.0 * epsilon)
            rel_err = abs(analytic - numeric) / max(1e-8, abs(analytic) + abs(numeric))
            results.append(GradCheckResult(display_name, analytic, numeric, rel_err))

        logger.info(f"Gradcheck results (eps={epsilon:.6g}):")
        for r in results:
            logger.info(
                f" {r.name}: analytic={r.analytic:.8g} numeric={r.numeric:.8g} "
                f"rel_err={r.relative_error:.8g}"
            )
        return results

    # ------------------------------------------------------------------
    # Persistence and diagnostics
    # ------------------------------------------------------------------

    def save(self, path) -> bool:
        """Write the parameters to ``path``; see ``model_persistence``."""
        from .model_persistence import save_network
        return save_network(self, path)

    def load(self, path) -> bool:
        """Read parameters saved from an identically configured network."""
        from .model_persistence import load_network
        return load_network(self, path)

    def output_layer_stats(self) -> Tuple[float, float]:
        """Return ``(bias, mean weight)`` of the output layer."""
        return float(self.dense2_b), float(self.dense2_w.mean())

    def summary(self, kernel_count: int = 8, dense_count: int = 8) -> Dict[str, Any]:
        """
        Describe the architecture and a sample of the learned values.

        Args:
            kernel_count: How many leading kernel values to include
            dense_count: How many leading hidden-layer weights to include

        Returns:
            dict: Architecture and parameter samples
        """
        info = {
            'input': (self.in_w, self.in_h),
            'filters': self.filters,
            'ksize': self.ksize,
            'pool': self.pool,
            'flat_size': self.flat_size,
            'hidden_size': self.hidden_size,
            'kernels1': self.kernels1.reshape(-1)[:kernel_count].tolist(),
            'kernels2': self.kernels2.reshape(-1)[:kernel_count].tolist(),
            'bias1': self.bias1[:4].tolist(),
            'bias2': self.bias2[:4].tolist(),
            'dense_b': self.dense_b[:4].tolist(),
            'dense_w': self.dense_w.reshape(-1)[:dense_count].tolist(),
        }
        logger.info(
            f"Model summary: in {self.in_w}x{self.in_h}, filters={self.filters}, "
            f"ksize={self.ksize}, pool={self.pool}, hidden={self.hidden_size}"
        )
        logger.info(f" kernels1[:{kernel_count}]={info['kernels1']}")
        logger.info(f" kernels2[:{kernel_count}]={info['kernels2']}")
        logger.info(f" bias1={info['bias1']} bias2={info['bias2']}")
        logger.info(f" dense_w[:{dense_count}]={info['dense_w']}")
        return info

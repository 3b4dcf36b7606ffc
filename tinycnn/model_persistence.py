"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Binary persistence for TinyCNN parameters.

File layout (little-endian, no padding, no version tag)::

    int32   in_w, in_h, filters, ksize
    float32 kernels1, bias1, kernels2, bias2,
            dense_w, dense_b, dense2_w, dense2_b

A file can only be loaded into a network built with the same four header
values; the header is the whole compatibility check.
"""

import os
import logging
from typing import Dict

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

HEADER_DTYPE = np.dtype('<i4')
PARAM_DTYPE = np.dtype('<f4')
HEADER_FIELDS = ('in_w', 'in_h', 'filters', 'ksize')
HEADER_SIZE = len(HEADER_FIELDS) * HEADER_DTYPE.itemsize


def _header(network) -> np.ndarray:
    return np.array([getattr(network, f) for f in HEADER_FIELDS], dtype=HEADER_DTYPE)


def model_file_size(network) -> int:
    """
    Size in bytes of the model file for a network.

    Args:
        network: TinyCNN instance

    Returns:
        int: Header plus all parameters as float32
    """
    count = sum(p.size for p in network.parameters().values())
    return HEADER_SIZE + count * PARAM_DTYPE.itemsize


def save_network(network, path) -> bool:
    """
    Save a network's parameters to a binary model file.

    Args:
        network: TinyCNN instance to save
        path: Destination file path

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = TinyCNN(16, 16, 4, 3, 2)
        >>> save_network(net, "model.bin")
        True
    """
    path = os.fspath(path)
    chunks = [_header(network).tobytes()]
    chunks.extend(p.astype(PARAM_DTYPE).tobytes() for p in network.parameters().values())
    data = b''.join(chunks)

    try:
        model_dir = os.path.dirname(path)
        if model_dir and not os.path.exists(model_dir):
            os.makedirs(model_dir)
        with open(path, 'wb') as f:
            f.write(data)
    except OSError as e:
        logger.error(f"I/O error saving network to '{path}': {e}")
        return False

    logger.info(f"Saved {network!r} to '{path}' ({len(data)} bytes)")
    return True


def load_network(network, path) -> bool:
    """
    Load parameters from a model file into an existing network.

    The network is never resized. On any failure (unreadable file,
    header mismatch, payload of the wrong length) the network is left
    untouched. The header does not record ``hidden_size``, so the exact
    length check is what rejects files from a different hidden layer.

    Args:
        network: TinyCNN instance to load into
        path: Model file path

    Returns:
        bool: True if the load was successful, False otherwise
    """
    path = os.fspath(path)
    try:
        with open(path, 'rb') as f:
            data = f.read()
    except OSError as e:
        logger.error(f"I/O error loading network from '{path}': {e}")
        return False

    if len(data) < HEADER_SIZE:
        logger.warning(f"Model file '{path}' is too short for a header ({len(data)} bytes)")
        return False

    header = np.frombuffer(data, dtype=HEADER_DTYPE, count=len(HEADER_FIELDS))
    expected = _header(network)
    if not np.array_equal(header, expected):
        logger.warning(
            f"Model file '{path}' was saved for "
            f"{dict(zip(HEADER_FIELDS, header.tolist()))}, network is "
            f"{dict(zip(HEADER_FIELDS, expected.tolist()))}"
        )
        return False

    needed = model_file_size(network)
    if len(data) != needed:
        problem = "truncated" if len(data) < needed else "longer than expected"
        logger.warning(
            f"Model file '{path}' is {problem}: {len(data)} bytes, expected {needed}"
        )
        return False

    # Decode everything before touching the live parameters
    loaded: Dict[str, np.ndarray] = {}
    offset = HEADER_SIZE
    for name, param in network.parameters().items():
        values = np.frombuffer(data, dtype=PARAM_DTYPE, count=param.size, offset=offset)
        loaded[name] = values.astype(np.float64).reshape(param.shape)
        offset += param.size * PARAM_DTYPE.itemsize

    for name, param in network.parameters().items():
        np.copyto(param, loaded[name])

    logger.info(f"Loaded {network!r} from '{path}'")
    return True

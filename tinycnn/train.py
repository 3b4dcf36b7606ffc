"""
train.py
~~~~~~~~

Training driver: epochs, shuffling, early stopping and a loss plot.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

# Use non-GUI backend for matplotlib
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from .dataset import Sample
from .network import TinyCNN

logger = logging.getLogger(__name__)


@dataclass
class TrainingConfig:
    """Hyperparameters of a training run; ``patience=0`` disables early stopping."""

    epochs: int = 10
    learning_rate: float = 0.01
    shuffle: bool = True
    seed: Optional[int] = None
    patience: int = 0
    min_delta: float = 1e-4


def evaluate(net: TinyCNN, samples: Sequence[Sample]) -> float:
    """Fraction of samples classified correctly at threshold 0.5."""
    if not samples:
        return 0.0
    correct = sum(1 for image, label in samples if int(net.forward(image) > 0.5) == label)
    return correct / len(samples)


def train(
    net: TinyCNN,
    samples: Sequence[Sample],
    config: TrainingConfig,
    callback: Optional[Callable[[Dict[str, Any]], None]] = None
) -> Dict[str, Any]:
    """
    Train a network with per-sample SGD.

    Accuracy for each sample is measured with a forward pass right before
    its update.

    Args:
        net: Network to train in place
        samples: ``(image, label)`` pairs
        config: Training hyperparameters
        callback: Called after each epoch with a progress dict

    Returns:
        dict: ``{'loss': [...], 'accuracy': [...], 'stopped_early': bool}``
    """
    if config.epochs < 1:
        raise ValueError(f"epochs must be a positive integer, got {config.epochs}")
    if not samples:
        raise ValueError("Cannot train on an empty dataset")

    rng = np.random.default_rng(config.seed)
    history: Dict[str, Any] = {'loss': [], 'accuracy': [], 'stopped_early': False}
    best_loss = np.inf
    stale_epochs = 0
    start = time.time()

    for epoch in range(1, config.epochs + 1):
        order = rng.permutation(len(samples)) if config.shuffle else range(len(samples))
        epoch_loss = 0.0
        correct = 0
        for i in order:
            image, label = samples[i]
            if int(net.forward(image) > 0.5) == label:
                correct += 1
            epoch_loss += net.backward_and_update(image, label, config.learning_rate)

        mean_loss = epoch_loss / len(samples)
        accuracy = correct / len(samples)
        history['loss'].append(mean_loss)
        history['accuracy'].append(accuracy)

        bias, mean_w = net.output_layer_stats()
        logger.info(f"Epoch {epoch}: loss={mean_loss:.4f} acc={accuracy:.3f}")
        logger.debug(f"Output layer: bias={bias:.4f} mean_w={mean_w:.4f}")

        if callback is not None:
            callback({
                'epoch': epoch,
                'total_epochs': config.epochs,
                'loss': mean_loss,
                'accuracy': accuracy,
                'elapsed_time': time.time() - start
            })

        if mean_loss < best_loss - config.min_delta:
            best_loss = mean_loss
            stale_epochs = 0
        else:
            stale_epochs += 1
        if config.patience and stale_epochs >= config.patience:
            logger.info(
                f"Early stopping after epoch {epoch}: no improvement "
                f"for {stale_epochs} epoch(s)"
            )
            history['stopped_early'] = True
            break

    return history


def plot_loss_history(history: Dict[str, Any], path) -> None:
    """
    Save loss and accuracy curves as a PNG.

    Args:
        history: Result of ``train``
        path: Output image path
    """
    epochs = np.arange(1, len(history['loss']) + 1)
    fig, ax = plt.subplots(figsize=(8, 5))
    ax.set_title("Training Loss")
    ax.set_xlabel("Epoch")
    ax.set_ylabel("Loss")
    ax.grid(True)
    ax.plot(epochs, history['loss'], label="Loss")
    ax.plot(epochs, history['accuracy'], label="Accuracy")
    ax.legend()
    fig.savefig(path, format='png', bbox_inches='tight')
    plt.close(fig)
    logger.info(f"Saved training curve to {path}")

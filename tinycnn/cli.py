"""
cli.py
~~~~~~

Command line entry point: build a network, train it on images from disk
(or synthetic patterns) and save the model file.

Usage:
    tinycnn --data-dir images/ --epochs 10 --model-out model.bin
    tinycnn --gradcheck
"""

import time
import logging
import argparse
from typing import List, Optional

from .config import EngineConfig, configure_logging
from .dataset import DEFAULT_SAMPLE_COUNT, load_dataset, synthetic_dataset
from .network import TinyCNN
from .train import TrainingConfig, evaluate, plot_loss_history, train

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tinycnn',
        description='Train a tiny depthwise CNN cat/dog classifier.'
    )
    parser.add_argument('--data-dir', help='Directory of images (or a single image file)')
    parser.add_argument('--width', type=int, default=16)
    parser.add_argument('--height', type=int, default=16)
    parser.add_argument('--filters', type=int, default=4)
    parser.add_argument('--ksize', type=int, default=3)
    parser.add_argument('--pool', type=int, default=2)
    parser.add_argument('--samples', type=int, default=DEFAULT_SAMPLE_COUNT,
                        help='Number of training samples')
    parser.add_argument('--epochs', type=int, default=10)
    parser.add_argument('--lr', type=float, default=0.01, help='Learning rate')
    parser.add_argument('--patience', type=int, default=0,
                        help='Early stopping patience in epochs (0 disables)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Initialization/shuffle seed (default: current time)')
    parser.add_argument('--l2', type=float, default=None, help='L2 regularization coefficient')
    parser.add_argument('--debug', action='store_true', help='Log hidden activations')
    parser.add_argument('--load', help='Start from a saved model file')
    parser.add_argument('--model-out', default='model.bin', help='Where to save the model')
    parser.add_argument('--plot', help='Save the training curve to this PNG file')
    parser.add_argument('--gradcheck', action='store_true',
                        help='Run a gradient check on the first sample and exit')
    parser.add_argument('--epsilon', type=float, default=1e-3,
                        help='Finite difference step for --gradcheck')
    parser.add_argument('--summary', action='store_true', help='Log a model summary')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging('DEBUG' if args.debug else None)

    seed = args.seed if args.seed is not None else int(time.time())
    try:
        config = EngineConfig.from_env(l2=args.l2, seed=seed, debug=args.debug or None)
        net = TinyCNN(args.width, args.height, args.filters, args.ksize, args.pool, config)
    except ValueError as e:
        logger.error(f"Invalid network configuration: {e}")
        return 1

    if args.load and not net.load(args.load):
        logger.error(f"Failed to load model {args.load}")
        return 1

    if args.data_dir:
        try:
            samples = load_dataset(args.data_dir, args.width, args.height, args.samples)
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"Could not build dataset: {e}")
            return 1
    else:
        samples = synthetic_dataset(args.width, args.height, args.samples)

    if args.gradcheck:
        image, label = samples[0]
        try:
            net.gradcheck(image, label, args.epsilon)
        except ValueError as e:
            logger.error(f"Gradient check failed: {e}")
            return 1
        return 0

    history = train(net, samples, TrainingConfig(
        epochs=args.epochs,
        learning_rate=args.lr,
        seed=seed,
        patience=args.patience
    ))
    logger.info(f"Final accuracy: {evaluate(net, samples):.3f}")

    if args.summary:
        net.summary()
    if args.plot:
        plot_loss_history(history, args.plot)

    if not net.save(args.model_out):
        return 1
    return 0


if __name__ == '__main__':
    raise SystemExit(main())

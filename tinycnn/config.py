"""
config.py
~~~~~~~~~

Configuration values for the network engine and logging setup.

The engine reads its tunables (L2 coefficient, debug flag, ...) from an
``EngineConfig`` owned by each instance instead of process-wide globals, so
several networks can be trained side by side with different settings.
"""

import os
import logging
from dataclasses import dataclass, replace
from typing import Optional


DEFAULT_SEED = 123456


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunables consumed by ``TinyCNN`` at call time.

    Attributes:
        l2: L2 regularization coefficient added to every gradient
        debug: Log the hidden-layer activations on every forward pass
        hidden_size: Number of units in the hidden dense layer
        grad_clip: Gradients are clamped to [-grad_clip, grad_clip]
        seed: Seed of the weight initialization generator
    """

    l2: float = 1e-4
    debug: bool = False
    hidden_size: int = 32
    grad_clip: float = 5.0
    seed: int = DEFAULT_SEED

    def __post_init__(self) -> None:
        if self.l2 < 0:
            raise ValueError(f"l2 must be non-negative, got {self.l2}")
        if self.hidden_size < 1:
            raise ValueError(
                f"hidden_size must be a positive integer, got {self.hidden_size}"
            )
        if self.grad_clip <= 0:
            raise ValueError(f"grad_clip must be positive, got {self.grad_clip}")

    @classmethod
    def from_env(cls, **overrides) -> 'EngineConfig':
        """
        Build a config from ``TINYCNN_*`` environment variables.

        Keyword arguments take precedence over the environment.

        Returns:
            EngineConfig: The resulting configuration
        """
        config = cls()
        env = {}
        if os.getenv('TINYCNN_L2'):
            env['l2'] = float(os.environ['TINYCNN_L2'])
        if os.getenv('TINYCNN_DEBUG'):
            env['debug'] = os.environ['TINYCNN_DEBUG'].lower() in ('1', 'true', 'yes')
        if os.getenv('TINYCNN_SEED'):
            env['seed'] = int(os.environ['TINYCNN_SEED'])
        if os.getenv('TINYCNN_HIDDEN'):
            env['hidden_size'] = int(os.environ['TINYCNN_HIDDEN'])
        env.update({k: v for k, v in overrides.items() if v is not None})
        return replace(config, **env)


def configure_logging(level: Optional[str] = None) -> None:
    """
    Set up logging for command line use.

    Args:
        level: Log level name; falls back to the LOG_LEVEL environment
            variable, then INFO
    """
    log_level_str = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # Pillow and matplotlib are chatty at DEBUG
    for logger_name in ['PIL', 'matplotlib']:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
    logging.getLogger('tinycnn').setLevel(log_level)

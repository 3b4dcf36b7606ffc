"""
test_train.py
~~~~~~~~~~~~~

Tests for the training driver and the command line entry point.
"""

import pytest
import os
import sys

import numpy as np

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tinycnn.cli import main
from tinycnn.dataset import synthetic_dataset
from tinycnn.model_persistence import load_network
from tinycnn.network import TinyCNN
from tinycnn.train import TrainingConfig, evaluate, plot_loss_history, train


@pytest.fixture
def samples():
    """Eight synthetic 8x8 samples, half cats."""
    return synthetic_dataset(8, 8, 8)


@pytest.fixture
def network():
    """Small network matching the samples."""
    return TinyCNN(8, 8, 2, 3, 2)


@pytest.mark.unit
class TestTrain:
    """Test the training loop."""

    def test_history_per_epoch(self, network, samples):
        """Test that one loss and accuracy is recorded per epoch."""
        history = train(network, samples, TrainingConfig(epochs=3, seed=0))

        assert len(history['loss']) == 3
        assert len(history['accuracy']) == 3
        assert history['stopped_early'] is False
        assert all(0.0 <= acc <= 1.0 for acc in history['accuracy'])

    def test_callback_receives_progress(self, network, samples):
        """Test the per-epoch callback payload."""
        updates = []

        train(network, samples, TrainingConfig(epochs=2, seed=0), callback=updates.append)

        assert [u['epoch'] for u in updates] == [1, 2]
        assert all(u['total_epochs'] == 2 for u in updates)
        assert all({'loss', 'accuracy', 'elapsed_time'} <= set(u) for u in updates)

    def test_early_stopping(self, network, samples):
        """Test that training stops once the loss stops improving."""
        config = TrainingConfig(epochs=10, seed=0, patience=1, min_delta=10.0)

        history = train(network, samples, config)

        assert history['stopped_early'] is True
        assert len(history['loss']) == 2

    def test_same_seed_same_result(self, samples):
        """Test that the shuffle order is reproducible."""
        a, b = TinyCNN(8, 8, 2, 3, 2), TinyCNN(8, 8, 2, 3, 2)

        train(a, samples, TrainingConfig(epochs=2, seed=4))
        train(b, samples, TrainingConfig(epochs=2, seed=4))

        assert np.array_equal(a.dense_w, b.dense_w)

    def test_invalid_arguments(self, network, samples):
        """Test that empty data and zero epochs are rejected."""
        with pytest.raises(ValueError):
            train(network, [], TrainingConfig())
        with pytest.raises(ValueError):
            train(network, samples, TrainingConfig(epochs=0))

    def test_evaluate(self, network, samples):
        """Test that accuracy is a fraction."""
        assert 0.0 <= evaluate(network, samples) <= 1.0
        assert evaluate(network, []) == 0.0

    def test_plot_loss_history(self, tmp_path):
        """Test that the curve is written as a PNG."""
        path = tmp_path / "loss.png"

        plot_loss_history({'loss': [0.7, 0.6, 0.5], 'accuracy': [0.5, 0.6, 0.8]}, path)

        assert path.read_bytes()[:8] == b'\x89PNG\r\n\x1a\n'


@pytest.mark.integration
class TestCli:
    """End-to-end runs of the command line entry point."""

    def test_train_and_save(self, tmp_path):
        """Test a short synthetic run that saves a loadable model."""
        model_path = tmp_path / "model.bin"
        plot_path = tmp_path / "loss.png"

        code = main([
            '--width', '8', '--height', '8', '--filters', '2',
            '--samples', '6', '--epochs', '2', '--seed', '1',
            '--model-out', str(model_path), '--plot', str(plot_path), '--summary'
        ])

        assert code == 0
        assert plot_path.exists()
        assert load_network(TinyCNN(8, 8, 2, 3, 2), model_path) is True

    def test_resume_from_saved_model(self, tmp_path):
        """Test --load with a compatible model file."""
        model_path = tmp_path / "model.bin"
        TinyCNN(8, 8, 2, 3, 2).save(model_path)

        code = main([
            '--width', '8', '--height', '8', '--filters', '2',
            '--samples', '4', '--epochs', '1', '--seed', '1',
            '--load', str(model_path), '--model-out', str(tmp_path / "out.bin")
        ])

        assert code == 0

    def test_load_mismatch_fails(self, tmp_path):
        """Test that an incompatible model file aborts the run."""
        model_path = tmp_path / "model.bin"
        TinyCNN(8, 8, 4, 3, 2).save(model_path)

        code = main([
            '--width', '8', '--height', '8', '--filters', '2',
            '--load', str(model_path), '--model-out', str(tmp_path / "out.bin")
        ])

        assert code == 1
        assert not (tmp_path / "out.bin").exists()

    def test_gradcheck(self, tmp_path, caplog):
        """Test the --gradcheck mode."""
        code = main([
            '--width', '4', '--height', '4', '--filters', '1',
            '--ksize', '2', '--pool', '1', '--samples', '2', '--seed', '3',
            '--gradcheck', '--model-out', str(tmp_path / "unused.bin")
        ])

        assert code == 0
        assert "Gradcheck results" in caplog.text
        assert not (tmp_path / "unused.bin").exists()

    def test_missing_data_dir(self, tmp_path):
        """Test that a missing data directory exits with 1."""
        assert main(['--data-dir', str(tmp_path / "missing")]) == 1

    def test_invalid_architecture(self):
        """Test that an impossible network exits with 1."""
        assert main(['--width', '4', '--height', '4', '--ksize', '5']) == 1

    def test_gradcheck_rejects_zero_epsilon(self):
        """Test that --gradcheck with a zero step exits with 1."""
        assert main([
            '--width', '4', '--height', '4', '--filters', '1', '--ksize', '2',
            '--pool', '1', '--samples', '2', '--gradcheck', '--epsilon', '0'
        ]) == 1

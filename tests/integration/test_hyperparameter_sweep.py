"""
Hyperparameter Sweep Integration Tests

Runs every predefined preset of the real learners on small synthetic
datasets.
"""

from dataclasses import replace

import pytest

from mlharness.config import Task, TrainingConfig
from mlharness.core import HyperparameterSweepRunner
from mlharness.dataset import SyntheticDatasetOptions
from mlharness.verification.errors import PresetCountMismatchError


@pytest.fixture
def runner(harness_config, tmp_path):
    return HyperparameterSweepRunner(harness_config, tmp_path / "sweep")


@pytest.mark.integration
@pytest.mark.slow
class TestHyperparameterSweep:
    """Predefined hyperparameter sweeps."""

    def setup_method(self):
        self.options = SyntheticDatasetOptions(num_examples=400, task=Task.CLASSIFICATION, seed=7)

    @pytest.mark.parametrize("learner,num_presets", [("XGBOOST", 4), ("LIGHTGBM", 3)])
    def test_all_presets(self, runner, learner, num_presets):
        train_config = TrainingConfig(learner, Task.CLASSIFICATION, "LABEL")

        report = runner.run_on_synthetic_dataset(train_config, expected_num_presets=num_presets,
                                                 min_accuracy=0.6, options=self.options)

        assert report.num_presets == num_presets
        assert report.best_preset in report.outcomes
        assert all(outcome.training_duration > 0 for outcome in report.outcomes.values())

    def test_regression_sweep(self, runner):
        train_config = TrainingConfig("LIGHTGBM", Task.REGRESSION, "LABEL")
        options = replace(self.options, task=Task.REGRESSION)

        report = runner.run_on_synthetic_dataset(train_config, expected_num_presets=3,
                                                 options=options, dataset_format="parquet")

        assert all(value < 0 for value in report.values().values())

    def test_unexpected_preset_count(self, runner):
        train_config = TrainingConfig("LIGHTGBM", Task.CLASSIFICATION, "LABEL")

        with pytest.raises(PresetCountMismatchError):
            runner.run_on_synthetic_dataset(train_config, expected_num_presets=5, options=self.options)

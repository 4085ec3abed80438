# /mlharness/src/mlharness/testing.py

"""
Pytest Plugin for Train-and-Test Scenarios

Load with ``pytest_plugins = ["mlharness.testing"]`` in a conftest.

Fixtures:
- harness_config: HarnessConfig loaded from YAML / environment, with the
  dataset and golden roots moved under the test's tmp_path unless set
  explicitly through the environment; its monitoring section
  configures logging
- metric_checker: MetricChecker named after the running test
- train_and_test: factory of TrainAndTestTester instances, each with its
  own work directory

Command line options:
    --metric-dump-dir DIR   record metric assertions instead of checking them
    --check-gold            compare metrics with their gold values
"""

import os
from dataclasses import replace
from typing import Callable, Optional

import pytest

from .config.harness_config import HarnessConfig, load_harness_config
from .config.training_config import TrainingConfig
from .core.pipeline import TrainAndTestTester
from .dataset.synthetic import SyntheticDatasetOptions
from .utils.logging import setup_logging_from_config
from .verification.metric_assertion import MetricChecker


def pytest_addoption(parser):
    group = parser.getgroup("mlharness")
    group.addoption("--metric-dump-dir", action="store", default=None,
                    help="Record metric assertions to DIR instead of checking them")
    group.addoption("--check-gold", action="store_true", default=False,
                    help="Compare metrics and models with their gold values")


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: mark test as training several models"
    )


@pytest.fixture
def harness_config(request, tmp_path) -> HarnessConfig:
    """Harness configuration isolated in the test's temporary directory."""
    config = load_harness_config(environment=os.getenv("MLHARNESS_ENVIRONMENT", "development"))
    setup_logging_from_config(config.monitoring)

    dataset_config = config.dataset
    if "MLHARNESS_DATASET_ROOT" not in os.environ:
        dataset_config = replace(dataset_config, dataset_root=str(tmp_path / "datasets"))

    verification_config = config.verification
    if "MLHARNESS_GOLDEN_ROOT" not in os.environ:
        verification_config = replace(verification_config, golden_root=str(tmp_path / "golden"))

    metrics_config = config.metrics
    dump_dir = request.config.getoption("--metric-dump-dir", default=None)
    if dump_dir:
        os.makedirs(dump_dir, exist_ok=True)
        metrics_config = replace(metrics_config, dump_dir=dump_dir)
    if request.config.getoption("--check-gold", default=False):
        metrics_config = replace(metrics_config, check_gold=True)

    return replace(config, dataset=dataset_config, verification=verification_config,
                   metrics=metrics_config)


@pytest.fixture
def metric_checker(request, harness_config) -> MetricChecker:
    return MetricChecker(harness_config.metrics, request.node.name)


@pytest.fixture
def train_and_test(harness_config, tmp_path) -> Callable[..., TrainAndTestTester]:
    """
    Factory fixture:

        tester = train_and_test(TrainingConfig("XGBOOST", Task.CLASSIFICATION, "LABEL"))
        evaluation = tester.train_and_evaluate_model()
    """
    counter = {'runs': 0}

    def create(train_config: TrainingConfig,
               synthetic_options: Optional[SyntheticDatasetOptions] = None,
               config: Optional[HarnessConfig] = None) -> TrainAndTestTester:
        counter['runs'] += 1
        work_dir = tmp_path / f"run_{counter['runs']}"
        return TrainAndTestTester(config or harness_config, train_config, work_dir, synthetic_options)

    return create

# /mlharness/src/mlharness/__init__.py

"""
mlharness: Train-and-Test Harness for Tabular Learners

This package runs end-to-end train-and-test scenarios against gradient
boosted tree learners and verifies the trained models beyond their metrics.

Key Features:
- Dataset preparation from typed paths or synthetic generation, with
  deterministic partitioning, weight emulation and sharding
- Learner adapters for XGBoost and LightGBM behind one model interface
- Post-training checks: serialization round trips, prediction equivalence
  across inference engines (native, in-place, ONNX Runtime) and golden
  model comparison
- Metric assertions with center/margin ranges, gold values and a dump mode
  for recalibration
- Hyperparameter preset sweeps through Optuna

Core Components:
- TrainAndTestTester: State machine sequencing one scenario
- DatasetBuilder: Dataset loading, partitioning and sharding
- PredictionEquivalenceChecker: Engine-by-engine prediction comparison
- MetricChecker: Metric assertions of one test
- HyperparameterSweepRunner: Predefined hyperparameter sweep
"""

from .config import (
    HarnessConfig,
    TrainingConfig,
    Task,
    CustomLoss,
    ConfigurationError,
    load_harness_config
)
from .dataset import DatasetBuilder, SyntheticDatasetOptions, generate_synthetic_dataset
from .learners import create_learner, load_model, deserialize_model, registered_learners
from .verification import (
    MetricChecker,
    PredictionEquivalenceChecker,
    SerializationRoundTripChecker,
    GoldenModelChecker,
    VerificationError,
    assert_metric,
    export_uplift_predictions_csv
)
from .evaluation import EvaluationResult, evaluate, variable_importance_rank
from .core import TrainAndTestTester, TrainingOrchestrator, HyperparameterSweepRunner
from .utils import setup_harness_logging, setup_logging_from_config

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "HarnessConfig",
    "TrainingConfig",
    "Task",
    "CustomLoss",
    "ConfigurationError",
    "load_harness_config",

    # Datasets
    "DatasetBuilder",
    "SyntheticDatasetOptions",
    "generate_synthetic_dataset",

    # Learners
    "create_learner",
    "load_model",
    "deserialize_model",
    "registered_learners",

    # Verification
    "MetricChecker",
    "PredictionEquivalenceChecker",
    "SerializationRoundTripChecker",
    "GoldenModelChecker",
    "VerificationError",
    "assert_metric",
    "export_uplift_predictions_csv",

    # Evaluation
    "EvaluationResult",
    "evaluate",
    "variable_importance_rank",

    # Pipeline
    "TrainAndTestTester",
    "TrainingOrchestrator",
    "HyperparameterSweepRunner",

    # Logging
    "setup_harness_logging",
    "setup_logging_from_config"
]

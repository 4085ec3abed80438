# /mlharness/src/mlharness/config/__init__.py

"""
Harness Configuration Management

Frozen, validated configuration objects loaded from YAML with environment
overrides, and the immutable training configuration of a single run.
"""

from .harness_config import (
    HarnessConfig,
    DatasetConfig,
    TrainingSectionConfig,
    VerificationConfig,
    MetricCheckConfig,
    MonitoringConfig,
    ConfigurationError,
    load_harness_config
)
from .training_config import (
    Task,
    CustomLoss,
    HyperparameterPreset,
    TrainingConfig,
    squared_error_loss
)

__all__ = [
    "HarnessConfig",
    "DatasetConfig",
    "TrainingSectionConfig",
    "VerificationConfig",
    "MetricCheckConfig",
    "MonitoringConfig",
    "ConfigurationError",
    "load_harness_config",
    "Task",
    "CustomLoss",
    "HyperparameterPreset",
    "TrainingConfig",
    "squared_error_loss"
]

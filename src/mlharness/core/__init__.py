# /mlharness/src/mlharness/core/__init__.py

"""
Train-and-Test Core

Training orchestration, the train-and-test pipeline and the hyperparameter
sweep runner.
"""

from .trainer import TrainingOrchestrator, TrainingOutcome
from .pipeline import (
    PipelineState,
    PipelineStateMachine,
    TrainAndTestTester,
    PipelineExecutionError,
    InvalidStateTransitionError
)
from .sweep import HyperparameterSweepRunner, PresetOutcome, SweepReport, outcome_metric

__all__ = [
    "TrainingOrchestrator",
    "TrainingOutcome",
    "PipelineState",
    "PipelineStateMachine",
    "TrainAndTestTester",
    "PipelineExecutionError",
    "InvalidStateTransitionError",
    "HyperparameterSweepRunner",
    "PresetOutcome",
    "SweepReport",
    "outcome_metric"
]

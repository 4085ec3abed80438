# /mlharness/src/mlharness/config/training_config.py

"""
Training Configuration

Immutable description of one training run: learner identity, task, label,
features, optional weights / ranking group / uplift treatment columns,
hyperparameters and random seed.

A TrainingConfig is validated against a DataSpecification before any
training happens; every referenced column must exist.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .harness_config import ConfigurationError


class Task(str, Enum):
    """Learning task."""
    CLASSIFICATION = "CLASSIFICATION"
    REGRESSION = "REGRESSION"
    RANKING = "RANKING"
    UPLIFT = "UPLIFT"


@dataclass(frozen=True)
class CustomLoss:
    """
    User supplied loss for regression.

    ``gradient_and_hessian(labels, predictions)`` returns the per-example
    first and second derivatives of the loss with respect to the raw
    prediction.
    """
    name: str
    gradient_and_hessian: Callable[[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]
    initial_prediction: Callable[[np.ndarray], float] = np.mean


def squared_error_loss() -> CustomLoss:
    """Squared error written as a custom loss; mostly useful in tests."""
    def gradient_and_hessian(labels: np.ndarray, predictions: np.ndarray):
        return predictions - labels, np.ones_like(predictions)

    return CustomLoss(name="squared_error", gradient_and_hessian=gradient_and_hessian)


def persisted_loss(name: str) -> CustomLoss:
    """
    Stand-in for a custom loss read back from a saved model.

    Only the name survives persistence; the loss cannot be used to train.
    """
    def gradient_and_hessian(labels: np.ndarray, predictions: np.ndarray):
        raise ConfigurationError(
            f"Custom loss '{name}' was loaded from a saved model and cannot train; "
            "provide the loss function again"
        )

    return CustomLoss(name=name, gradient_and_hessian=gradient_and_hessian)


@dataclass(frozen=True)
class HyperparameterPreset:
    """Named, predefined set of hyperparameters of a learner."""
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    description: str = ""


@dataclass(frozen=True)
class TrainingConfig:
    """
    Configuration of a single training run.
    """
    learner: str
    task: Task
    label: str
    features: Tuple[str, ...] = ()  # Empty: every non-special column
    weights: Optional[str] = None
    ranking_group: Optional[str] = None
    uplift_treatment: Optional[str] = None
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    random_seed: int = 123456
    custom_loss: Optional[CustomLoss] = None
    model_name: str = ""  # Golden model lookup key

    def __post_init__(self):
        if not isinstance(self.task, Task):
            try:
                object.__setattr__(self, 'task', Task(str(self.task).upper()))
            except ValueError as e:
                raise ConfigurationError(f"Unknown task: {self.task}") from e
        object.__setattr__(self, 'features', tuple(self.features))

    @property
    def special_columns(self) -> List[str]:
        columns = [self.label, self.weights, self.ranking_group, self.uplift_treatment]
        return [column for column in columns if column]

    def resolve_features(self, data_spec) -> List[str]:
        """Input features; defaults to every column that is not label-like."""
        if self.features:
            return list(self.features)
        special = set(self.special_columns)
        return [name for name in data_spec.column_names if name not in special]

    def validate(self, data_spec) -> List[str]:
        """Validate the configuration against a data specification."""
        errors = []

        if not self.learner:
            errors.append("Learner name cannot be empty")

        for role, column in (("label", self.label),
                             ("weights", self.weights),
                             ("ranking group", self.ranking_group),
                             ("uplift treatment", self.uplift_treatment)):
            if column and not data_spec.has_column(column):
                errors.append(f"The {role} column '{column}' does not exist in the dataset")

        for feature in self.features:
            if not data_spec.has_column(feature):
                errors.append(f"The feature '{feature}' does not exist in the dataset")

        if self.task == Task.RANKING and not self.ranking_group:
            errors.append("Ranking requires a ranking group column")
        if self.task == Task.UPLIFT and not self.uplift_treatment:
            errors.append("Uplift requires a treatment column")
        if self.task != Task.RANKING and self.ranking_group:
            errors.append(f"A ranking group is not allowed with task {self.task.value}")
        if self.task != Task.UPLIFT and self.uplift_treatment:
            errors.append(f"An uplift treatment is not allowed with task {self.task.value}")

        if self.label and data_spec.has_column(self.label):
            label_type = data_spec.column(self.label).type
            if self.task == Task.CLASSIFICATION and label_type != "CATEGORICAL":
                errors.append(f"Classification requires a CATEGORICAL label, got {label_type.value}")
            if self.task in (Task.REGRESSION, Task.RANKING, Task.UPLIFT) and label_type != "NUMERICAL":
                errors.append(f"Task {self.task.value} requires a NUMERICAL label, got {label_type.value}")

        if self.weights and data_spec.has_column(self.weights):
            if data_spec.column(self.weights).type != "NUMERICAL":
                errors.append(f"The weights column '{self.weights}' must be NUMERICAL")

        if self.custom_loss is not None and self.task != Task.REGRESSION:
            errors.append(f"Custom losses are only supported for regression, not {self.task.value}")

        if not errors and not self.resolve_features(data_spec):
            errors.append("The training configuration has no input features")

        return errors

    def with_weights(self, weights: Optional[str]) -> 'TrainingConfig':
        return replace(self, weights=weights)

    def with_seed(self, random_seed: int) -> 'TrainingConfig':
        return replace(self, random_seed=random_seed)

    def with_hyperparameters(self, hyperparameters: Dict[str, Any]) -> 'TrainingConfig':
        merged = dict(self.hyperparameters)
        merged.update(hyperparameters)
        return replace(self, hyperparameters=merged)

    @property
    def effective_model_name(self) -> str:
        if self.model_name:
            return self.model_name
        return f"{self.learner.lower()}_{self.task.value.lower()}_{self.label.lower()}"

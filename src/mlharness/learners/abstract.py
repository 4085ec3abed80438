# /mlharness/src/mlharness/learners/abstract.py

"""
Learner, Model and Inference Engine Interfaces

Architecture:
- AbstractLearner turns a TrainingConfig and a dataset (frame or typed path)
  into an AbstractModel, honoring a cooperative deadline
- AbstractModel exposes a reference inference path (``predict``), zero or
  more specialized inference engines, two persisted forms (directory and
  bytes) and its semantic ``structure()``
- AbstractInferenceEngine is the single capability every inference path
  implements: ``predict_batch(examples) -> predictions``

Predictions are (n, num_classes) probabilities for classification and (n,)
scalars for every other task.
"""

import json
import logging
import pickle
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from ..config.harness_config import ConfigurationError
from ..config.training_config import (HyperparameterPreset, Task, TrainingConfig,
                                      persisted_loss)
from ..dataset.data_spec import (ColumnType, DataSpecification, encode_features,
                                 encode_labels)
from ..dataset.io import read_dataset

logger = logging.getLogger(__name__)

HEADER_FILENAME = "header.json"


@dataclass
class ModelMetadata:
    """Non-semantic information; ignored by structural comparisons."""
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    training_duration: float = 0.0
    library_version: str = ""


def training_config_to_dict(config: TrainingConfig) -> Dict[str, Any]:
    return {
        'learner': config.learner,
        'task': config.task.value,
        'label': config.label,
        'features': list(config.features),
        'weights': config.weights,
        'ranking_group': config.ranking_group,
        'uplift_treatment': config.uplift_treatment,
        'hyperparameters': dict(config.hyperparameters),
        'random_seed': config.random_seed,
        'custom_loss': config.custom_loss.name if config.custom_loss else None,
        'model_name': config.model_name
    }


def training_config_from_dict(data: Dict[str, Any]) -> TrainingConfig:
    # Custom losses are code; only their name is persisted.
    data = dict(data)
    loss_name = data.pop('custom_loss', None)
    if loss_name:
        data['custom_loss'] = persisted_loss(loss_name)
    return TrainingConfig(**data)


class AbstractInferenceEngine(ABC):
    """One way of computing predictions on a batch of examples."""

    name: str = "abstract"

    @abstractmethod
    def predict_batch(self, examples: pd.DataFrame) -> np.ndarray:
        """Predict one batch; row i of the output matches row i of the input."""


class ReferenceEngine(AbstractInferenceEngine):
    """The model's own ``predict``; trusted as ground truth."""

    name = "reference"

    def __init__(self, model: 'AbstractModel'):
        self.model = model

    def predict_batch(self, examples: pd.DataFrame) -> np.ndarray:
        return self.model.predict(examples)


class AbstractModel(ABC):
    """
    Trained model. Never mutated after creation.

    Subclasses implement prediction, specialized engines and the payload part
    of the persistence; the header (configuration, data specification and
    metadata) is handled here.
    """

    model_type: str = "ABSTRACT"

    def __init__(self, train_config: TrainingConfig,
                 data_spec: DataSpecification,
                 features: List[str],
                 metadata: Optional[ModelMetadata] = None):
        self.train_config = train_config
        self.data_spec = data_spec
        self.features = list(features)
        self.metadata = metadata or ModelMetadata()

    @property
    def task(self) -> Task:
        return self.train_config.task

    @property
    def label(self) -> str:
        return self.train_config.label

    @property
    def name(self) -> str:
        return self.train_config.effective_model_name

    @property
    def class_names(self) -> List[str]:
        if self.task != Task.CLASSIFICATION:
            return []
        return list(self.data_spec.column(self.label).vocabulary)

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    def encode(self, examples: pd.DataFrame) -> np.ndarray:
        return encode_features(examples, self.features, self.data_spec)

    @abstractmethod
    def predict(self, examples: pd.DataFrame) -> np.ndarray:
        """Reference predictions."""

    def reference_engine(self) -> AbstractInferenceEngine:
        return ReferenceEngine(self)

    def specialized_engine_names(self) -> List[str]:
        """Specialized engines this model type knows about."""
        return []

    def build_specialized_engine(self, engine_name: str) -> AbstractInferenceEngine:
        """
        Build a specialized engine.

        Raises:
            EngineNotSupportedError: If this model cannot run on the engine
        """
        raise EngineNotSupportedError(engine_name, f"Unknown engine for {self.model_type}")

    def variable_importances(self) -> Dict[str, float]:
        return {}

    # Persistence

    def header(self) -> Dict[str, Any]:
        return {
            'model_type': self.model_type,
            'train_config': training_config_to_dict(self.train_config),
            'data_spec': self.data_spec.to_dict(),
            'features': self.features,
            'metadata': asdict(self.metadata)
        }

    @abstractmethod
    def _save_payload(self, directory: Path) -> None:
        """Write the native model files into ``directory``."""

    @classmethod
    @abstractmethod
    def _load_payload(cls, header: Dict[str, Any], directory: Path) -> 'AbstractModel':
        """Rebuild a model from its header and native model files."""

    @abstractmethod
    def _payload_bytes(self) -> bytes:
        """Native model content as bytes."""

    @classmethod
    @abstractmethod
    def _from_payload_bytes(cls, header: Dict[str, Any], payload: bytes) -> 'AbstractModel':
        """Rebuild a model from its header and native bytes."""

    @abstractmethod
    def _payload_structure(self) -> Dict[str, Any]:
        """JSON compatible description of the learned parameters."""

    def save(self, directory: Union[str, Path]) -> Path:
        """Save the model in its directory form."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        with open(directory / HEADER_FILENAME, 'w') as f:
            json.dump(self.header(), f, indent=2, default=str)
        self._save_payload(directory)

        logger.debug("model.saved", extra={"model_type": self.model_type, "directory": str(directory)})
        return directory

    def serialize(self) -> bytes:
        """Model in its flat byte form."""
        return pickle.dumps({'header': self.header(), 'payload': self._payload_bytes()})

    def structure(self) -> Dict[str, Any]:
        """Semantic content of the model; metadata is excluded."""
        header = self.header()
        header.pop('metadata')
        header['payload'] = self._payload_structure()
        # Normalize through JSON so loaded and in-memory models compare equal.
        return json.loads(json.dumps(header, default=str))

    def describe(self, full_structure: bool = False) -> str:
        lines = [
            f'Type: "{self.model_type}"',
            f'Task: {self.task.value}',
            f'Label: "{self.label}"',
            f'Input Features ({len(self.features)}): {" ".join(self.features)}',
            f'Training duration: {self.metadata.training_duration:.3f}s'
        ]

        importances = self.variable_importances()
        if importances:
            lines.append("Variable Importance:")
            ranked = sorted(importances.items(), key=lambda item: item[1], reverse=True)
            for rank, (feature, value) in enumerate(ranked, start=1):
                lines.append(f'  {rank:>3}. "{feature}" {value:.6f}')

        if full_structure:
            lines.append(json.dumps(self._payload_structure(), indent=2, default=str))

        return "\n".join(lines)


class DeadlineTracker:
    """Wall clock deadline shared by the learner callbacks."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self.start_time = time.monotonic()
        self.triggered = False

    def expired(self) -> bool:
        if self.seconds is None:
            return False
        if time.monotonic() - self.start_time >= self.seconds:
            self.triggered = True
        return self.triggered


class AbstractLearner(ABC):
    """
    Trains models from a TrainingConfig.
    """

    learner_name: str = "ABSTRACT"
    supported_tasks = ()

    def __init__(self, config: TrainingConfig):
        self.config = config
        self.deadline_seconds: Optional[float] = None
        self.logger = logging.getLogger(__name__)

    def set_deadline(self, seconds: Optional[float]) -> None:
        """
        Ask the learner to stop after ``seconds``. Training still returns the
        model learned so far.
        """
        self.deadline_seconds = seconds

    def predefined_hyperparameters(self) -> List[HyperparameterPreset]:
        return [HyperparameterPreset(name="default")]

    def check_configuration(self, data_spec: DataSpecification) -> None:
        """
        Raises:
            ConfigurationError: If the configuration cannot be trained
        """
        errors = self.config.validate(data_spec)
        if self.config.task not in self.supported_tasks:
            errors.append(f"Learner {self.learner_name} does not support task {self.config.task.value}")
        for feature in self.config.resolve_features(data_spec):
            if data_spec.has_column(feature) and data_spec.column(feature).type == ColumnType.TEXT:
                errors.append(f"Learner {self.learner_name} does not support TEXT feature '{feature}'")
        if errors:
            raise ConfigurationError(f"Invalid training configuration: {errors}")

    def train(self, dataset: Union[pd.DataFrame, str],
              data_spec: DataSpecification,
              valid_dataset: Optional[Union[pd.DataFrame, str]] = None) -> AbstractModel:
        """
        Train a model.

        Args:
            dataset: Training examples, in memory or as a typed path
            data_spec: Data specification of the dataset
            valid_dataset: Optional validation examples, in memory or as a path

        Returns:
            Trained model
        """
        self.check_configuration(data_spec)

        if isinstance(dataset, str):
            dataset = read_dataset(dataset)
        if isinstance(valid_dataset, str):
            valid_dataset = read_dataset(valid_dataset)
        if len(dataset) == 0:
            raise ConfigurationError("The training dataset is empty")

        deadline = DeadlineTracker(self.deadline_seconds)
        start_time = time.perf_counter()
        model = self._train(dataset, data_spec, valid_dataset, deadline)
        model.metadata.training_duration = time.perf_counter() - start_time

        if deadline.triggered:
            self.logger.warning("learner.deadline_reached", extra={
                "learner": self.learner_name,
                "deadline_seconds": self.deadline_seconds
            })

        return model

    @abstractmethod
    def _train(self, dataset: pd.DataFrame,
               data_spec: DataSpecification,
               valid_dataset: Optional[pd.DataFrame],
               deadline: DeadlineTracker) -> AbstractModel:
        """Learner specific training."""

    def _label_values(self, dataset: pd.DataFrame, data_spec: DataSpecification) -> np.ndarray:
        if self.config.task == Task.CLASSIFICATION:
            return encode_labels(dataset, self.config.label, data_spec)
        return pd.to_numeric(dataset[self.config.label], errors='raise').to_numpy(dtype=np.float64)

    def _weight_values(self, dataset: pd.DataFrame) -> Optional[np.ndarray]:
        if not self.config.weights:
            return None
        return pd.to_numeric(dataset[self.config.weights], errors='raise').to_numpy(dtype=np.float64)


# Custom exceptions
class EngineNotSupportedError(Exception):
    """A model cannot run on a given specialized engine. Not a failure."""

    def __init__(self, engine_name: str, reason: str = ""):
        self.engine_name = engine_name
        self.reason = reason
        super().__init__(f"Engine '{engine_name}' not supported: {reason}")

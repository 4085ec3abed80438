"""
Test Configuration and Fixtures for mlharness

Provides in-process fake learners, models and inference engines so that the
harness logic is exercised without training real models, plus small
deterministic datasets.

Key features:
- FAKE learner and model registered like the real adapters
- Inference engines that can be told to corrupt chosen rows
- Harness fixtures from the mlharness pytest plugin
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import pytest

from mlharness.config import HyperparameterPreset, Task, TrainingConfig
from mlharness.dataset import DataSpecification, infer_data_spec
from mlharness.learners.abstract import (AbstractInferenceEngine, AbstractLearner,
                                         AbstractModel, EngineNotSupportedError,
                                         ModelMetadata, training_config_from_dict)
from mlharness.learners.registry import register_learner, register_model

pytest_plugins = ["mlharness.testing"]

FAKE_EXACT_ENGINE = "fake_exact"
FAKE_UNSUPPORTED_ENGINE = "fake_unsupported"
FAKE_PAYLOAD_FILENAME = "fake_model.json"


@register_model("FAKE")
class FakeModel(AbstractModel):
    """Predictions are a fixed function of the first feature."""

    def __init__(self, train_config: TrainingConfig,
                 data_spec: DataSpecification,
                 features: List[str],
                 slope: float = 1.0,
                 metadata: Optional[ModelMetadata] = None,
                 engines: Optional[Dict[str, AbstractInferenceEngine]] = None):
        super().__init__(train_config, data_spec, features, metadata)
        self.slope = slope
        self.engines = engines or {}

    def predict(self, examples: pd.DataFrame) -> np.ndarray:
        x = self.encode(examples)[:, 0].astype(np.float64) * self.slope
        if self.task != Task.CLASSIFICATION:
            return x
        logits = np.column_stack([x * idx for idx in range(self.num_classes)])
        shifted = np.exp(logits - logits.max(axis=1, keepdims=True))
        return shifted / shifted.sum(axis=1, keepdims=True)

    def specialized_engine_names(self) -> List[str]:
        return [FAKE_EXACT_ENGINE, FAKE_UNSUPPORTED_ENGINE] + list(self.engines)

    def build_specialized_engine(self, engine_name: str) -> AbstractInferenceEngine:
        if engine_name in self.engines:
            return self.engines[engine_name]
        if engine_name == FAKE_EXACT_ENGINE:
            return CorruptingEngine(self, name=FAKE_EXACT_ENGINE)
        if engine_name == FAKE_UNSUPPORTED_ENGINE:
            raise EngineNotSupportedError(engine_name, "not compiled in")
        return super().build_specialized_engine(engine_name)

    def variable_importances(self) -> Dict[str, float]:
        return {name: float(len(self.features) - idx) for idx, name in enumerate(self.features)}

    def _save_payload(self, directory: Path) -> None:
        with open(directory / FAKE_PAYLOAD_FILENAME, 'w') as f:
            json.dump({'slope': self.slope}, f)

    @classmethod
    def _load_payload(cls, header: Dict[str, Any], directory: Path) -> 'FakeModel':
        with open(directory / FAKE_PAYLOAD_FILENAME, 'r') as f:
            payload = json.load(f)
        return cls._from_header(header, payload['slope'])

    def _payload_bytes(self) -> bytes:
        return json.dumps({'slope': self.slope}).encode('utf-8')

    @classmethod
    def _from_payload_bytes(cls, header: Dict[str, Any], payload: bytes) -> 'FakeModel':
        return cls._from_header(header, json.loads(payload.decode('utf-8'))['slope'])

    @classmethod
    def _from_header(cls, header: Dict[str, Any], slope: float) -> 'FakeModel':
        return cls(training_config_from_dict(header['train_config']),
                   DataSpecification.from_dict(header['data_spec']),
                   header['features'], slope, ModelMetadata(**header['metadata']))

    def _payload_structure(self) -> Dict[str, Any]:
        return {'slope': self.slope}


class CorruptingEngine(AbstractInferenceEngine):
    """Reference predictions, shifted on the rows whose index is listed."""

    def __init__(self, model: FakeModel, corrupt_rows: Sequence[int] = (),
                 offset: float = 0.5, name: str = "corrupting"):
        self.model = model
        self.corrupt_rows = set(corrupt_rows)
        self.offset = offset
        self.name = name
        self.batch_sizes: List[int] = []

    def predict_batch(self, examples: pd.DataFrame) -> np.ndarray:
        self.batch_sizes.append(len(examples))
        predictions = np.array(self.model.predict(examples), dtype=np.float64)
        for position, row_index in enumerate(examples.index):
            if row_index in self.corrupt_rows:
                predictions[position] = predictions[position] + self.offset
        return predictions


class FailingEngine(AbstractInferenceEngine):
    name = "failing"

    def predict_batch(self, examples: pd.DataFrame) -> np.ndarray:
        raise RuntimeError("engine crashed")


@register_learner("FAKE")
class FakeLearner(AbstractLearner):
    """Learns nothing; the slope comes from the hyperparameters."""

    supported_tasks = (Task.CLASSIFICATION, Task.REGRESSION, Task.RANKING, Task.UPLIFT)
    trained_configs: List[TrainingConfig] = []

    def predefined_hyperparameters(self) -> List[HyperparameterPreset]:
        return [HyperparameterPreset(name="default"),
                HyperparameterPreset(name="steep", parameters={'slope': 3.0})]

    def _train(self, dataset, data_spec, valid_dataset, deadline) -> FakeModel:
        FakeLearner.trained_configs.append(self.config)
        deadline.expired()
        features = self.config.resolve_features(data_spec)
        return FakeModel(self.config, data_spec, features,
                         slope=float(self.config.hyperparameters.get('slope', 1.0)))


@pytest.fixture
def regression_dataset() -> pd.DataFrame:
    """47 rows; "x" is the signal, "y" a noiseless regression label."""
    x = np.linspace(-2.0, 2.0, 47)
    return pd.DataFrame({
        'x': x,
        'color': ['red', 'green', 'blue'] * 15 + ['red', 'green'],
        'y': 2.0 * x + 1.0
    })


@pytest.fixture
def classification_dataset() -> pd.DataFrame:
    x = np.linspace(-3.0, 3.0, 60)
    return pd.DataFrame({
        'x': x,
        'w': np.where(x > 0, 2.0, 1.0),
        'label': np.where(x > 0, 'pos', 'neg')
    })


@pytest.fixture
def fake_regression_model(regression_dataset) -> FakeModel:
    config = TrainingConfig(learner="FAKE", task=Task.REGRESSION, label="y", features=("x",))
    data_spec = infer_data_spec(regression_dataset)
    return FakeModel(config, data_spec, ["x"], slope=2.0)


@pytest.fixture
def fake_classification_model(classification_dataset) -> FakeModel:
    config = TrainingConfig(learner="FAKE", task=Task.CLASSIFICATION, label="label", features=("x",))
    data_spec = infer_data_spec(classification_dataset)
    return FakeModel(config, data_spec, ["x"], slope=1.5)


@pytest.fixture
def corrupting_engine():
    """Factory: corrupting_engine(model, corrupt_rows=(), offset=0.5, name=...)"""
    return CorruptingEngine


@pytest.fixture
def failing_engine() -> FailingEngine:
    return FailingEngine()


@pytest.fixture
def fake_learner():
    return FakeLearner


@pytest.fixture(autouse=True)
def reset_fake_learner():
    FakeLearner.trained_configs.clear()
    yield
    FakeLearner.trained_configs.clear()


def pytest_collection_modifyitems(config, items):
    """Mark the tests that train real models."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

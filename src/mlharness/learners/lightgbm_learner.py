# /mlharness/src/mlharness/learners/lightgbm_learner.py

"""
LightGBM Learner

Gradient boosted trees through the lightgbm scikit-learn API. The fitted
Booster is kept as the model; the reference path applies the link function
to raw scores itself, the "lightgbm_booster" engine uses the booster's own
transformed prediction.

Supported tasks: CLASSIFICATION, REGRESSION.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import lightgbm as lgb
import numpy as np
import pandas as pd

from ..config.harness_config import ConfigurationError
from ..config.training_config import HyperparameterPreset, Task, TrainingConfig
from ..dataset.data_spec import DataSpecification, encode_features
from .abstract import (AbstractInferenceEngine, AbstractLearner, AbstractModel,
                       DeadlineTracker, ModelMetadata,
                       training_config_from_dict)
from .onnx_engine import OnnxInferenceEngine, convert_to_onnx
from .registry import register_learner, register_model

logger = logging.getLogger(__name__)

BOOSTER_ENGINE = "lightgbm_booster"
ONNX_ENGINE = "onnx"
MODEL_FILENAME = "model.txt"

DEFAULT_PARAMETERS = {
    'n_estimators': 100,
    'num_leaves': 31,
    'learning_rate': 0.1,
    'deterministic': True,
    'force_row_wise': True,
    'verbosity': -1
}

PRESETS = [
    HyperparameterPreset(name="default", description="Library defaults of the harness"),
    HyperparameterPreset(
        name="shallow_fast",
        parameters={'n_estimators': 30, 'num_leaves': 7},
        description="Few small trees"),
    HyperparameterPreset(
        name="many_leaves",
        parameters={'num_leaves': 127, 'min_child_samples': 5},
        description="Large trees on small leaves")
]


def _deadline_callback(deadline: DeadlineTracker):
    """Stops boosting once the deadline has passed; trees built so far are kept."""
    def callback(env: lgb.callback.CallbackEnv) -> None:
        if deadline.expired():
            raise lgb.callback.EarlyStopException(env.iteration, env.evaluation_result_list or [])
    callback.order = 30
    return callback


@register_model("LIGHTGBM")
class LightGBMModel(AbstractModel):
    """Model wrapping a lightgbm Booster."""

    def __init__(self, train_config: TrainingConfig,
                 data_spec: DataSpecification,
                 features: List[str],
                 booster: lgb.Booster,
                 metadata: Optional[ModelMetadata] = None):
        super().__init__(train_config, data_spec, features, metadata)
        self.booster = booster

    def _format(self, values: np.ndarray) -> np.ndarray:
        values = np.asarray(values, dtype=np.float64)
        if self.task == Task.CLASSIFICATION and values.ndim == 1:
            return np.column_stack([1.0 - values, values])
        return values

    def predict(self, examples: pd.DataFrame) -> np.ndarray:
        raw = np.asarray(self.booster.predict(self.encode(examples), raw_score=True),
                         dtype=np.float64)
        if self.task != Task.CLASSIFICATION:
            return raw
        if raw.ndim == 1:
            return self._format(1.0 / (1.0 + np.exp(-raw)))
        shifted = np.exp(raw - raw.max(axis=1, keepdims=True))
        return shifted / shifted.sum(axis=1, keepdims=True)

    def specialized_engine_names(self) -> List[str]:
        return [BOOSTER_ENGINE, ONNX_ENGINE]

    def build_specialized_engine(self, engine_name: str) -> AbstractInferenceEngine:
        if engine_name == BOOSTER_ENGINE:
            return LightGBMBoosterEngine(self)

        if engine_name == ONNX_ENGINE:
            onnx_model = convert_to_onnx(self.booster, "lightgbm", len(self.features))
            return OnnxInferenceEngine(self, onnx_model,
                                       classification=self.task == Task.CLASSIFICATION)

        return super().build_specialized_engine(engine_name)

    def variable_importances(self) -> Dict[str, float]:
        gains = self.booster.feature_importance(importance_type='gain')
        return {name: float(gain) for name, gain in zip(self.features, gains)}

    # Persistence

    def _save_payload(self, directory: Path) -> None:
        self.booster.save_model(str(directory / MODEL_FILENAME))

    @classmethod
    def _load_payload(cls, header: Dict[str, Any], directory: Path) -> 'LightGBMModel':
        booster = lgb.Booster(model_file=str(directory / MODEL_FILENAME))
        return cls(training_config_from_dict(header['train_config']),
                   DataSpecification.from_dict(header['data_spec']),
                   header['features'], booster, ModelMetadata(**header['metadata']))

    def _payload_bytes(self) -> bytes:
        return self.booster.model_to_string().encode('utf-8')

    @classmethod
    def _from_payload_bytes(cls, header: Dict[str, Any], payload: bytes) -> 'LightGBMModel':
        booster = lgb.Booster(model_str=payload.decode('utf-8'))
        return cls(training_config_from_dict(header['train_config']),
                   DataSpecification.from_dict(header['data_spec']),
                   header['features'], booster, ModelMetadata(**header['metadata']))

    def _payload_structure(self) -> Dict[str, Any]:
        dump = self.booster.dump_model()
        return {
            'objective': dump.get('objective'),
            'num_class': dump.get('num_class'),
            'tree_info': dump.get('tree_info', [])
        }


class LightGBMBoosterEngine(AbstractInferenceEngine):
    """Booster prediction with the objective's own output transformation."""

    name = BOOSTER_ENGINE

    def __init__(self, model: LightGBMModel):
        self.model = model

    def predict_batch(self, examples: pd.DataFrame) -> np.ndarray:
        return self.model._format(self.model.booster.predict(self.model.encode(examples)))


@register_learner("LIGHTGBM")
class LightGBMLearner(AbstractLearner):
    """
    LightGBM learner.
    """

    supported_tasks = (Task.CLASSIFICATION, Task.REGRESSION)

    def predefined_hyperparameters(self) -> List[HyperparameterPreset]:
        return list(PRESETS)

    def check_configuration(self, data_spec: DataSpecification) -> None:
        super().check_configuration(data_spec)
        if self.config.custom_loss is not None:
            raise ConfigurationError("The LightGBM learner does not support custom losses")

    def _train(self, dataset: pd.DataFrame,
               data_spec: DataSpecification,
               valid_dataset: Optional[pd.DataFrame],
               deadline: DeadlineTracker) -> LightGBMModel:
        features = self.config.resolve_features(data_spec)

        params = dict(DEFAULT_PARAMETERS)
        params.update(self.config.hyperparameters)
        params['random_state'] = self.config.random_seed

        if self.config.task == Task.CLASSIFICATION:
            estimator = lgb.LGBMClassifier(**params)
        else:
            estimator = lgb.LGBMRegressor(**params)

        fit_args = {
            'sample_weight': self._weight_values(dataset),
            'callbacks': [_deadline_callback(deadline)]
        }
        if valid_dataset is not None:
            fit_args['eval_set'] = [(encode_features(valid_dataset, features, data_spec),
                                     self._label_values(valid_dataset, data_spec))]

        estimator.fit(encode_features(dataset, features, data_spec),
                      self._label_values(dataset, data_spec), **fit_args)

        # Reload from text so that in-memory and persisted models share one
        # representation.
        booster = lgb.Booster(model_str=estimator.booster_.model_to_string())

        self.logger.info("lightgbm.trained", extra={
            "task": self.config.task.value,
            "num_examples": len(dataset),
            "num_features": len(features),
            "num_trees": booster.num_trees(),
            "deadline_reached": deadline.triggered
        })

        return LightGBMModel(self.config, data_spec, features, booster,
                             ModelMetadata(library_version=lgb.__version__))

# /mlharness/src/mlharness/learners/xgboost_learner.py

"""
XGBoost Learner

Gradient boosted trees through the xgboost scikit-learn API.

Supported tasks:
- CLASSIFICATION: XGBClassifier, probabilities in label vocabulary order
- REGRESSION: XGBRegressor, optionally with a custom loss
- RANKING: XGBRanker (rank:ndcg) with one query per ranking group value
- UPLIFT: two XGBRegressor models (treated / control); the uplift is the
  difference of their predictions

Inference engines:
- reference: booster prediction on a DMatrix
- xgboost_inplace: booster in-place prediction on the raw matrix
- onnx: onnxmltools conversion run by ONNX Runtime (classification and
  regression without custom loss)
"""

import json
import logging
import pickle
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import xgboost as xgb

from ..config.harness_config import ConfigurationError
from ..config.training_config import HyperparameterPreset, Task, TrainingConfig
from ..dataset.data_spec import DataSpecification, as_category_strings, encode_features
from .abstract import (AbstractInferenceEngine, AbstractLearner, AbstractModel,
                       DeadlineTracker, EngineNotSupportedError, ModelMetadata,
                       training_config_from_dict)
from .onnx_engine import OnnxInferenceEngine, convert_to_onnx
from .registry import register_learner, register_model

logger = logging.getLogger(__name__)

INPLACE_ENGINE = "xgboost_inplace"
ONNX_ENGINE = "onnx"

DEFAULT_PARAMETERS = {
    'n_estimators': 100,
    'max_depth': 6,
    'learning_rate': 0.1,
    'tree_method': 'hist',
    'verbosity': 0
}

PRESETS = [
    HyperparameterPreset(name="default", description="Library defaults of the harness"),
    HyperparameterPreset(
        name="shallow_fast",
        parameters={'n_estimators': 30, 'max_depth': 3, 'learning_rate': 0.3},
        description="Few shallow trees"),
    HyperparameterPreset(
        name="deep_regularized",
        parameters={'max_depth': 8, 'min_child_weight': 5, 'reg_lambda': 5.0,
                    'subsample': 0.8, 'colsample_bytree': 0.8},
        description="Deep trees with strong regularization"),
    HyperparameterPreset(
        name="benchmark_rank1",
        parameters={'n_estimators': 200, 'max_depth': 6, 'learning_rate': 0.1,
                    'subsample': 0.9, 'colsample_bytree': 0.9, 'reg_alpha': 0.5},
        description="Best configuration of the internal benchmark")
]


def _estimator_keys(task: Task) -> List[str]:
    return ["treatment", "control"] if task == Task.UPLIFT else ["main"]


def _estimator_class(task: Task):
    if task == Task.CLASSIFICATION:
        return xgb.XGBClassifier
    if task == Task.RANKING:
        return xgb.XGBRanker
    return xgb.XGBRegressor


class _DeadlineCallback(xgb.callback.TrainingCallback):
    """Stops boosting once the deadline has passed; trees built so far are kept."""

    def __init__(self, deadline: DeadlineTracker):
        super().__init__()
        self.deadline = deadline

    def after_iteration(self, model, epoch: int, evals_log) -> bool:
        return self.deadline.expired()


@register_model("XGBOOST")
class XGBoostModel(AbstractModel):
    """Model made of one xgboost estimator, or two for uplift."""

    def __init__(self, train_config: TrainingConfig,
                 data_spec: DataSpecification,
                 features: List[str],
                 estimators: Dict[str, xgb.XGBModel],
                 metadata: Optional[ModelMetadata] = None):
        super().__init__(train_config, data_spec, features, metadata)
        self.estimators = estimators

    def _format(self, raw: np.ndarray) -> np.ndarray:
        raw = np.asarray(raw, dtype=np.float64)
        if self.task == Task.CLASSIFICATION and raw.ndim == 1:
            return np.column_stack([1.0 - raw, raw])
        return raw

    def _predict_matrix(self, features: np.ndarray, inplace: bool) -> np.ndarray:
        def run(estimator: xgb.XGBModel) -> np.ndarray:
            booster = estimator.get_booster()
            if inplace:
                return booster.inplace_predict(features, missing=np.nan)
            return booster.predict(xgb.DMatrix(features, missing=np.nan))

        if self.task == Task.UPLIFT:
            treatment = np.asarray(run(self.estimators["treatment"]), dtype=np.float64)
            control = np.asarray(run(self.estimators["control"]), dtype=np.float64)
            return treatment - control
        return self._format(run(self.estimators["main"]))

    def predict(self, examples: pd.DataFrame) -> np.ndarray:
        return self._predict_matrix(self.encode(examples), inplace=False)

    def specialized_engine_names(self) -> List[str]:
        return [INPLACE_ENGINE, ONNX_ENGINE]

    def build_specialized_engine(self, engine_name: str) -> AbstractInferenceEngine:
        if engine_name == INPLACE_ENGINE:
            return XGBoostInplaceEngine(self)

        if engine_name == ONNX_ENGINE:
            if self.task not in (Task.CLASSIFICATION, Task.REGRESSION):
                raise EngineNotSupportedError(engine_name, f"task {self.task.value}")
            if self.train_config.custom_loss is not None:
                raise EngineNotSupportedError(engine_name, "custom loss")
            onnx_model = convert_to_onnx(self.estimators["main"], "xgboost", len(self.features))
            return OnnxInferenceEngine(self, onnx_model,
                                       classification=self.task == Task.CLASSIFICATION)

        return super().build_specialized_engine(engine_name)

    def variable_importances(self) -> Dict[str, float]:
        importances = {name: 0.0 for name in self.features}
        for estimator in self.estimators.values():
            for key, value in estimator.get_booster().get_score(importance_type='gain').items():
                # Boosters trained on matrices name their features f0, f1, ...
                index = int(key[1:]) if key.startswith('f') and key[1:].isdigit() else None
                if index is not None and index < len(self.features):
                    importances[self.features[index]] += float(value)
        return importances

    # Persistence

    def _save_payload(self, directory: Path) -> None:
        for key, estimator in self.estimators.items():
            estimator.save_model(str(directory / f"model_{key}.ubj"))

    @classmethod
    def _load_payload(cls, header: Dict[str, Any], directory: Path) -> 'XGBoostModel':
        train_config = training_config_from_dict(header['train_config'])
        estimators = {}
        for key in _estimator_keys(train_config.task):
            estimator = _estimator_class(train_config.task)()
            estimator.load_model(str(directory / f"model_{key}.ubj"))
            estimators[key] = estimator
        return cls(train_config, DataSpecification.from_dict(header['data_spec']),
                   header['features'], estimators, ModelMetadata(**header['metadata']))

    def _payload_bytes(self) -> bytes:
        with tempfile.TemporaryDirectory(prefix="mlharness_xgb_") as tmp_dir:
            self._save_payload(Path(tmp_dir))
            content = {key: (Path(tmp_dir) / f"model_{key}.ubj").read_bytes()
                       for key in self.estimators}
        return pickle.dumps(content)

    @classmethod
    def _from_payload_bytes(cls, header: Dict[str, Any], payload: bytes) -> 'XGBoostModel':
        content = pickle.loads(payload)
        with tempfile.TemporaryDirectory(prefix="mlharness_xgb_") as tmp_dir:
            for key, data in content.items():
                (Path(tmp_dir) / f"model_{key}.ubj").write_bytes(data)
            return cls._load_payload(header, Path(tmp_dir))

    def _payload_structure(self) -> Dict[str, Any]:
        structure = {}
        for key, estimator in self.estimators.items():
            booster = estimator.get_booster()
            learner_config = json.loads(booster.save_config())["learner"]
            structure[key] = {
                'model_param': learner_config["learner_model_param"],
                'objective': learner_config["objective"]["name"],
                'trees': [json.loads(tree) for tree in booster.get_dump(dump_format="json")]
            }
        return structure


class XGBoostInplaceEngine(AbstractInferenceEngine):
    """In-place prediction; skips the DMatrix construction."""

    name = INPLACE_ENGINE

    def __init__(self, model: XGBoostModel):
        self.model = model

    def predict_batch(self, examples: pd.DataFrame) -> np.ndarray:
        return self.model._predict_matrix(self.model.encode(examples), inplace=True)


@register_learner("XGBOOST")
class XGBoostLearner(AbstractLearner):
    """
    XGBoost learner.
    """

    supported_tasks = (Task.CLASSIFICATION, Task.REGRESSION, Task.RANKING, Task.UPLIFT)

    def predefined_hyperparameters(self) -> List[HyperparameterPreset]:
        return list(PRESETS)

    def check_configuration(self, data_spec: DataSpecification) -> None:
        super().check_configuration(data_spec)
        if self.config.task == Task.RANKING and self.config.weights:
            raise ConfigurationError("XGBoost ranking does not support per-example weights")

    def _parameters(self, base_score: Optional[float]) -> Dict[str, Any]:
        params = dict(DEFAULT_PARAMETERS)
        params.update(self.config.hyperparameters)
        params['random_state'] = self.config.random_seed
        # An explicit base score keeps converted models aligned with xgboost.
        if base_score is not None:
            params['base_score'] = base_score
        return params

    def _train(self, dataset: pd.DataFrame,
               data_spec: DataSpecification,
               valid_dataset: Optional[pd.DataFrame],
               deadline: DeadlineTracker) -> XGBoostModel:
        features = self.config.resolve_features(data_spec)
        task = self.config.task

        if task == Task.RANKING:
            estimators = {"main": self._train_ranker(dataset, data_spec, features, deadline)}
        elif task == Task.UPLIFT:
            estimators = self._train_uplift(dataset, data_spec, features, deadline)
        else:
            estimators = {"main": self._train_single(dataset, data_spec, features,
                                                     valid_dataset, deadline)}

        for estimator in estimators.values():
            estimator.set_params(callbacks=None)

        self.logger.info("xgboost.trained", extra={
            "task": task.value,
            "num_examples": len(dataset),
            "num_features": len(features),
            "num_trees": sum(len(e.get_booster().get_dump()) for e in estimators.values()),
            "deadline_reached": deadline.triggered
        })

        return XGBoostModel(self.config, data_spec, features, estimators,
                            ModelMetadata(library_version=xgb.__version__))

    def _train_single(self, dataset, data_spec, features, valid_dataset, deadline) -> xgb.XGBModel:
        X = encode_features(dataset, features, data_spec)
        y = self._label_values(dataset, data_spec)
        sample_weight = self._weight_values(dataset)

        if self.config.task == Task.CLASSIFICATION:
            estimator = xgb.XGBClassifier(**self._parameters(0.5),
                                          callbacks=[_DeadlineCallback(deadline)])
        elif self.config.custom_loss is not None:
            loss = self.config.custom_loss
            estimator = xgb.XGBRegressor(**self._parameters(float(loss.initial_prediction(y))),
                                         objective=loss.gradient_and_hessian,
                                         callbacks=[_DeadlineCallback(deadline)])
        else:
            estimator = xgb.XGBRegressor(**self._parameters(float(np.average(y, weights=sample_weight))),
                                         callbacks=[_DeadlineCallback(deadline)])

        fit_args = {'sample_weight': sample_weight}
        if valid_dataset is not None:
            fit_args['eval_set'] = [(encode_features(valid_dataset, features, data_spec),
                                     self._label_values(valid_dataset, data_spec))]
            fit_args['verbose'] = False

        estimator.fit(X, y, **fit_args)
        return estimator

    def _train_ranker(self, dataset, data_spec, features, deadline) -> xgb.XGBRanker:
        group_column = data_spec.column(self.config.ranking_group)
        qid = as_category_strings(dataset[self.config.ranking_group]).map(
            group_column.vocabulary_index).fillna(-1).to_numpy(dtype=np.int64)

        # XGBRanker requires examples sorted by query.
        order = np.argsort(qid, kind='stable')
        ordered = dataset.iloc[order]

        estimator = xgb.XGBRanker(**self._parameters(None), objective='rank:ndcg',
                                  callbacks=[_DeadlineCallback(deadline)])
        estimator.fit(encode_features(ordered, features, data_spec),
                      self._label_values(ordered, data_spec),
                      qid=qid[order])
        return estimator

    def _train_uplift(self, dataset, data_spec, features, deadline) -> Dict[str, xgb.XGBModel]:
        treatment_column = data_spec.column(self.config.uplift_treatment)
        control_value = treatment_column.vocabulary[0]
        treated = (as_category_strings(dataset[self.config.uplift_treatment]) != control_value).to_numpy()

        estimators = {}
        for key, mask in (("treatment", treated), ("control", ~treated)):
            subset = dataset[mask]
            if len(subset) == 0:
                raise ConfigurationError(f"The uplift {key} group of the training dataset is empty")
            y = self._label_values(subset, data_spec)
            sample_weight = self._weight_values(subset)
            estimator = xgb.XGBRegressor(**self._parameters(float(np.average(y, weights=sample_weight))),
                                         callbacks=[_DeadlineCallback(deadline)])
            estimator.fit(encode_features(subset, features, data_spec), y, sample_weight=sample_weight)
            estimators[key] = estimator

        return estimators

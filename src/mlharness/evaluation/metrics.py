# /mlharness/src/mlharness/evaluation/metrics.py

"""
Model Evaluation

Metrics of a model on a held-out dataset, computed with scikit-learn.

Metrics per task:
- CLASSIFICATION: accuracy, log_loss, auc (binary only), confusion matrix
- REGRESSION: rmse
- RANKING: ndcg@5, averaged over the ranking groups with at least two
  examples and one relevant example
- UPLIFT: qini, the normalized area between the Qini curve and the random
  targeting line
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import (accuracy_score, confusion_matrix, log_loss,
                             mean_squared_error, ndcg_score, roc_auc_score)

from ..config.training_config import Task
from ..dataset.data_spec import as_category_strings, encode_labels
from ..learners.abstract import AbstractModel

logger = logging.getLogger(__name__)

NDCG_TRUNCATION = 5


@dataclass(frozen=True)
class EvaluationResult:
    """Aggregated metrics of one evaluation. Read-only."""
    task: Task
    num_examples: int
    sum_weights: float
    metrics: Dict[str, float] = field(default_factory=dict)
    confusion_matrix: Optional[np.ndarray] = None

    def metric(self, name: str) -> float:
        return self.metrics.get(name, math.nan)

    @property
    def accuracy(self) -> float:
        return self.metric('accuracy')

    @property
    def log_loss(self) -> float:
        return self.metric('log_loss')

    @property
    def auc(self) -> float:
        return self.metric('auc')

    @property
    def rmse(self) -> float:
        return self.metric('rmse')

    @property
    def ndcg(self) -> float:
        return self.metric('ndcg')

    @property
    def qini(self) -> float:
        return self.metric('qini')

    def describe(self) -> str:
        lines = [f"Task: {self.task.value}",
                 f"Number of examples: {self.num_examples}",
                 f"Sum of weights: {self.sum_weights}"]
        lines.extend(f"{name}: {value:.6f}" for name, value in sorted(self.metrics.items()))
        if self.confusion_matrix is not None:
            lines.append(f"Confusion matrix:\n{self.confusion_matrix}")
        return "\n".join(lines)


def _ndcg(labels: np.ndarray, scores: np.ndarray, groups: pd.Series) -> float:
    values = []
    for _, positions in groups.groupby(groups, sort=True).indices.items():
        group_labels = labels[positions]
        if len(positions) < 2 or not (group_labels > 0).any():
            continue
        values.append(ndcg_score([group_labels], [scores[positions]], k=NDCG_TRUNCATION))
    return float(np.mean(values)) if values else math.nan


def qini_coefficient(uplift: np.ndarray, response: np.ndarray, treated: np.ndarray) -> float:
    """
    Mean gap between the Qini curve and the random targeting line, divided by
    the number of examples.
    """
    order = np.argsort(-uplift, kind='stable')
    response = response[order]
    treated = treated[order]

    treated_response = np.cumsum(response * treated)
    control_response = np.cumsum(response * ~treated)
    num_treated = np.cumsum(treated)
    num_control = np.cumsum(~treated)

    with np.errstate(divide='ignore', invalid='ignore'):
        ratio = np.where(num_control > 0, num_treated / num_control, 0.0)
    curve = treated_response - control_response * ratio

    n = len(curve)
    if n == 0:
        return math.nan
    random_line = curve[-1] * np.arange(1, n + 1) / n
    return float(np.mean(curve - random_line) / n)


def evaluate(model: AbstractModel, dataset: pd.DataFrame) -> EvaluationResult:
    """
    Evaluate a model.

    Args:
        model: Trained model
        dataset: Held-out examples with labels

    Returns:
        EvaluationResult
    """
    config = model.train_config
    if config.weights:
        weights = pd.to_numeric(dataset[config.weights]).to_numpy(dtype=np.float64)
    else:
        weights = None

    predictions = np.asarray(model.predict(dataset), dtype=np.float64)
    metrics: Dict[str, float] = {}
    matrix = None

    if model.task == Task.CLASSIFICATION:
        labels = encode_labels(dataset, config.label, model.data_spec)
        class_ids = list(range(model.num_classes))
        predicted = predictions.argmax(axis=1)

        metrics['accuracy'] = float(accuracy_score(labels, predicted, sample_weight=weights))
        metrics['log_loss'] = float(log_loss(labels, predictions, sample_weight=weights, labels=class_ids))
        if model.num_classes == 2 and len(np.unique(labels)) == 2:
            metrics['auc'] = float(roc_auc_score(labels, predictions[:, 1], sample_weight=weights))
        matrix = confusion_matrix(labels, predicted, labels=class_ids, sample_weight=weights)

    elif model.task == Task.REGRESSION:
        labels = pd.to_numeric(dataset[config.label]).to_numpy(dtype=np.float64)
        metrics['rmse'] = float(math.sqrt(mean_squared_error(labels, predictions, sample_weight=weights)))

    elif model.task == Task.RANKING:
        labels = pd.to_numeric(dataset[config.label]).to_numpy(dtype=np.float64)
        groups = as_category_strings(dataset[config.ranking_group]).reset_index(drop=True)
        metrics['ndcg'] = _ndcg(labels, predictions, groups)

    elif model.task == Task.UPLIFT:
        response = pd.to_numeric(dataset[config.label]).to_numpy(dtype=np.float64)
        control_value = model.data_spec.column(config.uplift_treatment).vocabulary[0]
        treated = (as_category_strings(dataset[config.uplift_treatment]) != control_value).to_numpy()
        metrics['qini'] = qini_coefficient(predictions, response, treated)

    result = EvaluationResult(
        task=model.task,
        num_examples=len(dataset),
        sum_weights=float(weights.sum()) if weights is not None else float(len(dataset)),
        metrics=metrics,
        confusion_matrix=matrix
    )

    logger.info("evaluation.completed", extra={
        "model_name": model.name,
        "task": model.task.value,
        "num_examples": len(dataset),
        "metrics": metrics
    })

    return result


def variable_importance_rank(attribute: str, importances: Dict[str, float]) -> int:
    """
    1-based rank of ``attribute`` by decreasing importance.

    Raises:
        KeyError: If the attribute has no importance
    """
    if attribute not in importances:
        raise KeyError(f"No variable importance for '{attribute}'")
    ranked = sorted(importances, key=lambda name: (-importances[name], name))
    return ranked.index(attribute) + 1

# /mlharness/src/mlharness/dataset/synthetic.py

"""
Synthetic Dataset Generation

Reproducible tabular datasets for classification, regression, ranking and
uplift tests. The same options always produce the same frame.

Generated columns:
- num_<i>: normally distributed numerical features
- cat_<i>: categorical features with values v0..v<k-1>
- bool_<i>: boolean features
- the label, plus a ranking group or uplift treatment column when the task
  needs one

The label is a noisy function of the features so that trained models beat
a constant baseline by a clear margin.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ..config.training_config import Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyntheticDatasetOptions:
    """Declarative description of a synthetic dataset."""
    num_examples: int = 1000
    num_numerical: int = 5
    num_categorical: int = 3
    num_boolean: int = 1
    categorical_vocab_size: int = 5
    missing_ratio: float = 0.0
    task: Task = Task.CLASSIFICATION
    num_classes: int = 2
    noise_scale: float = 0.3
    label: str = "LABEL"
    ranking_group: str = "GROUP"
    num_ranking_groups: int = 25
    uplift_treatment: str = "TREATMENT"
    seed: int = 1234

    def validate(self):
        errors = []
        if self.num_examples <= 0:
            errors.append(f"Number of examples must be positive: {self.num_examples}")
        if self.num_numerical + self.num_categorical + self.num_boolean <= 0:
            errors.append("At least one feature column is required")
        if not 0 <= self.missing_ratio < 1:
            errors.append(f"Missing ratio must be in [0, 1): {self.missing_ratio}")
        if self.num_classes < 2:
            errors.append(f"Number of classes must be at least 2: {self.num_classes}")
        if self.categorical_vocab_size < 1:
            errors.append(f"Vocabulary size must be positive: {self.categorical_vocab_size}")
        return errors


def generate_synthetic_dataset(options: SyntheticDatasetOptions) -> pd.DataFrame:
    """
    Generate a synthetic dataset.

    Args:
        options: Dataset description

    Returns:
        DataFrame with feature columns followed by the task specific columns
    """
    errors = options.validate()
    if errors:
        raise ValueError(f"Invalid synthetic dataset options: {errors}")

    rng = np.random.default_rng(options.seed)
    n = options.num_examples
    columns = {}
    score = np.zeros(n)

    for idx in range(options.num_numerical):
        values = rng.normal(size=n)
        score += values * rng.uniform(-1.0, 1.0)
        columns[f"num_{idx}"] = values

    for idx in range(options.num_categorical):
        codes = rng.integers(0, options.categorical_vocab_size, size=n)
        effects = rng.normal(scale=0.5, size=options.categorical_vocab_size)
        score += effects[codes]
        columns[f"cat_{idx}"] = np.array([f"v{code}" for code in codes], dtype=object)

    for idx in range(options.num_boolean):
        values = rng.random(n) < 0.5
        score += np.where(values, 0.5, -0.5)
        columns[f"bool_{idx}"] = values

    noisy_score = score + rng.normal(scale=options.noise_scale, size=n)

    # Missing values are injected after the label signal is computed.
    if options.missing_ratio > 0:
        for name in list(columns):
            if name.startswith("num_"):
                values = columns[name].copy()
                values[rng.random(n) < options.missing_ratio] = np.nan
                columns[name] = values
            elif name.startswith("cat_"):
                values = columns[name].copy()
                values[rng.random(n) < options.missing_ratio] = None
                columns[name] = values

    dataset = pd.DataFrame(columns)

    if options.task == Task.CLASSIFICATION:
        edges = np.quantile(noisy_score, np.linspace(0, 1, options.num_classes + 1)[1:-1])
        classes = np.digitize(noisy_score, edges)
        dataset[options.label] = [f"class_{cls}" for cls in classes]

    elif options.task == Task.REGRESSION:
        dataset[options.label] = noisy_score

    elif options.task == Task.RANKING:
        edges = np.quantile(noisy_score, [0.2, 0.4, 0.6, 0.8])
        dataset[options.label] = np.digitize(noisy_score, edges).astype(np.float64)
        groups = rng.integers(0, options.num_ranking_groups, size=n)
        dataset[options.ranking_group] = [f"q{group}" for group in groups]

    elif options.task == Task.UPLIFT:
        treated = rng.random(n) < 0.5
        # Treatment effect grows with the feature signal.
        effect = np.where(treated, 0.5 + 0.5 * np.tanh(score), 0.0)
        probability = 1.0 / (1.0 + np.exp(-(noisy_score * 0.5 + effect - 0.5)))
        dataset[options.label] = (rng.random(n) < probability).astype(np.float64)
        dataset[options.uplift_treatment] = np.where(treated, "treatment", "control")

    logger.debug("synthetic_dataset.generated", extra={
        "num_examples": n,
        "task": options.task.value,
        "num_columns": len(dataset.columns),
        "seed": options.seed
    })

    return dataset

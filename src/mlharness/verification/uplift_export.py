# /mlharness/src/mlharness/verification/uplift_export.py

"""
Uplift prediction export.

Writes the predictions of a binary treatment uplift model as a CSV with the
columns "uplift", "response", "weight" and "group", one row per example.
"group" is 0 for the control group (first treatment value) and 1 for the
treated group. Third-party uplift evaluation tools read this layout.
"""

import logging
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

from ..config.harness_config import ConfigurationError
from ..config.training_config import Task
from ..dataset.data_spec import as_category_strings
from ..learners.abstract import AbstractModel

logger = logging.getLogger(__name__)

UPLIFT_COLUMNS = ["uplift", "response", "weight", "group"]


def uplift_predictions_frame(model: AbstractModel, dataset: pd.DataFrame) -> pd.DataFrame:
    config = model.train_config
    if model.task != Task.UPLIFT:
        raise ConfigurationError(f"Uplift export requires an uplift model, got {model.task.value}")

    treatment = model.data_spec.column(config.uplift_treatment)
    if len(treatment.vocabulary) != 2:
        raise ConfigurationError(
            f"Uplift export requires a binary treatment, got {len(treatment.vocabulary)} values")

    groups = as_category_strings(dataset[config.uplift_treatment]).map(treatment.vocabulary_index)
    if groups.isna().any():
        raise ConfigurationError("Uplift export requires a treatment value on every example")

    if config.weights:
        weights = pd.to_numeric(dataset[config.weights]).to_numpy(dtype=np.float64)
    else:
        weights = np.ones(len(dataset))

    return pd.DataFrame({
        'uplift': np.asarray(model.predict(dataset), dtype=np.float64).reshape(-1),
        'response': pd.to_numeric(dataset[config.label]).to_numpy(dtype=np.float64),
        'weight': weights,
        'group': groups.to_numpy(dtype=np.int64)
    }, columns=UPLIFT_COLUMNS)


def export_uplift_predictions_csv(model: AbstractModel, dataset: pd.DataFrame,
                                  output_csv_path: Union[str, Path]) -> Path:
    """Write the uplift predictions of ``model`` on ``dataset``."""
    path = Path(output_csv_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    uplift_predictions_frame(model, dataset).to_csv(path, index=False)

    logger.info("uplift.exported", extra={"path": str(path), "num_rows": len(dataset)})
    return path

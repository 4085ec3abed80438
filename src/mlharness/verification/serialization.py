# /mlharness/src/mlharness/verification/serialization.py

"""
Serialization Round-Trip Checker

Saves a model in each persisted form, reloads it, and requires the reloaded
model to predict exactly like the original. Equality is behavioral: the
persisted bytes may differ, the predictions may not, not even within a
tolerance.
"""

import logging
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd

from ..learners.abstract import AbstractModel
from ..learners.registry import deserialize_model, load_model
from .errors import SerializationMismatchError

logger = logging.getLogger(__name__)


class SerializationForm(str, Enum):
    DIRECTORY = "directory"
    BYTES = "bytes"


@dataclass
class RoundTripResult:
    form: SerializationForm
    num_rows: int = 0
    num_different_rows: int = 0
    first_different_row: int = -1

    @property
    def passed(self) -> bool:
        return self.num_different_rows == 0


@dataclass
class SerializationReport:
    model_name: str
    results: Dict[SerializationForm, RoundTripResult] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results.values())


def different_rows(expected: np.ndarray, actual: np.ndarray) -> np.ndarray:
    """Indices of the rows that are not exactly equal (NaN equals NaN)."""
    expected = np.asarray(expected)
    actual = np.asarray(actual)
    if expected.shape != actual.shape:
        return np.arange(max(len(expected), len(actual)))

    equal = (expected == actual) | (np.isnan(expected) & np.isnan(actual))
    if equal.ndim > 1:
        equal = equal.reshape(len(equal), -1).all(axis=1)
    return np.flatnonzero(~equal)


class SerializationRoundTripChecker:
    """
    Exercises the directory and the byte forms of a model.
    """

    def __init__(self, work_dir: Optional[Union[str, Path]] = None):
        self.work_dir = Path(work_dir) if work_dir else None
        self.logger = logging.getLogger(__name__)

    def _reload(self, model: AbstractModel, form: SerializationForm,
                directory: Path) -> AbstractModel:
        if form == SerializationForm.DIRECTORY:
            model.save(directory / "model")
            return load_model(directory / "model")
        return deserialize_model(model.serialize())

    def check(self, model: AbstractModel, dataset: pd.DataFrame) -> SerializationReport:
        """Round trip the model through both forms and compare predictions."""
        report = SerializationReport(model_name=model.name)
        original = np.asarray(model.predict(dataset), dtype=np.float64)

        for form in SerializationForm:
            if self.work_dir is not None:
                directory = self.work_dir / f"serialization_{form.value}"
                directory.mkdir(parents=True, exist_ok=True)
                reloaded = self._reload(model, form, directory)
            else:
                with tempfile.TemporaryDirectory(prefix="mlharness_serialization_") as tmp_dir:
                    reloaded = self._reload(model, form, Path(tmp_dir))

            rows = different_rows(original, np.asarray(reloaded.predict(dataset), dtype=np.float64))
            result = RoundTripResult(
                form=form,
                num_rows=len(dataset),
                num_different_rows=len(rows),
                first_different_row=int(rows[0]) if len(rows) else -1)
            report.results[form] = result

            log = self.logger.info if result.passed else self.logger.error
            log("serialization.round_trip", extra={
                "model_name": model.name,
                "form": form.value,
                "num_rows": result.num_rows,
                "num_different_rows": result.num_different_rows
            })

        return report

    def assert_lossless(self, model: AbstractModel, dataset: pd.DataFrame) -> SerializationReport:
        """
        Raises:
            SerializationMismatchError: If any form changes a prediction
        """
        report = self.check(model, dataset)
        for result in report.results.values():
            if not result.passed:
                raise SerializationMismatchError(result.form.value, result.num_different_rows,
                                                 result.first_different_row)
        return report

# /mlharness/src/mlharness/verification/equivalence.py

"""
Prediction Equivalence Checker

Compares every specialized inference engine of a model against its reference
engine, batch by batch, on every row of a dataset.

Key Features:
- Fixed size batches (default 20); the last batch holds the remainder
- Absolute tolerance comparison, NaN equal to NaN
- Per-class probability comparison for classification, scalar comparison
  for every other task
- Engines a model cannot build are skipped, not failed
- A failing engine does not stop the check of the others
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..config.harness_config import VerificationConfig
from ..config.training_config import Task
from ..learners.abstract import (AbstractInferenceEngine, AbstractModel,
                                 EngineNotSupportedError)
from .errors import PredictionMismatchError, VerificationError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20
DEFAULT_TOLERANCE = 1e-5


@dataclass(frozen=True)
class PredictionMismatch:
    """One row on which an engine disagrees with the reference engine."""
    engine: str
    row_index: int
    batch_index: int
    expected: Any
    actual: Any

    def __str__(self) -> str:
        return (f"engine={self.engine} row={self.row_index} batch={self.batch_index} "
                f"expected={self.expected} actual={self.actual}")


@dataclass
class EngineCheckResult:
    """Outcome of the comparison of one engine."""
    engine: str
    num_rows: int = 0
    batch_sizes: List[int] = field(default_factory=list)
    mismatches: List[PredictionMismatch] = field(default_factory=list)
    max_absolute_difference: float = 0.0
    skipped: bool = False
    skip_reason: str = ""

    @property
    def num_batches(self) -> int:
        return len(self.batch_sizes)

    @property
    def passed(self) -> bool:
        return self.skipped or not self.mismatches


@dataclass
class EquivalenceReport:
    """Outcome of the comparison of all the engines of a model."""
    model_name: str
    engine_results: Dict[str, EngineCheckResult] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, error: str):
        self.errors.append(error)

    def add_warning(self, warning: str):
        self.warnings.append(warning)

    @property
    def mismatches(self) -> List[PredictionMismatch]:
        return [m for result in self.engine_results.values() for m in result.mismatches]

    @property
    def checked_engines(self) -> List[str]:
        return [name for name, result in self.engine_results.items() if not result.skipped]

    @property
    def skipped_engines(self) -> List[str]:
        return [name for name, result in self.engine_results.items() if result.skipped]

    @property
    def passed(self) -> bool:
        return not self.errors and not self.mismatches

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model_name': self.model_name,
            'checked_engines': self.checked_engines,
            'skipped_engines': self.skipped_engines,
            'num_mismatches': len(self.mismatches),
            'errors': self.errors,
            'warnings': self.warnings
        }


def normalize_predictions(predictions: Any, task: Task, num_classes: int) -> np.ndarray:
    """
    Bring engine outputs to the common layout.

    Binary classifiers returning only the positive probability are expanded
    to two columns; single column scalar outputs are flattened.
    """
    values = np.asarray(predictions, dtype=np.float64)

    if task == Task.CLASSIFICATION:
        if num_classes == 2 and (values.ndim == 1 or (values.ndim == 2 and values.shape[1] == 1)):
            positive = values.reshape(-1)
            return np.column_stack([1.0 - positive, positive])
        return values

    if values.ndim == 2 and values.shape[1] == 1:
        return values.reshape(-1)
    return values


def _row_value(values: np.ndarray, row: int) -> Any:
    if row >= len(values):
        return None
    value = values[row]
    return value.tolist() if isinstance(value, np.ndarray) else float(value)


def check_engine_predictions(dataset: pd.DataFrame,
                             reference: AbstractInferenceEngine,
                             engine: AbstractInferenceEngine,
                             task: Task,
                             num_classes: int = 0,
                             batch_size: int = DEFAULT_BATCH_SIZE,
                             tolerance: float = DEFAULT_TOLERANCE) -> EngineCheckResult:
    """
    Compare an engine with the reference engine on every row of a dataset.

    Args:
        dataset: Examples to predict
        reference: Trusted engine
        engine: Engine under test
        task: Task of the model; selects the comparison
        num_classes: Number of classes for classification
        batch_size: Number of rows per batch
        tolerance: Maximum absolute difference

    Returns:
        EngineCheckResult with one mismatch per disagreeing row
    """
    if batch_size <= 0:
        raise ValueError(f"Batch size must be positive: {batch_size}")

    result = EngineCheckResult(engine=engine.name, num_rows=len(dataset))

    for batch_index, begin in enumerate(range(0, len(dataset), batch_size)):
        batch = dataset.iloc[begin:begin + batch_size]
        result.batch_sizes.append(len(batch))

        expected = normalize_predictions(reference.predict_batch(batch), task, num_classes)
        actual = normalize_predictions(engine.predict_batch(batch), task, num_classes)

        if expected.shape != actual.shape:
            logger.warning("equivalence.shape_mismatch", extra={
                "engine": engine.name,
                "batch_index": batch_index,
                "expected_shape": expected.shape,
                "actual_shape": actual.shape
            })
            row_matches = np.zeros(len(batch), dtype=bool)
        else:
            close = np.isclose(actual, expected, rtol=0.0, atol=tolerance, equal_nan=True)
            row_matches = close.all(axis=1) if close.ndim == 2 else close

            with np.errstate(invalid='ignore'):
                differences = np.abs(actual - expected)
            finite = differences[np.isfinite(differences)]
            if finite.size:
                result.max_absolute_difference = max(result.max_absolute_difference,
                                                     float(finite.max()))

        for row in np.flatnonzero(~row_matches):
            result.mismatches.append(PredictionMismatch(
                engine=engine.name,
                row_index=begin + int(row),
                batch_index=batch_index,
                expected=_row_value(expected, int(row)),
                actual=_row_value(actual, int(row))
            ))

    return result


class PredictionEquivalenceChecker:
    """
    Checks every specialized engine of a model against its reference engine.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE,
                 tolerance: float = DEFAULT_TOLERANCE):
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive: {batch_size}")
        if tolerance < 0 or math.isnan(tolerance):
            raise ValueError(f"Tolerance must be non-negative: {tolerance}")

        self.batch_size = batch_size
        self.tolerance = tolerance
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: VerificationConfig) -> 'PredictionEquivalenceChecker':
        return cls(batch_size=config.batch_size, tolerance=config.tolerance)

    def check(self, model: AbstractModel, dataset: pd.DataFrame,
              engine_names: Optional[List[str]] = None) -> EquivalenceReport:
        """
        Compare the engines of a model.

        Args:
            model: Model under test
            dataset: Examples to predict
            engine_names: Engines to check; all the model's engines if None

        Returns:
            EquivalenceReport
        """
        report = EquivalenceReport(model_name=model.name)
        reference = model.reference_engine()
        names = engine_names if engine_names is not None else model.specialized_engine_names()

        for name in names:
            try:
                engine = model.build_specialized_engine(name)
                result = check_engine_predictions(
                    dataset, reference, engine, model.task, model.num_classes,
                    self.batch_size, self.tolerance)
            except EngineNotSupportedError as e:
                result = EngineCheckResult(engine=name, num_rows=len(dataset),
                                           skipped=True, skip_reason=e.reason)
                self.logger.info("equivalence.engine_skipped", extra={
                    "engine": name,
                    "reason": e.reason
                })
            except Exception as e:
                report.add_error(f"Engine {name} failed: {type(e).__name__}: {e}")
                self.logger.error("equivalence.engine_failed", extra={
                    "engine": name,
                    "error": str(e)
                })
                continue

            report.engine_results[name] = result
            if not result.skipped:
                self.logger.info("equivalence.engine_checked", extra={
                    "engine": name,
                    "num_rows": result.num_rows,
                    "num_batches": result.num_batches,
                    "num_mismatches": len(result.mismatches),
                    "max_absolute_difference": result.max_absolute_difference
                })

        if not report.checked_engines:
            report.add_warning(f"No specialized engine checked for model {model.name}")

        return report

    def assert_equivalent(self, model: AbstractModel, dataset: pd.DataFrame,
                          engine_names: Optional[List[str]] = None) -> EquivalenceReport:
        """
        Raises:
            PredictionMismatchError: Listing every mismatching row
            VerificationError: If an engine failed to run
        """
        report = self.check(model, dataset, engine_names)
        if report.mismatches:
            raise PredictionMismatchError(report.mismatches)
        if report.errors:
            raise VerificationError("\n".join(report.errors))
        return report

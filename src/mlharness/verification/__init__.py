# /mlharness/src/mlharness/verification/__init__.py

"""
Model Verification

Prediction equivalence across inference engines, serialization round trips,
golden model comparison and metric assertions.
"""

from .errors import (
    VerificationError,
    PredictionMismatchError,
    SerializationMismatchError,
    GoldenModelMismatchError,
    PostTrainingChecksError,
    MetricOutOfRangeError,
    PresetCountMismatchError,
    MinimumAccuracyError
)
from .equivalence import (
    PredictionMismatch,
    EngineCheckResult,
    EquivalenceReport,
    PredictionEquivalenceChecker,
    check_engine_predictions,
    normalize_predictions
)
from .serialization import (
    SerializationForm,
    SerializationReport,
    SerializationRoundTripChecker
)
from .golden import GoldenCheckResult, GoldenModelChecker
from .metric_assertion import (
    MetricAssertion,
    MetricChecker,
    assert_metric,
    read_dump_records,
    simple_test_name
)
from .uplift_export import export_uplift_predictions_csv

__all__ = [
    "VerificationError",
    "PredictionMismatchError",
    "SerializationMismatchError",
    "GoldenModelMismatchError",
    "PostTrainingChecksError",
    "MetricOutOfRangeError",
    "PresetCountMismatchError",
    "MinimumAccuracyError",
    "PredictionMismatch",
    "EngineCheckResult",
    "EquivalenceReport",
    "PredictionEquivalenceChecker",
    "check_engine_predictions",
    "normalize_predictions",
    "SerializationForm",
    "SerializationReport",
    "SerializationRoundTripChecker",
    "GoldenCheckResult",
    "GoldenModelChecker",
    "MetricAssertion",
    "MetricChecker",
    "assert_metric",
    "read_dump_records",
    "simple_test_name",
    "export_uplift_predictions_csv"
]

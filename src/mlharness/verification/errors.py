# /mlharness/src/mlharness/verification/errors.py

"""
Verification Failures

Every verification failure derives from AssertionError so that test runners
report it as a test failure, and carries the diagnostics needed to locate it.
"""

from typing import List, Sequence


class VerificationError(AssertionError):
    """Base class of all verification failures."""
    pass


class PredictionMismatchError(VerificationError):
    """A specialized engine disagrees with the reference engine."""

    def __init__(self, mismatches: Sequence, max_listed: int = 20):
        self.mismatches = list(mismatches)
        lines = [f"{len(self.mismatches)} prediction mismatch(es)"]
        lines.extend(f"  {mismatch}" for mismatch in self.mismatches[:max_listed])
        if len(self.mismatches) > max_listed:
            lines.append(f"  ... and {len(self.mismatches) - max_listed} more")
        super().__init__("\n".join(lines))


class SerializationMismatchError(VerificationError):
    """A reloaded model does not predict exactly like the original."""

    def __init__(self, form: str, num_different_rows: int, first_row: int):
        self.form = form
        self.num_different_rows = num_different_rows
        self.first_row = first_row
        super().__init__(
            f"Model reloaded from its {form} form differs on {num_different_rows} row(s); "
            f"first differing row: {first_row}")


class GoldenModelMismatchError(VerificationError):
    """A trained model differs from its stored reference model."""

    def __init__(self, model_name: str, differences: List[str]):
        self.model_name = model_name
        self.differences = differences
        super().__init__(
            f"Model '{model_name}' differs from its golden model: " + "; ".join(differences[:10]))


class PostTrainingChecksError(VerificationError):
    """Several post-training checks failed on the same model."""

    def __init__(self, failures: Sequence[VerificationError]):
        self.failures = list(failures)
        lines = [f"{len(self.failures)} post-training checks failed"]
        lines.extend(f"  {type(failure).__name__}: {failure}" for failure in self.failures)
        super().__init__("\n".join(lines))


class MetricOutOfRangeError(VerificationError):
    """A metric is outside its margin, or differs from its gold value."""
    pass


class PresetCountMismatchError(VerificationError):
    """The number of exercised hyperparameter presets is not the expected one."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} hyperparameter presets, exercised {actual}")


class MinimumAccuracyError(VerificationError):
    """Some hyperparameter presets did not reach the minimum outcome."""

    def __init__(self, min_accuracy: float, failures: dict):
        self.min_accuracy = min_accuracy
        self.failures = failures
        details = ", ".join(f"{name}={value:.4f}" for name, value in failures.items())
        super().__init__(f"Presets below the minimum of {min_accuracy}: {details}")

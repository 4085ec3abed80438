# /mlharness/src/mlharness/core/pipeline.py

"""
TrainAndTestTester: State Machine-Based Train-and-Test Pipeline

Sequences dataset preparation, training, post-training verification and
evaluation for one test scenario.

Key Features:
- State machine with validated transitions; any failure moves to FAILED
- Stage logging with durations under a per-run pipeline id
- Post-training checks: serialization round trip, engine equivalence on the
  test set and, when enabled, golden model comparison
- Every post-training check runs before the failures are raised together
- Configuration and verification errors propagate unchanged so that the
  test runner reports them as such

Architecture:
    INITIALIZED -> DATASET_PREPARED -> TRAINED -> CHECKED -> EVALUATED
    (any state) -> FAILED

Usage:
    tester = TrainAndTestTester(harness_config, train_config, tmp_path)
    evaluation = tester.train_and_evaluate_model()
    checker.check(evaluation.accuracy, 0.86, 0.01)
"""

import logging
import tempfile
import uuid
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from ..config.harness_config import ConfigurationError, HarnessConfig
from ..config.training_config import TrainingConfig
from ..dataset.builder import DatasetBuilder, PreparedDatasets
from ..dataset.synthetic import SyntheticDatasetOptions
from ..evaluation.metrics import EvaluationResult, evaluate
from ..learners.abstract import AbstractLearner, AbstractModel
from ..utils.logging import get_harness_logger, stage_logging
from ..verification.equivalence import EquivalenceReport, PredictionEquivalenceChecker
from ..verification.errors import PostTrainingChecksError, VerificationError
from ..verification.golden import GoldenCheckResult, GoldenModelChecker
from ..verification.serialization import SerializationReport, SerializationRoundTripChecker
from .trainer import TrainingOrchestrator


class PipelineState(Enum):
    """Pipeline execution states."""
    INITIALIZED = "initialized"
    DATASET_PREPARED = "dataset_prepared"
    TRAINED = "trained"
    CHECKED = "checked"
    EVALUATED = "evaluated"
    FAILED = "failed"


class PipelineStateMachine:
    """
    Valid pipeline transitions.
    """

    VALID_TRANSITIONS: Dict[PipelineState, List[PipelineState]] = {
        PipelineState.INITIALIZED: [PipelineState.DATASET_PREPARED, PipelineState.FAILED],
        PipelineState.DATASET_PREPARED: [PipelineState.TRAINED, PipelineState.FAILED],
        PipelineState.TRAINED: [PipelineState.CHECKED, PipelineState.EVALUATED, PipelineState.FAILED],
        PipelineState.CHECKED: [PipelineState.EVALUATED, PipelineState.FAILED],
        PipelineState.EVALUATED: [],
        PipelineState.FAILED: []
    }

    @classmethod
    def validate_transition(cls, current_state: PipelineState,
                            new_state: PipelineState) -> bool:
        return new_state in cls.VALID_TRANSITIONS.get(current_state, [])


class TrainAndTestTester:
    """
    Train-and-test pipeline of one scenario.

    Args:
        harness_config: Harness configuration; read-only for the run
        train_config: Training configuration of the scenario
        work_dir: Directory for shards and serialized models; a new
            temporary directory if None
        synthetic_options: Options used when the dataset is synthetic
    """

    def __init__(self, harness_config: HarnessConfig,
                 train_config: TrainingConfig,
                 work_dir: Optional[Union[str, Path]] = None,
                 synthetic_options: Optional[SyntheticDatasetOptions] = None):
        self.harness_config = harness_config
        self.train_config = train_config
        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.mkdtemp(prefix="mlharness_"))
        self.synthetic_options = synthetic_options

        self.pipeline_id = f"{train_config.learner.lower()}_{uuid.uuid4().hex[:8]}"
        self.state = PipelineState.INITIALIZED
        self.logger = get_harness_logger(__name__)
        self.logger.set_context(pipeline_id=self.pipeline_id)

        # Outputs
        self.datasets: Optional[PreparedDatasets] = None
        self.model: Optional[AbstractModel] = None
        self.training_duration: float = 0.0
        self.training_seed: Optional[int] = None
        self.serialization_report: Optional[SerializationReport] = None
        self.equivalence_report: Optional[EquivalenceReport] = None
        self.golden_result: Optional[GoldenCheckResult] = None
        self.evaluation: Optional[EvaluationResult] = None

    @property
    def data_spec(self):
        return self.datasets.data_spec if self.datasets else None

    @property
    def effective_train_config(self) -> TrainingConfig:
        """Training configuration after the dataset fix-ups."""
        return self.datasets.train_config if self.datasets else self.train_config

    def _transition(self, new_state: PipelineState) -> None:
        if not PipelineStateMachine.validate_transition(self.state, new_state):
            raise InvalidStateTransitionError(
                f"Invalid transition from {self.state.value} to {new_state.value}")
        self.logger.debug("pipeline.state_transition", extra={
            "from_state": self.state.value,
            "to_state": new_state.value
        })
        self.state = new_state

    def _fail(self) -> None:
        if self.state != PipelineState.FAILED:
            self._transition(PipelineState.FAILED)

    def configure_for_synthetic_dataset(self,
                                        options: Optional[SyntheticDatasetOptions] = None) -> None:
        """Use a generated dataset instead of the configured dataset file."""
        if self.state != PipelineState.INITIALIZED:
            raise InvalidStateTransitionError("The dataset source can only change before preparation")
        dataset_config = replace(self.harness_config.dataset, use_synthetic_dataset=True)
        self.harness_config = replace(self.harness_config, dataset=dataset_config)
        if options is not None:
            self.synthetic_options = options

    def prepare_dataset(self, numerical_weight_attribute: Optional[str] = None,
                        emulate_weight_with_duplication: bool = False) -> PreparedDatasets:
        builder = DatasetBuilder(self.harness_config.dataset, self.work_dir, self.synthetic_options)
        with stage_logging(self.logger, "dataset_preparation"):
            try:
                self.datasets = builder.prepare(
                    self.train_config, numerical_weight_attribute, emulate_weight_with_duplication)
            except Exception:
                self._fail()
                raise
        self._transition(PipelineState.DATASET_PREPARED)
        return self.datasets

    def train_model(self, on_training_about_to_start: Optional[Callable[[AbstractLearner], None]] = None
                    ) -> AbstractModel:
        if self.state != PipelineState.DATASET_PREPARED:
            raise InvalidStateTransitionError(f"Cannot train from state {self.state.value}")

        orchestrator = TrainingOrchestrator(self.harness_config)
        with stage_logging(self.logger, "training", learner=self.train_config.learner):
            try:
                outcome = orchestrator.train(
                    self.datasets.train_config,
                    self.datasets.data_spec,
                    self.datasets.train_source,
                    self.datasets.valid_source,
                    on_training_about_to_start=on_training_about_to_start)
            except Exception:
                self._fail()
                raise

        self.model = outcome.model
        self.training_duration = outcome.training_duration
        self.training_seed = outcome.seed
        self._transition(PipelineState.TRAINED)

        self.logger.info("pipeline.model_description", extra={
            "description": self.model.describe(
                full_structure=self.harness_config.training.show_full_model_structure)
        })
        return self.model

    def post_training_checks(self) -> None:
        """
        Serialization, engine equivalence and golden checks.

        Every check runs even when an earlier one fails. A single failure is
        raised as is; several are raised together as PostTrainingChecksError.
        """
        if self.state != PipelineState.TRAINED:
            raise InvalidStateTransitionError(f"Cannot check the model from state {self.state.value}")

        training = self.harness_config.training
        if not training.check_model:
            return

        checks = [("equivalence", self._check_equivalence), ("golden", self._check_golden)]
        if training.test_model_serialization:
            checks.insert(0, ("serialization", self._check_serialization))

        with stage_logging(self.logger, "post_training_checks"):
            try:
                failures: List[VerificationError] = []
                for check_name, check in checks:
                    try:
                        check()
                    except VerificationError as e:
                        self.logger.warning("check.failed", extra={
                            'check': check_name,
                            'error_type': type(e).__name__
                        })
                        failures.append(e)

                if len(failures) == 1:
                    raise failures[0]
                if failures:
                    raise PostTrainingChecksError(failures)
            except Exception:
                self._fail()
                raise

        self._transition(PipelineState.CHECKED)

    def _check_serialization(self) -> None:
        self.serialization_report = SerializationRoundTripChecker(
            self.work_dir / "serialized").assert_lossless(self.model, self.datasets.test)

    def _check_equivalence(self) -> None:
        self.equivalence_report = PredictionEquivalenceChecker.from_config(
            self.harness_config.verification).assert_equivalent(self.model, self.datasets.test)

    def _check_golden(self) -> None:
        self.golden_result = GoldenModelChecker.from_config(
            self.harness_config).assert_matches(self.model)

    def evaluate(self) -> EvaluationResult:
        if self.state not in (PipelineState.TRAINED, PipelineState.CHECKED):
            raise InvalidStateTransitionError(f"Cannot evaluate from state {self.state.value}")

        with stage_logging(self.logger, "evaluation"):
            try:
                self.evaluation = evaluate(self.model, self.datasets.test)
            except Exception:
                self._fail()
                raise

        self._transition(PipelineState.EVALUATED)
        return self.evaluation

    def train_and_evaluate_model(self, numerical_weight_attribute: Optional[str] = None,
                                 emulate_weight_with_duplication: bool = False,
                                 on_training_about_to_start: Optional[Callable[[AbstractLearner], None]] = None
                                 ) -> EvaluationResult:
        """
        Run the whole pipeline.

        Raises:
            ConfigurationError: Invalid configuration; nothing is trained
            VerificationError: A post-training check failed
            PipelineExecutionError: Any other failure
        """
        with self.logger.context(learner=self.train_config.learner):
            try:
                self.prepare_dataset(numerical_weight_attribute, emulate_weight_with_duplication)
                self.train_model(on_training_about_to_start)
                self.post_training_checks()
                return self.evaluate()
            except (ConfigurationError, VerificationError, PipelineExecutionError):
                raise
            except Exception as e:
                raise PipelineExecutionError(f"Pipeline {self.pipeline_id} failed: {e}") from e


# Custom exceptions
class PipelineExecutionError(Exception):
    """Unexpected failure while running the pipeline."""
    pass


class InvalidStateTransitionError(PipelineExecutionError):
    """Pipeline stage called out of order."""
    pass

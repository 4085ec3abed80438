# /mlharness/src/mlharness/core/sweep.py

"""
Hyperparameter Sweep Runner

Runs the full train-and-test pipeline once per predefined hyperparameter
preset of a learner and checks the aggregate outcome.

Key Features:
- Every preset is enqueued as an Optuna trial, so the study records the
  outcome of each preset and its best configuration
- Each trial runs preparation, training, post-training checks and evaluation
- A verification failure in any trial aborts the sweep
- After the sweep: the number of exercised presets must equal the expected
  count, and every outcome must reach the optional minimum

Outcome metric per task: accuracy (classification), negative RMSE
(regression), NDCG (ranking), Qini (uplift).
"""

import logging
import math
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Union

import optuna
from optuna.samplers import TPESampler

from ..config.harness_config import HarnessConfig
from ..config.training_config import HyperparameterPreset, Task, TrainingConfig
from ..dataset.builder import split_indices
from ..dataset.io import make_typed_path, write_dataset
from ..dataset.synthetic import SyntheticDatasetOptions, generate_synthetic_dataset
from ..evaluation.metrics import EvaluationResult
from ..learners.registry import create_learner
from ..verification.errors import MinimumAccuracyError, PresetCountMismatchError
from .pipeline import TrainAndTestTester

logger = logging.getLogger(__name__)

PRESET_PARAMETER = "preset"


def outcome_metric(evaluation: EvaluationResult) -> float:
    """Higher-is-better summary of an evaluation."""
    if evaluation.task == Task.CLASSIFICATION:
        return evaluation.accuracy
    if evaluation.task == Task.REGRESSION:
        return -evaluation.rmse
    if evaluation.task == Task.RANKING:
        return evaluation.ndcg
    return evaluation.qini


@dataclass
class PresetOutcome:
    preset: str
    value: float
    training_duration: float
    evaluation: EvaluationResult


@dataclass
class SweepReport:
    learner: str
    expected_num_presets: int
    outcomes: Dict[str, PresetOutcome] = field(default_factory=dict)
    best_preset: Optional[str] = None

    @property
    def num_presets(self) -> int:
        return len(self.outcomes)

    def values(self) -> Dict[str, float]:
        return {name: outcome.value for name, outcome in self.outcomes.items()}


class HyperparameterSweepRunner:
    """
    Sweeps the predefined hyperparameters of a learner.
    """

    def __init__(self, harness_config: HarnessConfig,
                 work_dir: Optional[Union[str, Path]] = None):
        self.harness_config = harness_config
        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.mkdtemp(prefix="mlharness_sweep_"))
        self.logger = logging.getLogger(__name__)

    def _run_preset(self, train_config: TrainingConfig, preset: HyperparameterPreset,
                    harness_config: HarnessConfig) -> PresetOutcome:
        config = replace(train_config.with_hyperparameters(preset.parameters),
                         model_name=f"{train_config.effective_model_name}_{preset.name}")
        tester = TrainAndTestTester(harness_config, config, self.work_dir / preset.name)
        evaluation = tester.train_and_evaluate_model()
        return PresetOutcome(preset=preset.name, value=outcome_metric(evaluation),
                             training_duration=tester.training_duration, evaluation=evaluation)

    def run(self, train_config: TrainingConfig,
            train_path: str,
            test_path: str,
            expected_num_presets: int,
            min_accuracy: Optional[float] = None) -> SweepReport:
        """
        Run every preset and check the outcomes.

        Args:
            train_config: Base training configuration
            train_path: Typed path of the training dataset
            test_path: Typed path of the test dataset
            expected_num_presets: Exact number of presets that must run
            min_accuracy: Optional minimum outcome of every preset

        Raises:
            PresetCountMismatchError: If the number of presets differs
            MinimumAccuracyError: If a preset is below the minimum
        """
        presets = create_learner(train_config).predefined_hyperparameters()
        presets_by_name = {preset.name: preset for preset in presets}

        dataset_config = replace(self.harness_config.dataset,
                                 dataset_filename=train_path,
                                 dataset_test_filename=test_path,
                                 use_synthetic_dataset=False,
                                 pass_validation_dataset=False)
        harness_config = replace(self.harness_config, dataset=dataset_config)

        report = SweepReport(learner=train_config.learner, expected_num_presets=expected_num_presets)

        optuna.logging.set_verbosity(optuna.logging.WARNING)
        study = optuna.create_study(
            study_name=f"sweep_{train_config.effective_model_name}",
            direction="maximize",
            sampler=TPESampler(seed=train_config.random_seed))
        for preset in presets:
            study.enqueue_trial({PRESET_PARAMETER: preset.name})

        def objective(trial: optuna.Trial) -> float:
            name = trial.suggest_categorical(PRESET_PARAMETER, list(presets_by_name))
            outcome = self._run_preset(train_config, presets_by_name[name], harness_config)
            report.outcomes[name] = outcome
            trial.set_user_attr("training_duration", outcome.training_duration)

            self.logger.info("sweep.preset_completed", extra={
                "preset": name,
                "value": outcome.value,
                "trial_number": trial.number
            })
            return outcome.value

        study.optimize(objective, n_trials=len(presets))

        finite = {name: value for name, value in report.values().items() if not math.isnan(value)}
        if finite:
            report.best_preset = max(finite, key=finite.get)

        self.logger.info("sweep.completed", extra={
            "learner": train_config.learner,
            "num_presets": report.num_presets,
            "best_preset": report.best_preset
        })

        if report.num_presets != expected_num_presets:
            raise PresetCountMismatchError(expected_num_presets, report.num_presets)

        if min_accuracy is not None:
            failures = {name: value for name, value in report.values().items()
                        if math.isnan(value) or value < min_accuracy}
            if failures:
                raise MinimumAccuracyError(min_accuracy, failures)

        return report

    def run_on_synthetic_dataset(self, train_config: TrainingConfig,
                                 expected_num_presets: int,
                                 min_accuracy: Optional[float] = None,
                                 options: Optional[SyntheticDatasetOptions] = None,
                                 dataset_format: str = "csv") -> SweepReport:
        """Sweep on a generated dataset split in half into train and test files."""
        options = options or SyntheticDatasetOptions(
            task=train_config.task,
            label=train_config.label,
            ranking_group=train_config.ranking_group or "GROUP",
            uplift_treatment=train_config.uplift_treatment or "TREATMENT",
            seed=train_config.random_seed)
        dataset = generate_synthetic_dataset(options)
        indices = split_indices(len(dataset))

        dataset_dir = self.work_dir / "synthetic"
        extension = {"csv": ".csv", "parquet": ".parquet"}.get(dataset_format, "")
        paths: List[str] = []
        for name, rows in (("train", indices.train), ("test", indices.test)):
            path = make_typed_path(dataset_format, str(dataset_dir / f"{name}{extension}"))
            write_dataset(dataset.iloc[rows], path)
            paths.append(path)

        return self.run(train_config, paths[0], paths[1], expected_num_presets, min_accuracy)

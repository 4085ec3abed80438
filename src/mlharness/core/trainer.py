# /mlharness/src/mlharness/core/trainer.py

"""
Training Orchestrator

Runs one synchronous training call:

1. Validate the training configuration against the data specification
2. Pick the random seed (fixed by default, fresh when reseeding is enabled)
3. Apply the cooperative deadline
4. Invoke the pre-start hook
5. Train and time the learner call

A configuration error aborts before any training happens. An elapsed
deadline is not an error; the learner returns the model built so far.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import pandas as pd

from ..config.harness_config import ConfigurationError, HarnessConfig
from ..config.training_config import TrainingConfig
from ..dataset.data_spec import DataSpecification
from ..learners.abstract import AbstractLearner, AbstractModel
from ..learners.registry import create_learner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingOutcome:
    model: AbstractModel
    training_duration: float
    seed: int


class TrainingOrchestrator:
    """
    Invokes the learner of a training configuration.
    """

    def __init__(self, harness_config: HarnessConfig):
        self.harness_config = harness_config
        self.logger = logging.getLogger(__name__)

    def _select_seed(self, train_config: TrainingConfig) -> int:
        if not self.harness_config.training.change_random_seed:
            return train_config.random_seed
        seed = secrets.randbelow(2 ** 31 - 1)
        self.logger.info("training.seed_changed", extra={
            "default_seed": train_config.random_seed,
            "seed": seed
        })
        return seed

    def train(self, train_config: TrainingConfig,
              data_spec: DataSpecification,
              train_dataset: Union[pd.DataFrame, str],
              valid_dataset: Optional[Union[pd.DataFrame, str]] = None,
              on_training_about_to_start: Optional[Callable[[AbstractLearner], None]] = None,
              deadline_seconds: Optional[float] = None) -> TrainingOutcome:
        """
        Train a model.

        Args:
            train_config: Training configuration
            data_spec: Data specification of the training dataset
            train_dataset: Frame or typed (possibly sharded) path
            valid_dataset: Optional validation frame or path
            on_training_about_to_start: Called with the learner right before
                training starts
            deadline_seconds: Cooperative deadline; defaults to the configured
                interruption delay

        Returns:
            TrainingOutcome

        Raises:
            ConfigurationError: If the configuration does not match the data
        """
        errors = train_config.validate(data_spec)
        if errors:
            self.logger.error("training.invalid_configuration", extra={
                "learner": train_config.learner,
                "errors": errors
            })
            raise ConfigurationError(f"Invalid training configuration: {errors}")

        seed = self._select_seed(train_config)
        learner = create_learner(train_config.with_seed(seed))
        learner.check_configuration(data_spec)

        if deadline_seconds is None:
            deadline_seconds = self.harness_config.training.interrupt_training_after_seconds
        learner.set_deadline(deadline_seconds)

        if on_training_about_to_start is not None:
            on_training_about_to_start(learner)

        self.logger.info("training.started", extra={
            "learner": train_config.learner,
            "task": train_config.task.value,
            "seed": seed,
            "deadline_seconds": deadline_seconds,
            "dataset_as_path": isinstance(train_dataset, str)
        })

        start_time = time.perf_counter()
        model = learner.train(train_dataset, data_spec, valid_dataset)
        training_duration = time.perf_counter() - start_time

        self.logger.info("training.completed", extra={
            "learner": train_config.learner,
            "training_duration": training_duration
        })

        return TrainingOutcome(model=model, training_duration=training_duration, seed=seed)

# /mlharness/src/mlharness/dataset/builder.py

"""
Dataset Builder

Produces the train / validation / test partitions of a test run.

Key Features:
- Dataset loading from typed paths, or synthetic generation
- Deterministic interleaved partitioning; seeded shuffle when noise
  injection is enabled
- Weight emulation by deterministic row duplication
- Sharding of partitions to disk for learners that consume paths
- Configuration fix-up (label types, weight column) before validation

Partitioning:
    The row at ordered position i goes to training iff
    ceil((i + 1) * r) - ceil(i * r) == 1. With r = 0.5 the even positions
    train and the odd positions test. Exactly ceil(r * n) rows train. The
    remaining rows alternate test / validation, test first, when a
    validation set is requested.
"""

import logging
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd

from ..config.harness_config import ConfigurationError, DatasetConfig
from ..config.training_config import Task, TrainingConfig
from .data_spec import (ColumnType, DataSpecification, DataSpecificationGuide,
                        infer_data_spec)
from .io import (format_sharded_path, make_typed_path, parse_typed_path,
                 read_dataset, shard_filename, write_dataset)
from .synthetic import SyntheticDatasetOptions, generate_synthetic_dataset

logger = logging.getLogger(__name__)

DEFAULT_MAX_DUPLICATES = 10


@dataclass(frozen=True)
class SplitIndices:
    """Row indices of each partition, in increasing order."""
    train: np.ndarray
    valid: np.ndarray
    test: np.ndarray


def split_indices(num_rows: int,
                  ratio: float = 0.5,
                  with_validation: bool = False,
                  shuffle_seed: Optional[int] = None) -> SplitIndices:
    """
    Deterministic partition of ``num_rows`` rows.

    Args:
        num_rows: Number of rows of the dataset
        ratio: Fraction of rows used for training
        with_validation: Split the non-training rows between test and validation
        shuffle_seed: If set, positions follow a seeded permutation instead
            of the row order

    Returns:
        SplitIndices
    """
    if not 0 < ratio < 1:
        raise ConfigurationError(f"Split ratio must be between 0 and 1: {ratio}")

    if shuffle_seed is None:
        order = np.arange(num_rows)
    else:
        order = np.random.default_rng(shuffle_seed).permutation(num_rows)

    # Rounding guards against 0.1 * 3 == 0.30000000000000004.
    boundaries = np.ceil(np.round(np.arange(num_rows + 1) * ratio, 9)).astype(np.int64)
    is_train = np.diff(boundaries) == 1

    train = np.sort(order[is_train])
    remainder = order[~is_train]

    if with_validation:
        test = np.sort(remainder[0::2])
        valid = np.sort(remainder[1::2])
    else:
        test = np.sort(remainder)
        valid = np.array([], dtype=np.int64)

    return SplitIndices(train=train, valid=valid, test=test)


def emulate_weights_with_duplication(dataset: pd.DataFrame,
                                     weight_column: str,
                                     max_weight: Optional[float] = None,
                                     max_duplicates: int = DEFAULT_MAX_DUPLICATES) -> pd.DataFrame:
    """
    Approximate example weights by replicating rows.

    Each row is repeated floor(weight / unit) times with
    unit = max_weight / max_duplicates. Rows whose weight maps to zero copies
    are dropped. Copies of a row are adjacent and rows keep their order.

    Raises:
        ConfigurationError: If weights are missing, non-numerical or negative
    """
    if weight_column not in dataset.columns:
        raise ConfigurationError(f"Weight column '{weight_column}' is missing from the dataset")
    if max_duplicates <= 0:
        raise ConfigurationError(f"Maximum number of duplicates must be positive: {max_duplicates}")

    try:
        weights = pd.to_numeric(dataset[weight_column], errors='raise').to_numpy(dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Weight column '{weight_column}' is not numerical: {e}") from e

    if np.isnan(weights).any():
        raise ConfigurationError(f"Weight column '{weight_column}' contains missing values")
    if (weights < 0).any():
        raise ConfigurationError(f"Weight column '{weight_column}' contains negative values")

    if max_weight is None:
        max_weight = float(weights.max()) if len(weights) else 0.0
    if max_weight <= 0:
        raise ConfigurationError(f"Maximum weight must be positive: {max_weight}")

    unit = max_weight / max_duplicates
    copies = np.floor(np.round(weights / unit, 9)).astype(np.int64)
    copies = np.clip(copies, 0, max_duplicates)

    duplicated = dataset.iloc[np.repeat(np.arange(len(dataset)), copies)].reset_index(drop=True)

    logger.debug("weights.emulated", extra={
        "weight_column": weight_column,
        "input_rows": len(dataset),
        "output_rows": len(duplicated),
        "dropped_rows": int((copies == 0).sum())
    })

    return duplicated


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def shard_dataset(dataset: pd.DataFrame,
                  num_shards: int,
                  sampling: float,
                  dataset_format: str,
                  name: str,
                  output_dir: Optional[Union[str, Path]] = None,
                  seed: int = 1234) -> str:
    """
    Write a dataset as ``num_shards`` files.

    round(n * sampling) rows are selected with a seeded sampler and assigned
    round-robin to the shards, so every selected row lands in exactly one
    shard.

    Args:
        dataset: Dataset to write
        num_shards: Number of output files
        sampling: Fraction of the rows to keep, in (0, 1]
        dataset_format: Output format, e.g. "parquet" or "csv"
        name: Base name of the shard files
        output_dir: Output directory; a new temporary directory if None
        seed: Seed of the row sampler

    Returns:
        Typed sharded path, e.g. "parquet:/tmp/.../name@3"
    """
    if num_shards <= 0:
        raise ConfigurationError(f"Number of shards must be positive: {num_shards}")
    if not 0 < sampling <= 1:
        raise ConfigurationError(f"Sampling must be in (0, 1]: {sampling}")

    if output_dir is None:
        output_dir = tempfile.mkdtemp(prefix="mlharness_shards_")
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    base = str(output_dir / name)
    sharded_path = make_typed_path(dataset_format, format_sharded_path(base, num_shards))
    parse_typed_path(sharded_path)  # Rejects unknown formats before writing anything.

    num_rows = len(dataset)
    num_selected = _round_half_up(num_rows * sampling)
    if num_selected >= num_rows:
        selected = np.arange(num_rows)
    else:
        rng = np.random.default_rng(seed)
        selected = np.sort(rng.choice(num_rows, size=num_selected, replace=False))

    for shard_idx in range(num_shards):
        rows = selected[shard_idx::num_shards]
        write_dataset(dataset.iloc[rows],
                      make_typed_path(dataset_format, shard_filename(base, shard_idx, num_shards)))

    logger.info("dataset.sharded", extra={
        "path": sharded_path,
        "num_shards": num_shards,
        "num_rows": len(selected),
        "sampling": sampling
    })

    return sharded_path


@dataclass
class PreparedDatasets:
    """Output of DatasetBuilder.prepare."""
    data_spec: DataSpecification
    train_config: TrainingConfig
    train: pd.DataFrame
    test: pd.DataFrame
    valid: Optional[pd.DataFrame] = None
    train_path: Optional[str] = None
    valid_path: Optional[str] = None

    @property
    def train_source(self) -> Union[str, pd.DataFrame]:
        """What the learner receives: the sharded path if any, else the frame."""
        return self.train_path if self.train_path else self.train

    @property
    def valid_source(self) -> Optional[Union[str, pd.DataFrame]]:
        return self.valid_path if self.valid_path else self.valid


class DatasetBuilder:
    """
    Loads (or generates), describes, fixes up and partitions the dataset of a
    test run.
    """

    def __init__(self, config: DatasetConfig,
                 work_dir: Union[str, Path],
                 synthetic_options: Optional[SyntheticDatasetOptions] = None):
        self.config = config
        self.work_dir = Path(work_dir)
        self.synthetic_options = synthetic_options
        self.logger = logging.getLogger(__name__)

    def prepare(self, train_config: TrainingConfig,
                numerical_weight_attribute: Optional[str] = None,
                emulate_weight_with_duplication: bool = False) -> PreparedDatasets:
        """
        Build the datasets of a test run.

        Raises:
            ConfigurationError: If the dataset cannot be loaded or the training
                configuration does not match it
        """
        dataset = self._load_dataset(train_config)
        dataset = self._subsample(dataset)

        test_dataset = None
        if self.config.dataset_test_filename:
            test_dataset = read_dataset(self._resolve_path(self.config.dataset_test_filename))

        data_spec = infer_data_spec(dataset, self._build_guide(train_config))
        train_config = self._fix_configuration(
            train_config, data_spec, numerical_weight_attribute, emulate_weight_with_duplication)

        errors = train_config.validate(data_spec)
        if errors:
            raise ConfigurationError(f"Invalid training configuration: {errors}")

        if test_dataset is not None:
            train = dataset.reset_index(drop=True)
            valid = None
            test = test_dataset
        else:
            indices = split_indices(
                len(dataset),
                ratio=self.config.split_train_ratio,
                with_validation=self.config.pass_validation_dataset,
                shuffle_seed=self.config.noise_seed if self.config.inject_random_noise else None)
            train = dataset.iloc[indices.train].reset_index(drop=True)
            test = dataset.iloc[indices.test].reset_index(drop=True)
            valid = (dataset.iloc[indices.valid].reset_index(drop=True)
                     if self.config.pass_validation_dataset else None)

        if numerical_weight_attribute and emulate_weight_with_duplication:
            train = emulate_weights_with_duplication(train, numerical_weight_attribute)

        prepared = PreparedDatasets(
            data_spec=data_spec, train_config=train_config,
            train=train, test=test, valid=valid)

        if self.config.pass_training_dataset_as_path:
            prepared.train_path = shard_dataset(
                train, self.config.num_shards, 1.0, self.config.preferred_format,
                "train", self.work_dir / "datasets", seed=self.config.noise_seed)
            if valid is not None:
                prepared.valid_path = shard_dataset(
                    valid, self.config.num_shards, 1.0, self.config.preferred_format,
                    "valid", self.work_dir / "datasets", seed=self.config.noise_seed)

        self.logger.info("dataset.prepared", extra={
            "num_train": len(train),
            "num_valid": len(valid) if valid is not None else 0,
            "num_test": len(test),
            "train_path": prepared.train_path,
            "weights": train_config.weights
        })

        return prepared

    def _resolve_path(self, filename: str) -> str:
        dataset_format, path = parse_typed_path(filename)
        full_path = Path(path)
        if not full_path.is_absolute():
            full_path = self.config.effective_dataset_root() / full_path
        return make_typed_path(dataset_format, str(full_path))

    def _load_dataset(self, train_config: TrainingConfig) -> pd.DataFrame:
        if self.config.use_synthetic_dataset or not self.config.dataset_filename:
            options = self.synthetic_options or SyntheticDatasetOptions(
                task=train_config.task,
                label=train_config.label,
                ranking_group=train_config.ranking_group or "GROUP",
                uplift_treatment=train_config.uplift_treatment or "TREATMENT")
            return generate_synthetic_dataset(options)

        return read_dataset(self._resolve_path(self.config.dataset_filename))

    def _subsample(self, dataset: pd.DataFrame) -> pd.DataFrame:
        if self.config.dataset_sampling >= 1.0:
            return dataset
        num_selected = max(1, _round_half_up(len(dataset) * self.config.dataset_sampling))
        rng = np.random.default_rng(self.config.noise_seed)
        selected = np.sort(rng.choice(len(dataset), size=num_selected, replace=False))
        return dataset.iloc[selected].reset_index(drop=True)

    def _build_guide(self, train_config: TrainingConfig) -> DataSpecificationGuide:
        if self.config.guide_filename:
            guide_path = Path(self.config.guide_filename)
            if not guide_path.is_absolute():
                guide_path = self.config.effective_dataset_root() / guide_path
            guide = DataSpecificationGuide.from_yaml(guide_path)
        else:
            guide = DataSpecificationGuide()

        if train_config.task == Task.CLASSIFICATION:
            guide = guide.with_column_type(train_config.label, ColumnType.CATEGORICAL)
        if train_config.task == Task.UPLIFT and train_config.uplift_treatment:
            guide = guide.with_column_type(train_config.uplift_treatment, ColumnType.CATEGORICAL)
        if train_config.task == Task.RANKING and train_config.ranking_group:
            guide = guide.with_column_type(train_config.ranking_group, ColumnType.CATEGORICAL)
        return guide

    def _fix_configuration(self, train_config: TrainingConfig,
                           data_spec: DataSpecification,
                           numerical_weight_attribute: Optional[str],
                           emulate_weight_with_duplication: bool) -> TrainingConfig:
        if not numerical_weight_attribute:
            return train_config

        if not data_spec.has_column(numerical_weight_attribute):
            raise ConfigurationError(
                f"The weight column '{numerical_weight_attribute}' does not exist in the dataset")

        if emulate_weight_with_duplication:
            # The duplicated rows carry the weight; the learner stays unweighted
            # and the weight column must not become a feature.
            features = [name for name in train_config.resolve_features(data_spec)
                        if name != numerical_weight_attribute]
            return replace(train_config, weights=None, features=tuple(features))

        return train_config.with_weights(numerical_weight_attribute)

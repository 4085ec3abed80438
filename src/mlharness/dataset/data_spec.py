# /mlharness/src/mlharness/dataset/data_spec.py

"""
Data Specification

Schema metadata derived from a dataset and an optional guide: column types,
missing value counts, numerical ranges and categorical vocabularies. Learners
and inference engines consume features through this specification so that
every engine sees exactly the same encoding.
"""

import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import yaml

from ..config.harness_config import ConfigurationError

logger = logging.getLogger(__name__)


class ColumnType(str, Enum):
    """Semantic type of a dataset column."""
    NUMERICAL = "NUMERICAL"
    CATEGORICAL = "CATEGORICAL"
    BOOLEAN = "BOOLEAN"
    TEXT = "TEXT"


@dataclass(frozen=True)
class ColumnSpec:
    """Specification of a single column."""
    name: str
    type: ColumnType
    count_nas: int = 0
    # Numerical columns
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    mean: Optional[float] = None
    # Categorical columns: sorted distinct values, as strings
    vocabulary: Tuple[str, ...] = ()

    @property
    def vocabulary_index(self) -> Dict[str, int]:
        return {value: idx for idx, value in enumerate(self.vocabulary)}

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['type'] = self.type.value
        data['vocabulary'] = list(self.vocabulary)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnSpec':
        data = dict(data)
        data['type'] = ColumnType(data['type'])
        data['vocabulary'] = tuple(data.get('vocabulary', ()))
        return cls(**data)


@dataclass(frozen=True)
class DataSpecification:
    """Ordered collection of column specifications."""
    columns: Tuple[ColumnSpec, ...]
    num_rows: int = 0

    def __post_init__(self):
        names = [column.name for column in self.columns]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate column names in data specification: {names}")

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def has_column(self, name: str) -> bool:
        return any(column.name == name for column in self.columns)

    def column(self, name: str) -> ColumnSpec:
        for column in self.columns:
            if column.name == name:
                return column
        raise KeyError(f"Unknown column '{name}'. Available columns: {self.column_names}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'num_rows': self.num_rows,
            'columns': [column.to_dict() for column in self.columns]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DataSpecification':
        return cls(
            columns=tuple(ColumnSpec.from_dict(column) for column in data['columns']),
            num_rows=data.get('num_rows', 0)
        )

    def describe(self) -> str:
        """Human readable summary, one line per column."""
        lines = [f"Number of records: {self.num_rows}",
                 f"Number of columns: {len(self.columns)}"]
        for column in self.columns:
            line = f"  {column.name}: {column.type.value} nas={column.count_nas}"
            if column.type == ColumnType.NUMERICAL:
                line += f" min={column.min_value} max={column.max_value} mean={column.mean}"
            elif column.type == ColumnType.CATEGORICAL:
                line += f" vocab-size={len(column.vocabulary)}"
            lines.append(line)
        return "\n".join(lines)


@dataclass(frozen=True)
class ColumnGuide:
    """Override for the inferred type of one column."""
    type: Optional[ColumnType] = None
    ignore: bool = False


@dataclass(frozen=True)
class DataSpecificationGuide:
    """
    Hints used when inferring a data specification.

    Unlisted columns keep their inferred type.
    """
    column_guides: Dict[str, ColumnGuide] = field(default_factory=dict)

    def with_column_type(self, name: str, column_type: ColumnType) -> 'DataSpecificationGuide':
        guides = dict(self.column_guides)
        current = guides.get(name, ColumnGuide())
        guides[name] = ColumnGuide(type=column_type, ignore=current.ignore)
        return DataSpecificationGuide(column_guides=guides)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'DataSpecificationGuide':
        """
        Load a guide from YAML::

            columns:
              LABEL: {type: CATEGORICAL}
              comment: {type: TEXT}
              row_id: {ignore: true}
        """
        guide_path = Path(path)
        if not guide_path.is_file():
            raise ConfigurationError(f"Data specification guide not found: {guide_path}")

        with open(guide_path, 'r') as f:
            content = yaml.safe_load(f) or {}

        guides = {}
        for name, entry in (content.get('columns') or {}).items():
            entry = entry or {}
            try:
                column_type = ColumnType(entry['type'].upper()) if 'type' in entry else None
            except ValueError as e:
                raise ConfigurationError(f"Invalid column type in guide for '{name}': {entry['type']}") from e
            guides[name] = ColumnGuide(type=column_type, ignore=bool(entry.get('ignore', False)))

        return cls(column_guides=guides)


def _infer_column_type(series: pd.Series) -> ColumnType:
    if pd.api.types.is_bool_dtype(series):
        return ColumnType.BOOLEAN
    if pd.api.types.is_numeric_dtype(series):
        return ColumnType.NUMERICAL
    return ColumnType.CATEGORICAL


def as_category_strings(series: pd.Series) -> pd.Series:
    """String view of a categorical column; missing values stay missing."""
    return series.map(lambda value: None if pd.isna(value) else str(value), na_action='ignore')


def infer_data_spec(dataset: pd.DataFrame,
                    guide: Optional[DataSpecificationGuide] = None) -> DataSpecification:
    """
    Build the data specification of a dataset.

    Args:
        dataset: Source dataset
        guide: Optional type overrides

    Returns:
        DataSpecification with one entry per non-ignored column
    """
    guide = guide or DataSpecificationGuide()
    columns = []

    for name in dataset.columns:
        column_guide = guide.column_guides.get(name, ColumnGuide())
        if column_guide.ignore:
            continue

        series = dataset[name]
        column_type = column_guide.type or _infer_column_type(series)
        count_nas = int(series.isna().sum())

        if column_type == ColumnType.NUMERICAL:
            try:
                values = pd.to_numeric(series, errors='raise').astype(np.float64)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Column '{name}' cannot be NUMERICAL: {e}") from e
            non_missing = values.dropna()
            columns.append(ColumnSpec(
                name=name,
                type=column_type,
                count_nas=count_nas,
                min_value=float(non_missing.min()) if len(non_missing) else None,
                max_value=float(non_missing.max()) if len(non_missing) else None,
                mean=float(non_missing.mean()) if len(non_missing) else None
            ))
        elif column_type == ColumnType.CATEGORICAL:
            vocabulary = sorted(set(as_category_strings(series).dropna()))
            columns.append(ColumnSpec(
                name=name,
                type=column_type,
                count_nas=count_nas,
                vocabulary=tuple(vocabulary)
            ))
        else:
            columns.append(ColumnSpec(name=name, type=column_type, count_nas=count_nas))

    data_spec = DataSpecification(columns=tuple(columns), num_rows=len(dataset))

    logger.debug("data_spec.inferred", extra={
        "num_columns": len(columns),
        "num_rows": len(dataset)
    })

    return data_spec


def encode_features(dataset: pd.DataFrame,
                    features: Sequence[str],
                    data_spec: DataSpecification) -> np.ndarray:
    """
    Encode features as a float32 matrix.

    Numerical values are kept (NaN is missing), booleans become 0/1 and
    categorical values become their vocabulary index (unknown values are
    missing).
    """
    matrix = np.empty((len(dataset), len(features)), dtype=np.float32)

    for col_idx, name in enumerate(features):
        if name not in dataset.columns:
            raise ConfigurationError(f"Feature '{name}' is missing from the dataset")

        column = data_spec.column(name)
        series = dataset[name]

        if column.type == ColumnType.NUMERICAL:
            values = pd.to_numeric(series, errors='coerce').to_numpy(dtype=np.float64)
        elif column.type == ColumnType.BOOLEAN:
            values = series.map(
                lambda value: np.nan if pd.isna(value) else float(bool(value)),
                na_action='ignore').to_numpy(dtype=np.float64)
        elif column.type == ColumnType.CATEGORICAL:
            values = as_category_strings(series).map(column.vocabulary_index).to_numpy(dtype=np.float64)
        else:
            raise ConfigurationError(f"Column '{name}' of type {column.type.value} cannot be used as a feature")

        matrix[:, col_idx] = values.astype(np.float32)

    return matrix


def encode_labels(dataset: pd.DataFrame, label: str, data_spec: DataSpecification) -> np.ndarray:
    """Map a categorical label to vocabulary indices."""
    column = data_spec.column(label)
    if column.type != ColumnType.CATEGORICAL:
        raise ConfigurationError(f"Label '{label}' must be CATEGORICAL, got {column.type.value}")

    indices = as_category_strings(dataset[label]).map(column.vocabulary_index)
    if indices.isna().any():
        raise ConfigurationError(f"Label '{label}' contains missing or unknown values")
    return indices.to_numpy(dtype=np.int64)

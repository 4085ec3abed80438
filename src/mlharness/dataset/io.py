# /mlharness/src/mlharness/dataset/io.py

"""
Dataset Readers and Writers

Typed dataset paths of the form ``<format>:<path>``. A path ending in
``@<k>`` denotes ``k`` shards named ``<path>-0000i-of-0000k``.

Supported formats:
- csv: delimited text through pandas
- parquet: columnar binary records through pyarrow, the sharded format
- tfrecord: one tf.train.Example per row through the tfrecord package.
  Floats are stored as float32, booleans as int64 and every other column as
  UTF-8 bytes; an empty byte string reads back as a missing value, as an
  empty CSV field does. Columns are read back in name order.

Examples:
    csv:/tmp/data/train.csv
    parquet:/tmp/data/train@3  ->  /tmp/data/train-00000-of-00003, ...
"""

import logging
import re
from pathlib import Path
from typing import Callable, Dict, List, Tuple

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import tfrecord

from ..config.harness_config import ConfigurationError

logger = logging.getLogger(__name__)

_TYPED_PATH = re.compile(r'^(?P<format>[a-z][a-z0-9_+]+):(?P<path>.+)$')
_SHARDED_PATH = re.compile(r'^(?P<base>.+)@(?P<num_shards>\d+)$')

_EXTENSIONS = {
    '.csv': 'csv',
    '.parquet': 'parquet',
    '.pq': 'parquet',
    '.tfrecord': 'tfrecord'
}


def _read_csv(path: str) -> pd.DataFrame:
    return pd.read_csv(path)


def _write_csv(dataset: pd.DataFrame, path: str) -> None:
    dataset.to_csv(path, index=False)


def _read_parquet(path: str) -> pd.DataFrame:
    return pq.read_table(path).to_pandas()


def _write_parquet(dataset: pd.DataFrame, path: str) -> None:
    table = pa.Table.from_pandas(dataset, preserve_index=False)
    pq.write_table(table, path)


def _tfrecord_feature(value, kind: str):
    if kind == 'byte':
        return (b"" if pd.isna(value) else str(value).encode('utf-8')), kind
    if kind == 'int':
        return int(value), kind
    return (np.nan if pd.isna(value) else float(value)), kind


def _tfrecord_kind(series: pd.Series) -> str:
    if pd.api.types.is_bool_dtype(series) or pd.api.types.is_integer_dtype(series):
        # Nullable integers keep their missing values as NaN floats.
        return 'float' if series.isna().any() else 'int'
    if pd.api.types.is_float_dtype(series):
        return 'float'
    return 'byte'


def _write_tfrecord(dataset: pd.DataFrame, path: str) -> None:
    kinds = {name: _tfrecord_kind(dataset[name]) for name in dataset.columns}
    writer = tfrecord.TFRecordWriter(path)
    try:
        for row in dataset.itertuples(index=False, name=None):
            writer.write({str(name): _tfrecord_feature(value, kinds[name])
                          for name, value in zip(dataset.columns, row)})
    finally:
        writer.close()


def _tfrecord_value(values: np.ndarray):
    if values.dtype == np.uint8:
        return values.tobytes().decode('utf-8') if len(values) else None
    return values[0].item() if len(values) else None


def _read_tfrecord(path: str) -> pd.DataFrame:
    records = [{name: _tfrecord_value(values) for name, values in example.items()}
               for example in tfrecord.tfrecord_loader(path, None)]
    columns = sorted(records[0]) if records else []
    return pd.DataFrame.from_records(records, columns=columns)


_READERS: Dict[str, Callable[[str], pd.DataFrame]] = {
    'csv': _read_csv,
    'parquet': _read_parquet,
    'tfrecord': _read_tfrecord
}

_WRITERS: Dict[str, Callable[[pd.DataFrame, str], None]] = {
    'csv': _write_csv,
    'parquet': _write_parquet,
    'tfrecord': _write_tfrecord
}


def supported_formats() -> List[str]:
    return sorted(_READERS)


def make_typed_path(dataset_format: str, path: str) -> str:
    return f"{dataset_format}:{path}"


def format_sharded_path(base: str, num_shards: int) -> str:
    return f"{base}@{num_shards}"


def shard_filename(base: str, shard_idx: int, num_shards: int) -> str:
    return f"{base}-{shard_idx:05d}-of-{num_shards:05d}"


def parse_typed_path(path: str) -> Tuple[str, str]:
    """
    Split a dataset path into (format, path).

    Untyped paths are resolved from their file extension.

    Raises:
        ConfigurationError: If the format is unknown or cannot be inferred
    """
    match = _TYPED_PATH.match(str(path))
    if match:
        dataset_format, raw_path = match.group('format'), match.group('path')
    else:
        raw_path = str(path)
        base = _SHARDED_PATH.match(raw_path)
        suffix = Path(base.group('base') if base else raw_path).suffix.lower()
        if suffix not in _EXTENSIONS:
            raise ConfigurationError(
                f"Cannot infer the format of '{path}'. Use a typed path such as "
                f"'csv:{path}'")
        dataset_format = _EXTENSIONS[suffix]

    if dataset_format not in _READERS:
        raise ConfigurationError(
            f"Unsupported dataset format '{dataset_format}'. "
            f"Supported formats: {supported_formats()}")

    return dataset_format, raw_path


def expand_sharded_path(path: str) -> List[str]:
    """List the files a (possibly sharded) untyped path refers to."""
    match = _SHARDED_PATH.match(path)
    if not match:
        return [path]

    num_shards = int(match.group('num_shards'))
    if num_shards <= 0:
        raise ConfigurationError(f"Invalid number of shards in '{path}'")
    return [shard_filename(match.group('base'), idx, num_shards) for idx in range(num_shards)]


def read_dataset(path: str) -> pd.DataFrame:
    """
    Read a dataset from a typed path. Shards are concatenated in shard order.

    Raises:
        ConfigurationError: If the path does not exist or cannot be read
    """
    dataset_format, raw_path = parse_typed_path(path)
    reader = _READERS[dataset_format]

    frames = []
    for filename in expand_sharded_path(raw_path):
        if not Path(filename).is_file():
            raise ConfigurationError(f"Dataset file not found: {filename}")
        try:
            frames.append(reader(filename))
        except (OSError, ValueError, pa.ArrowException) as e:
            raise ConfigurationError(f"Cannot read dataset '{filename}': {e}") from e

    dataset = frames[0] if len(frames) == 1 else pd.concat(frames, ignore_index=True)

    logger.debug("dataset.read", extra={
        "path": path,
        "format": dataset_format,
        "num_files": len(frames),
        "num_rows": len(dataset)
    })

    return dataset


def write_dataset(dataset: pd.DataFrame, path: str) -> None:
    """Write a dataset to a single (non sharded) typed path."""
    dataset_format, raw_path = parse_typed_path(path)
    if _SHARDED_PATH.match(raw_path):
        raise ConfigurationError(f"Use shard_dataset to write sharded datasets: {path}")

    Path(raw_path).parent.mkdir(parents=True, exist_ok=True)
    _WRITERS[dataset_format](dataset.reset_index(drop=True), raw_path)

    logger.debug("dataset.written", extra={
        "path": path,
        "format": dataset_format,
        "num_rows": len(dataset)
    })

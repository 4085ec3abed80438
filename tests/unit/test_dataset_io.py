"""
Unit Tests for Dataset Readers and Writers

Tests typed path parsing, shard naming and csv / parquet / tfrecord round trips.
"""

import numpy as np
import pandas as pd
import pytest

from mlharness.config import ConfigurationError
from mlharness.dataset import (expand_sharded_path, parse_typed_path, read_dataset,
                               supported_formats, write_dataset)
from mlharness.dataset.io import format_sharded_path, make_typed_path, shard_filename


@pytest.fixture
def dataset():
    return pd.DataFrame({
        'x': np.arange(10, dtype=np.float64),
        'name': [f"item_{idx}" for idx in range(10)],
        'flag': [idx % 2 == 0 for idx in range(10)]
    })


class TestTypedPaths:
    """Typed path parsing."""

    def test_supported_formats(self):
        assert supported_formats() == ['csv', 'parquet', 'tfrecord']

    def test_typed_path(self):
        assert parse_typed_path("csv:/data/train.csv") == ("csv", "/data/train.csv")
        assert parse_typed_path("parquet:/data/train@3") == ("parquet", "/data/train@3")

    def test_format_inferred_from_extension(self):
        assert parse_typed_path("/data/train.csv") == ("csv", "/data/train.csv")
        assert parse_typed_path("/data/train.pq") == ("parquet", "/data/train.pq")
        assert parse_typed_path("/data/train.parquet@2") == ("parquet", "/data/train.parquet@2")

    def test_format_cannot_be_inferred(self):
        with pytest.raises(ConfigurationError, match="Cannot infer the format"):
            parse_typed_path("/data/train@3")

    def test_unsupported_format_rejected(self):
        with pytest.raises(ConfigurationError, match="Unsupported dataset format 'avro'"):
            parse_typed_path("avro:/data/train@3")

    def test_make_typed_sharded_path(self):
        assert make_typed_path("csv", format_sharded_path("/tmp/train", 3)) == "csv:/tmp/train@3"

    def test_expand_sharded_path(self):
        assert expand_sharded_path("/tmp/train@3") == [
            "/tmp/train-00000-of-00003",
            "/tmp/train-00001-of-00003",
            "/tmp/train-00002-of-00003"
        ]
        assert expand_sharded_path("/tmp/train.csv") == ["/tmp/train.csv"]

    def test_zero_shards_rejected(self):
        with pytest.raises(ConfigurationError, match="Invalid number of shards"):
            expand_sharded_path("/tmp/train@0")


class TestReadWrite:
    """Round trips through the supported formats."""

    @pytest.mark.parametrize("dataset_format", ["csv", "parquet"])
    def test_round_trip(self, dataset, tmp_path, dataset_format):
        path = make_typed_path(dataset_format, str(tmp_path / "nested" / "data"))

        write_dataset(dataset, path)
        loaded = read_dataset(path)

        pd.testing.assert_frame_equal(loaded, dataset)

    def test_tfrecord_round_trip(self, dataset, tmp_path):
        path = make_typed_path("tfrecord", str(tmp_path / "data.tfrecord"))

        write_dataset(dataset, path)
        loaded = read_dataset(path)

        assert list(loaded.columns) == ['flag', 'name', 'x']
        assert loaded['name'].tolist() == dataset['name'].tolist()
        assert loaded['x'].tolist() == dataset['x'].tolist()
        assert loaded['flag'].tolist() == [1, 0] * 5

    def test_tfrecord_missing_values(self, tmp_path):
        dataset = pd.DataFrame({'x': [1.5, np.nan, 3.0], 'color': ['red', None, 'blue']})
        path = f"tfrecord:{tmp_path / 'missing.tfrecord'}"

        write_dataset(dataset, path)
        loaded = read_dataset(path)

        assert loaded['color'].tolist() == ['red', None, 'blue']
        assert loaded['x'].isna().tolist() == [False, True, False]

    def test_tfrecord_format_from_extension(self):
        assert parse_typed_path("/data/train.tfrecord") == ("tfrecord", "/data/train.tfrecord")

    def test_shards_are_concatenated_in_order(self, dataset, tmp_path):
        base = str(tmp_path / "data")
        for shard_idx, rows in enumerate([slice(0, 4), slice(4, 7), slice(7, 10)]):
            write_dataset(dataset.iloc[rows], make_typed_path("csv", shard_filename(base, shard_idx, 3)))

        loaded = read_dataset(make_typed_path("csv", format_sharded_path(base, 3)))

        pd.testing.assert_frame_equal(loaded, dataset)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Dataset file not found"):
            read_dataset(f"csv:{tmp_path / 'missing.csv'}")

    def test_missing_shard(self, dataset, tmp_path):
        base = str(tmp_path / "data")
        write_dataset(dataset, make_typed_path("csv", shard_filename(base, 0, 2)))

        with pytest.raises(ConfigurationError, match="00001-of-00002"):
            read_dataset(make_typed_path("csv", format_sharded_path(base, 2)))

    def test_write_to_sharded_path_rejected(self, dataset, tmp_path):
        with pytest.raises(ConfigurationError, match="shard_dataset"):
            write_dataset(dataset, f"csv:{tmp_path / 'data'}@3")

"""
Unit Tests for Data Specification

Tests type inference, guides, feature encoding and the persisted form of
the specification.
"""

import numpy as np
import pandas as pd
import pytest

from mlharness.config import ConfigurationError
from mlharness.dataset import (ColumnType, DataSpecification, DataSpecificationGuide,
                               encode_features, encode_labels, infer_data_spec)


@pytest.fixture
def dataset():
    return pd.DataFrame({
        'age': [25.0, np.nan, 40.0, 33.0],
        'city': ['paris', 'berlin', None, 'paris'],
        'member': [True, False, True, False],
        'count': [1, 2, 3, 4],
        'income': ['<=50K', '>50K', '<=50K', '>50K']
    })


class TestInferDataSpec:
    """Type inference and statistics."""

    def test_inferred_types(self, dataset):
        data_spec = infer_data_spec(dataset)

        assert data_spec.column_names == ['age', 'city', 'member', 'count', 'income']
        assert data_spec.column('age').type == ColumnType.NUMERICAL
        assert data_spec.column('city').type == ColumnType.CATEGORICAL
        assert data_spec.column('member').type == ColumnType.BOOLEAN
        assert data_spec.column('count').type == ColumnType.NUMERICAL
        assert data_spec.num_rows == 4

    def test_numerical_statistics(self, dataset):
        age = infer_data_spec(dataset).column('age')

        assert age.count_nas == 1
        assert age.min_value == 25.0
        assert age.max_value == 40.0
        assert age.mean == pytest.approx(98.0 / 3)

    def test_vocabulary_is_sorted_and_skips_missing(self, dataset):
        city = infer_data_spec(dataset).column('city')

        assert city.vocabulary == ('berlin', 'paris')
        assert city.count_nas == 1
        assert city.vocabulary_index == {'berlin': 0, 'paris': 1}

    def test_guide_overrides_type(self, dataset):
        guide = DataSpecificationGuide().with_column_type('count', ColumnType.CATEGORICAL)

        count = infer_data_spec(dataset, guide).column('count')

        assert count.type == ColumnType.CATEGORICAL
        assert count.vocabulary == ('1', '2', '3', '4')

    def test_guide_from_yaml(self, dataset, tmp_path):
        path = tmp_path / "guide.yaml"
        path.write_text(
            "columns:\n"
            "  city: {type: text}\n"
            "  count: {ignore: true}\n"
        )

        data_spec = infer_data_spec(dataset, DataSpecificationGuide.from_yaml(path))

        assert data_spec.column('city').type == ColumnType.TEXT
        assert not data_spec.has_column('count')

    def test_guide_with_invalid_type(self, tmp_path):
        path = tmp_path / "guide.yaml"
        path.write_text("columns:\n  city: {type: IMAGE}\n")

        with pytest.raises(ConfigurationError, match="Invalid column type"):
            DataSpecificationGuide.from_yaml(path)

    def test_non_numeric_column_forced_numerical(self, dataset):
        guide = DataSpecificationGuide().with_column_type('city', ColumnType.NUMERICAL)

        with pytest.raises(ConfigurationError, match="cannot be NUMERICAL"):
            infer_data_spec(dataset, guide)

    def test_unknown_column_lookup(self, dataset):
        with pytest.raises(KeyError):
            infer_data_spec(dataset).column('missing')

    def test_dict_round_trip(self, dataset):
        data_spec = infer_data_spec(dataset)

        assert DataSpecification.from_dict(data_spec.to_dict()) == data_spec

    def test_describe_lists_every_column(self, dataset):
        description = infer_data_spec(dataset).describe()

        assert "Number of records: 4" in description
        assert "city: CATEGORICAL nas=1 vocab-size=2" in description


class TestEncoding:
    """Feature and label encoding."""

    def test_encode_features(self, dataset):
        data_spec = infer_data_spec(dataset)

        matrix = encode_features(dataset, ['age', 'city', 'member'], data_spec)

        assert matrix.dtype == np.float32
        assert matrix.shape == (4, 3)
        np.testing.assert_array_equal(matrix[:, 1], np.array([1.0, 0.0, np.nan, 1.0], dtype=np.float32))
        np.testing.assert_array_equal(matrix[:, 2], np.array([1.0, 0.0, 1.0, 0.0], dtype=np.float32))
        assert np.isnan(matrix[1, 0])

    def test_unknown_category_is_missing(self, dataset):
        data_spec = infer_data_spec(dataset)
        unseen = pd.DataFrame({'city': ['tokyo', 'paris']})

        matrix = encode_features(unseen, ['city'], data_spec)

        assert np.isnan(matrix[0, 0])
        assert matrix[1, 0] == 1.0

    def test_text_feature_rejected(self, dataset):
        guide = DataSpecificationGuide().with_column_type('city', ColumnType.TEXT)
        data_spec = infer_data_spec(dataset, guide)

        with pytest.raises(ConfigurationError, match="cannot be used as a feature"):
            encode_features(dataset, ['city'], data_spec)

    def test_missing_feature_column(self, dataset):
        data_spec = infer_data_spec(dataset)

        with pytest.raises(ConfigurationError, match="missing from the dataset"):
            encode_features(dataset.drop(columns=['age']), ['age'], data_spec)

    def test_encode_labels(self, dataset):
        data_spec = infer_data_spec(dataset)

        np.testing.assert_array_equal(encode_labels(dataset, 'income', data_spec), [0, 1, 0, 1])

    def test_encode_labels_rejects_unknown_values(self, dataset):
        data_spec = infer_data_spec(dataset)
        other = pd.DataFrame({'income': ['<=50K', 'unknown']})

        with pytest.raises(ConfigurationError, match="missing or unknown"):
            encode_labels(other, 'income', data_spec)

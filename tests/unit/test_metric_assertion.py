"""
Unit Tests for Metric Assertions

Tests the margin and gold checks, dump mode, call-site metric naming and
test name simplification.
"""

import inspect
import math

import pytest

from mlharness.config import MetricCheckConfig
from mlharness.verification import (MetricAssertion, MetricChecker, MetricOutOfRangeError,
                                    assert_metric, read_dump_records, simple_test_name)
from mlharness.verification.metric_assertion import DUMP_FIELDS, dump_filename


class TestMarginAndGold:
    """Verify mode."""

    def test_within_margin_without_gold_check(self):
        assertion = assert_metric("test_adult", 0.9466, 0.95, 0.01, 0.90)

        assert assertion.within_margin
        assert not assertion.matches_gold

    def test_gold_mismatch_fails_with_gold_check(self):
        config = MetricCheckConfig(check_gold=True)

        with pytest.raises(MetricOutOfRangeError, match="gold value 0.9"):
            assert_metric("test_adult", 0.9466, 0.95, 0.01, 0.90, config=config)

    def test_gold_match_within_relative_epsilon(self):
        config = MetricCheckConfig(check_gold=True)

        assertion = assert_metric("test_adult", 0.9, 0.9, 0.01, 0.9000001, config=config)

        assert assertion.matches_gold

    def test_missing_gold_is_not_checked(self):
        config = MetricCheckConfig(check_gold=True)

        assertion = assert_metric("test_adult", 0.9466, 0.95, 0.01, config=config)

        assert not assertion.has_gold

    def test_outside_margin_fails(self):
        with pytest.raises(MetricOutOfRangeError) as exc_info:
            assert_metric("test_adult", 0.97, 0.95, 0.01, metric_name="accuracy")

        message = str(exc_info.value)
        assert "accuracy=0.97" in message
        assert "test=test_adult" in message

    def test_margin_boundary_is_inclusive(self):
        assert_metric("test_boundary", 1.5, 1.0, 0.5)
        assert_metric("test_boundary", 0.5, 1.0, 0.5)

    def test_nan_value_fails(self):
        with pytest.raises(MetricOutOfRangeError):
            assert_metric("test_nan", math.nan, 1.0, 10.0)

    def test_failure_is_an_assertion_error(self):
        with pytest.raises(AssertionError):
            assert_metric("test_adult", 0.5, 0.95, 0.01)


class TestDumpMode:
    """Recording instead of checking."""

    def test_failing_assertions_are_recorded(self, tmp_path):
        checker = MetricChecker(MetricCheckConfig(dump_dir=str(tmp_path), check_gold=True),
                                "tests/unit/test_x.py::TestX::test_dump")

        checker.check(0.5, 0.95, 0.01, gold=0.9, metric_name="accuracy")
        checker.check(0.2, 0.3, 0.05, metric_name="loss")

        records = read_dump_records(str(tmp_path), "test_dump")
        assert len(records) == 2
        assert list(records[0]) == DUMP_FIELDS
        assert records[0]['test_name'] == "test_dump"
        assert records[0]['metric_name'] == "accuracy"
        assert float(records[0]['value']) == 0.5
        assert float(records[0]['gold']) == 0.9
        assert records[1]['metric_name'] == "loss"
        assert records[1]['gold'] == "nan"

    def test_header_written_once(self, tmp_path):
        checker = MetricChecker(MetricCheckConfig(dump_dir=str(tmp_path)), "test_header")

        for value in (0.1, 0.2, 0.3):
            checker.check(value, 0.0, 0.0, metric_name="value")

        lines = (tmp_path / "test_header.csv").read_text().strip().splitlines()
        assert len(lines) == 4
        assert lines[0] == ",".join(DUMP_FIELDS)

    def test_one_file_per_test(self, tmp_path):
        config = MetricCheckConfig(dump_dir=str(tmp_path))

        MetricChecker(config, "test_a").check(1.0, 0.0, 0.0, metric_name="m")
        MetricChecker(config, "test_b").check(1.0, 0.0, 0.0, metric_name="m")

        assert sorted(path.name for path in tmp_path.iterdir()) == ["test_a.csv", "test_b.csv"]

    def test_no_records_for_unknown_test(self, tmp_path):
        assert read_dump_records(str(tmp_path), "test_unknown") == []


class TestCallSite:
    """Metric name and location captured from the caller."""

    def test_metric_name_from_argument_text(self):
        checker = MetricChecker(MetricCheckConfig(), "test_names")
        evaluation_accuracy = 0.95

        assertion = checker.check(evaluation_accuracy, 0.95, 0.01)

        assert assertion.metric_name == "evaluation_accuracy"

    def test_attribute_expression(self):
        checker = MetricChecker(MetricCheckConfig(), "test_names")
        result = MetricAssertion("t", "m", 0.5, 0.5, 0.0)

        assertion = checker.check(result.value * 2, 1.0, 0.0)

        assert assertion.metric_name == "result.value * 2"

    def test_location_is_the_caller(self):
        checker = MetricChecker(MetricCheckConfig(), "test_location")

        line = inspect.currentframe().f_lineno + 1
        assertion = checker.check(1.0, 1.0, 0.0)

        assert assertion.source_file == __file__
        assert assertion.source_line == line
        assert assertion.location == f"{__file__}:{line}"

    def test_functional_form_names_value_argument(self):
        auc = 0.8

        assertion = assert_metric("test_functional", auc, 0.8, 0.05)

        assert assertion.metric_name == "auc"

    def test_explicit_location(self):
        assertion = assert_metric("test_functional", 0.8, 0.8, 0.05, location=("model_test.py", 12),
                                  metric_name="auc")

        assert assertion.location == "model_test.py:12"

    def test_fixture_uses_node_name(self, metric_checker):
        assert metric_checker.test_name == "test_fixture_uses_node_name"


class TestNames:
    """Test name helpers."""

    @pytest.mark.parametrize("test_name,expected", [
        ("tests/unit/test_a.py::TestA::test_b", "test_b"),
        ("tests/unit/test_a.py::test_b[xgboost-0.5]", "test_b[xgboost-0.5]"),
        ("package.module.TestA.test_b", "test_b"),
        ("test_b", "test_b")
    ])
    def test_simple_test_name(self, test_name, expected):
        assert simple_test_name(test_name) == expected

    def test_checker_simplifies_its_test_name(self):
        assert MetricChecker(MetricCheckConfig(), "mod.py::TestA::test_c").test_name == "test_c"

    def test_dump_filename_is_sanitized(self):
        assert dump_filename("test_b[xgboost-0.5]") == "test_b[xgboost-0.5].csv"
        assert dump_filename("test b/c") == "test_b_c.csv"

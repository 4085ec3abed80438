# /mlharness/src/mlharness/verification/metric_assertion.py

"""
Metric Assertions

Checks that a metric lies within ``center +/- margin`` and, when the
gold-check flag is set, that it equals its recorded gold value.

Modes:
- Verify (default): a violated margin or gold value raises
  MetricOutOfRangeError
- Dump: when ``dump_dir`` is configured, every assertion is appended to
  ``<dump_dir>/<test_name>.csv`` and never fails. The records are used to
  recalibrate centers and margins offline.

The metric name defaults to the source text of the value argument at the
call site, and the location to the caller's file and line:

    checker = MetricChecker(config.metrics, "test_adult")
    checker.check(evaluation.accuracy, 0.86, 0.01, gold=0.8612)
    # metric_name == "evaluation.accuracy"
"""

import ast
import csv
import inspect
import linecache
import logging
import math
import re
import textwrap
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config.harness_config import MetricCheckConfig
from .errors import MetricOutOfRangeError

logger = logging.getLogger(__name__)

DUMP_FIELDS = ["test_name", "metric_name", "value", "center", "margin", "gold",
               "source_file", "source_line"]

GOLD_RELATIVE_EPSILON = 1e-6
MAX_CALL_LINES = 20

_DUMP_LOCK = threading.Lock()


@dataclass(frozen=True)
class MetricAssertion:
    """One metric assertion, as checked or recorded."""
    test_name: str
    metric_name: str
    value: float
    center: float
    margin: float
    gold: float = math.nan
    source_file: str = ""
    source_line: int = 0

    @property
    def within_margin(self) -> bool:
        # Written so that a NaN value is out of range.
        return abs(self.value - self.center) <= self.margin

    @property
    def has_gold(self) -> bool:
        return math.isfinite(self.gold)

    @property
    def matches_gold(self) -> bool:
        return math.isclose(self.value, self.gold, rel_tol=GOLD_RELATIVE_EPSILON, abs_tol=0.0)

    @property
    def location(self) -> str:
        return f"{self.source_file}:{self.source_line}"

    def to_record(self) -> Dict[str, object]:
        return asdict(self)


def simple_test_name(test_name: str) -> str:
    """
    Unqualified test name; parameters are kept.

    "tests/unit/test_a.py::TestA::test_b[xgb]" -> "test_b[xgb]"
    "package.module.TestA.test_b" -> "test_b"
    """
    base, bracket, params = test_name.partition('[')
    base = base.split('::')[-1].split('.')[-1]
    return base + bracket + params


def dump_filename(test_name: str) -> str:
    return re.sub(r'[^\w.\-\[\]]', '_', test_name) + ".csv"


def _extract_argument_text(source_file: str, source_line: int,
                           function_name: str, argument_index: int,
                           argument_keyword: str) -> Optional[str]:
    """Source text of an argument of the call starting at ``source_line``."""
    lines = linecache.getlines(source_file)
    if not lines or source_line <= 0 or source_line > len(lines):
        return None

    for num_lines in range(1, MAX_CALL_LINES + 1):
        chunk = textwrap.dedent("".join(lines[source_line - 1:source_line - 1 + num_lines]))
        try:
            tree = ast.parse(chunk)
        except SyntaxError:
            continue

        for node in ast.walk(tree):
            if not isinstance(node, ast.Call):
                continue
            func = node.func
            name = func.attr if isinstance(func, ast.Attribute) else getattr(func, 'id', None)
            if name != function_name:
                continue
            if len(node.args) > argument_index:
                return ast.get_source_segment(chunk, node.args[argument_index])
            for keyword in node.keywords:
                if keyword.arg == argument_keyword:
                    return ast.get_source_segment(chunk, keyword.value)
        return None

    return None


def _caller(depth: int) -> Tuple[str, int]:
    frame = inspect.currentframe()
    try:
        for _ in range(depth + 1):
            frame = frame.f_back
        return frame.f_code.co_filename, frame.f_lineno
    finally:
        del frame


def append_dump_record(dump_dir: str, assertion: MetricAssertion) -> Path:
    """Append one record to the dump file of the assertion's test."""
    path = Path(dump_dir) / dump_filename(assertion.test_name)
    record = assertion.to_record()

    with _DUMP_LOCK:
        path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not path.exists() or path.stat().st_size == 0
        with open(path, 'a', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=DUMP_FIELDS)
            if write_header:
                writer.writeheader()
            writer.writerow(record)

    return path


def read_dump_records(dump_dir: str, test_name: str) -> List[Dict[str, str]]:
    """Records previously dumped for a test, oldest first."""
    path = Path(dump_dir) / dump_filename(test_name)
    if not path.exists():
        return []
    with open(path, 'r', newline='') as f:
        return list(csv.DictReader(f))


class MetricChecker:
    """
    Metric assertions of one test.

    Args:
        config: Dump destination and gold-check flag; read-only for the run
        test_name: Name of the test; reduced to its unqualified form
    """

    def __init__(self, config: MetricCheckConfig, test_name: str):
        self.config = config
        self.test_name = simple_test_name(test_name)
        self.logger = logging.getLogger(__name__)

    def check(self, value: float, center: float, margin: float,
              gold: float = math.nan,
              metric_name: Optional[str] = None,
              source_file: Optional[str] = None,
              source_line: Optional[int] = None) -> MetricAssertion:
        """
        Verify or record a metric.

        Raises:
            MetricOutOfRangeError: In verify mode, if the metric is outside
                its margin or differs from its gold value
        """
        if source_file is None or source_line is None:
            source_file, source_line = _caller(1)
        if metric_name is None:
            metric_name = _extract_argument_text(
                source_file, source_line, "check", 0, "value") or "value"

        return self.evaluate(MetricAssertion(
            test_name=self.test_name,
            metric_name=metric_name,
            value=float(value),
            center=float(center),
            margin=float(margin),
            gold=float(gold),
            source_file=source_file,
            source_line=int(source_line)
        ))

    def evaluate(self, assertion: MetricAssertion) -> MetricAssertion:
        if self.config.dump_mode:
            path = append_dump_record(self.config.dump_dir, assertion)
            self.logger.debug("metric.dumped", extra={
                "metric_name": assertion.metric_name,
                "value": assertion.value,
                "dump_file": str(path)
            })
            return assertion

        if not assertion.within_margin:
            raise MetricOutOfRangeError(
                f"{assertion.location}: {assertion.metric_name}={assertion.value} is outside "
                f"[{assertion.center - assertion.margin}, {assertion.center + assertion.margin}] "
                f"(center={assertion.center}, margin={assertion.margin}, test={assertion.test_name})")

        if self.config.check_gold and assertion.has_gold and not assertion.matches_gold:
            raise MetricOutOfRangeError(
                f"{assertion.location}: {assertion.metric_name}={assertion.value} differs from "
                f"its gold value {assertion.gold} (test={assertion.test_name})")

        self.logger.debug("metric.checked", extra={
            "metric_name": assertion.metric_name,
            "value": assertion.value,
            "center": assertion.center,
            "margin": assertion.margin
        })
        return assertion


def assert_metric(test_name: str, value: float, center: float, margin: float,
                  gold: float = math.nan,
                  location: Optional[Tuple[str, int]] = None,
                  config: Optional[MetricCheckConfig] = None,
                  metric_name: Optional[str] = None) -> MetricAssertion:
    """
    Functional form of ``MetricChecker.check``.

    Args:
        test_name: Name of the calling test
        value: Observed metric value
        center: Expected value
        margin: Allowed absolute deviation from ``center``
        gold: Exact expected value, checked when the gold-check flag is set
        location: (source_file, source_line); the caller's location if None
        config: Metric check configuration; verify mode without gold check if None
        metric_name: Defaults to the source text of the ``value`` argument
    """
    source_file, source_line = location if location is not None else _caller(1)
    if metric_name is None:
        metric_name = _extract_argument_text(
            source_file, source_line, "assert_metric", 1, "value") or "value"

    checker = MetricChecker(config or MetricCheckConfig(), test_name)
    return checker.check(value, center, margin, gold, metric_name=metric_name,
                         source_file=source_file, source_line=source_line)

# /mlharness/src/mlharness/verification/golden.py

"""
Golden-Model Checker

Compares a freshly trained model with a stored reference model under
``<golden_root>/<model_name>``. Only the semantic structure is compared;
metadata such as creation time and training duration is ignored.

Disabled unless the gold-check flag is set, since golden models only match
when the learner, its library version and the seed are unchanged.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

from ..config.harness_config import HarnessConfig
from ..learners.abstract import AbstractModel
from ..learners.registry import load_model
from .errors import GoldenModelMismatchError

logger = logging.getLogger(__name__)

MAX_REPORTED_DIFFERENCES = 50


@dataclass
class GoldenCheckResult:
    model_name: str
    checked: bool = False
    golden_path: str = ""
    differences: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.differences


def structure_differences(expected: Any, actual: Any, path: str = "$",
                          limit: int = MAX_REPORTED_DIFFERENCES) -> List[str]:
    """Paths at which two JSON-like structures differ, up to ``limit``."""
    differences: List[str] = []

    def visit(left: Any, right: Any, current: str) -> None:
        if len(differences) >= limit:
            return
        if isinstance(left, dict) and isinstance(right, dict):
            for key in sorted(set(left) | set(right), key=str):
                if key not in left:
                    differences.append(f"{current}.{key}: unexpected key")
                elif key not in right:
                    differences.append(f"{current}.{key}: missing key")
                else:
                    visit(left[key], right[key], f"{current}.{key}")
        elif isinstance(left, list) and isinstance(right, list):
            if len(left) != len(right):
                differences.append(f"{current}: length {len(right)} != {len(left)}")
            for idx, (left_item, right_item) in enumerate(zip(left, right)):
                visit(left_item, right_item, f"{current}[{idx}]")
        elif left != right:
            differences.append(f"{current}: {right!r} != {left!r}")

    visit(expected, actual, path)
    return differences


class GoldenModelChecker:
    """
    Compares models with their golden counterparts.
    """

    def __init__(self, golden_root: Union[str, Path], enabled: bool = False):
        self.golden_root = Path(golden_root)
        self.enabled = enabled
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: HarnessConfig) -> 'GoldenModelChecker':
        return cls(config.verification.golden_root, enabled=config.metrics.check_gold)

    def golden_path(self, model_name: str) -> Path:
        return self.golden_root / model_name

    def check(self, model: AbstractModel, model_name: Optional[str] = None) -> GoldenCheckResult:
        model_name = model_name or model.name
        result = GoldenCheckResult(model_name=model_name)
        if not self.enabled:
            return result

        path = self.golden_path(model_name)
        result.checked = True
        result.golden_path = str(path)

        if not path.is_dir():
            result.differences.append(f"golden model not found at {path}")
        else:
            golden = load_model(path)
            result.differences = structure_differences(golden.structure(), model.structure())

        self.logger.info("golden.checked", extra={
            "model_name": model_name,
            "golden_path": str(path),
            "num_differences": len(result.differences)
        })
        return result

    def assert_matches(self, model: AbstractModel, model_name: Optional[str] = None) -> GoldenCheckResult:
        """
        Raises:
            GoldenModelMismatchError: If enabled and the model differs
        """
        result = self.check(model, model_name)
        if not result.passed:
            raise GoldenModelMismatchError(result.model_name, result.differences)
        return result

    def write_golden(self, model: AbstractModel, model_name: Optional[str] = None) -> Path:
        """Store ``model`` as the golden model, replacing any previous one."""
        path = self.golden_path(model_name or model.name)
        if path.exists():
            shutil.rmtree(path)
        model.save(path)

        self.logger.info("golden.written", extra={"golden_path": str(path)})
        return path

# /mlharness/src/mlharness/evaluation/__init__.py

"""
Model Evaluation
"""

from .metrics import EvaluationResult, evaluate, qini_coefficient, variable_importance_rank

__all__ = [
    "EvaluationResult",
    "evaluate",
    "qini_coefficient",
    "variable_importance_rank"
]

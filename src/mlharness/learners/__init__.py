# /mlharness/src/mlharness/learners/__init__.py

"""
Learners, Models and Inference Engines

Importing this package registers the XGBOOST and LIGHTGBM learners and
their model types.
"""

from .abstract import (
    AbstractInferenceEngine,
    AbstractLearner,
    AbstractModel,
    EngineNotSupportedError,
    ModelMetadata,
    ReferenceEngine
)
from .registry import (
    create_learner,
    deserialize_model,
    load_model,
    register_learner,
    register_model,
    registered_learners
)
from .xgboost_learner import XGBoostLearner, XGBoostModel
from .lightgbm_learner import LightGBMLearner, LightGBMModel

__all__ = [
    "AbstractInferenceEngine",
    "AbstractLearner",
    "AbstractModel",
    "EngineNotSupportedError",
    "ModelMetadata",
    "ReferenceEngine",
    "create_learner",
    "deserialize_model",
    "load_model",
    "register_learner",
    "register_model",
    "registered_learners",
    "XGBoostLearner",
    "XGBoostModel",
    "LightGBMLearner",
    "LightGBMModel"
]

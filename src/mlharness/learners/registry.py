# /mlharness/src/mlharness/learners/registry.py

"""
Learner and Model Registries

Learners register under their configuration name ("XGBOOST", "LIGHTGBM");
models register under their ``model_type`` so that persisted models can be
reloaded without knowing their type in advance.
"""

import json
import logging
import pickle
from pathlib import Path
from typing import Callable, Dict, List, Type, Union

from ..config.harness_config import ConfigurationError
from ..config.training_config import TrainingConfig
from .abstract import HEADER_FILENAME, AbstractLearner, AbstractModel

logger = logging.getLogger(__name__)

_LEARNERS: Dict[str, Type[AbstractLearner]] = {}
_MODELS: Dict[str, Type[AbstractModel]] = {}


def register_learner(name: str) -> Callable[[Type[AbstractLearner]], Type[AbstractLearner]]:
    """Class decorator registering a learner."""
    def decorator(cls: Type[AbstractLearner]) -> Type[AbstractLearner]:
        _LEARNERS[name.upper()] = cls
        cls.learner_name = name.upper()
        return cls
    return decorator


def register_model(model_type: str) -> Callable[[Type[AbstractModel]], Type[AbstractModel]]:
    """Class decorator registering a model type."""
    def decorator(cls: Type[AbstractModel]) -> Type[AbstractModel]:
        _MODELS[model_type] = cls
        cls.model_type = model_type
        return cls
    return decorator


def registered_learners() -> List[str]:
    return sorted(_LEARNERS)


def create_learner(config: TrainingConfig) -> AbstractLearner:
    """
    Instantiate the learner named in a training configuration.

    Raises:
        ConfigurationError: If no such learner is registered
    """
    learner_cls = _LEARNERS.get(config.learner.upper())
    if learner_cls is None:
        raise ConfigurationError(
            f"Unknown learner '{config.learner}'. Registered learners: {registered_learners()}")
    return learner_cls(config)


def _model_class(model_type: str) -> Type[AbstractModel]:
    model_cls = _MODELS.get(model_type)
    if model_cls is None:
        raise ConfigurationError(f"Unknown model type '{model_type}'")
    return model_cls


def load_model(directory: Union[str, Path]) -> AbstractModel:
    """Load a model saved with ``AbstractModel.save``."""
    directory = Path(directory)
    header_path = directory / HEADER_FILENAME
    if not header_path.is_file():
        raise ConfigurationError(f"No model found in {directory}")

    with open(header_path, 'r') as f:
        header = json.load(f)

    model = _model_class(header['model_type'])._load_payload(header, directory)
    logger.debug("model.loaded", extra={"model_type": header['model_type'], "directory": str(directory)})
    return model


def deserialize_model(data: bytes) -> AbstractModel:
    """Rebuild a model from ``AbstractModel.serialize``."""
    content = pickle.loads(data)
    header = content['header']
    return _model_class(header['model_type'])._from_payload_bytes(header, content['payload'])

# /mlharness/src/mlharness/learners/onnx_engine.py

"""
ONNX Inference Engine

Specialized inference through ONNX Runtime for gradient boosted tree models
converted with onnxmltools.

Key Features:
- XGBoost and LightGBM conversion with a fixed "features" float input
- Graph validation with the ONNX checker before a session is created
- Models the converters do not support surface as EngineNotSupportedError
  so that the equivalence check skips the engine; any other conversion
  error fails the check
"""

import logging
from typing import Any

import numpy as np
import pandas as pd

from .abstract import AbstractInferenceEngine, AbstractModel, EngineNotSupportedError

# ONNX dependencies
try:
    import onnx
    from onnxmltools.convert import convert_lightgbm, convert_xgboost
    from onnxmltools.convert.common.data_types import FloatTensorType
    import onnxruntime as ort
    ONNX_AVAILABLE = True
except ImportError as e:
    ONNX_AVAILABLE = False
    IMPORT_ERROR = str(e)

logger = logging.getLogger(__name__)

ENGINE_NAME = "onnx"
DEFAULT_TARGET_OPSET = 14


def convert_to_onnx(native_model: Any, library: str, num_features: int,
                    target_opset: int = DEFAULT_TARGET_OPSET) -> 'onnx.ModelProto':
    """
    Convert a native tree model to ONNX.

    Args:
        native_model: Fitted xgboost sklearn estimator or lightgbm Booster
        library: "xgboost" or "lightgbm"
        num_features: Width of the encoded feature matrix
        target_opset: ONNX opset

    Raises:
        EngineNotSupportedError: If the conversion is not possible
        onnx.checker.ValidationError: If the converted graph is invalid
    """
    if not ONNX_AVAILABLE:
        raise EngineNotSupportedError(ENGINE_NAME, f"ONNX dependencies not available: {IMPORT_ERROR}")

    initial_type = [('features', FloatTensorType([None, num_features]))]

    try:
        if library == "xgboost":
            onnx_model = convert_xgboost(native_model, initial_types=initial_type,
                                         target_opset=target_opset)
        elif library == "lightgbm":
            onnx_model = convert_lightgbm(native_model, initial_types=initial_type,
                                          target_opset=target_opset, zipmap=False)
        else:
            raise EngineNotSupportedError(ENGINE_NAME, f"No ONNX converter for {library}")
    except EngineNotSupportedError:
        raise
    except (RuntimeError, NotImplementedError) as e:
        # Missing converters and unsupported objectives.
        logger.warning("onnx.conversion_failed", extra={"library": library, "error": str(e)})
        raise EngineNotSupportedError(ENGINE_NAME, f"ONNX conversion failed: {e}") from e

    onnx.checker.check_model(onnx_model)

    logger.debug("onnx.converted", extra={
        "library": library,
        "num_features": num_features,
        "opset_version": target_opset,
        "model_size_bytes": onnx_model.ByteSize()
    })

    return onnx_model


class OnnxInferenceEngine(AbstractInferenceEngine):
    """
    Runs a converted model with ONNX Runtime on the CPU provider.
    """

    name = ENGINE_NAME

    def __init__(self, model: AbstractModel, onnx_model: 'onnx.ModelProto', classification: bool):
        self.model = model
        self.classification = classification
        self.session = ort.InferenceSession(onnx_model.SerializeToString(),
                                            providers=["CPUExecutionProvider"])
        self.input_name = self.session.get_inputs()[0].name

    def predict_batch(self, examples: pd.DataFrame) -> np.ndarray:
        features = self.model.encode(examples)
        outputs = self.session.run(None, {self.input_name: features})

        if self.classification:
            # Outputs are (label, probabilities).
            probabilities = outputs[1]
            if isinstance(probabilities, list):
                probabilities = np.array([[row[key] for key in sorted(row)] for row in probabilities])
            return np.asarray(probabilities, dtype=np.float64)

        return np.asarray(outputs[0], dtype=np.float64).reshape(-1)

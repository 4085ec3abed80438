"""
Unit Tests for ONNX Conversion Error Handling
"""

from unittest.mock import Mock, patch

import pytest

from mlharness.learners.abstract import EngineNotSupportedError
from mlharness.learners.onnx_engine import convert_to_onnx


class TestConvertToOnnx:
    """Unsupported models are skipped, broken conversions are not."""

    def test_unknown_library_is_not_supported(self):
        with pytest.raises(EngineNotSupportedError, match="No ONNX converter"):
            convert_to_onnx(Mock(), "catboost", 3)

    @pytest.mark.parametrize("error", [RuntimeError("Unable to find a shape calculator"),
                                       NotImplementedError("objective")])
    def test_converter_rejection_is_not_supported(self, error):
        with patch("mlharness.learners.onnx_engine.convert_xgboost", side_effect=error):
            with pytest.raises(EngineNotSupportedError, match="ONNX conversion failed"):
                convert_to_onnx(Mock(), "xgboost", 3)

    def test_other_conversion_errors_propagate(self):
        with patch("mlharness.learners.onnx_engine.convert_lightgbm",
                   side_effect=ValueError("bad feature count")):
            with pytest.raises(ValueError, match="bad feature count"):
                convert_to_onnx(Mock(), "lightgbm", 3)

    def test_invalid_graph_propagates(self):
        with patch("mlharness.learners.onnx_engine.convert_xgboost", return_value=Mock()), \
                patch("mlharness.learners.onnx_engine.onnx.checker.check_model",
                      side_effect=ValueError("invalid graph")):
            with pytest.raises(ValueError, match="invalid graph"):
                convert_to_onnx(Mock(), "xgboost", 3)

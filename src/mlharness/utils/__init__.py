# /mlharness/src/mlharness/utils/__init__.py

"""
Harness Utilities

Supporting infrastructure for the harness: structured logging.
"""

from .logging import (
    HarnessLogger,
    StructuredFormatter,
    TextFormatter,
    get_harness_logger,
    setup_harness_logging,
    setup_logging_from_config,
    stage_logging
)

__all__ = [
    "HarnessLogger",
    "StructuredFormatter",
    "TextFormatter",
    "get_harness_logger",
    "setup_harness_logging",
    "setup_logging_from_config",
    "stage_logging"
]

# /mlharness/src/mlharness/utils/logging.py

"""
Harness Logging Infrastructure

Structured logging for the train-and-test harness with context tracking and
stage timing.

Key Features:
- Structured logging with JSON and text formatters
- Context-aware logging with pipeline and stage tracking
- Optional process metrics (memory, CPU) attached to every record
- Optional rotating file output

Every module logs through ``logging.getLogger(__name__)`` with dotted event
names ("stage.training.started") and an ``extra`` payload; this module only
decides how those records are rendered.
"""

import json
import logging
import logging.handlers
import os
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import psutil


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_RECORD_ATTRIBUTES = set(vars(logging.LogRecord(
    "", logging.INFO, "", 0, "", (), None))) | {"message", "asctime"}


def _record_extra(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_ATTRIBUTES and not key.startswith('_')}


class StructuredFormatter(logging.Formatter):
    """
    JSON-structured log formatter with consistent schema.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra
        self.hostname = os.uname().nodename if hasattr(os, 'uname') else 'unknown'

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': record.process,
            'hostname': self.hostname
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            extra = {}
            for key, value in _record_extra(record).items():
                try:
                    json.dumps(value)
                    extra[key] = value
                except (TypeError, ValueError):
                    extra[key] = str(value)

            if extra:
                log_entry['extra'] = extra

        return json.dumps(log_entry)


class TextFormatter(logging.Formatter):
    """
    Human-readable text formatter; extra fields are appended as key=value.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)

        if self.include_extra:
            extra_fields = [f"{key}={value}" for key, value in _record_extra(record).items()]
            if extra_fields:
                base_message += f" [{', '.join(extra_fields)}]"

        return base_message


class PerformanceLogFilter(logging.Filter):
    """
    Adds process memory and CPU usage to log records.
    """

    def __init__(self):
        super().__init__()
        self._process = psutil.Process()

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'memory_usage_mb'):
            record.memory_usage_mb = self._process.memory_info().rss / (1024 * 1024)
            record.cpu_percent = self._process.cpu_percent()
        return True


class HarnessLogger:
    """
    Logger wrapper carrying a persistent context (e.g. pipeline id, test name).
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

        self._context: Dict[str, Any] = {}
        self._context_lock = threading.RLock()

    def set_context(self, **kwargs) -> None:
        """Set persistent context for all log messages."""
        with self._context_lock:
            self._context.update(kwargs)

    @contextmanager
    def context(self, **kwargs):
        """Temporary context manager for log messages."""
        with self._context_lock:
            old_context = self._context.copy()
        try:
            self.set_context(**kwargs)
            yield self
        finally:
            with self._context_lock:
                self._context = old_context

    def _log_with_context(self, level: int, message: str,
                          extra: Optional[Dict[str, Any]] = None,
                          exc_info: bool = False) -> None:
        combined_extra = {}
        with self._context_lock:
            combined_extra.update(self._context)
        if extra:
            combined_extra.update(extra)

        self.logger.log(level, message, extra=combined_extra or None, exc_info=exc_info)

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log_with_context(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[Dict[str, Any]] = None,
              exc_info: bool = False) -> None:
        self._log_with_context(logging.ERROR, message, extra, exc_info=exc_info)


@contextmanager
def stage_logging(logger: HarnessLogger, stage_name: str, **context):
    """Context manager for pipeline stage logging."""
    with logger.context(stage=stage_name, **context):
        logger.info(f"stage.{stage_name}.started")

        start_time = time.perf_counter()
        try:
            yield logger
        except Exception as e:
            logger.error(f"stage.{stage_name}.failed", extra={
                'error': str(e),
                'error_type': type(e).__name__,
                'duration': time.perf_counter() - start_time
            })
            raise
        else:
            logger.info(f"stage.{stage_name}.completed", extra={
                'duration': time.perf_counter() - start_time
            })


def setup_harness_logging(level: str = "INFO",
                          log_format: str = "text",
                          log_dir: str = "logs/harness",
                          enable_file: bool = False,
                          include_process_info: bool = False) -> Dict[str, Any]:
    """
    Configure the ``mlharness`` logger hierarchy.

    Calling it again replaces the handlers installed by a previous call.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format (json, text)
        log_dir: Directory for log files
        enable_file: Also write JSON records to a rotating file
        include_process_info: Attach process memory/CPU to each record

    Returns:
        Logging configuration dictionary
    """
    config = {
        'log_level': level.upper(),
        'log_format': log_format.lower(),
        'log_dir': log_dir,
        'enable_file': enable_file,
        'include_process_info': include_process_info
    }

    root_logger = logging.getLogger('mlharness')
    root_logger.setLevel(getattr(logging, config['log_level']))

    for handler in list(root_logger.handlers):
        if getattr(handler, '_mlharness_handler', False):
            root_logger.removeHandler(handler)
            handler.close()
    for log_filter in list(root_logger.filters):
        if isinstance(log_filter, PerformanceLogFilter):
            root_logger.removeFilter(log_filter)

    if include_process_info:
        root_logger.addFilter(PerformanceLogFilter())

    console_handler = logging.StreamHandler(sys.stderr)
    if config['log_format'] == 'json':
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(TextFormatter())
    console_handler._mlharness_handler = True
    root_logger.addHandler(console_handler)

    if enable_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "harness.log",
            maxBytes=100 * 1024 * 1024,
            backupCount=10
        )
        file_handler.setFormatter(StructuredFormatter())
        file_handler._mlharness_handler = True
        root_logger.addHandler(file_handler)

    root_logger.debug("harness_logging.initialized", extra={
        'log_level': config['log_level'],
        'log_format': config['log_format']
    })

    return config


def setup_logging_from_config(monitoring) -> Dict[str, Any]:
    """Configure logging from a ``MonitoringConfig``."""
    return setup_harness_logging(
        level=monitoring.log_level,
        log_format=monitoring.log_format,
        log_dir=monitoring.log_dir,
        enable_file=monitoring.enable_file_logging,
        include_process_info=monitoring.include_process_info
    )


def get_harness_logger(name: str) -> HarnessLogger:
    """Get a HarnessLogger for a component."""
    return HarnessLogger(name)

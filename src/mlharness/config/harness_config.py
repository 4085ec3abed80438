# /mlharness/src/mlharness/config/harness_config.py

"""
Harness Configuration Management

Hierarchical configuration for the train-and-test harness with validation and
environment-aware overrides.

Key Features:
- YAML-based configuration with environment-specific overrides
- Frozen configuration objects; a loaded configuration is read-only for the
  duration of a test run
- Environment variables (MLHARNESS_*) switch dump mode, gold checks and
  logging without touching code
- Validation returns every error at once instead of failing on the first one

Sections:
- DatasetConfig: dataset source, partitioning, sharding and storage format
- TrainingSectionConfig: seeding, deadlines and model check toggles
- VerificationConfig: batch size, tolerance and golden model location
- MetricCheckConfig: metric dump destination and gold-check flag
- MonitoringConfig: logging
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatasetConfig:
    """
    Configuration for dataset preparation.
    """
    # Dataset source
    dataset_root: str = "test_data/dataset"
    dataset_filename: str = ""  # Empty: generate a synthetic dataset
    dataset_test_filename: str = ""  # Empty: split dataset_filename
    guide_filename: str = ""
    use_synthetic_dataset: bool = False

    # Partitioning
    split_train_ratio: float = 0.5
    dataset_sampling: float = 1.0
    inject_random_noise: bool = False
    noise_seed: int = 1234

    # Storage of temporary datasets
    preferred_format: str = "parquet"
    num_shards: int = 3
    pass_training_dataset_as_path: bool = False
    pass_validation_dataset: bool = False

    def validate(self) -> List[str]:
        """Validate dataset configuration parameters."""
        errors = []

        if not 0 < self.split_train_ratio < 1:
            errors.append(f"Split train ratio must be between 0 and 1: {self.split_train_ratio}")

        if not 0 < self.dataset_sampling <= 1:
            errors.append(f"Dataset sampling must be in (0, 1]: {self.dataset_sampling}")

        if self.num_shards <= 0:
            errors.append(f"Number of shards must be positive: {self.num_shards}")

        if not self.preferred_format:
            errors.append("Preferred format cannot be empty")

        if self.dataset_test_filename and not self.dataset_filename:
            errors.append("A test dataset requires a training dataset filename")

        return errors

    def effective_dataset_root(self) -> Path:
        """Dataset root resolved against the working directory."""
        return Path(self.dataset_root).expanduser().resolve()


@dataclass(frozen=True)
class TrainingSectionConfig:
    """
    Configuration for the training stage and the post-training checks.
    """
    change_random_seed: bool = False
    interrupt_training_after_seconds: Optional[float] = None
    check_model: bool = True
    test_model_serialization: bool = True
    show_full_model_structure: bool = False

    def validate(self) -> List[str]:
        """Validate training section parameters."""
        errors = []

        if (self.interrupt_training_after_seconds is not None and
                self.interrupt_training_after_seconds < 0):
            errors.append(
                f"Interrupt delay must be non-negative: {self.interrupt_training_after_seconds}")

        return errors


@dataclass(frozen=True)
class VerificationConfig:
    """
    Configuration for prediction equivalence and golden model checks.
    """
    batch_size: int = 20
    tolerance: float = 1e-5
    golden_root: str = "test_data/golden"

    def validate(self) -> List[str]:
        """Validate verification parameters."""
        errors = []

        if self.batch_size <= 0:
            errors.append(f"Batch size must be positive: {self.batch_size}")

        if not 0 <= self.tolerance < 1:
            errors.append(f"Tolerance must be in [0, 1): {self.tolerance}")

        return errors


@dataclass(frozen=True)
class MetricCheckConfig:
    """
    Configuration of the metric assertions.

    When ``dump_dir`` is set, metric assertions are recorded to
    ``<dump_dir>/<test_name>.csv`` and never fail. The directory must exist.
    """
    dump_dir: Optional[str] = None
    check_gold: bool = False

    @property
    def dump_mode(self) -> bool:
        return bool(self.dump_dir)

    def validate(self) -> List[str]:
        """Validate metric check parameters."""
        errors = []

        if self.dump_dir and not Path(self.dump_dir).is_dir():
            errors.append(f"Metric dump directory does not exist: {self.dump_dir}")

        return errors


@dataclass(frozen=True)
class MonitoringConfig:
    """
    Configuration for logging.
    """
    log_level: str = "INFO"
    log_format: str = "text"  # json, text
    log_dir: str = "logs/harness"
    enable_file_logging: bool = False
    include_process_info: bool = False

    def validate(self) -> List[str]:
        """Validate monitoring configuration parameters."""
        errors = []

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(f"Invalid log level: {self.log_level}")

        valid_log_formats = ["json", "text"]
        if self.log_format.lower() not in valid_log_formats:
            errors.append(f"Invalid log format: {self.log_format}")

        return errors


@dataclass(frozen=True)
class HarnessConfig:
    """
    Master harness configuration combining all sections.
    """
    dataset: DatasetConfig = field(default_factory=DatasetConfig)
    training: TrainingSectionConfig = field(default_factory=TrainingSectionConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    metrics: MetricCheckConfig = field(default_factory=MetricCheckConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    environment: str = "development"

    def validate(self) -> List[str]:
        """Validate the complete harness configuration."""
        errors = []

        errors.extend(self.dataset.validate())
        errors.extend(self.training.validate())
        errors.extend(self.verification.validate())
        errors.extend(self.metrics.validate())
        errors.extend(self.monitoring.validate())

        # Cross-section validation
        if self.dataset.pass_validation_dataset and self.dataset.dataset_test_filename:
            errors.append("A validation dataset cannot be carved out of an explicit test dataset")

        return errors


def load_harness_config(config_path: Optional[str] = None,
                        environment: str = "development") -> HarnessConfig:
    """
    Load harness configuration with environment-specific overrides.

    Args:
        config_path: Path to a YAML configuration file
        environment: Environment name (development, ci)

    Returns:
        Validated HarnessConfig object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    logger = logging.getLogger(__name__)

    try:
        base_config = _load_base_config(config_path)
        env_config = _apply_environment_overrides(base_config, environment)
        config = _create_config_object(env_config, environment)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as e:
        logger.error("harness_config.load_failed", extra={
            "environment": environment,
            "config_path": config_path,
            "error": str(e)
        })
        raise ConfigurationError(f"Failed to load harness configuration: {e}") from e

    errors = config.validate()
    if errors:
        logger.error("harness_config.validation_failed", extra={
            "error_count": len(errors),
            "errors": errors
        })
        raise ConfigurationError(f"Configuration validation failed: {errors}")

    logger.info("harness_config.loaded", extra={
        "environment": environment,
        "config_path": config_path,
        "dump_mode": config.metrics.dump_mode,
        "check_gold": config.metrics.check_gold
    })

    return config


def _load_base_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load base configuration from YAML file."""
    if config_path is None:
        config_path = os.getenv("MLHARNESS_CONFIG")

    if config_path is None:
        for path in ["mlharness.yaml", "config/mlharness.yaml"]:
            if Path(path).exists():
                config_path = path
                break
        else:
            return {}

    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML configuration: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    return config


def _apply_environment_overrides(base_config: Dict[str, Any],
                                 environment: str) -> Dict[str, Any]:
    """Apply environment-specific configuration overrides."""
    env_defaults = {
        "development": {},
        "ci": {
            "monitoring": {
                "log_level": "WARNING",
                "log_format": "json"
            }
        }
    }

    env_config = env_defaults.get(environment.lower(), {})
    config = _deep_merge_dicts(env_config, base_config)

    return _apply_environment_variables(config)


def _deep_merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value

    return result


# Environment variable -> (section, key, type)
_ENV_MAPPING = {
    "MLHARNESS_METRIC_DUMP_DIR": ("metrics", "dump_dir", str),
    "MLHARNESS_CHECK_GOLD": ("metrics", "check_gold", bool),
    "MLHARNESS_LOG_LEVEL": ("monitoring", "log_level", str),
    "MLHARNESS_DATASET_ROOT": ("dataset", "dataset_root", str),
    "MLHARNESS_GOLDEN_ROOT": ("verification", "golden_root", str),
    "MLHARNESS_CHANGE_RANDOM_SEED": ("training", "change_random_seed", bool),
}


def _apply_environment_variables(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides."""
    config = dict(config)

    for env_var, (section, key, value_type) in _ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is None:
            continue

        if value_type is bool:
            value = value.lower() in ("true", "1", "yes", "on")
        elif value == "":
            value = None

        section_config = dict(config.get(section) or {})
        section_config[key] = value
        config[section] = section_config

    return config


def _create_config_object(config_dict: Dict[str, Any], environment: str) -> HarnessConfig:
    """Create HarnessConfig object from dictionary."""
    unknown = set(config_dict) - {"dataset", "training", "verification", "metrics", "monitoring"}
    if unknown:
        raise ConfigurationError(f"Unknown configuration sections: {sorted(unknown)}")

    return HarnessConfig(
        dataset=DatasetConfig(**config_dict.get("dataset", {})),
        training=TrainingSectionConfig(**config_dict.get("training", {})),
        verification=VerificationConfig(**config_dict.get("verification", {})),
        metrics=MetricCheckConfig(**config_dict.get("metrics", {})),
        monitoring=MonitoringConfig(**config_dict.get("monitoring", {})),
        environment=environment
    )


# Custom exceptions
class ConfigurationError(Exception):
    """Fatal configuration error; the pipeline aborts without partial results."""
    pass

"""
Configuration management for Ansybl.

This module handles configuration parameters, environment variables,
validation and default values for the validator, builder, parser and
logging/metrics setup.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

SIGNATURE_LEVELS = ("all", "feed-only", "items-only")
CONTENT_FILTERS = ("all", "text", "html", "markdown")


@dataclass
class ValidatorConfig:
    """Validator configuration."""
    schema_path: Optional[str] = None
    include_warnings: bool = True
    batch_max_workers: int = 4

    def __post_init__(self):
        if self.batch_max_workers < 1:
            raise ValueError("batch_max_workers must be positive")
        if self.schema_path and not Path(self.schema_path).exists():
            raise ValueError(f"schema_path does not exist: {self.schema_path}")


@dataclass
class BuilderConfig:
    """Document builder configuration."""
    default_version: str = "https://ansybl.org/version/1.0"
    summary_max_length: int = 200

    def __post_init__(self):
        if not self.default_version:
            raise ValueError("default_version cannot be empty")
        if self.summary_max_length < 10:
            raise ValueError("summary_max_length must be at least 10")


@dataclass
class ParserConfig:
    """Default parse options."""
    verify_signatures: bool = False
    preserve_extensions: bool = True
    strict_mode: bool = False
    require_signatures: bool = False
    signature_level: str = "all"
    content_filter: str = "all"

    def __post_init__(self):
        if self.signature_level not in SIGNATURE_LEVELS:
            raise ValueError(f"signature_level must be one of {SIGNATURE_LEVELS}")
        if self.content_filter not in CONTENT_FILTERS:
            raise ValueError(f"content_filter must be one of {CONTENT_FILTERS}")


@dataclass
class SignatureConfig:
    """Signature service configuration."""
    allow_timestamp_skew_seconds: float = 300.0
    require_timestamp: bool = False

    def __post_init__(self):
        if self.allow_timestamp_skew_seconds < 0:
            raise ValueError("allow_timestamp_skew_seconds cannot be negative")


@dataclass
class MonitoringConfig:
    """Logging configuration."""
    log_level: str = "WARNING"
    log_format: str = "json"
    log_file: Optional[str] = None

    def __post_init__(self):
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(f"log_level must be one of {valid_log_levels}")
        if self.log_format.lower() not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")


@dataclass
class AnsyblConfig:
    """Top-level configuration."""
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)
    builder: BuilderConfig = field(default_factory=BuilderConfig)
    parser: ParserConfig = field(default_factory=ParserConfig)
    signature: SignatureConfig = field(default_factory=SignatureConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


SECTIONS = {
    "validator": ValidatorConfig,
    "builder": BuilderConfig,
    "parser": ParserConfig,
    "signature": SignatureConfig,
    "monitoring": MonitoringConfig,
}


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# (section, key, environment variable, converter)
ENVIRONMENT_OVERRIDES = (
    ("validator", "schema_path", "ANSYBL_SCHEMA_PATH", str),
    ("validator", "include_warnings", "ANSYBL_INCLUDE_WARNINGS", _as_bool),
    ("validator", "batch_max_workers", "ANSYBL_BATCH_MAX_WORKERS", int),
    ("builder", "default_version", "ANSYBL_DEFAULT_VERSION", str),
    ("builder", "summary_max_length", "ANSYBL_SUMMARY_MAX_LENGTH", int),
    ("parser", "verify_signatures", "ANSYBL_VERIFY_SIGNATURES", _as_bool),
    ("parser", "strict_mode", "ANSYBL_STRICT_MODE", _as_bool),
    ("parser", "require_signatures", "ANSYBL_REQUIRE_SIGNATURES", _as_bool),
    ("parser", "signature_level", "ANSYBL_SIGNATURE_LEVEL", str),
    ("signature", "allow_timestamp_skew_seconds", "ANSYBL_TIMESTAMP_SKEW", float),
    ("monitoring", "log_level", "ANSYBL_LOG_LEVEL", str),
    ("monitoring", "log_format", "ANSYBL_LOG_FORMAT", str),
    ("monitoring", "log_file", "ANSYBL_LOG_FILE", str),
)


class ConfigManager:
    """Loads AnsyblConfig from an optional YAML file and ANSYBL_* variables."""

    def __init__(self, config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        self.config_file = config_file
        self.environ = os.environ if environ is None else environ
        self.config: Optional[AnsyblConfig] = None

    def load_config(self) -> AnsyblConfig:
        """Load configuration; environment variables override the file."""
        config_data: Dict[str, Any] = {}

        if self.config_file and Path(self.config_file).exists():
            with open(self.config_file, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}

        config_data = self._merge_configs(config_data, self._load_from_environment())

        unknown = set(config_data) - set(SECTIONS)
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

        self.config = AnsyblConfig(**{
            name: section(**(config_data.get(name) or {}))
            for name, section in SECTIONS.items()
        })
        return self.config

    def _load_from_environment(self) -> Dict[str, Dict[str, Any]]:
        """Collect overrides for the variables that are actually set."""
        env_config: Dict[str, Dict[str, Any]] = {}
        for section, key, variable, convert in ENVIRONMENT_OVERRIDES:
            raw = self.environ.get(variable)
            if raw is None or raw == "":
                continue
            env_config.setdefault(section, {})[key] = convert(raw)
        return env_config

    def _merge_configs(self, file_config: Dict, env_config: Dict) -> Dict:
        """Merge file configuration with environment configuration."""
        merged = file_config.copy()

        for key, value in env_config.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value

        return merged

    def get_config(self) -> AnsyblConfig:
        """Get the current configuration, loading if not already loaded."""
        if self.config is None:
            return self.load_config()
        return self.config

    def reload_config(self) -> AnsyblConfig:
        return self.load_config()

    def validate_config(self) -> bool:
        """Check that the configuration loads and passes section validation."""
        try:
            self.load_config()
            return True
        except (ValueError, TypeError, yaml.YAMLError) as e:
            logging.getLogger(__name__).error(f"Configuration validation failed: {e}")
            return False


# Global configuration instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the global configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(os.getenv("ANSYBL_CONFIG_PATH"))
    return _config_manager


def get_config() -> AnsyblConfig:
    """Get the current configuration."""
    return get_config_manager().get_config()


def reset_config_manager() -> None:
    """Forget the global configuration manager (used by tests)."""
    global _config_manager
    _config_manager = None

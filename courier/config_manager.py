#!/usr/bin/env python3
"""
Configuration Manager for Report Courier
Loads, validates, and manages YAML configuration

Every option the courier reads lives in one YAML file. Values may reference
environment variables, which keeps the collector token out of the file.
"""

import logging
import os
import signal
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

# Defaults applied when a key is absent from the config file
DEFAULT_PATTERNS = ".xml"
DEFAULT_SEPARATOR = ","
DEFAULT_SCAN_INTERVAL_SECONDS = 60
DEFAULT_STABLE_CHECK_SECONDS = 15
DEFAULT_CHECK_INTERVAL_SECONDS = 180
DEFAULT_MIN_SIZE_BYTES = 50
DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_READ_TIMEOUT_SECONDS = 300
DEFAULT_MAX_ATTEMPTS = 6
DEFAULT_BACKOFF_UNIT_SECONDS = 60  # one backoff step is "2^n minutes"
DEFAULT_STATUS_HOST = "0.0.0.0"
DEFAULT_STATUS_PORT = 9090
DEFAULT_METRICS_NAMESPACE = "Courier/Upload"
DEFAULT_METRICS_REGION = "us-east-1"
DEFAULT_PUBLISH_INTERVAL_SECONDS = 10


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is raised when the configuration file is malformed,
    missing required fields, or contains invalid values.
    """

    pass


class ConfigManager:
    """
    Manages courier configuration from YAML file.

    Features:
    - Load and validate YAML config
    - Environment variable expansion in string values
    - Re-validation on SIGHUP signal
    - Dot-notation access to nested values

    Example:
        >>> config = ConfigManager('/etc/report-courier/config.yaml')
        >>> url = config.get('upload.url')
        >>> config.reload_config()  # Manual re-validation

    Attributes:
        config_path (Path): Path to the configuration file
        config (dict): Loaded configuration dictionary
    """

    def __init__(self, config_path: str):
        """
        Initialize config manager and load configuration.

        Args:
            config_path: Path to YAML config file

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML syntax is invalid
            ConfigValidationError: If validation fails
        """
        self.config_path = Path(config_path)
        self.config = {}
        signal.signal(signal.SIGHUP, self._handle_reload_signal)
        self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load and validate configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, "r") as f:
            loaded = yaml.safe_load(f)

        if loaded is None:
            raise ConfigValidationError("Config file is empty or contains only whitespace")

        if not isinstance(loaded, dict):
            raise ConfigValidationError("Config file must contain a mapping at top level")

        loaded = self._expand_env_vars(loaded)

        # Only replace the live config once the new one validates
        self.validate_config(loaded)
        self.config = loaded
        logger.info(f"Loaded config from {self.config_path}")
        return self.config

    def reload_config(self) -> Dict[str, Any]:
        """
        Re-validate configuration from disk (SIGHUP handler).

        NOTE: Workers capture their processing context at spawn time, so a
        reload never changes in-flight work. Changes require a restart.
        """
        logger.info("Reloading configuration...")

        try:
            old_config = self.config.copy()
            new_config = self.load_config()

            changed = [
                section
                for section in ("watch", "processing", "upload", "post_processing", "status")
                if old_config.get(section) != new_config.get(section)
            ]

            if changed:
                logger.warning(f"Config sections changed: {', '.join(changed)}")
                logger.warning("These changes will NOT take effect until service restart!")

            logger.info("Config validation successful (changes require restart)")
            return new_config

        except Exception as e:
            logger.error(f"Failed to reload config: {e}")
            logger.info("Keeping existing configuration")
            return self.config

    def _expand_env_vars(self, config: Any) -> Any:
        """
        Recursively expand environment variables in configuration values.

        Supports ${VAR_NAME}, $VAR_NAME and ~ expansion.

        Examples:
            "${COURIER_TOKEN}" -> "s3cr3t" (if COURIER_TOKEN=s3cr3t)
            "~/drop" -> "/home/ABC/drop"
        """
        if isinstance(config, dict):
            return {key: self._expand_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._expand_env_vars(item) for item in config]
        elif isinstance(config, str):
            expanded = os.path.expanduser(config)
            expanded = os.path.expandvars(expanded)
            return expanded
        else:
            return config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate configuration schema and values."""
        for key in ("watch", "upload"):
            if key not in config:
                raise ConfigValidationError(f"Missing required key: {key}")

        self._validate_watch_config(config["watch"])
        self._validate_upload_config(config["upload"])

        if "processing" in config:
            self._validate_processing_config(config["processing"])

        if "post_processing" in config:
            self._validate_post_processing_config(config["post_processing"])

        if "status" in config:
            self._validate_status_config(config["status"])

        if "monitoring" in config:
            self._validate_monitoring_config(config["monitoring"])

        if "verbose" in config and not isinstance(config["verbose"], bool):
            raise ConfigValidationError("verbose must be boolean")

        logger.info("Configuration validated successfully")
        return True

    def _validate_watch_config(self, watch_config: Dict[str, Any]) -> None:
        """Validate watch configuration section."""
        if not isinstance(watch_config, dict):
            raise ConfigValidationError("watch must be a mapping")

        directory = watch_config.get("directory")
        if not isinstance(directory, str) or not directory:
            raise ConfigValidationError("watch.directory must be a non-empty string")

        if "output_directory" in watch_config:
            out = watch_config["output_directory"]
            if not isinstance(out, str) or not out:
                raise ConfigValidationError("watch.output_directory must be a non-empty string")

        if "patterns" in watch_config:
            patterns = watch_config["patterns"]
            if not isinstance(patterns, str) or not patterns.strip():
                raise ConfigValidationError("watch.patterns must be a non-empty string")

        if "separator" in watch_config and not isinstance(watch_config["separator"], str):
            raise ConfigValidationError("watch.separator must be string")

        self._require_positive_number(watch_config, "scan_interval_seconds", "watch")

        if "use_filesystem_events" in watch_config:
            if not isinstance(watch_config["use_filesystem_events"], bool):
                raise ConfigValidationError("watch.use_filesystem_events must be boolean")

    def _validate_processing_config(self, processing_config: Dict[str, Any]) -> None:
        """Validate processing configuration section."""
        if not isinstance(processing_config, dict):
            raise ConfigValidationError("processing must be a mapping")

        self._require_positive_number(processing_config, "stable_check_seconds", "processing")
        self._require_positive_number(processing_config, "check_interval_seconds", "processing")

        if "min_size_bytes" in processing_config:
            min_size = processing_config["min_size_bytes"]
            if not self._is_int(min_size) or min_size < 0:
                raise ConfigValidationError("processing.min_size_bytes must be an integer >= 0")

        for limit in ("max_stable_checks", "max_validation_attempts"):
            value = processing_config.get(limit)
            if value is not None and (not self._is_int(value) or value <= 0):
                raise ConfigValidationError(
                    f"processing.{limit} must be null or a positive integer, got: {value}"
                )

    def _validate_upload_config(self, upload_config: Dict[str, Any]) -> None:
        """Validate upload configuration section."""
        if not isinstance(upload_config, dict):
            raise ConfigValidationError("upload must be a mapping")

        url = upload_config.get("url")
        if not isinstance(url, str) or not url:
            raise ConfigValidationError("Missing upload.url")

        if not url.startswith(("http://", "https://")):
            raise ConfigValidationError(f"upload.url must be an http(s) URL, got: {url}")

        if "token" in upload_config and not isinstance(upload_config["token"], str):
            raise ConfigValidationError("upload.token must be string")

        self._require_positive_number(upload_config, "timeout_seconds", "upload")
        self._require_positive_number(upload_config, "read_timeout_seconds", "upload")
        self._require_positive_number(upload_config, "backoff_unit_seconds", "upload")

        if "max_attempts" in upload_config:
            attempts = upload_config["max_attempts"]
            if not self._is_int(attempts) or attempts < 1:
                raise ConfigValidationError("upload.max_attempts must be an integer >= 1")

    def _validate_post_processing_config(self, post_config: Dict[str, Any]) -> None:
        """Validate archive/clear policy section."""
        if not isinstance(post_config, dict):
            raise ConfigValidationError("post_processing must be a mapping")

        for flag in ("archive", "clear"):
            if flag in post_config and not isinstance(post_config[flag], bool):
                raise ConfigValidationError(f"post_processing.{flag} must be boolean")

    def _validate_status_config(self, status_config: Dict[str, Any]) -> None:
        """Validate status endpoint section."""
        if not isinstance(status_config, dict):
            raise ConfigValidationError("status must be a mapping")

        if "enabled" in status_config and not isinstance(status_config["enabled"], bool):
            raise ConfigValidationError("status.enabled must be boolean")

        if "host" in status_config and not isinstance(status_config["host"], str):
            raise ConfigValidationError("status.host must be string")

        if "port" in status_config:
            port = status_config["port"]
            if not self._is_int(port) or not 1 <= port <= 65535:
                raise ConfigValidationError(f"status.port must be between 1 and 65535, got: {port}")

    def _validate_monitoring_config(self, monitoring_config: Dict[str, Any]) -> None:
        """Validate monitoring configuration section."""
        if not isinstance(monitoring_config, dict):
            raise ConfigValidationError("monitoring must be a mapping")

        if "cloudwatch_enabled" in monitoring_config:
            if not isinstance(monitoring_config["cloudwatch_enabled"], bool):
                raise ConfigValidationError("monitoring.cloudwatch_enabled must be boolean")

        self._require_positive_number(monitoring_config, "publish_interval_seconds", "monitoring")

    def _require_positive_number(self, section: Dict[str, Any], key: str, prefix: str) -> None:
        """Raise if section[key] is present and not a positive number."""
        if key not in section:
            return

        value = section[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigValidationError(f"{prefix}.{key} must be a positive number")

    @staticmethod
    def _is_int(value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)

    def _handle_reload_signal(self, signum, frame):
        """Signal handler for SIGHUP."""
        self.reload_config()

    def get(self, key: str, default=None) -> Any:
        """
        Get configuration value by dot-separated key path.

        Args:
            key: Dot-separated key path (e.g., 'upload.url')
            default: Default value if key not found

        Returns:
            Configuration value or default if not found

        Examples:
            >>> config.get('watch.directory')  # '/var/spool/reports'
            >>> config.get('upload.max_attempts', 6)  # 6
            >>> config.get('missing.key', 'default')  # 'default'
        """
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

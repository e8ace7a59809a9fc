"""
Configuration loader module for partner synchronization.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Type and range validation of known settings
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from partner_sync.utils.paths import CONFIG_DIR_ENV_VAR, DEFAULT_CONFIG_DIR

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


# Known configuration keys and their expected types
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # PRM options
    "prm_base_url": str,
    "prm_tenant_id": (str, int),
    "prm_api_key_env": str,
    "prm_page_size": int,
    "prm_timeout": (int, float),
    # LMS options
    "lms_base_url": str,
    "lms_api_key_env": str,
    "lms_timeout": (int, float),
    "lms_batch_size": int,
    "shared_group_name": str,
    # Retry options
    "api_max_retries": int,
    "api_initial_retry_delay": (int, float),
    "api_max_retry_delay": (int, float),
    # Sync options
    "enrichment_batch_size": int,
    "db_path": str,
    # Logging options
    "verbose": bool,
    "log_dir": str,
    "log_retention_count": int,
}

# Settings that must be >= 1
POSITIVE_INT_KEYS = (
    "prm_page_size",
    "lms_batch_size",
    "api_max_retries",
    "enrichment_batch_size",
)

# Settings that must be > 0
POSITIVE_NUMBER_KEYS = (
    "prm_timeout",
    "lms_timeout",
    "api_initial_retry_delay",
    "api_max_retry_delay",
)


class ConfigLoader:
    """
    YAML configuration file loader.

    Handles loading and validation of the config.yaml file for the
    partner-sync application.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.partner-sync/ or $PARTNER_SYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        if config_dir is not None:
            self.config_dir = Path(config_dir)
        else:
            env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
            self.config_dir = Path(env_dir) if env_dir else DEFAULT_CONFIG_DIR

        self.config_file = config_file

    def _get_config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Args:
            path: Path to the configuration file

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)

            if config is None:
                logger.debug(f"Configuration file is empty: {path}")
                return {}

            if not isinstance(config, dict):
                raise ConfigError(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(config).__name__}"
                )

            logger.debug(f"Loaded configuration from {path}")
            return config

        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Unknown keys are ignored.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            if key not in VALID_KEYS:
                continue
            expected_type = VALID_KEYS[key]
            # bool is an int subclass; reject it for numeric settings
            if isinstance(value, bool) and expected_type is not bool:
                raise ConfigError(
                    f"Invalid type for '{key}': expected {_type_name(expected_type)}, "
                    f"got bool"
                )
            if not isinstance(value, expected_type):
                raise ConfigError(
                    f"Invalid type for '{key}': expected {_type_name(expected_type)}, "
                    f"got {type(value).__name__}"
                )

        for key in POSITIVE_INT_KEYS:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        for key in POSITIVE_NUMBER_KEYS:
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

        if "log_retention_count" in config and config["log_retention_count"] < 0:
            raise ConfigError(
                f"log_retention_count must be >= 0, got {config['log_retention_count']}"
            )

        for key in ("prm_base_url", "lms_base_url"):
            if key in config and not config[key].startswith(("http://", "https://")):
                raise ConfigError(f"{key} must be an http(s) URL, got {config[key]!r}")

        if "shared_group_name" in config and not config["shared_group_name"].strip():
            raise ConfigError("shared_group_name cannot be empty")

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Returns:
            Validated configuration dictionary

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config


def _type_name(expected_type: type[Any] | tuple[type[Any], ...]) -> str:
    if isinstance(expected_type, tuple):
        return " or ".join(t.__name__ for t in expected_type)
    return expected_type.__name__

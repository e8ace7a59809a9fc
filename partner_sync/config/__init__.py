"""
partner_sync.config - Configuration management module

Contains settings loading and validation, and the eligibility filter rules.
"""

from partner_sync.config.filter_config import (
    AccountFilterConfig,
    ContactFilterConfig,
    FilterConfig,
    FilterConfigError,
    load_filter_config,
)
from partner_sync.config.loader import ConfigError, ConfigLoader

__all__ = [
    "AccountFilterConfig",
    "ConfigError",
    "ConfigLoader",
    "ContactFilterConfig",
    "FilterConfig",
    "FilterConfigError",
    "load_filter_config",
]

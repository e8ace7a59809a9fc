"""
Eligibility filter configuration.

Provides immutable configuration values for the account and contact
eligibility pipelines. The configuration is passed explicitly into filter
construction, so tests and operators can substitute rule sets freely.

Configuration file format (filters.json):

    {
        "version": "1.0",
        "accounts": {
            "valid_tiers": ["Premier", "Premier Plus", "Certified"],
            "exclude_statuses": ["Inactive"],
            "exclude_names": ["nintex"]
        },
        "contacts": {
            "exclude_statuses": ["Inactive"],
            "exclude_domains": ["bill.com", "nintex.com"],
            "exclude_patterns": ["demo", "test", "support"]
        }
    }

Notes:
    - All comparisons are case-insensitive
    - A missing section or key keeps the built-in default list
    - An explicit empty list disables that rule
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from partner_sync.utils import resolve_config_dir

logger = logging.getLogger(__name__)

# Current configuration schema version
CONFIG_VERSION = "1.0"

# Default filter config file name
DEFAULT_FILTER_CONFIG_FILE = "filters.json"

DEFAULT_VALID_TIERS = (
    "Premier",
    "Premier Plus",
    "Certified",
    "Registered",
    "Aggregator",
)
DEFAULT_ACCOUNT_EXCLUDE_STATUSES = ("Inactive",)
DEFAULT_EXCLUDE_NAMES = ("nintex",)

DEFAULT_CONTACT_EXCLUDE_STATUSES = ("Inactive",)
DEFAULT_EXCLUDE_DOMAINS = ("bill.com", "nintex.com", "safalo.com", "crestan.com")
DEFAULT_EXCLUDE_PATTERNS = (
    "demo",
    "sales",
    "support",
    "accounts",
    "test",
    "renewals",
    "finance",
    "payable",
)


class FilterConfigError(Exception):
    """Raised when filter configuration loading or validation fails."""

    pass


def _string_tuple(
    data: dict[str, Any], key: str, default: tuple[str, ...], section: str
) -> tuple[str, ...]:
    """Read a list of strings from a section, falling back to a default."""
    if key not in data:
        return default

    value = data[key]
    if not isinstance(value, list):
        raise FilterConfigError(
            f"{section}.{key} must be a list, got {type(value).__name__}"
        )

    items = []
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise FilterConfigError(
                f"{section}.{key}[{index}] must be a string, "
                f"got {type(item).__name__}"
            )
        if not item.strip():
            raise FilterConfigError(f"{section}.{key}[{index}] cannot be empty")
        items.append(item.strip())
    return tuple(items)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise FilterConfigError(
            f"{name} configuration must be a dictionary, "
            f"got {type(section).__name__}"
        )
    return section


@dataclass(frozen=True)
class AccountFilterConfig:
    """
    Rule lists for the account eligibility pipeline.

    Attributes:
        valid_tiers: Partner tiers that are synchronized
        exclude_statuses: Account statuses that mark an account inactive
        exclude_names: Substrings that exclude an account by name
    """

    valid_tiers: tuple[str, ...] = DEFAULT_VALID_TIERS
    exclude_statuses: tuple[str, ...] = DEFAULT_ACCOUNT_EXCLUDE_STATUSES
    exclude_names: tuple[str, ...] = DEFAULT_EXCLUDE_NAMES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountFilterConfig:
        return cls(
            valid_tiers=_string_tuple(
                data, "valid_tiers", DEFAULT_VALID_TIERS, "accounts"
            ),
            exclude_statuses=_string_tuple(
                data, "exclude_statuses", DEFAULT_ACCOUNT_EXCLUDE_STATUSES, "accounts"
            ),
            exclude_names=_string_tuple(
                data, "exclude_names", DEFAULT_EXCLUDE_NAMES, "accounts"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid_tiers": list(self.valid_tiers),
            "exclude_statuses": list(self.exclude_statuses),
            "exclude_names": list(self.exclude_names),
        }


@dataclass(frozen=True)
class ContactFilterConfig:
    """
    Rule lists for the contact eligibility pipeline.

    Attributes:
        exclude_statuses: Contact statuses that mark a contact inactive
        exclude_domains: Email domains that are never synchronized
        exclude_patterns: Substrings of the email local part that exclude
                          shared or role mailboxes
    """

    exclude_statuses: tuple[str, ...] = DEFAULT_CONTACT_EXCLUDE_STATUSES
    exclude_domains: tuple[str, ...] = DEFAULT_EXCLUDE_DOMAINS
    exclude_patterns: tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContactFilterConfig:
        return cls(
            exclude_statuses=_string_tuple(
                data, "exclude_statuses", DEFAULT_CONTACT_EXCLUDE_STATUSES, "contacts"
            ),
            exclude_domains=_string_tuple(
                data, "exclude_domains", DEFAULT_EXCLUDE_DOMAINS, "contacts"
            ),
            exclude_patterns=_string_tuple(
                data, "exclude_patterns", DEFAULT_EXCLUDE_PATTERNS, "contacts"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "exclude_statuses": list(self.exclude_statuses),
            "exclude_domains": list(self.exclude_domains),
            "exclude_patterns": list(self.exclude_patterns),
        }


@dataclass(frozen=True)
class FilterConfig:
    """
    Complete eligibility configuration for one sync run.

    Attributes:
        version: Configuration schema version (currently "1.0")
        accounts: Account pipeline rules
        contacts: Contact pipeline rules

    Usage:
        # Load from file
        config = FilterConfig.load_from_file("~/.partner-sync/filters.json")

        # Create programmatically
        config = FilterConfig(
            accounts=AccountFilterConfig(valid_tiers=("Premier",)),
        )
    """

    version: str = CONFIG_VERSION
    accounts: AccountFilterConfig = field(default_factory=AccountFilterConfig)
    contacts: ContactFilterConfig = field(default_factory=ContactFilterConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FilterConfig:
        """
        Create FilterConfig from a dictionary.

        Args:
            data: Dictionary containing filter configuration

        Returns:
            FilterConfig instance

        Raises:
            FilterConfigError: If configuration structure is invalid
        """
        if not isinstance(data, dict):
            raise FilterConfigError(
                f"Configuration must be a dictionary, got {type(data).__name__}"
            )

        version = data.get("version", CONFIG_VERSION)
        if not isinstance(version, str):
            raise FilterConfigError(
                f"version must be a string, got {type(version).__name__}"
            )

        return cls(
            version=version,
            accounts=AccountFilterConfig.from_dict(_section(data, "accounts")),
            contacts=ContactFilterConfig.from_dict(_section(data, "contacts")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "version": self.version,
            "accounts": self.accounts.to_dict(),
            "contacts": self.contacts.to_dict(),
        }

    @classmethod
    def load_from_file(cls, path: Path | str) -> FilterConfig:
        """
        Load filter configuration from a JSON file.

        Returns the default configuration if the file doesn't exist.

        Raises:
            FilterConfigError: If file exists but cannot be parsed or is invalid
        """
        path = Path(path).expanduser().resolve()

        if not path.exists():
            logger.debug(f"Filter config file not found: {path}, using defaults")
            return cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)

            logger.debug(f"Loaded filter config from {path}")
            return cls.from_dict(data)

        except json.JSONDecodeError as e:
            raise FilterConfigError(
                f"Failed to parse filter config JSON at {path}: {e}"
            ) from e
        except OSError as e:
            raise FilterConfigError(f"Failed to read filter config file: {e}") from e

    def save_to_file(self, path: Path | str) -> None:
        """
        Save filter configuration to a JSON file.

        Raises:
            FilterConfigError: If file cannot be written
        """
        path = Path(path).expanduser().resolve()

        try:
            path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)

            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.write("\n")

            path.chmod(0o600)
            logger.info(f"Saved filter config to {path}")

        except OSError as e:
            raise FilterConfigError(f"Failed to write filter config file: {e}") from e


def load_filter_config(config_dir: Path | str | None = None) -> FilterConfig:
    """
    Load filter configuration from a config directory.

    Resolution order for config directory:
    1. Explicit config_dir parameter (if provided)
    2. PARTNER_SYNC_CONFIG_DIR environment variable (if set)
    3. Default: ~/.partner-sync

    Returns:
        FilterConfig instance; the defaults if filters.json is absent

    Raises:
        FilterConfigError: If the file exists but is invalid
    """
    resolved_dir = resolve_config_dir(config_dir)
    return FilterConfig.load_from_file(resolved_dir / DEFAULT_FILTER_CONFIG_FILE)

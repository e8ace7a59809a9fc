"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the partner-sync configuration
directory and the files kept inside it.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".partner-sync"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "PARTNER_SYNC_CONFIG_DIR"

# Default database file name inside the configuration directory
DEFAULT_DB_FILE = "partner_sync.db"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. PARTNER_SYNC_CONFIG_DIR environment variable
        3. Default directory (~/.partner-sync)

    Args:
        config_dir: Optional explicit configuration directory path.
                   Can be a Path object or string.

    Returns:
        Resolved Path to the configuration directory (expanduser and resolve applied)
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_db_path(config_dir: Path, db_path: str | None = None) -> Path:
    """
    Resolve the SQLite database path.

    A configured db_path wins; relative paths are taken relative to the
    configuration directory.
    """
    if db_path:
        path = Path(db_path).expanduser()
        return path if path.is_absolute() else config_dir / path
    return config_dir / DEFAULT_DB_FILE

"""
Configuration file generator for partner synchronization.

Provides functionality to generate a default configuration file with
documentation for every available option.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Returns:
        String containing YAML configuration with comments
    """
    return """# Partner Sync Configuration
# ==========================
#
# Default options for partner-sync. CLI arguments always override these.
#
# To use this configuration:
#   1. Save as ~/.partner-sync/config.yaml (or custom location)
#   2. Uncomment and modify options as needed
#   3. Export the API keys named by prm_api_key_env and lms_api_key_env
#
# Eligibility rules (tiers, excluded domains, ...) live in filters.json
# next to this file.


# PRM (system of record)
# ----------------------

# Base URL of the PRM objects API
# Default: https://prod.impartner.live/api/objects/v1
# prm_base_url: https://prod.impartner.live/api/objects/v1

# Tenant identifier sent with every request
# prm_tenant_id: "12345"

# Environment variable holding the PRM API key
# Default: PARTNER_SYNC_PRM_API_KEY
# prm_api_key_env: PARTNER_SYNC_PRM_API_KEY

# Records requested per page
# Default: 100
# prm_page_size: 100

# Request timeout in seconds
# Default: 60
# prm_timeout: 60


# Learning platform (offboarding target)
# --------------------------------------

# Base URL of the learning platform API
# Default: https://api.northpass.com/v2
# lms_base_url: https://api.northpass.com/v2

# Environment variable holding the learning platform API key
# Default: PARTNER_SYNC_LMS_API_KEY
# lms_api_key_env: PARTNER_SYNC_LMS_API_KEY

# Request timeout in seconds
# Default: 30
# lms_timeout: 30

# People per membership request (a failed batch is retried one by one)
# Default: 50
# lms_batch_size: 50

# Name of the group every partner user belongs to
# Default: All Partners
# shared_group_name: All Partners


# Retry Behavior
# --------------

# Attempts for rate-limited (429) or server-error (5xx) responses
# Default: 5
# api_max_retries: 5

# First backoff delay in seconds, doubled per attempt
# Default: 1.0
# api_initial_retry_delay: 1.0

# Upper bound for the backoff delay in seconds
# Default: 60.0
# api_max_retry_delay: 60.0


# Sync Behavior
# -------------

# Primary users looked up per request during account enrichment
# Default: 100
# enrichment_batch_size: 100

# SQLite database path (relative paths are inside the config directory)
# Default: partner_sync.db
# db_path: partner_sync.db


# Logging Options
# ---------------

# Enable verbose output with detailed logging
# Default: false
# verbose: false

# Directory for log files (sync and audit logs)
# log_dir: ~/.partner-sync/logs

# Number of log files of each kind to keep
# Default: 10
# log_retention_count: 10
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save default configuration file to specified path.

    Creates parent directories if they don't exist and saves
    the configuration with owner-only permissions.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file. If False, fail if file exists.

    Returns:
        Tuple of (success, error_message)
    """
    try:
        config_path = config_path.expanduser().resolve()

        if config_path.exists() and not overwrite:
            return (
                False,
                f"Configuration file already exists: {config_path}\n"
                "Use --force to overwrite.",
            )

        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)

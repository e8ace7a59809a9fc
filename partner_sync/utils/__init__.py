"""
partner_sync.utils - Utility module

Common utilities including value normalization and path resolution.
"""

from partner_sync.utils.normalization import (
    name_key,
    normalize_email,
    normalize_text,
    short_crm_id,
)
from partner_sync.utils.paths import (
    DEFAULT_CONFIG_DIR,
    resolve_config_dir,
    resolve_db_path,
)

__all__ = [
    "name_key",
    "normalize_email",
    "normalize_text",
    "short_crm_id",
    "resolve_config_dir",
    "resolve_db_path",
    "DEFAULT_CONFIG_DIR",
]

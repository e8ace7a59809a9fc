"""CLI package for partner_sync."""

from partner_sync.cli.formatters import (
    show_history,
    show_offboard_result,
    show_preview,
    show_status,
    show_sync_result,
)
from partner_sync.cli.main import (
    DEFAULT_LMS_API_KEY_ENV,
    DEFAULT_PRM_API_KEY_ENV,
    cli,
    get_config_dir,
)
from partner_sync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_LMS_API_KEY_ENV",
    "DEFAULT_PRM_API_KEY_ENV",
    "cli",
    "get_config_dir",
    "show_history",
    "show_offboard_result",
    "show_preview",
    "show_status",
    "show_sync_result",
]

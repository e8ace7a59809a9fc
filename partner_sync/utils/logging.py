"""
Logging configuration module for partner_sync.

Provides centralized logging configuration with support for:
- Console and file logging
- Configurable log levels via environment variables
- Verbose mode for detailed output
- A dedicated audit log of filter rejections, removals and offboarding steps
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

# Root logger name for the package
LOGGER_NAME = "partner_sync"

# Audit logger name (child of the package logger)
AUDIT_LOGGER_NAME = f"{LOGGER_NAME}.audit"

# Default log format
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Simplified format for console (less verbose)
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

# Verbose format (includes more details)
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)

# Date format for log timestamps
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Environment variable names
ENV_LOG_LEVEL = "PARTNER_SYNC_LOG_LEVEL"
ENV_DEBUG = "PARTNER_SYNC_DEBUG"
ENV_LOG_FILE = "PARTNER_SYNC_LOG_FILE"


def _get_project_log_dir() -> Path:
    """Get the project logs directory."""
    current = Path(__file__).resolve()
    project_root = current.parent.parent.parent  # utils -> partner_sync -> root
    return project_root / "logs"


PROJECT_LOG_DIR = _get_project_log_dir()

# Audit log format with millisecond timestamps
AUDIT_LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(levelname)s - %(message)s"

# Module-level variable to store configured log directory
_configured_log_dir: Optional[Path] = None


class ColoredFormatter(logging.Formatter):
    """
    A logging formatter that adds ANSI color codes to log messages.

    Colors are only applied when output is to a terminal that supports them.
    """

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    def _supports_color(self) -> bool:
        """Check if the terminal supports colors."""
        if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
            return False

        # https://no-color.org/
        if os.environ.get("NO_COLOR"):
            return False

        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with optional colors."""
        record = logging.makeLogRecord(record.__dict__)

        if self.use_colors and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            record.levelname = f"{color}{record.levelname}{self.RESET}"
            record.msg = f"{color}{record.msg}{self.RESET}"

        return super().format(record)


def get_log_level_from_env() -> int:
    """
    Get the logging level from environment variables.

    Checks PARTNER_SYNC_DEBUG and PARTNER_SYNC_LOG_LEVEL to determine
    the appropriate log level.

    Returns:
        Logging level constant (e.g., logging.DEBUG, logging.INFO)
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG

    level_str = os.environ.get(ENV_LOG_LEVEL, "INFO").upper()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    return level_map.get(level_str, logging.INFO)


def _daily_log_name() -> str:
    return f"partner_sync_{datetime.now().strftime('%Y%m%d')}.log"


def get_log_file_path() -> Optional[Path]:
    """
    Get the log file path from environment or default location.

    Returns:
        Path to log file, or None if file logging is disabled
    """
    log_file = os.environ.get(ENV_LOG_FILE)
    if log_file is not None:
        if log_file.lower() in ("none", "disabled", ""):
            return None
        return Path(log_file)

    return PROJECT_LOG_DIR / _daily_log_name()


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure logging for the partner_sync application.

    Sets up both console and file logging handlers with appropriate
    formatters and levels.

    Args:
        level: Logging level (e.g., logging.DEBUG). If None, determined from
               environment variables.
        verbose: If True, use verbose format with more details.
        log_dir: Directory for log files. If provided, overrides default.
        log_file: Path to log file. If None, uses log_dir or default.
        enable_file_logging: If False, disable file logging entirely.
        use_colors: If True, use colored output for console (when supported).

    Returns:
        The package logger for partner_sync

    Example:
        # Verbose mode for CLI
        setup_logging(verbose=True)

        # Custom log directory from config
        setup_logging(log_dir=Path('/var/log/partner-sync'))
    """
    global _configured_log_dir

    if level is None:
        level = get_log_level_from_env()
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    # Prevent propagation to root logger to avoid duplicate messages
    logger.propagate = False

    console_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    console_formatter: logging.Formatter
    if use_colors:
        console_formatter = ColoredFormatter(console_format, DATE_FORMAT)
    else:
        console_formatter = logging.Formatter(console_format, DATE_FORMAT)

    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if enable_file_logging:
        file_path: Optional[Path]
        if log_file:
            file_path = log_file
        elif log_dir:
            file_path = log_dir / _daily_log_name()
        else:
            file_path = get_log_file_path()

        if file_path:
            try:
                file_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.FileHandler(file_path, encoding="utf-8")
                file_handler.setLevel(logging.DEBUG)  # Always capture debug in file
                file_handler.setFormatter(
                    logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT)
                )
                logger.addHandler(file_handler)

                logger.debug(f"Log file: {file_path}")
            except OSError as e:
                logger.warning(f"Could not create log file {file_path}: {e}")

    if log_dir:
        _configured_log_dir = log_dir
    elif log_file:
        _configured_log_dir = log_file.parent
    else:
        _configured_log_dir = None

    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Clean up old log files, keeping only the most recent ones.

    Removes old partner_sync_*.log and audit_*.log files from the log
    directory, keeping only the specified number of most recent files
    of each family.

    Args:
        log_dir: Directory containing log files. If None, uses configured
                 directory or project default.
        keep_count: Number of log files to keep for each type. Set to 0
                    to disable cleanup.

    Returns:
        Number of files deleted.
    """
    if keep_count <= 0:
        return 0

    logs_dir = log_dir or _configured_log_dir or PROJECT_LOG_DIR
    if not logs_dir.exists():
        return 0

    deleted_count = 0
    for pattern in ("partner_sync_*.log", "audit_*.log"):
        family = sorted(
            logs_dir.glob(pattern), key=lambda p: p.stat().st_mtime, reverse=True
        )
        for old_log in family[keep_count:]:
            try:
                old_log.unlink()
                deleted_count += 1
            except OSError:
                continue

    return deleted_count


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module.

    Returns a child logger of the partner_sync logger hierarchy.

    Args:
        name: Name of the module (typically __name__)

    Returns:
        Logger instance for the module
    """
    if not name.startswith(LOGGER_NAME):
        name = f"{LOGGER_NAME}.{name}"

    return logging.getLogger(name)


def get_audit_log_path(log_dir: Optional[Path] = None) -> Path:
    """
    Get the path for this session's audit log file.

    Args:
        log_dir: Optional directory for log files. If None, uses configured
                 directory from setup_logging() or project default.

    Returns:
        Path to a timestamped audit log file
    """
    logs_dir = log_dir or _configured_log_dir or PROJECT_LOG_DIR
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return logs_dir / f"audit_{timestamp}.log"


def setup_audit_logger(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Set up the dedicated audit logger for reconciliation decisions.

    The audit log records, for every run:
    - Each record rejected by the eligibility filter with its reason code
    - Each soft-delete with its removal reason (filtered or vanished)
    - Each offboarding step against the learning platform and its outcome

    Args:
        log_file: Optional custom path for the log file. If None, a
                  timestamped file in the configured log directory is used.
        level: Logging level (default: INFO)

    Returns:
        Logger instance for audit records
    """
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    file_path = log_file if log_file else get_audit_log_path()

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(AUDIT_LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)

        logger.info("=" * 80)
        logger.info(f"Audit session started at {datetime.now().isoformat()}")
        logger.info("=" * 80)

    except OSError as e:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(AUDIT_LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(console_handler)
        logger.warning(f"Could not create audit log file {file_path}: {e}")

    return logger


def get_audit_logger() -> logging.Logger:
    """
    Get the audit logger instance.

    If setup_audit_logger() has not been called, the logger has no handlers
    of its own and propagates to the package logger.
    """
    return logging.getLogger(AUDIT_LOGGER_NAME)


__all__ = [
    "setup_logging",
    "get_logger",
    "cleanup_old_logs",
    "ColoredFormatter",
    "get_log_level_from_env",
    "get_log_file_path",
    "setup_audit_logger",
    "get_audit_logger",
    "get_audit_log_path",
    "PROJECT_LOG_DIR",
    "DEFAULT_FORMAT",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
    "AUDIT_LOG_FORMAT",
]

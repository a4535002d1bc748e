"""
Central logging configuration for familycal_lite.

Keeps the package's own loggers at INFO (DEBUG on request) while holding
noisy third-party loggers at WARNING.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

PACKAGE_LOGGERS = (
    "familycal_lite",
    "familycal_lite.recurrence",
    "familycal_lite.view_cache",
    "familycal_lite.event_store",
    "familycal_lite.records",
    "familycal_lite.config_loader",
)

NOISY_LOGGERS = ("asyncio",)

_LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}


def _env_debug() -> bool:
    return os.getenv("FAMILYCAL_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for familycal_lite.

    Args:
        debug_mode: Whether to enable debug logging for familycal_lite modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        FAMILYCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        FAMILYCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_log_level = os.getenv("FAMILYCAL_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif _env_debug():
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Only install a handler when none exists, so host applications keep theirs.
    if not root_logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=_LOG_COLORS))
        root_logger.addHandler(handler)

    package_level = logging.DEBUG if final_debug else logging.INFO
    for name in PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(package_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.debug(
        "Logging configured: root=%s, familycal_lite=%s",
        logging.getLevelName(root_level),
        logging.getLevelName(package_level),
    )


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for name in ("familycal_lite", *NOISY_LOGGERS):
        status[name] = logging.getLevelName(logging.getLogger(name).level)
    return status

"""Logging configuration for cms-repo-sync.

The engine logs through loguru. As a library it stays quiet by default: only WARNING and above
reach stderr unless `configure_logger()` is called or CMS_REPO_SYNC_LOG_LEVEL is set.
"""

import os
import sys
from typing import Literal

from loguru import logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]

LOG_LEVEL_ENV_VAR = "CMS_REPO_SYNC_LOG_LEVEL"

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[repository]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def configure_logger(
    level: LogLevel | None = None,
    *,
    format_string: str | None = None,
    colorize: bool = True,
) -> None:
    """Replace all loguru handlers with a single stderr handler.

    Args:
        level: Minimum level to display. If None, CMS_REPO_SYNC_LOG_LEVEL is used, then WARNING.
        format_string: Custom loguru format. The default includes the `repository` extra that
            backends bind to their log records.
        colorize: Whether to use colored output.

    Example:
        ```python
        from cms_repo_sync.logging_config import configure_logger

        configure_logger("DEBUG")  # show every page and chunk request
        ```
    """
    if level is None:
        level = os.getenv(LOG_LEVEL_ENV_VAR, "WARNING").upper()  # type: ignore[assignment]

    logger.remove()
    logger.configure(extra={"repository": "-"})
    logger.add(
        sys.stderr,
        level=level,
        format=format_string or DEFAULT_FORMAT,
        colorize=colorize,
    )


def disable_logging() -> None:
    """Silence the engine completely."""
    logger.remove()


def enable_debug_logging() -> None:
    """Shortcut for `configure_logger("DEBUG")`."""
    configure_logger("DEBUG")


__all__ = [
    "LOG_LEVEL_ENV_VAR",
    "LogLevel",
    "configure_logger",
    "disable_logging",
    "enable_debug_logging",
]

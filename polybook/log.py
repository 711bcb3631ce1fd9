"""
Logging setup for PolyBook (loguru).

The TUI owns the terminal, so when it runs logs go to a file only.
Hot paths (per-frame book updates) log at TRACE/DEBUG at most.
"""

from __future__ import annotations

import sys

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | {message}"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | "
    "{name}:{function}:{line} | {message}"
)

_configured = False


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console: bool = True,
) -> None:
    """
    Configure sinks.

    Args:
        level: Minimum level for all sinks
        log_file: Optional path for a rotating file sink
        console: Add a stderr sink (disable while the TUI is running)
    """
    global _configured

    logger.remove()
    logger.configure(extra={"component": "polybook"})

    if console:
        logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level.upper(), colorize=True)

    if log_file:
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level=level.upper(),
            rotation="10 MB",
            retention="7 days",
        )

    _configured = True


def get_logger(component: str):
    """Logger bound to a component name (shown in every line)."""
    if not _configured:
        setup_logging()
    return logger.bind(component=component)

"""
Unified output system using Loguru.
Every user-facing message is written to the log file and echoed on the console.
"""

import threading
from pathlib import Path

from loguru import logger

from .console import get_console

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"

_quiet_lock = threading.Lock()
_quiet = False


def setup_loguru(log_file: Path, level: str = "INFO") -> None:
    """
    Configure loguru for file-only logging (the rich console handles display).

    Args:
        log_file: Path to log file
        level: Minimum level for file logging (DEBUG, INFO, WARNING, ERROR)
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Remove default stderr handler
    logger.remove()

    logger.add(
        log_file,
        rotation="10 MB",
        retention=5,  # Keep 5 rotated files
        level=level,
        format=LOG_FORMAT,
        enqueue=False,  # Synchronous writes; batch workers log from threads
    )

    logger.info(f"Loguru initialized: {log_file} (level={level})")


def set_quiet(quiet: bool) -> None:
    """Suppress console echo of log() (file logging continues)."""
    global _quiet
    with _quiet_lock:
        _quiet = quiet


_STYLES = {
    "debug": "cyan",
    "info": None,
    "success": "green",
    "warning": "yellow",
    "error": "bold red",
}


def log(message: str, level: str = "info") -> None:
    """
    Write a message to the log file and print it on the console.

    Use this instead of print() for user-facing messages.

    Args:
        message: User-facing message
        level: Log level (debug, info, success, warning, error)
    """
    log_func = getattr(logger, level)
    log_func(message)

    with _quiet_lock:
        if _quiet or level == "debug":
            return

    style = _STYLES.get(level)
    console = get_console()
    if style:
        console.print(message, style=style, markup=False, highlight=False)
    else:
        console.print(message, markup=False, highlight=False)

"""Logging configuration using loguru."""

import sys
from pathlib import Path
from loguru import logger

# Remove default handler
logger.remove()

# Global logger instance
_logger = logger

LOG_FILE_PATTERN = "archon_updater_{time:YYYY-MM-DD}.log"
ERROR_FILE_PATTERN = "errors_{time:YYYY-MM-DD}.log"


def setup_logger(
    level: str = "INFO",
    log_dir: str = "logs",
    console: bool = True,
    file: bool = False,
) -> None:
    """
    Configure the logger with console and (optionally) file outputs.

    Fetch workers log from their own threads (named ``fetch_N``), so the
    thread name is shown on the console at DEBUG level and always in files.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        console: Enable console output
        file: Enable file output
    """
    global _logger

    # Remove any existing handlers
    _logger.remove()

    # Console format (colorized, concise; worker thread at DEBUG)
    thread = "<cyan>{thread.name: <10}</cyan> | " if level == "DEBUG" else ""
    console_format = (
        "<green>{time:HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        f"{thread}"
        "<level>{message}</level>"
    )

    # File format (detailed, with the worker thread)
    file_format = (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
        "{level: <8} | "
        "{thread.name} | "
        "{name}:{function}:{line} | "
        "{message}"
    )

    if console:
        _logger.add(
            sys.stderr,
            format=console_format,
            level=level,
            colorize=True,
        )

    if file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # Run log (rotates daily, keeps 7 days)
        _logger.add(
            log_path / LOG_FILE_PATTERN,
            format=file_format,
            level=level,
            rotation="00:00",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )

        # Error log (separate file, aborted runs end up here)
        _logger.add(
            log_path / ERROR_FILE_PATTERN,
            format=file_format,
            level="ERROR",
            rotation="00:00",
            retention="30 days",
            compression="zip",
            enqueue=True,
        )


def get_logger():
    """Get the configured logger instance."""
    return _logger

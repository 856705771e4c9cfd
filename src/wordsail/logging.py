"""Logging utilities for WordSail.

Console output for users goes through rich (see ``wordsail.progress``);
this module configures the diagnostic log stream that sits next to it:
- Standardized log formats
- Verbosity and level-name mapping for the CLI
- Optional file logging
- Performance timing of playbook runs
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"

VERBOSITY_LEVELS = {
    0: logging.WARNING,   # Default: warnings and errors only
    1: logging.INFO,      # -v: playbook start/finish
    2: logging.DEBUG,     # -vv: argv, inventory paths, read errors
}


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert verbosity count to logging level.

    Args:
        verbosity: Number of -v flags (0-2+)

    Returns:
        Logging level constant
    """
    return VERBOSITY_LEVELS[min(max(verbosity, 0), 2)]


def get_level_from_name(level_name: str) -> int:
    """Convert level name to logging level.

    Args:
        level_name: Level name (debug, info, warning, error, critical)

    Returns:
        Logging level constant

    Raises:
        ValueError: If level name is invalid
    """
    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }
    level_lower = level_name.lower()
    if level_lower not in level_map:
        valid = ", ".join(level_map.keys())
        raise ValueError(f"Invalid log level: {level_name}. Valid levels: {valid}")
    return level_map[level_lower]


def configure_logging(
    level: int = logging.WARNING,
    format_string: str | None = None,
    debug: bool = False,
    log_file: str | Path | None = None,
) -> None:
    """Configure logging for WordSail.

    Args:
        level: Logging level for console and file
        format_string: Custom format string (uses default if None)
        debug: If True, use debug format with timestamps and line numbers
        log_file: Optional path to also write logs to

    Example:
        >>> configure_logging(level=logging.INFO)
        >>> configure_logging(level=logging.DEBUG, log_file="~/.wordsail/wordsail.log")
    """
    if format_string is None:
        if debug or level <= logging.DEBUG:
            format_string = DEBUG_FORMAT
        else:
            format_string = DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        # Always use detailed format for file logging
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        root_logger.addHandler(file_handler)


@contextmanager
def log_performance(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    **context: Any,
) -> Generator[None, None, None]:
    """Time an operation and log its duration.

    Args:
        logger: Logger instance to use
        operation: Description of the operation being timed
        level: Log level to use
        **context: Additional context to include in the message

    Example:
        >>> with log_performance(logger, "Playbook provision.yml", server="web01"):
        ...     run()
        INFO: Playbook provision.yml completed in 312.004s (server=web01)
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        message = f"{operation} completed in {duration:.3f}s"
        if context:
            message += " (" + ", ".join(f"{k}={v}" for k, v in context.items()) + ")"
        logger.log(level, message)

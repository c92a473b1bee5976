"""Logging configuration for minicluster."""

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_ENV = "MINICLUSTER_LOG_LEVEL"

# Client libraries that log every request or channel event at INFO
NOISY_LIBRARIES = ("urllib3", "kubernetes", "paramiko", "httpx", "httpcore")


def setup_logging(level: str = "", log_file: Path | None = None, verbose: bool = False) -> None:
    """Configure logging for a minicluster command.

    Log records go to stderr so they never mix with the styled step output
    on stdout. The console only shows warnings unless verbose is set; the
    optional file gets everything down to DEBUG.

    Args:
        level: Root logging level name. Falls back to $MINICLUSTER_LOG_LEVEL, then INFO
        log_file: Optional path to log file
        verbose: If True, set level to DEBUG and show debug records on the console
    """
    if verbose:
        level = "DEBUG"
    level = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
        except OSError as e:
            root_logger.warning(f"Cannot write log file {log_file}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)

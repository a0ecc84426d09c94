"""Logging configuration for podreplay.

Provides console logging with appropriate levels for application
code vs third-party libraries.
"""

import logging
import sys
from typing import Literal

from podreplay.settings import get_settings

# List of noisy third-party loggers to suppress
NOISY_LOGGERS = [
    "asyncio",
    "docker",
    "docker.api",
    "docker.utils",
    "urllib3",
    "urllib3.connectionpool",
    "kubernetes",
    "kubernetes.client.rest",
]

# Per-logger levels for noisy libraries
NOISY_LOGGER_LEVELS = {
    "urllib3.connectionpool": logging.ERROR,
}


def suppress_noisy_loggers() -> None:
    """Suppress noisy third-party loggers.

    Call this after importing libraries that configure their own logging.
    """
    for logger_name in NOISY_LOGGERS:
        logger = logging.getLogger(logger_name)
        level = NOISY_LOGGER_LEVELS.get(logger_name, logging.WARNING)
        logger.setLevel(level)
        logger.handlers.clear()


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
) -> None:
    """Configure application logging.

    Sets up logging with:
    - Application logs at configured level
    - Third-party library logs suppressed to WARNING+
    - Clean console output format on stderr, so stdout stays free for
      CLI progress lines

    Args:
        level: Override log level (defaults to settings.log_level or INFO)
    """
    settings = get_settings()
    log_level = level or getattr(settings, "log_level", "INFO")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, log_level))
    console_handler.setFormatter(
        logging.Formatter(
            "%(levelname)s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root_logger.addHandler(console_handler)

    logging.getLogger("podreplay").setLevel(getattr(logging, log_level))

    suppress_noisy_loggers()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)

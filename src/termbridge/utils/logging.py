"""Logging setup utilities for termbridge.

Configures logging for the entire application based on the logging
configuration settings.
"""

from __future__ import annotations

import logging
import sys

from termbridge.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig | None = None, level: str | None = None) -> None:
    """Configure logging for the termbridge application.

    Sets up the 'termbridge' logger with the specified level, format, and
    optional file handler. Calling it again replaces earlier handlers.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).
        level: Overrides ``config.level`` (e.g. "DEBUG" for --verbose).
    """
    if config is None:
        config = LoggingConfig()
    level_name = (level or config.level).upper()

    root_logger = logging.getLogger("termbridge")
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler (optional)
    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.info("Logging initialized at %s level", level_name)

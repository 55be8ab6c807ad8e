"""
Logging configuration and utilities.

Sets up console and file handlers for the ledger and routes Python warnings
(merge collision reports) through the same handlers.
"""

import logging
import sys
from pathlib import Path

from health_export_ledger.utils.exceptions import ConfigurationError
from health_export_ledger.utils.parameters import LoggingConfig

NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown logging level: {level_name}")
    return level


def setup_logging(config: LoggingConfig, logger_name: str | None = None) -> logging.Logger:
    """
    Set up logging for the application.

    Args:
        config: Logging configuration.
        logger_name: Optional logger name. If None, configures the root logger.

    Returns:
        Configured logger instance.

    Raises:
        ConfigurationError: If the configured level is not a logging level.
    """
    level = _resolve_level(config.level)
    formatter = logging.Formatter(config.format)

    handlers: list[logging.Handler] = []

    if config.console:
        handlers.append(logging.StreamHandler(sys.stdout))

    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.handlers.clear()

    warnings_logger = logging.getLogger("py.warnings")
    warnings_logger.handlers.clear()

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        warnings_logger.addHandler(handler)

    logging.captureWarnings(True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance by name."""
    return logging.getLogger(name)

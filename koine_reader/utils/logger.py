"""Logging configuration for the app."""

import logging
import os
from datetime import datetime
from typing import Optional, Type

from ..config import Config

LOGGER_NAME = "koine_reader"


def setup_logger(config: Type[Config] = Config, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger with console and file handlers.

    Args:
        config: Configuration holding log levels and directory
        log_file: Explicit log file path (defaults to a timestamped file in LOG_DIR)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(config.LOG_LEVEL)
    console_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(console_handler)

    if log_file is None:
        os.makedirs(config.LOG_DIR, exist_ok=True)
        log_file = os.path.join(
            config.LOG_DIR, f"reader_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        )
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(config.FILE_LOG_LEVEL)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | "
            "%(funcName)s | %(message)s"
        )
    )
    logger.addHandler(file_handler)

    logging.captureWarnings(True)
    warnings_logger = logging.getLogger("py.warnings")
    warnings_logger.propagate = False
    for handler in list(warnings_logger.handlers):
        warnings_logger.removeHandler(handler)
    warnings_logger.addHandler(file_handler)
    return logger

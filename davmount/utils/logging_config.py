# utils/logging_config.py
"""Logging configuration for davmount."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(
        log_dir: Optional[str] = None,
        log_file: str = "davmount.log",
        level: str = "INFO",
        console: bool = True
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        log_dir: Directory for log files (no file logging if None)
        log_file: Log file name
        level: Log level for the console handler
        console: Whether to log to console

    Returns:
        The package logger
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = []

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        file_handler = RotatingFileHandler(
            str(log_path / log_file), maxBytes=5 * 1024 * 1024,
            backupCount=3, encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(logging.DEBUG if log_dir else
                         getattr(logging, level.upper(), logging.INFO))
    for handler in handlers:
        root_logger.addHandler(handler)

    # urllib3 is chatty at DEBUG and logs request lines
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    logger = logging.getLogger('davmount')
    logger.debug(f"Logging initialized (dir={log_dir}, level={level})")
    return logger

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from . import settings


def setup_logger(name: str = "farm_service", log_level: str = None) -> logging.Logger:
    """
    Sets up the service logger with console output and, when LOG_FILE is set,
    a rotating file handler.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level or settings.LOG_LEVEL)

    # Prevent adding handlers multiple times if logger is already set up
    if logger.hasHandlers():
        return logger

    console_format = logging.Formatter("%(levelname)s %(name)s: %(message)s")
    file_format = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    if settings.LOG_FILE:
        log_file = Path(settings.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"  # 5 MB
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger

"""
Logging setup for codemie-sync.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from codemie_sync.config.app import LoggingSettings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(verbose: bool = False, settings: LoggingSettings | None = None) -> None:
    """
    Configure root logging for the CLI and host processes.

    Args:
        verbose: If True, enable DEBUG level logging regardless of settings
        settings: Optional logging settings (level and rotating file)
    """
    if verbose:
        log_level = logging.DEBUG
    elif settings is not None:
        log_level = getattr(logging, settings.level.upper())
    else:
        log_level = logging.INFO

    logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=DATE_FORMAT)

    if settings is not None and settings.file:
        add_file_handler(settings)

    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def add_file_handler(settings: LoggingSettings) -> RotatingFileHandler | None:
    """Attach a rotating file handler to the codemie_sync logger (once)."""
    if not settings.file:
        return None

    logger = logging.getLogger("codemie_sync")
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            return handler

    log_file_path = Path(settings.file).expanduser()
    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_file_path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(file_handler)
    return file_handler

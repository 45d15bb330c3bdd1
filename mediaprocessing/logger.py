"""Logging setup for the mediaprocessing package."""

import logging
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "mediaprocessing"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def setup_logging(
    log_file: Optional[Union[str, Path]] = None,
    level: Union[str, int] = "INFO",
    stream: bool = True,
) -> logging.Logger:
    """Attach handlers to the package logger.

    Calling it again replaces the handlers it installed before, so repeated
    setup never duplicates log lines.

    Args:
        log_file: File to write to (no file handler when None)
        level: Level name or number
        stream: Also log to stderr

    Returns:
        The package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_mediaprocessing", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._mediaprocessing = True
        logger.addHandler(file_handler)
    if stream:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler._mediaprocessing = True
        logger.addHandler(stream_handler)
    return logger


def setup_from_settings(settings) -> logging.Logger:
    """Configure logging from a Settings instance."""
    return setup_logging(settings.log_file, settings.log_level)


def get_logger(name: str) -> logging.Logger:
    """Child logger under the package logger."""
    if name == LOGGER_NAME or name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")

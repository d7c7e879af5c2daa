"""
Logging utilities shared by the engine, the runners and the scripts.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union
from src.config import Config


def _level(level: Optional[str]) -> int:
    return getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO)


def setup_logger(
    name: str,
    level: Optional[str] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Set up a logger that writes to stdout with the configured format.

    Args:
        name: Logger name (typically __name__)
        level: Logging level (defaults to Config.LOG_LEVEL)
        format_string: Custom format string (defaults to Config.LOG_FORMAT)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    logger.setLevel(_level(level))

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_level(level))
    handler.setFormatter(logging.Formatter(format_string or Config.LOG_FORMAT))
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance (creates one if it doesn't exist).

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        return setup_logger(name)

    return logger


def attach_run_log(
    out_dir: Union[str, Path],
    names: tuple = ("src.apace", "scripts"),
    filename: str = "run.log",
) -> Path:
    """
    Mirror engine log records into a file inside a run output directory.

    Loggers are matched by prefix, so every module logger created through
    get_logger under one of ``names`` gets the file handler.

    Returns:
        Path of the log file
    """
    log_path = Path(out_dir) / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(Config.LOG_FORMAT))
    file_handler.setLevel(_level(None))

    for logger_name in list(logging.root.manager.loggerDict):
        if logger_name.startswith(names):
            logger = logging.getLogger(logger_name)
            if not any(isinstance(h, logging.FileHandler) and h.baseFilename == str(log_path.resolve())
                       for h in logger.handlers):
                logger.addHandler(file_handler)

    return log_path

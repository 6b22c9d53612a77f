"""Logging for pulls: a rotating log file with everything, the console with problems only.

Progress already reaches the terminal through the status events printed by
the CLI, so the console handler stays at WARNING unless `verbose` is set.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Union

LOGGER_NAME = "aggregate_pull"

_FORMAT = logging.Formatter(
    "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def parse_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logger(log_dir: str = "logs", level: Union[str, int] = "INFO",
                 log_file: str = "pull.log", verbose: bool = False) -> logging.Logger:
    file_level = parse_level(level)
    console_level = file_level if verbose else max(file_level, logging.WARNING)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(file_level)
    logger.propagate = False

    # Calling again replaces the handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(_FORMAT)
    logger.addHandler(console)

    os.makedirs(log_dir, exist_ok=True)
    fh = RotatingFileHandler(
        os.path.join(log_dir, log_file),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    fh.setLevel(file_level)
    fh.setFormatter(_FORMAT)
    logger.addHandler(fh)

    # httpx logs every request at INFO; keep those for debugging sessions
    logging.getLogger("httpx").setLevel(logging.DEBUG if file_level <= logging.DEBUG else logging.WARNING)

    return logger

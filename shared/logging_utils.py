"""Companion remote logging setup."""
from __future__ import annotations
import logging
import logging.handlers
from pathlib import Path
from typing import Union

ROOT_LOGGER = "companion_remote"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5

# Frame-level chatter from these is only useful when debugging the libraries themselves.
_NOISY_LIBRARIES = ("websockets", "zeroconf")


def setup_rotating_logger(log_dir: Path, level: Union[int, str] = logging.DEBUG,
                          console_level: Union[int, str] = logging.INFO,
                          name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Attach a rotating file handler (``<log_dir>/<name>.log``) and a console
    handler to the ``name`` logger. Calling it again is a no-op.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT)

    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{name}.log", maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(fmt)
    logger.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(fmt)
    logger.addHandler(console)

    for library in _NOISY_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)

    logger.debug("Logging to %s", log_dir.resolve())
    return logger

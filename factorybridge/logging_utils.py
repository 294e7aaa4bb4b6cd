from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def init_logger(name: str, log_dir: Path | None, level: str = "INFO", console: bool = True) -> logging.Logger:
    """Return a named logger writing to ``<log_dir>/<name>.log`` and optionally stderr.

    Handlers are attached only once per logger name, so calling this again for
    the same component is harmless. Passing ``log_dir=None`` skips the file.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / f"{name}.log", maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def component_logger(parent: logging.Logger, component: str) -> logging.Logger:
    # Child loggers propagate to the parent's handlers.
    return parent.getChild(component)

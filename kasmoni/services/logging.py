"""Log output for the payout engine.

Services only call ``logging.getLogger(__name__)``; the CLI calls
``setup_logging`` once so their records reach both the console and a log
file. ``LOG_LEVEL`` in the environment overrides the configured level.
"""

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level(default: str = "INFO") -> int:
    """Numeric level from ``LOG_LEVEL`` (or ``default``); unknown names give INFO."""
    name = os.getenv("LOG_LEVEL", default).strip().upper()
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def _attach(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)


def setup_logging(log_file: str = "logs/kasmoni.log", default_level: str = "INFO") -> logging.Logger:
    """
    Route all records to stdout and ``log_file``.

    Repeated calls replace the previous handlers, so a process never logs a
    line twice.

    Args:
        log_file: Log file path; missing parent directories are created
        default_level: Level name used when ``LOG_LEVEL`` is unset

    Returns:
        The ``kasmoni`` logger
    """
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    level = get_log_level(default_level)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(level)

    _attach(root, logging.StreamHandler(sys.stdout), level)
    _attach(root, logging.FileHandler(path, encoding="utf-8"), level)

    logging.getLogger(__name__).debug(f"Logging to stdout and {path} at {logging.getLevelName(level)}")
    return logging.getLogger("kasmoni")


__all__ = ["get_log_level", "setup_logging"]

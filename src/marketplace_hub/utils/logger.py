"""
Logging for Marketplace Hub.

All module loggers hang off the ``marketplace_hub`` logger, which owns a
colored console handler and a size-rotated ``marketplace_hub.log`` file.
Scheduler jobs and background syncs run on worker threads, so every line
carries the thread name.

Environment:
- LOG_LEVEL: standard level name (default INFO)
- LOG_DIR: where the log file is written (default ./logs)
- DEBUG_MODE: "true" adds function and line number to each record
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

import colorlog


ROOT_LOGGER_NAME = "marketplace_hub"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 3

LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

_configured = False


def _record_format(verbose: bool) -> str:
    origin = "%(name)s.%(funcName)s:%(lineno)d" if verbose else "%(name)s"
    return f"%(asctime)s %(levelname)-8s [%(threadName)s] {origin} - %(message)s"


def _console_handler(verbose: bool) -> logging.Handler:
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s" + _record_format(verbose),
        datefmt=DATE_FORMAT,
        log_colors=LEVEL_COLORS,
    ))
    return handler


def _file_handler(log_dir: str, verbose: bool) -> Optional[logging.Handler]:
    try:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
    except OSError:
        return None

    handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, f"{ROOT_LOGGER_NAME}.log"),
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_record_format(verbose), datefmt=DATE_FORMAT))
    return handler


def _configure() -> logging.Logger:
    global _configured

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR", "./logs")
    verbose = os.getenv("DEBUG_MODE", "false").lower() == "true"

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level, logging.INFO))
    root.propagate = False

    # Replace rather than stack handlers when reconfigured
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.addHandler(_console_handler(verbose))
    file_handler = _file_handler(log_dir, verbose)
    if file_handler is not None:
        root.addHandler(file_handler)
    else:
        root.warning(f"Log directory {log_dir} is not writable, logging to console only")

    _configured = True
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Logger under the ``marketplace_hub`` hierarchy.

    Names outside the package are prefixed so their records still reach
    the package handlers. Handlers are installed on first call.
    """
    if name is None:
        name = sys._getframe(1).f_globals.get("__name__", ROOT_LOGGER_NAME)

    if not _configured:
        _configure()

    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)


def setup_logging() -> None:
    """(Re)install handlers from the current environment."""
    root = _configure()
    root.debug(
        f"Logging configured: level={logging.getLevelName(root.level)}, "
        f"handlers={[type(h).__name__ for h in root.handlers]}"
    )

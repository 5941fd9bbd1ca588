"""Package logging: one configured root logger, plain child loggers per component."""

import logging
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from .config import LOG_BACKUP_COUNT, LOG_DIR, LOG_FILE, LOG_LEVEL, LOG_MAX_BYTES

ROOT_LOGGER_NAME = "school_attendance"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configure_lock = threading.Lock()
_configured = False


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level '{level}'")
    return resolved


def configure_logging(
    level: Union[str, int] = LOG_LEVEL,
    log_dir: Optional[Path] = None,
    log_file: str = LOG_FILE,
    force: bool = False,
) -> logging.Logger:
    """Attach the rotating file and console handlers to the package root logger.

    Runs once per process unless ``force`` is set, in which case existing
    handlers are closed and replaced. Records stop at the package root and do
    not reach the interpreter's root logger.
    """
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    with _configure_lock:
        if _configured and not force:
            return root
        resolved_level = _resolve_level(level)

        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

        directory = Path(log_dir) if log_dir is not None else LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)
        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

        file_handler = RotatingFileHandler(
            directory / log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

        root.setLevel(resolved_level)
        root.propagate = False
        _configured = True
    return root


def setup_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

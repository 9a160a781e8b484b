"""Logging setup for Devourer.

Two sinks share the root logger:

- `devourer.log` in DATA_DIR, rotated at 10MB with 5 backups, always at
  DEBUG and tagged with the thread name (scans and watcher workers run on
  their own threads)
- a Rich console handler at the requested level

The level can also come from the DEVOURER_LOG_LEVEL environment variable.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

LOG_FILE_NAME = "devourer.log"
FILE_FORMAT = "%(asctime)s - %(levelname)-8s - %(threadName)s - %(name)s - %(message)s"

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("watchdog", "urllib3", "PIL", "uvicorn.access", "ebooklib")

_logging_initialized = False


def _data_dir() -> Path:
    # Mirrors config.DATA_DIR; config imports this module.
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


def _file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _console_handler(level: int) -> logging.Handler:
    console = Console(
        theme=Theme({"logging.level.info": "bold cyan", "logging.level.warning": "yellow"})
    )
    handler = RichHandler(
        console=console, rich_tracebacks=True, show_time=False, show_path=False
    )
    handler.setLevel(level)
    return handler


def setup_logging(log_level: Optional[str] = None, log_file: Optional[Path] = None) -> None:
    """Attach the file and console handlers to the root logger (once).

    Args:
        log_level: console level name; defaults to DEVOURER_LOG_LEVEL or INFO
        log_file: defaults to devourer.log in DATA_DIR
    """
    global _logging_initialized
    if _logging_initialized:
        return

    level_name = (log_level or os.environ.get("DEVOURER_LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(_file_handler(log_file or _data_dir() / LOG_FILE_NAME))
    root_logger.addHandler(_console_handler(level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # alembic installs its own handlers through fileConfig; route it to ours.
    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True

    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

"""
Logging setup for the calibration tools.

Every record carries the run ID of the current calibration, so log lines of
concurrent or repeated runs written to one rotating file can be told apart.
Settings come from the `logging` section of the configuration.

Usage:
    from camlidar_nid.core.logging_config import setup_logging, get_logger

    setup_logging()                  # once, in the entry point
    logger = get_logger(__name__)    # in every module
"""

import copy
import logging
import os
import sys
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - "
    "[run_id=%(run_id)s] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_run_id: str = ""


def generate_run_id() -> str:
    """Start a new run: every subsequent record is tagged with a fresh UUID."""
    global _run_id
    _run_id = str(uuid.uuid4())
    return _run_id


def get_run_id() -> str:
    return _run_id or generate_run_id()


class RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id()
        return True


class ColoredFormatter(logging.Formatter):
    """Colors the level name on TTY consoles."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color is None:
            return super().format(record)
        # Other handlers share the record; color a copy
        colored = copy.copy(record)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def _attach(root: logging.Logger, handler: logging.Handler,
            formatter: logging.Formatter, run_filter: logging.Filter) -> None:
    handler.setFormatter(formatter)
    handler.addFilter(run_filter)
    root.addHandler(handler)


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    max_size_mb: Optional[int] = None,
    backup_count: Optional[int] = None,
    colored_console: Optional[bool] = None
) -> logging.Logger:
    """
    Configure the root logger for one calibration run and start a new run ID.

    Arguments left as None fall back to the `logging` section of the
    configuration (which already includes CAMLIDAR_NID_LOG_LEVEL and
    CAMLIDAR_NID_LOG_FILE). Existing root handlers are replaced.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Rotating log file path; empty disables file output
        max_size_mb: Size at which the log file rotates
        backup_count: Rotated files to keep
        colored_console: Color level names when stdout is a TTY

    Returns:
        The root logger
    """
    # Deferred: the config package imports the exceptions from this package
    from camlidar_nid.config import get_config
    config = get_config()

    level = (level or config.get('logging.level', 'INFO')).upper()
    log_file = log_file or config.get('logging.file.path')
    if max_size_mb is None:
        max_size_mb = config.get('logging.file.max_size_mb', 10)
    if backup_count is None:
        backup_count = config.get('logging.file.backup_count', 5)
    if colored_console is None:
        colored_console = config.get('logging.console.colored', True)

    generate_run_id()
    run_filter = RunIdFilter()
    plain = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console_formatter = (ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
                         if colored_console and sys.stdout.isatty() else plain)
    _attach(root, logging.StreamHandler(sys.stdout), console_formatter, run_filter)

    if log_file:
        path = Path(os.path.expanduser(str(log_file)))
        path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(path, maxBytes=int(max_size_mb) * 1024 * 1024,
                                       backupCount=int(backup_count), encoding='utf-8')
        _attach(root, rotating, plain, run_filter)

    root.info(f"Logging initialized - level={level}, run_id={get_run_id()}")
    return root


def get_logger(name: str) -> logging.Logger:
    """Module logger; configuration is inherited from the root logger."""
    return logging.getLogger(name)

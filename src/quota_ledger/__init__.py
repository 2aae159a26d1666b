"""Supplier invoice quota ledger.

Importing the package sets up the shared ``quota_ledger`` logger used by
every module: a size-rotated log file plus stderr. ``QUOTA_LEDGER_LOG_DIR``
moves the log file and ``QUOTA_LEDGER_LOG_LEVEL`` changes the threshold of
both handlers.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("QUOTA_LEDGER_LOG_DIR") or PROJECT_ROOT / ".logs")
LOG_FILE = LOG_DIR / "quota_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _log_level() -> int:
    name = os.environ.get("QUOTA_LEDGER_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _log_level()
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8"))
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{LOG_FILE}': {exc}", file=sys.stderr)

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


log = _configure_logging()
log.debug("Logger initialized for the 'quota_ledger' package (level %s).", logging.getLevelName(log.level))

"""Batch attribution of sales transactions to representative and territory balances.

Importing the package configures the shared ``log`` used by every module:
batch lifecycle messages go to stderr and to a rotating file under
``.logs/``. ``TERRITORY_LEDGER_LOG_DIR`` and ``TERRITORY_LEDGER_LOG_LEVEL``
relocate the file and change the threshold.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("TERRITORY_LEDGER_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "territory_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _log_level() -> int:
    name = os.environ.get("TERRITORY_LEDGER_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _batch_log_handler(formatter: logging.Formatter) -> logging.Handler | None:
    """Rotating file handler for the batch log, or ``None`` when unwritable."""

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: batch log disabled, cannot write '{LOG_FILE}': {exc}", file=sys.stderr)
        return None
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _log_level()
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    for handler in (_batch_log_handler(formatter), console):
        if handler is not None:
            handler.setLevel(level)
            logger.addHandler(handler)
    return logger


log = _configure_logging()

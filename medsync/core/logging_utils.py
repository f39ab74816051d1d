# medsync/core/logging_utils.py
from __future__ import annotations

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that are chatty at DEBUG; the audit file only wants our own trace.
QUIET_LOGGERS = ("apscheduler", "aiosqlite", "sqlalchemy.engine", "aiohttp.access")


def setup_logging(cfg: Any) -> logging.Logger:
    """
    Configure the "medsync" logger tree:
    - Console shows cfg.LOG_LEVEL (INFO by default).
    - Audit log file stores DEBUG and above: every sync attempt, cache
      write and alarm registration, so a missed dose can be traced later.
    - Scheduler/driver loggers are capped at WARNING.
    """
    log_dir = os.path.dirname(cfg.AUDIT_LOG_FILE)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    root = logging.getLogger("medsync")
    root.setLevel(logging.DEBUG)

    fmt = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    fh = RotatingFileHandler(
        cfg.AUDIT_LOG_FILE, maxBytes=1_000_000, backupCount=10, encoding="utf-8"
    )
    fh.setFormatter(fmt)
    fh.setLevel(logging.DEBUG)

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.setLevel(getattr(cfg, "LOG_LEVEL", "INFO"))

    root.handlers.clear()
    root.addHandler(fh)
    root.addHandler(ch)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def _fmt_value(v: Any) -> str:
    # Timestamps read better as ISO strings than as datetime reprs
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, (set, frozenset)):
        return repr(sorted(v))
    return repr(v)


def kv(**kwargs: Any) -> str:
    """Key=value compact formatting for log lines ("area.event " + kv(...))."""
    return " ".join(f"{k}={_fmt_value(v)}" for k, v in kwargs.items())

"""
Runtime configuration for MedSync.
Values can be overridden through the environment (a local .env is honoured).
"""

from __future__ import annotations

import os
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

# --------------------------------------------------------------------------------------
# Remote store
# --------------------------------------------------------------------------------------
BASE_URL = os.getenv("MEDSYNC_BASE_URL", "https://www.radig.com/")
DATASET_PATH = os.getenv("MEDSYNC_DATASET_PATH", "medwatchoor/stevie.json")
UPLOAD_PATH = os.getenv("MEDSYNC_UPLOAD_PATH", "medwatchoor/upload.php")
# IMPORTANT: no hardcoded token in repo; provide via env or explicit override
UPLOAD_TOKEN: str | None = None
HTTP_TIMEOUT_S: float | None = None  # transport default

# --------------------------------------------------------------------------------------
# Local calendar
# --------------------------------------------------------------------------------------
TIMEZONE = os.getenv("MEDSYNC_TIMEZONE", "UTC")
TZ = ZoneInfo(TIMEZONE)

# --------------------------------------------------------------------------------------
# Local cache
# --------------------------------------------------------------------------------------
DB_PATH = os.getenv("MEDSYNC_DB_PATH", "medsync/data/medications.db")

# --------------------------------------------------------------------------------------
# Sync / background timing
# --------------------------------------------------------------------------------------
SYNC_DEBOUNCE_S = 3.0
CONNECTIVITY_SETTLE_S = 1.0
CONNECTIVITY_PROBE_S = 30
STALE_CHECK_INTERVAL_S = 3600
STALE_CHECK_RETRY_S = 60
ALARM_MISFIRE_GRACE_S = 300

# --------------------------------------------------------------------------------------
# Logging
# --------------------------------------------------------------------------------------
AUDIT_LOG_FILE = "medsync/logs/audit.log"
LOG_LEVEL = os.getenv("MEDSYNC_LOG_LEVEL", "INFO").upper()


def get_upload_token() -> str:
    token = UPLOAD_TOKEN or os.getenv("MEDSYNC_UPLOAD_TOKEN")
    if not token:
        raise RuntimeError(
            "Upload token is not set. Set env var MEDSYNC_UPLOAD_TOKEN or override UPLOAD_TOKEN in config.py."
        )
    return token

# medsync/core/config_validation.py
from __future__ import annotations

from typing import Any
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def _positive(cfg: Any, name: str) -> None:
    value = getattr(cfg, name, None)
    if not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{name} must be a positive number (got {value!r})")


def validate_config(cfg: Any) -> None:
    """Validate runtime configuration before starting the app."""
    base = getattr(cfg, "BASE_URL", None)
    if not isinstance(base, str) or not base:
        raise ValueError("BASE_URL must be a non-empty string")
    parsed = urlparse(base)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"BASE_URL must be an absolute http(s) URL (got {base!r})")

    for name in ("DATASET_PATH", "UPLOAD_PATH"):
        path = getattr(cfg, name, None)
        if not isinstance(path, str) or not path.strip("/"):
            raise ValueError(f"{name} must be a non-empty path")

    tz_name = getattr(cfg, "TIMEZONE", None)
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, TypeError, ValueError):
        raise ValueError(f"TIMEZONE is not a known zone: {tz_name!r}") from None

    for name in (
        "SYNC_DEBOUNCE_S",
        "CONNECTIVITY_PROBE_S",
        "STALE_CHECK_INTERVAL_S",
        "STALE_CHECK_RETRY_S",
    ):
        _positive(cfg, name)

    settle = getattr(cfg, "CONNECTIVITY_SETTLE_S", 0)
    if not isinstance(settle, (int, float)) or settle < 0:
        raise ValueError("CONNECTIVITY_SETTLE_S must be >= 0")

    timeout = getattr(cfg, "HTTP_TIMEOUT_S", None)
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ValueError("HTTP_TIMEOUT_S must be None or a positive number")

    if not getattr(cfg, "DB_PATH", None):
        raise ValueError("DB_PATH must be set")

    level = getattr(cfg, "LOG_LEVEL", "INFO")
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(f"LOG_LEVEL must be a standard level name (got {level!r})")

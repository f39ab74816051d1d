# medsync/core/clock.py
from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo


class Clock:
    """Injectable, testable clock bound to a timezone."""

    def __init__(self, tz: ZoneInfo):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def from_ms(self, ts_ms: int) -> datetime:
        return datetime.fromtimestamp(ts_ms / 1000, self.tz)

    def same_day(self, ts_a_ms: int, ts_b_ms: int) -> bool:
        """Same local calendar day (year + day-of-year) in this clock's zone."""
        a = self.from_ms(ts_a_ms).timetuple()
        b = self.from_ms(ts_b_ms).timetuple()
        return (a.tm_year, a.tm_yday) == (b.tm_year, b.tm_yday)

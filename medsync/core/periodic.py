# medsync/core/periodic.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from medsync.core.logging_utils import kv

JOB_ID = "stale-check"
RETRY_JOB_ID = "stale-check:retry"


class PeriodicCheck:
    """
    Recurring stale-status check on an APScheduler interval job.
    A failed run is logged and retried once by a one-off date job; the
    exception never reaches the scheduler.
    """

    def __init__(
        self,
        scheduler: Any,
        run: Callable[[], Awaitable[Any]],
        *,
        interval_s: float,
        retry_s: float,
        timezone: Any,
    ) -> None:
        self.scheduler = scheduler
        self.run = run
        self.interval_s = interval_s
        self.retry_s = retry_s
        self.tz = timezone
        self.log = logging.getLogger("medsync.periodic")

    def install(self) -> None:
        self.scheduler.add_job(
            self.tick,
            trigger="interval",
            seconds=self.interval_s,
            id=JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    async def tick(self) -> bool:
        try:
            result = await self.run()
        except Exception as e:
            retry_at = datetime.now(self.tz) + timedelta(seconds=self.retry_s)
            self.log.error(
                "periodic.failed " + kv(err=str(e), retry_at=retry_at.isoformat())
            )
            self.scheduler.add_job(
                self.tick,
                trigger="date",
                run_date=retry_at,
                id=RETRY_JOB_ID,
                replace_existing=True,
            )
            return False
        self.log.debug("periodic.ok " + kv(result=result))
        return True

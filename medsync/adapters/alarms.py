# medsync/adapters/alarms.py
from __future__ import annotations

import contextlib
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.jobstores.base import JobLookupError

from medsync.core.logging_utils import kv

FireHandler = Callable[[int, Dict[str, Any]], Awaitable[None]]


class ApschedulerAlarms:
    """
    Wake-up capability on top of an APScheduler scheduler: one date job per
    medication, keyed "reminder:<id>" so re-registration replaces it.
    """

    JOB_PREFIX = "reminder:"

    def __init__(
        self,
        scheduler: Any,
        on_fire: Optional[FireHandler] = None,
        *,
        misfire_grace_s: int = 300,
    ) -> None:
        self.scheduler = scheduler
        self.on_fire = on_fire
        self.misfire_grace_s = misfire_grace_s
        self.log = logging.getLogger("medsync.alarms")

    def attach_handler(self, on_fire: FireHandler) -> None:
        self.on_fire = on_fire

    @classmethod
    def job_id(cls, medication_id: int) -> str:
        return f"{cls.JOB_PREFIX}{medication_id}"

    def register(self, medication_id: int, when: datetime, payload: Dict[str, Any]) -> None:
        self.cancel(medication_id)
        self.scheduler.add_job(
            self._fire,
            trigger="date",
            run_date=when,
            kwargs={"medication_id": medication_id, "payload": dict(payload)},
            id=self.job_id(medication_id),
            replace_existing=True,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_s,
            max_instances=1,
        )

    def cancel(self, medication_id: int) -> None:
        with contextlib.suppress(JobLookupError):
            self.scheduler.remove_job(self.job_id(medication_id))

    def scheduled_at(self, medication_id: int) -> Optional[datetime]:
        job = self.scheduler.get_job(self.job_id(medication_id))
        return job.trigger.run_date if job else None

    async def _fire(self, *, medication_id: int, payload: Dict[str, Any]) -> None:
        if self.on_fire is None:
            self.log.error("alarm.fire.unhandled " + kv(id=medication_id))
            return
        try:
            await self.on_fire(medication_id, payload)
        except Exception as e:
            self.log.error("alarm.fire.error " + kv(id=medication_id, err=str(e)))

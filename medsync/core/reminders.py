# medsync/core/reminders.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional, Protocol, Set

from medsync.core.cache import MedicationCache
from medsync.core.clock import Clock
from medsync.core.errors import SchedulingError
from medsync.core.logging_utils import kv
from medsync.core.models import MedicationRecord, parse_hhmm

WEEKDAY_LOOKAHEAD_DAYS = 7


class AlarmService(Protocol):
    """Host wake-up facility. Registration under an existing id replaces it."""

    def register(self, medication_id: int, when: datetime, payload: Dict[str, Any]) -> None: ...

    def cancel(self, medication_id: int) -> None: ...


class Notifier(Protocol):
    def alert(self, record: MedicationRecord) -> None: ...

    def dismiss(self, medication_id: int) -> None: ...


def next_fire_time(record: MedicationRecord, now: datetime) -> datetime:
    """
    Next moment strictly after `now` at record.time_to_take (local to now's tz)
    on a day allowed by the weekday mask.
    """
    try:
        hh, mm = parse_hhmm(record.time_to_take)
    except ValueError as e:
        raise SchedulingError(record.id, str(e)) from e

    candidate = now.replace(hour=hh, minute=mm, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)

    if not record.weekdays:
        return candidate

    for offset in range(WEEKDAY_LOOKAHEAD_DAYS):
        day = candidate + timedelta(days=offset)
        if day.isoweekday() in record.weekdays:
            return day
    raise SchedulingError(
        record.id, f"no allowed weekday within {WEEKDAY_LOOKAHEAD_DAYS} days"
    )


class ReminderScheduler:
    """
    Keeps exactly one wake-up per medication registered with the alarm service
    and reacts when one fires.
    """

    def __init__(
        self,
        cache: MedicationCache,
        alarms: AlarmService,
        notifier: Notifier,
        clock: Clock,
    ) -> None:
        self.cache = cache
        self.alarms = alarms
        self.notifier = notifier
        self.clock = clock
        self.log = logging.getLogger("medsync.reminders")
        self._known_ids: Set[int] = set()

    def schedule_all(self, records: Iterable[MedicationRecord]) -> Dict[int, datetime]:
        """
        Cancel every trigger we know of, then register one per record.
        Returns {medication_id: fire_time} for the records that were scheduled.
        """
        records = list(records)
        for mid in self._known_ids | {r.id for r in records}:
            self.alarms.cancel(mid)
        self._known_ids = {r.id for r in records}

        now = self.clock.now()
        scheduled: Dict[int, datetime] = {}
        for r in records:
            try:
                scheduled[r.id] = self.schedule_one(r, now=now)
            except SchedulingError as e:
                self.log.warning(
                    "reminder.schedule.skip " + kv(id=e.medication_id, reason=e.reason)
                )
        self.log.info(
            "reminder.schedule.all " + kv(scheduled=len(scheduled), total=len(records))
        )
        return scheduled

    def schedule_one(
        self, record: MedicationRecord, *, now: Optional[datetime] = None
    ) -> datetime:
        when = next_fire_time(record, now or self.clock.now())
        payload = {
            "name": record.name,
            "time_to_take": record.time_to_take,
            "weekdays": sorted(record.weekdays) if record.weekdays else None,
            "scheduled_for": when.isoformat(),
        }
        try:
            self.alarms.register(record.id, when, payload)
        except Exception as e:
            raise SchedulingError(record.id, f"alarm registration refused: {e}") from e
        self._known_ids.add(record.id)
        self.log.debug(
            "reminder.schedule " + kv(id=record.id, name=record.name, at=when.isoformat())
        )
        return when

    def cancel_all(self) -> None:
        for mid in self._known_ids:
            self.alarms.cancel(mid)
        self._known_ids = set()

    def dismiss(self, medication_id: int) -> None:
        self.notifier.dismiss(medication_id)
        self.log.debug("reminder.dismiss " + kv(id=medication_id))

    async def on_fire(
        self, medication_id: int, payload: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Alert unless already taken today, then register the next occurrence.
        The next occurrence is registered even when the alert step fails.
        """
        now = self.clock.now()
        try:
            record = await self.cache.get(medication_id)
        except Exception as e:
            # Cache unreadable: alert from the payload rather than miss a dose
            self.log.error("reminder.fire.cache_error " + kv(id=medication_id, err=str(e)))
            fallback = self._record_from_payload(medication_id, payload)
            self._alert(fallback)
            self._reschedule_after(fallback, now, payload)
            return

        if record is None:
            self.log.info("reminder.fire.orphan " + kv(id=medication_id))
            self.alarms.cancel(medication_id)
            self._known_ids.discard(medication_id)
            return

        try:
            taken_today = record.is_taken and self.clock.same_day(
                record.last_taken_timestamp, int(now.timestamp() * 1000)
            )
            if taken_today:
                self.log.info("reminder.fire.suppressed " + kv(id=record.id, reason="already taken"))
            else:
                self._alert(record)
        finally:
            self._reschedule_after(record, now, payload)

    def _alert(self, record: MedicationRecord) -> None:
        self.log.info("reminder.fire.alert " + kv(id=record.id, name=record.name))
        try:
            self.notifier.alert(record)
        except Exception as e:
            self.log.error("reminder.fire.alert_failed " + kv(id=record.id, err=str(e)))

    def _reschedule_after(
        self,
        record: MedicationRecord,
        now: datetime,
        payload: Optional[Dict[str, Any]],
    ) -> None:
        # Never reschedule at or before the slot that just fired
        reference = now
        scheduled_for = (payload or {}).get("scheduled_for")
        if scheduled_for:
            slot = datetime.fromisoformat(scheduled_for).astimezone(self.clock.tz)
            reference = max(now, slot)
        try:
            self.schedule_one(record, now=reference)
        except SchedulingError as e:
            self.log.warning(
                "reminder.reschedule.skip " + kv(id=e.medication_id, reason=e.reason)
            )

    @staticmethod
    def _record_from_payload(
        medication_id: int, payload: Optional[Dict[str, Any]]
    ) -> MedicationRecord:
        payload = payload or {}
        return MedicationRecord(
            id=medication_id,
            name=payload.get("name") or f"medication {medication_id}",
            time_to_take=payload.get("time_to_take") or "",
            weekdays=frozenset(payload["weekdays"]) if payload.get("weekdays") else None,
        )

# medsync/core/service.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, List, Optional, Set, Tuple

from medsync.core.cache import MedicationCache
from medsync.core.clock import Clock
from medsync.core.connectivity import ConnectivityMonitor
from medsync.core.errors import RefreshError, UnknownMedicationError
from medsync.core.logging_utils import kv
from medsync.core.models import MedicationRecord
from medsync.core.reconciler import Reconciler
from medsync.core.reminders import ReminderScheduler
from medsync.core.sync import SyncScheduler


class MedicationService:
    """
    Orchestrates the cache, reconciler, sync and reminders.

    mark_taken / reset_taken here are the only way taken-state changes on the
    device: the in-app action and the alert action both land here, so every
    change is flagged dirty and fed to the sync debounce.
    """

    def __init__(
        self,
        cache: MedicationCache,
        reconciler: Reconciler,
        sync: SyncScheduler,
        reminders: ReminderScheduler,
        clock: Clock,
        connectivity: Optional[ConnectivityMonitor] = None,
    ) -> None:
        self.cache = cache
        self.reconciler = reconciler
        self.sync = sync
        self.reminders = reminders
        self.clock = clock
        self.connectivity = connectivity
        self.log = logging.getLogger("medsync.service")

        self._signature: Optional[Tuple] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._tasks: Set[asyncio.Task] = set()

    # ---- lifecycle --------------------------------------------------------------------
    def start(self) -> None:
        """Hook cache snapshots and connectivity changes."""
        self._unsubscribers.append(self.cache.subscribe(self._on_snapshot))
        if self.connectivity is not None:
            self._unsubscribers.append(
                self.connectivity.subscribe(self._on_connectivity_changed)
            )

    async def activate(self) -> List[MedicationRecord]:
        """
        App activation: clear yesterday's flags, refresh from the server
        (falling back to cache), and re-derive every reminder.
        Raises RefreshError only when there is no data at all.
        """
        await self.reconciler.reset_stale_statuses()
        records = await self.refresh()
        self._reschedule(records)
        return records

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        for t in list(self._tasks):
            t.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await t
        await self.sync.close()

    # ---- reads ------------------------------------------------------------------------
    async def refresh(self) -> List[MedicationRecord]:
        return await self.reconciler.refresh()

    async def medications_today(self) -> List[MedicationRecord]:
        """What the display should show right now (weekday mask applied)."""
        return self.reconciler.visible_today(await self.cache.get_all())

    async def has_pending_changes(self) -> bool:
        return await self.sync.has_pending_changes()

    # ---- the single mutation path -----------------------------------------------------
    async def mark_taken(self, medication_id: int) -> None:
        ts = self.clock.now_ms()
        await self.cache.mark_taken(medication_id, ts)
        self.log.info("dose.taken " + kv(id=medication_id, ts=ts))
        self.sync.notify_mutation()

    async def reset_taken(self, medication_id: int) -> None:
        await self.cache.reset_taken(medication_id, mark_dirty=True)
        self.log.info("dose.reset " + kv(id=medication_id))
        self.sync.notify_mutation()

    async def acknowledge_alert(self, medication_id: int) -> None:
        """'Taken' pressed on a reminder alert."""
        try:
            await self.mark_taken(medication_id)
        except UnknownMedicationError:
            self.log.warning("dose.ack.unknown " + kv(id=medication_id))
        self.reminders.dismiss(medication_id)

    # ---- periodic ---------------------------------------------------------------------
    async def periodic_check(self) -> List[int]:
        """Hourly: clear stale taken flags and make sure every reminder is armed."""
        cleared = await self.reconciler.reset_stale_statuses()
        self._reschedule(await self.cache.get_all())
        return cleared

    # ---- reactions --------------------------------------------------------------------
    def _reschedule(self, records: List[MedicationRecord]) -> None:
        self._signature = self._signature_of(records)
        self.reminders.schedule_all(records)

    @staticmethod
    def _signature_of(records: List[MedicationRecord]) -> Tuple:
        return tuple(sorted(r.server_signature() for r in records))

    def _on_snapshot(self, records: List[MedicationRecord]) -> None:
        # Taken/dirty changes do not move triggers; only the set definition does
        signature = self._signature_of(records)
        if signature == self._signature:
            return
        self.log.debug("service.medications.changed " + kv(count=len(records)))
        self._reschedule(records)

    def _on_connectivity_changed(self, online: bool) -> None:
        if not online:
            return
        task = asyncio.create_task(self._back_online())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _back_online(self) -> None:
        try:
            await self.sync.on_connectivity_restored()
            await self.refresh()
        except RefreshError as e:
            self.log.warning("service.reconnect.refresh_failed " + kv(err=str(e)))
        except Exception as e:
            self.log.error("service.reconnect.error " + kv(err=str(e)))

# medsync/core/reconciler.py
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Iterable, List, Optional

from medsync.core.cache import MedicationCache
from medsync.core.clock import Clock
from medsync.core.connectivity import ConnectivityMonitor
from medsync.core.errors import NetworkError, RefreshError
from medsync.core.logging_utils import kv
from medsync.core.models import MedicationRecord


def merge(
    existing: Iterable[MedicationRecord], fetched: Iterable[MedicationRecord]
) -> List[MedicationRecord]:
    """
    Server fields come from `fetched`, device fields from `existing` (matched by id).
    Ids absent from `fetched` are dropped. A record that is still dirty keeps
    its dirty flag so the unsynced edit is uploaded later; everything else
    comes out clean.
    """
    by_id = {r.id: r for r in existing}
    merged: List[MedicationRecord] = []
    for server_rec in fetched:
        old = by_id.get(server_rec.id)
        if old is not None:
            merged.append(server_rec.with_device_state_of(old, keep_dirty=True))
        else:
            merged.append(replace(server_rec, is_dirty=False))
    return merged


def visible_on(records: Iterable[MedicationRecord], day: date) -> List[MedicationRecord]:
    """Display view: hide records whose weekday mask excludes `day`."""
    return [r for r in records if r.applies_on(day)]


class Reconciler:
    """Brings fetched server data into the cache and clears yesterday's taken flags."""

    def __init__(
        self,
        cache: MedicationCache,
        remote,
        clock: Clock,
        connectivity: Optional[ConnectivityMonitor] = None,
    ) -> None:
        self.cache = cache
        self.remote = remote
        self.clock = clock
        self.connectivity = connectivity
        self.log = logging.getLogger("medsync.reconciler")

    async def refresh(self) -> List[MedicationRecord]:
        """
        Fetch and merge. When the fetch is impossible or fails, the cached set
        is returned instead; RefreshError only when there is nothing cached.
        """
        if self.connectivity is not None and not self.connectivity.is_online():
            return await self._fallback(NetworkError("no network connection"))

        try:
            fetched = await self.remote.fetch()
        except NetworkError as e:
            return await self._fallback(e)

        result = await self.cache.apply(lambda existing: merge(existing, fetched))
        self.log.info("reconcile.merged " + kv(count=len(result)))
        return result

    async def _fallback(self, err: NetworkError) -> List[MedicationRecord]:
        cached = await self.cache.get_all()
        if cached:
            self.log.info(
                "reconcile.fallback.cache " + kv(count=len(cached), reason=str(err))
            )
            return cached
        self.log.error("reconcile.fallback.empty " + kv(reason=str(err)))
        raise RefreshError(
            f"no network data and no cached medications available: {err}"
        ) from err

    async def reset_stale_statuses(self) -> List[int]:
        """Untake every record whose taken timestamp is on an earlier calendar day."""
        now_ms = self.clock.now_ms()
        stale = {
            r.id: r.last_taken_timestamp
            for r in await self.cache.get_all()
            if r.is_taken
            and r.last_taken_timestamp > 0
            and not self.clock.same_day(r.last_taken_timestamp, now_ms)
        }
        if not stale:
            return []
        cleared = await self.cache.clear_taken_if_unchanged(stale)
        self.log.info("reconcile.stale.reset " + kv(ids=cleared))
        return cleared

    def visible_today(self, records: Iterable[MedicationRecord]) -> List[MedicationRecord]:
        return visible_on(records, self.clock.now().date())

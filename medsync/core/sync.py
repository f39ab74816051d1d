# medsync/core/sync.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Callable, Optional

from medsync.core.cache import MedicationCache
from medsync.core.connectivity import ConnectivityMonitor
from medsync.core.errors import UploadError
from medsync.core.logging_utils import kv


class SyncState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SYNCING = "syncing"


class SyncScheduler:
    """
    Debounced full-snapshot upload of local changes.

    Each mutation restarts a single quiet-period timer; when it elapses the
    whole cache is uploaded. A failed upload leaves dirty flags in place and
    is not retried here: the next mutation or a restored connection is the
    retry.
    """

    def __init__(
        self,
        cache: MedicationCache,
        remote,
        *,
        quiet_period_s: float,
        token_provider: Callable[[], str],
        connectivity: Optional[ConnectivityMonitor] = None,
        settle_s: float = 0.0,
    ) -> None:
        self.cache = cache
        self.remote = remote
        self.quiet_period_s = quiet_period_s
        self.token_provider = token_provider
        self.connectivity = connectivity
        self.settle_s = settle_s
        self.log = logging.getLogger("medsync.sync")

        self._timer: Optional[asyncio.Task] = None
        self._upload_lock = asyncio.Lock()
        self._syncing = False

    @property
    def state(self) -> SyncState:
        if self._syncing:
            return SyncState.SYNCING
        if self._timer is not None and not self._timer.done():
            return SyncState.PENDING
        return SyncState.IDLE

    # ---- triggers ---------------------------------------------------------------------
    def notify_mutation(self) -> None:
        """Restart the quiet period (at most one pending timer)."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._debounce())
        self.log.debug("sync.debounce.restart " + kv(quiet_s=self.quiet_period_s))

    async def _debounce(self) -> None:
        await asyncio.sleep(self.quiet_period_s)
        # Detach before uploading so a new mutation cannot cancel the upload itself
        self._timer = None
        try:
            await self.sync_now()
        except Exception as e:
            self.log.error("sync.debounce.error " + kv(err=str(e)))

    async def on_connectivity_restored(self) -> bool:
        """Upload immediately (no debounce) if anything is dirty."""
        if self.settle_s:
            await asyncio.sleep(self.settle_s)
        if not await self.cache.has_dirty():
            self.log.debug("sync.reconnect.clean")
            return True
        self.log.info("sync.reconnect.pending_changes")
        return await self.sync_now()

    async def has_pending_changes(self) -> bool:
        return await self.cache.has_dirty()

    async def flush(self) -> bool:
        """Skip the remaining quiet period and upload now (used at shutdown)."""
        await self._cancel_timer()
        return await self.sync_now()

    async def close(self) -> None:
        await self._cancel_timer()

    async def _cancel_timer(self) -> None:
        t = self._timer
        self._timer = None
        if t and not t.done():
            t.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await t

    # ---- upload -----------------------------------------------------------------------
    async def sync_now(self) -> bool:
        """Run one upload attempt. Returns True when nothing is left unsynced."""
        async with self._upload_lock:
            self._syncing = True
            try:
                return await self._upload()
            finally:
                self._syncing = False

    async def _upload(self) -> bool:
        if self.connectivity is not None and not self.connectivity.is_online():
            self.log.info("sync.upload.skip " + kv(reason="offline"))
            return False

        dirty = await self.cache.get_dirty()
        if not dirty:
            self.log.debug("sync.upload.skip " + kv(reason="nothing dirty"))
            return True

        snapshot = await self.cache.get_all()
        try:
            token = self.token_provider()
        except RuntimeError as e:
            self.log.error("sync.upload.no_token " + kv(err=str(e)))
            return False

        self.log.info(
            "sync.upload.start " + kv(dirty=len(dirty), records=len(snapshot))
        )
        try:
            await self.remote.upload(snapshot, token)
        except UploadError as e:
            self.log.warning(
                "sync.upload.failed " + kv(status=e.status, err=str(e))
            )
            return False

        # Full-snapshot ack: everything dirty right now is considered uploaded
        await self.cache.clear_all_dirty()
        self.log.info("sync.upload.ok " + kv(records=len(snapshot)))
        return True

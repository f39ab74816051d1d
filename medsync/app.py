# medsync/app.py
from __future__ import annotations

import asyncio
import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from medsync import config as cfg
from medsync.adapters.alarms import ApschedulerAlarms
from medsync.adapters.notifier import LoggingNotifier
from medsync.core.cache import MedicationCache
from medsync.core.clock import Clock
from medsync.core.config_validation import validate_config
from medsync.core.connectivity import ConnectivityMonitor
from medsync.core.errors import RefreshError
from medsync.core.logging_utils import kv, setup_logging
from medsync.core.periodic import PeriodicCheck
from medsync.core.reconciler import Reconciler
from medsync.core.reminders import ReminderScheduler
from medsync.core.remote import RemoteStoreClient
from medsync.core.service import MedicationService
from medsync.core.sync import SyncScheduler


def schedule_jobs(
    sched: AsyncIOScheduler,
    service: MedicationService,
    remote: RemoteStoreClient,
    connectivity: ConnectivityMonitor,
    config: Any,
) -> PeriodicCheck:
    """
    Register the background jobs: hourly stale-status check and the
    connectivity probe. The scheduler is configured here, NOT started.
    """
    periodic = PeriodicCheck(
        sched,
        service.periodic_check,
        interval_s=config.STALE_CHECK_INTERVAL_S,
        retry_s=config.STALE_CHECK_RETRY_S,
        timezone=config.TZ,
    )
    periodic.install()

    async def _probe() -> None:
        connectivity.report(await remote.probe())

    sched.add_job(
        _probe,
        trigger="interval",
        seconds=config.CONNECTIVITY_PROBE_S,
        id="connectivity-probe",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    return periodic


async def main() -> None:
    setup_logging(cfg)
    log = logging.getLogger("medsync.app")
    validate_config(cfg)

    clock = Clock(cfg.TZ)
    cache = MedicationCache(cfg.DB_PATH)
    await cache.open()

    remote = RemoteStoreClient(
        cfg.BASE_URL,
        cfg.DATASET_PATH,
        cfg.UPLOAD_PATH,
        timeout_s=cfg.HTTP_TIMEOUT_S,
    )
    connectivity = ConnectivityMonitor(online=await remote.probe())

    sched = AsyncIOScheduler(timezone=cfg.TZ)
    alarms = ApschedulerAlarms(sched, misfire_grace_s=cfg.ALARM_MISFIRE_GRACE_S)
    reminders = ReminderScheduler(cache, alarms, LoggingNotifier(), clock)
    alarms.attach_handler(reminders.on_fire)

    reconciler = Reconciler(cache, remote, clock, connectivity)
    sync = SyncScheduler(
        cache,
        remote,
        quiet_period_s=cfg.SYNC_DEBOUNCE_S,
        token_provider=cfg.get_upload_token,
        connectivity=connectivity,
        settle_s=cfg.CONNECTIVITY_SETTLE_S,
    )
    service = MedicationService(cache, reconciler, sync, reminders, clock, connectivity)

    schedule_jobs(sched, service, remote, connectivity, cfg)
    service.start()
    sched.start()

    try:
        records = await service.activate()
        log.info("startup.ready " + kv(medications=len(records), online=connectivity.is_online()))
    except RefreshError as e:
        # Nothing cached and no network: keep running, the probe will bring us back
        log.error("startup.no_data " + kv(err=str(e)))

    try:
        await asyncio.Event().wait()
    finally:
        sched.shutdown(wait=False)
        if await sync.has_pending_changes():
            await sync.flush()
        await service.close()
        await remote.close()
        await cache.close()


if __name__ == "__main__":
    asyncio.run(main())

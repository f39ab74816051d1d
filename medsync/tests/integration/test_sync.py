# medsync/tests/integration/test_sync.py
import asyncio

import pytest

from conftest import rec
from medsync.core.connectivity import ConnectivityMonitor
from medsync.core.sync import SyncScheduler, SyncState

QUIET = 0.1


def make_sync(cache, remote, **kw):
    kw.setdefault("quiet_period_s", QUIET)
    kw.setdefault("token_provider", lambda: "secret-token")
    return SyncScheduler(cache, remote, **kw)


@pytest.mark.asyncio
async def test_burst_of_marks_collapses_into_one_upload(cache, fake_remote):
    await cache.replace_all([rec(1), rec(2), rec(3)])
    sync = make_sync(cache, fake_remote)

    for i, mid in enumerate([1, 2, 3, 1], start=1):
        await cache.mark_taken(mid, 1000 * i)
        sync.notify_mutation()
        await asyncio.sleep(QUIET / 4)
    assert sync.state is SyncState.PENDING

    await asyncio.sleep(QUIET * 4)
    assert len(fake_remote.uploads) == 1
    snapshot, token = fake_remote.uploads[0]
    assert token == "secret-token"
    # whole list, carrying the latest state of record 1
    assert {r.id: r.last_taken_timestamp for r in snapshot} == {1: 4000, 2: 2000, 3: 3000}
    assert not await cache.has_dirty()
    assert sync.state is SyncState.IDLE
    await sync.close()


@pytest.mark.asyncio
async def test_failed_upload_keeps_dirty_then_next_success_clears(cache, fake_remote):
    await cache.replace_all([rec(1), rec(2)])
    sync = make_sync(cache, fake_remote)
    await cache.mark_taken(1, 10)

    fake_remote.fail_upload(503)
    assert await sync.sync_now() is False
    assert [r.id for r in await cache.get_dirty()] == [1]

    fake_remote.upload_error = None
    assert await sync.sync_now() is True
    assert await cache.get_dirty() == []
    assert len(fake_remote.uploads) == 2


@pytest.mark.asyncio
async def test_record_dirtied_mid_upload_is_cleared_by_the_ack(cache, fake_remote):
    await cache.replace_all([rec(1), rec(2)])
    sync = make_sync(cache, fake_remote)
    await cache.mark_taken(1, 10)

    async def user_taps_second_dose():
        await cache.mark_taken(2, 20)

    fake_remote.during_upload = user_taps_second_dose
    assert await sync.sync_now() is True

    [(snapshot, _)] = fake_remote.uploads
    assert {r.id: r.is_taken for r in snapshot} == {1: True, 2: False}
    # full-snapshot acknowledgement clears the late edit as well
    assert await cache.get_dirty() == []


@pytest.mark.asyncio
async def test_nothing_dirty_means_no_network_call(cache, fake_remote):
    await cache.replace_all([rec(1)])
    sync = make_sync(cache, fake_remote)
    assert await sync.sync_now() is True
    assert fake_remote.uploads == []


@pytest.mark.asyncio
async def test_offline_skips_upload(cache, fake_remote):
    await cache.replace_all([rec(1)])
    await cache.mark_taken(1, 10)
    conn = ConnectivityMonitor(online=False)
    sync = make_sync(cache, fake_remote, connectivity=conn)
    assert await sync.sync_now() is False
    assert fake_remote.uploads == []
    assert await sync.has_pending_changes()


@pytest.mark.asyncio
async def test_connectivity_restored_uploads_without_debounce(cache, fake_remote):
    await cache.replace_all([rec(1)])
    await cache.mark_taken(1, 10)
    sync = make_sync(cache, fake_remote, quiet_period_s=60)
    assert await sync.on_connectivity_restored() is True
    assert len(fake_remote.uploads) == 1
    assert not await sync.has_pending_changes()


@pytest.mark.asyncio
async def test_connectivity_restored_with_clean_cache_is_noop(cache, fake_remote):
    await cache.replace_all([rec(1)])
    sync = make_sync(cache, fake_remote)
    assert await sync.on_connectivity_restored() is True
    assert fake_remote.uploads == []


@pytest.mark.asyncio
async def test_missing_token_leaves_changes_pending(cache, fake_remote):
    def no_token():
        raise RuntimeError("upload token is not configured")

    await cache.replace_all([rec(1)])
    await cache.mark_taken(1, 10)
    sync = make_sync(cache, fake_remote, token_provider=no_token)
    assert await sync.sync_now() is False
    assert fake_remote.uploads == []
    assert await cache.has_dirty()


@pytest.mark.asyncio
async def test_flush_skips_the_quiet_period(cache, fake_remote):
    await cache.replace_all([rec(1)])
    sync = make_sync(cache, fake_remote, quiet_period_s=60)
    await cache.mark_taken(1, 10)
    sync.notify_mutation()
    assert await sync.flush() is True
    assert len(fake_remote.uploads) == 1
    assert sync.state is SyncState.IDLE


@pytest.mark.asyncio
async def test_state_is_syncing_while_upload_in_flight(cache, fake_remote):
    await cache.replace_all([rec(1)])
    await cache.mark_taken(1, 10)
    sync = make_sync(cache, fake_remote)
    seen = []

    async def look():
        seen.append(sync.state)

    fake_remote.during_upload = look
    await sync.sync_now()
    assert seen == [SyncState.SYNCING]


@pytest.mark.asyncio
async def test_new_mutation_does_not_cancel_running_upload(cache, fake_remote):
    await cache.replace_all([rec(1), rec(2)])
    sync = make_sync(cache, fake_remote)
    release = asyncio.Event()

    async def slow():
        await release.wait()

    fake_remote.during_upload = slow
    await cache.mark_taken(1, 10)
    sync.notify_mutation()
    await asyncio.sleep(QUIET * 2)
    assert sync.state is SyncState.SYNCING

    # second tap while the first upload is on the wire
    await cache.mark_taken(2, 20)
    sync.notify_mutation()
    release.set()
    await asyncio.sleep(QUIET * 3)

    # the upload in flight finished; its full-snapshot ack also covers record 2
    assert len(fake_remote.uploads) == 1
    assert (await cache.get(2)).is_taken is True
    assert not await cache.has_dirty()
    assert sync.state is SyncState.IDLE
    await sync.close()

"""Tests for the expiry scheduler and startup recovery."""

import asyncio
import time

import pytest

from hiraeth.errors import BlobIOError
from hiraeth.lifecycle.scheduler import ExpiryScheduler, purge


@pytest.fixture
async def scheduler(store, blobs):
    s = ExpiryScheduler(store, blobs)
    yield s
    await s.close()


async def _committed(store, blobs, owner, expiry, data=b"payload"):
    object_id = await store.create_committed(owner, "f.txt", expiry)
    await blobs.put(object_id, data)
    return object_id


class TestArm:
    """Tests for arm() and timer firing."""

    async def test_past_expiry_deletes_immediately(self, store, blobs, owner, clock):
        """An expiry at or before now deletes synchronously and arms nothing."""
        scheduler = ExpiryScheduler(store, blobs, clock)
        object_id = await _committed(store, blobs, owner, clock() - 1)

        assert await scheduler.arm(object_id, clock() - 1) is False
        assert not scheduler.is_armed(object_id)
        assert await store.get(object_id) is None
        assert not await blobs.exists(object_id)

    async def test_expiry_equal_to_now_deletes(self, store, blobs, owner, clock):
        """expiry == now counts as expired."""
        scheduler = ExpiryScheduler(store, blobs, clock)
        object_id = await _committed(store, blobs, owner, clock())
        assert await scheduler.arm(object_id, clock()) is False
        assert await store.get(object_id) is None

    async def test_timer_fires_at_expiry(self, store, blobs, owner, scheduler):
        """The blob and row are gone shortly after expiry."""
        expiry = time.time() + 0.1
        object_id = await _committed(store, blobs, owner, expiry)

        assert await scheduler.arm(object_id, expiry) is True
        assert scheduler.is_armed(object_id)
        assert scheduler.armed_count() == 1

        await asyncio.sleep(0.05)
        assert await store.get(object_id) is not None

        await asyncio.sleep(0.15)
        await scheduler._timers.drain()
        assert await store.get(object_id) is None
        assert not await blobs.exists(object_id)
        assert scheduler.armed_count() == 0

    async def test_rearm_replaces(self, store, blobs, owner, scheduler):
        """Arming an id twice keeps a single timer."""
        object_id = await _committed(store, blobs, owner, time.time() + 100)
        await scheduler.arm(object_id, time.time() + 100)
        await scheduler.arm(object_id, time.time() + 200)
        assert scheduler.armed_count() == 1

    async def test_cancel_keeps_object(self, store, blobs, owner, scheduler):
        """cancel() stops the timer without deleting anything."""
        expiry = time.time() + 0.05
        object_id = await _committed(store, blobs, owner, expiry)
        await scheduler.arm(object_id, expiry)

        assert scheduler.cancel(object_id) is True
        await asyncio.sleep(0.1)
        assert await store.get(object_id) is not None
        assert await blobs.exists(object_id)
        assert scheduler.cancel(object_id) is False


class TestOnFire:
    """Tests for on_fire()."""

    async def test_on_fire_is_idempotent(self, store, blobs, owner, scheduler):
        """Firing twice for the same id is harmless."""
        object_id = await _committed(store, blobs, owner, 1.0)
        await scheduler.on_fire(object_id)
        await scheduler.on_fire(object_id)
        assert await store.get(object_id) is None

    async def test_missing_blob_counts_as_success(self, store, blobs, owner, scheduler):
        """A blob that is already gone does not stop the row delete."""
        object_id = await store.create_committed(owner, "f.txt", 1.0)
        await scheduler.on_fire(object_id)
        assert await store.get(object_id) is None

    async def test_failure_is_logged_not_raised(self, store, blobs, owner, scheduler, caplog, monkeypatch):
        """A blob removal failure is logged at ERROR and the row is still deleted."""
        object_id = await _committed(store, blobs, owner, 1.0)

        async def broken_delete(object_id):
            raise BlobIOError("disk on fire")

        monkeypatch.setattr(blobs, "delete", broken_delete)
        await scheduler.on_fire(object_id)

        assert "Unable to remove blob" in caplog.text
        assert "disk on fire" in caplog.text
        assert await store.get(object_id) is None


class TestPurge:
    """Tests for the best-effort purge() helper."""

    async def test_reports_clean(self, store, blobs, owner):
        """purge() returns True when both blob and row are gone."""
        object_id = await _committed(store, blobs, owner, 1.0)
        assert await purge(store, blobs, object_id, reason="manual") is True

    async def test_reports_failure(self, store, blobs, owner, monkeypatch):
        """purge() returns False when something was left behind."""
        object_id = await _committed(store, blobs, owner, 1.0)

        async def broken_delete(object_id):
            raise BlobIOError("nope")

        monkeypatch.setattr(blobs, "delete", broken_delete)
        assert await purge(store, blobs, object_id, reason="expired") is False


class TestRecover:
    """Tests for recover()."""

    async def test_restart_scenario(self, store, blobs, owner, clock):
        """A committed row that expired 5 s ago and a pending row are both removed."""
        expired = await _committed(store, blobs, owner, clock() - 5)
        pending = await store.create_pending(owner, "partial.bin", clock() + 3600)
        await blobs.put(pending, b"half")

        scheduler = ExpiryScheduler(store, blobs, clock)
        report = await scheduler.recover()

        assert report.expired == 1
        assert report.reclaimed == 1
        assert report.armed == 0
        assert await store.all_ids() == set()
        assert await blobs.list_ids() == set()
        await scheduler.close()

    async def test_rearms_live_objects(self, store, blobs, owner, clock):
        """Committed rows with a future expiry get a timer."""
        live = await _committed(store, blobs, owner, clock() + 3600)

        scheduler = ExpiryScheduler(store, blobs, clock)
        report = await scheduler.recover()

        assert report.armed == 1
        assert scheduler.is_armed(live)
        assert await blobs.exists(live)
        await scheduler.close()

    async def test_orphans_removed(self, store, blobs, owner, clock):
        """Blobs without rows and committed rows without blobs are removed."""
        await blobs.put("stray-blob", b"no row")
        blobless = await store.create_committed(owner, "gone.txt", clock() + 3600)
        live = await _committed(store, blobs, owner, clock() + 3600)

        scheduler = ExpiryScheduler(store, blobs, clock)
        report = await scheduler.recover()

        assert report.orphan_blobs == 1
        assert report.orphan_rows == 1
        assert report.armed == 1
        assert not await blobs.exists("stray-blob")
        assert await store.get(blobless) is None
        assert await store.all_ids() == {live}
        await scheduler.close()

    async def test_recover_empty(self, store, blobs):
        """Recovery on an empty system does nothing."""
        scheduler = ExpiryScheduler(store, blobs)
        report = await scheduler.recover()
        assert report.reclaimed == report.armed == report.expired == 0
        assert report.orphan_blobs == report.orphan_rows == 0

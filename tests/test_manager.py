"""Tests for the LifecycleManager facade."""

import io

import pytest

from hiraeth.config import UploadConfig
from hiraeth.errors import BlobIOError, InvalidTarget, LifetimeExceeded, NotFound, StorageError
from hiraeth.lifecycle.manager import LifecycleManager


@pytest.fixture
async def sim_manager(store, blobs, clock):
    """A manager driven by the simulated clock."""
    m = LifecycleManager(
        store,
        blobs,
        chunk_size=1024,
        inactivity_timeout=60.0,
        max_lifetime=365 * 24 * 3600.0,
        clock=clock,
    )
    yield m
    await m.close()


async def _read(manager, object_id) -> bytes:
    reader = await manager.open_blob(object_id)
    return b"".join([chunk async for chunk in reader])


class TestHelloWorld:
    """The canonical chunked-upload example under a simulated clock."""

    async def test_hello_world(self, sim_manager, store, blobs, owner, clock):
        """Upload "hello" + " world", download it, then watch it expire."""
        object_id = await sim_manager.begin_upload(owner, "greeting.txt", 60)
        await sim_manager.append_chunk(object_id, owner, b"hello")
        await sim_manager.append_chunk(object_id, owner, b" world")
        obj = await sim_manager.finish_upload(object_id, owner)

        assert obj.expiry == clock() + 60
        assert sim_manager.scheduler.is_armed(object_id)

        clock.advance(30)
        found = await sim_manager.get_for_download(object_id)
        assert found.display_name == "greeting.txt"
        assert await _read(sim_manager, object_id) == b"hello world"

        clock.advance(31)
        with pytest.raises(NotFound):
            await sim_manager.get_for_download(object_id)

        await sim_manager.scheduler.on_fire(object_id)
        assert await store.get(object_id) is None
        assert not await blobs.exists(object_id)
        assert not sim_manager.scheduler.is_armed(object_id)

    async def test_pending_is_not_downloadable(self, sim_manager, owner):
        """A pending upload is invisible to download and listing."""
        object_id = await sim_manager.begin_upload(owner, "f", 60)
        with pytest.raises(NotFound):
            await sim_manager.get_for_download(object_id)
        assert await sim_manager.list_for_owner(owner) == []


class TestDirectUpload:
    """Tests for direct_upload()."""

    async def test_direct_upload_bytes(self, sim_manager, owner, clock):
        """A single-shot upload is committed and armed."""
        obj = await sim_manager.direct_upload(owner, "a.txt", 3600, b"contents")
        assert obj.committed
        assert obj.expiry == clock() + 3600
        assert sim_manager.scheduler.is_armed(obj.id)
        assert await _read(sim_manager, obj.id) == b"contents"

    async def test_direct_upload_file_object(self, sim_manager, owner):
        """File objects are streamed to the blob store."""
        obj = await sim_manager.direct_upload(owner, "b.bin", 60, io.BytesIO(b"\x00" * 5000))
        assert await sim_manager.blobs.size(obj.id) == 5000

    async def test_direct_upload_with_secret(self, sim_manager, owner):
        """The access secret hash is stored on the row."""
        obj = await sim_manager.direct_upload(owner, "c", 60, b"x", access_secret="$2b$hash")
        assert obj.access_secret == "$2b$hash"

    async def test_open_blob_survives_removal(self, sim_manager, blobs, owner):
        """An opened blob streams in full even if it is removed meanwhile."""
        obj = await sim_manager.direct_upload(owner, "a.txt", 60, b"still here")
        reader = await sim_manager.open_blob(obj.id)
        await blobs.delete(obj.id)

        assert reader.size == 10
        assert b"".join([chunk async for chunk in reader]) == b"still here"

    async def test_open_missing_blob(self, sim_manager, blobs, owner):
        """A missing blob is reported as NotFound."""
        obj = await sim_manager.direct_upload(owner, "a.txt", 60, b"x")
        await blobs.delete(obj.id)
        with pytest.raises(NotFound):
            await sim_manager.open_blob(obj.id)

    async def test_lifetime_exceeded_stores_nothing(self, sim_manager, store, blobs, owner):
        """A TTL beyond the maximum writes neither blob nor row."""
        with pytest.raises(LifetimeExceeded):
            await sim_manager.direct_upload(owner, "d", 366 * 24 * 3600, b"x")
        assert await store.all_ids() == set()
        assert await blobs.list_ids() == set()

    async def test_row_failure_removes_blob(self, sim_manager, store, blobs, owner, monkeypatch):
        """If the row insert fails the freshly written blob is removed."""

        async def broken_create(*args, **kwargs):
            raise StorageError("database is locked")

        monkeypatch.setattr(store, "create_committed", broken_create)
        with pytest.raises(StorageError):
            await sim_manager.direct_upload(owner, "e", 60, b"x")
        assert await blobs.list_ids() == set()


class TestOwnership:
    """Owner checks on rename, describe and delete_now."""

    async def test_rename(self, sim_manager, owner):
        """The owner can rename a committed object."""
        obj = await sim_manager.direct_upload(owner, "old", 60, b"x")
        await sim_manager.rename(obj.id, owner, "new")
        assert (await sim_manager.get_owned(obj.id, owner)).display_name == "new"

    async def test_cross_owner_rename(self, sim_manager, owner, other_owner):
        """Renaming another owner's object raises NotFound without side effect."""
        obj = await sim_manager.direct_upload(owner, "old", 60, b"x")
        with pytest.raises(NotFound):
            await sim_manager.rename(obj.id, other_owner, "mine now")
        assert (await sim_manager.get_owned(obj.id, owner)).display_name == "old"

    async def test_cross_owner_get(self, sim_manager, owner, other_owner):
        """get_owned hides other owners' objects."""
        obj = await sim_manager.direct_upload(owner, "f", 60, b"x")
        with pytest.raises(NotFound):
            await sim_manager.get_owned(obj.id, other_owner)

    async def test_cross_owner_delete(self, sim_manager, store, blobs, owner, other_owner):
        """delete_now by another owner raises NotFound and keeps everything."""
        obj = await sim_manager.direct_upload(owner, "f", 60, b"x")
        with pytest.raises(NotFound):
            await sim_manager.delete_now(obj.id, other_owner)
        assert await store.get(obj.id) is not None
        assert await blobs.exists(obj.id)
        assert sim_manager.scheduler.is_armed(obj.id)

    async def test_cross_owner_append(self, sim_manager, blobs, owner, other_owner):
        """append_chunk by another owner raises InvalidTarget and writes nothing."""
        object_id = await sim_manager.begin_upload(owner, "f", 60)
        with pytest.raises(InvalidTarget):
            await sim_manager.append_chunk(object_id, other_owner, b"evil")
        assert await blobs.get(object_id) == b""


class TestDeleteNow:
    """Tests for delete_now()."""

    async def test_delete_committed(self, sim_manager, store, blobs, owner):
        """Deleting a committed object cancels its timer and removes it."""
        obj = await sim_manager.direct_upload(owner, "f", 60, b"x")
        await sim_manager.delete_now(obj.id, owner)
        assert await store.get(obj.id) is None
        assert not await blobs.exists(obj.id)
        assert not sim_manager.scheduler.is_armed(obj.id)

    async def test_delete_twice(self, sim_manager, owner):
        """A second delete reports NotFound."""
        obj = await sim_manager.direct_upload(owner, "f", 60, b"x")
        await sim_manager.delete_now(obj.id, owner)
        with pytest.raises(NotFound):
            await sim_manager.delete_now(obj.id, owner)

    async def test_delete_pending_aborts(self, sim_manager, store, blobs, owner):
        """Deleting an owned pending upload aborts it."""
        object_id = await sim_manager.begin_upload(owner, "f", 60)
        await sim_manager.delete_now(object_id, owner)
        assert await store.get(object_id) is None
        assert not await blobs.exists(object_id)
        assert sim_manager.assembler.pending_count() == 0

    async def test_failed_delete_rearms(self, sim_manager, store, blobs, owner, monkeypatch):
        """If removal fails the object stays scheduled for expiry."""
        obj = await sim_manager.direct_upload(owner, "f", 60, b"x")

        async def broken_delete(object_id):
            raise BlobIOError("busy")

        monkeypatch.setattr(blobs, "delete", broken_delete)
        with pytest.raises(BlobIOError):
            await sim_manager.delete_now(obj.id, owner)
        assert await store.get(obj.id) is not None
        assert sim_manager.scheduler.is_armed(obj.id)


class TestListing:
    """Tests for list_for_owner()."""

    async def test_lists_own_committed(self, sim_manager, owner, other_owner):
        """Only the caller's committed objects are listed."""
        mine = await sim_manager.direct_upload(owner, "mine", 60, b"x")
        await sim_manager.direct_upload(other_owner, "theirs", 60, b"y")
        await sim_manager.begin_upload(owner, "pending", 60)
        assert [o.id for o in await sim_manager.list_for_owner(owner)] == [mine.id]


class TestRecovery:
    """Recovery through the manager across a simulated restart."""

    async def test_restart(self, store, blobs, owner, clock):
        """Objects survive a restart; interrupted uploads do not."""
        first = LifecycleManager.from_config(
            UploadConfig(inactivity_timeout=60.0), store, blobs, clock=clock
        )
        kept = await first.direct_upload(owner, "kept", 3600, b"k")
        short = await first.direct_upload(owner, "short", 10, b"s")
        partial = await first.begin_upload(owner, "partial", 3600)
        await first.append_chunk(partial, owner, b"half")
        await first.close()

        clock.advance(20)
        second = LifecycleManager.from_config(UploadConfig(), store, blobs, clock=clock)
        report = await second.recover()

        assert report.reclaimed == 1
        assert report.expired == 1
        assert report.armed == 1
        assert await store.all_ids() == {kept.id}
        assert await blobs.list_ids() == {kept.id}
        assert second.scheduler.is_armed(kept.id)
        assert not second.scheduler.is_armed(short.id)
        await second.close()

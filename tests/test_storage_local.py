"""Unit tests for the local filesystem blob store.

Tests cover atomic put, appends, streaming, idempotent delete, id listing
and temp file cleanup on startup.
"""

import io

import pytest

from hiraeth.errors import BlobIOError
from hiraeth.storage.local import LocalBlobStore


class TestInit:
    """Tests for LocalBlobStore.init()."""

    async def test_creates_root_directory(self, tmp_path):
        """init() creates the data directory if it does not exist."""
        root = tmp_path / "new-root"
        store = LocalBlobStore(root)
        await store.init()
        assert root.is_dir()

    async def test_idempotent_init(self, tmp_path):
        """init() can be called twice without error."""
        store = LocalBlobStore(tmp_path / "twice")
        await store.init()
        await store.init()

    async def test_cleans_temp_files(self, tmp_path):
        """init() removes orphan .tmp. files from interrupted writes."""
        root = tmp_path / "cleanup"
        root.mkdir()
        orphan = root / "3f2c.tmp.abc12345"
        orphan.write_bytes(b"leftover")
        kept = root / "3f2c"
        kept.write_bytes(b"real blob")

        await LocalBlobStore(root).init()

        assert not orphan.exists()
        assert kept.read_bytes() == b"real blob"

    async def test_root_is_a_file(self, tmp_path):
        """A data directory path that is a file raises BlobIOError."""
        path = tmp_path / "not-a-dir"
        path.write_text("x")
        with pytest.raises(BlobIOError):
            await LocalBlobStore(path).init()


class TestPaths:
    """Tests for LocalBlobStore.path()."""

    @pytest.mark.parametrize("bad", ["", "../escape", "a/b", ".hidden", "."])
    def test_rejects_escaping_ids(self, tmp_path, bad):
        """Ids that could leave the data directory are rejected."""
        with pytest.raises(ValueError):
            LocalBlobStore(tmp_path).path(bad)

    def test_plain_id(self, tmp_path):
        """A plain id maps to a file directly under the root."""
        assert LocalBlobStore(tmp_path).path("abc") == tmp_path / "abc"


class TestPut:
    """Tests for put()."""

    async def test_put_bytes(self, blobs):
        """put() writes bytes and returns the size."""
        assert await blobs.put("one", b"hello") == 5
        assert await blobs.get("one") == b"hello"

    async def test_put_file_object(self, blobs):
        """put() copies from a binary file object."""
        data = b"x" * 200_000
        assert await blobs.put("big", io.BytesIO(data)) == len(data)
        assert await blobs.size("big") == len(data)

    async def test_put_replaces(self, blobs):
        """A second put replaces the contents atomically."""
        await blobs.put("one", b"first")
        await blobs.put("one", b"second")
        assert await blobs.get("one") == b"second"

    async def test_no_temp_files_left(self, blobs):
        """Successful writes leave no temp files behind."""
        await blobs.put("one", b"data")
        assert [p.name for p in blobs.root.iterdir()] == ["one"]


class TestAppend:
    """Tests for append()."""

    async def test_append_grows(self, blobs):
        """Appends concatenate and return the new size."""
        await blobs.put("f", b"")
        assert await blobs.append("f", b"hello") == 5
        assert await blobs.append("f", b" world") == 11
        assert await blobs.get("f") == b"hello world"

    async def test_append_creates(self, blobs):
        """Appending to a missing blob creates it."""
        await blobs.append("new", b"abc")
        assert await blobs.exists("new")


class TestOpen:
    """Tests for open()."""

    async def test_stream_in_chunks(self, blobs):
        """Large blobs are streamed in 64 KB chunks."""
        data = bytes(range(256)) * 1024
        await blobs.put("s", data)
        reader = await blobs.open("s")
        assert reader.size == len(data)
        chunks = [c async for c in reader]
        assert b"".join(chunks) == data
        assert len(chunks) == 4

    async def test_stream_empty(self, blobs):
        """An empty blob yields nothing."""
        await blobs.put("e", b"")
        assert [c async for c in await blobs.open("e")] == []

    async def test_head_keeps_position(self, blobs):
        """head() peeks at the start without consuming it."""
        await blobs.put("h", b"0123456789")
        reader = await blobs.open("h")
        assert reader.head(4) == b"0123"
        assert b"".join([c async for c in reader]) == b"0123456789"

    async def test_open_missing(self, blobs):
        """Opening a missing blob raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            await blobs.open("gone")

    async def test_close_before_reading(self, blobs):
        """A reader can be closed without being consumed, more than once."""
        await blobs.put("c", b"x")
        reader = await blobs.open("c")
        reader.close()
        reader.close()


class TestDelete:
    """Tests for delete()."""

    async def test_double_delete(self, blobs):
        """The first delete removes the file; the second is a no-op."""
        await blobs.put("d", b"bye")
        assert await blobs.delete("d") is True
        assert await blobs.delete("d") is False
        assert not await blobs.exists("d")

    async def test_delete_missing(self, blobs):
        """Deleting a blob that never existed is not an error."""
        assert await blobs.delete("never") is False


class TestListIds:
    """Tests for list_ids()."""

    async def test_lists_blobs_only(self, blobs):
        """Temp files and dotfiles are not reported as blobs."""
        await blobs.put("a", b"1")
        await blobs.put("b", b"2")
        (blobs.root / "c.tmp.deadbeef").write_bytes(b"partial")
        (blobs.root / ".keep").write_bytes(b"")
        assert await blobs.list_ids() == {"a", "b"}

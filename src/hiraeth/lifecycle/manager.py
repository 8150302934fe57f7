"""Lifecycle manager: the facade the API layer talks to.

Wires the object store, the blob store, the chunk assembler and the expiry
scheduler together and exposes the upload, query and deletion operations.
Every mutating operation takes a resolved ``owner_id``; ownership mismatches
surface as ``NotFound`` (or ``InvalidTarget`` on the upload path) so other
owners' objects are never revealed.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, BinaryIO

from hiraeth import metrics
from hiraeth.errors import InvalidTarget, NotFound, StorageError
from hiraeth.lifecycle.assembler import ChunkAssembler
from hiraeth.lifecycle.scheduler import ExpiryScheduler, RecoveryReport, Scheduler, remove_object
from hiraeth.metadata.models import StoredObject
from hiraeth.metadata.store import ObjectStore
from hiraeth.storage.backend import BlobReader, BlobStore

if TYPE_CHECKING:
    from hiraeth.config import UploadConfig

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Owns the lifecycle of every stored object.

    Attributes:
        store: The object store.
        blobs: The blob store.
        scheduler: The expiry scheduler.
        assembler: The chunked-upload state machine.
    """

    def __init__(
        self,
        store: ObjectStore,
        blobs: BlobStore,
        *,
        chunk_size: int,
        inactivity_timeout: float,
        max_lifetime: float,
        clock: Callable[[], float] = time.time,
        scheduler: Scheduler | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: The object store.
            blobs: The blob store.
            chunk_size: Maximum bytes per appended chunk.
            inactivity_timeout: Seconds a pending upload may idle.
            max_lifetime: Longest allowed time-to-live in seconds.
            clock: Wall-clock source in UNIX seconds.
            scheduler: Expiry scheduler to use. Defaults to an in-process
                       ``ExpiryScheduler``.
        """
        self.store = store
        self.blobs = blobs
        self._clock = clock
        self.scheduler = scheduler if scheduler is not None else ExpiryScheduler(store, blobs, clock)
        self.assembler = ChunkAssembler(
            store,
            blobs,
            self.scheduler,
            chunk_size=chunk_size,
            inactivity_timeout=inactivity_timeout,
            max_lifetime=max_lifetime,
            clock=clock,
        )

    @classmethod
    def from_config(
        cls,
        config: UploadConfig,
        store: ObjectStore,
        blobs: BlobStore,
        **kwargs,
    ) -> LifecycleManager:
        """Build a manager from the ``uploads`` configuration section."""
        return cls(
            store,
            blobs,
            chunk_size=config.chunk_size,
            inactivity_timeout=config.inactivity_timeout,
            max_lifetime=config.max_lifetime,
            **kwargs,
        )

    # -- Startup / shutdown -------------------------------------------------

    async def recover(self) -> RecoveryReport:
        """Rebuild timers from durable state. Must run before serving."""
        return await self.scheduler.recover()

    async def close(self) -> None:
        """Cancel all timers. Nothing is deleted."""
        await self.assembler.close()
        await self.scheduler.close()

    # -- Uploads ------------------------------------------------------------

    async def begin_upload(
        self,
        owner_id: int,
        display_name: str,
        ttl: float,
        access_secret: str | None = None,
    ) -> str:
        """Start a chunked upload and return the new object id."""
        return await self.assembler.begin(owner_id, display_name, ttl, access_secret)

    async def append_chunk(self, object_id: str, owner_id: int, chunk: bytes) -> int:
        """Append a chunk to a pending upload and return the blob size."""
        return await self.assembler.append(object_id, owner_id, chunk)

    async def finish_upload(self, object_id: str, owner_id: int) -> StoredObject:
        """Commit a pending upload and arm its expiry."""
        return await self.assembler.finish(object_id, owner_id)

    async def direct_upload(
        self,
        owner_id: int,
        display_name: str,
        ttl: float,
        data: bytes | BinaryIO,
        access_secret: str | None = None,
    ) -> StoredObject:
        """Store a whole blob, commit it and arm its expiry in one call.

        The blob is written first under a fresh id, so a failed row insert
        leaves nothing behind.

        Raises:
            LifetimeExceeded: If ``ttl`` is outside the lifetime policy.
            BlobIOError: If the blob cannot be written.
            StorageError: If the row cannot be inserted.
        """
        expiry = self.assembler.expiry_for(ttl)
        object_id = str(uuid.uuid4())

        size = await self.blobs.put(object_id, data)
        try:
            await self.store.create_committed(
                owner_id, display_name, expiry, access_secret, object_id=object_id
            )
        except StorageError:
            await self.blobs.delete(object_id)
            raise

        metrics.record_committed("direct")
        logger.info(
            "Stored %s (%d bytes)",
            object_id,
            size,
            extra={"object_id": object_id, "owner_id": owner_id, "size": size},
        )

        obj = await self.store.get(object_id)
        if obj is None:
            raise StorageError(f"Row for {object_id} vanished after insert")
        await self.scheduler.arm(object_id, obj.expiry)
        return obj

    # -- Queries ------------------------------------------------------------

    async def list_for_owner(self, owner_id: int) -> list[StoredObject]:
        """Return the owner's committed objects."""
        return await self.store.list_committed(owner_id)

    async def get_owned(self, object_id: str, owner_id: int) -> StoredObject:
        """Return one committed object of ``owner_id``.

        Raises:
            NotFound: If the object is missing, pending or someone else's.
        """
        obj = await self.store.get(object_id)
        if obj is None or not obj.committed or obj.owner_id != owner_id:
            raise NotFound(object_id)
        return obj

    async def get_for_download(self, object_id: str) -> StoredObject:
        """Return a committed, unexpired object for download.

        An object past its expiry is not servable even if its timer has not
        fired yet.

        Raises:
            NotFound: If the object is missing, pending or expired.
        """
        obj = await self.store.get_for_download(object_id)
        if obj.expiry <= self._clock():
            raise NotFound(object_id)
        return obj

    async def open_blob(self, object_id: str) -> BlobReader:
        """Open an object's blob for streaming.

        Raises:
            NotFound: If the blob is gone, for example removed by expiry
                since the row was read.
        """
        try:
            return await self.blobs.open(object_id)
        except FileNotFoundError:
            raise NotFound(object_id) from None

    # -- Mutations ----------------------------------------------------------

    async def rename(self, object_id: str, owner_id: int, display_name: str) -> None:
        """Change the display name of an owned, committed object."""
        await self.store.rename(object_id, owner_id, display_name)

    async def delete_now(self, object_id: str, owner_id: int) -> None:
        """Delete an owned object immediately.

        A committed object has its expiry timer cancelled before the blob and
        the row are removed. An owned pending upload is aborted.

        Raises:
            NotFound: If the object is missing or belongs to someone else.
        """
        obj = await self.store.get(object_id)
        if obj is None or obj.owner_id != owner_id:
            raise NotFound(object_id)

        if not obj.committed:
            try:
                await self.assembler.abort(object_id, owner_id)
            except InvalidTarget as exc:
                # Reclaimed or finished between the lookup and the abort.
                raise NotFound(object_id) from exc
            logger.info("Aborted upload %s", object_id, extra={"object_id": object_id})
            return

        self.scheduler.cancel(object_id)
        try:
            await remove_object(self.store, self.blobs, object_id)
        except Exception:
            # Whatever is left must still expire.
            await self.scheduler.arm(object_id, obj.expiry)
            raise
        metrics.record_deleted("manual")
        logger.info(
            "Deleted %s", object_id, extra={"object_id": object_id, "owner_id": owner_id}
        )

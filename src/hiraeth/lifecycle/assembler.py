"""Chunked-upload state machine.

An upload moves Pending -> Committed (``finish``) or Pending -> Reclaimed
(inactivity timeout or explicit abort). Every transition for one object id
runs inside that id's critical section: the inactivity timer is stopped
before any blob I/O and re-armed afterwards, so a timeout can never reclaim
a blob that is being written.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from hiraeth import metrics
from hiraeth.errors import BlobIOError, ChunkTooLarge, InvalidTarget, LifetimeExceeded, NotFound
from hiraeth.lifecycle.scheduler import Scheduler, purge, remove_object
from hiraeth.lifecycle.timers import KeyedLocks, Timer, TimerTable
from hiraeth.metadata.models import StoredObject
from hiraeth.metadata.store import ObjectStore
from hiraeth.storage.backend import BlobStore

logger = logging.getLogger(__name__)


class ChunkAssembler:
    """Manages pending uploads and their inactivity timers.

    Attributes:
        chunk_size: Maximum bytes accepted by a single append.
        inactivity_timeout: Seconds a pending upload may idle.
        max_lifetime: Longest TTL an upload may request, in seconds.
    """

    def __init__(
        self,
        store: ObjectStore,
        blobs: BlobStore,
        scheduler: Scheduler,
        *,
        chunk_size: int,
        inactivity_timeout: float,
        max_lifetime: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._blobs = blobs
        self._scheduler = scheduler
        self._clock = clock
        self._timers = TimerTable("inactivity")
        self._locks = KeyedLocks()
        self.chunk_size = chunk_size
        self.inactivity_timeout = inactivity_timeout
        self.max_lifetime = max_lifetime

    def pending_count(self) -> int:
        return len(self._timers)

    def is_pending(self, object_id: str) -> bool:
        return object_id in self._timers

    def expiry_for(self, ttl: float) -> float:
        """Turn a requested time-to-live into an absolute expiry.

        Raises:
            LifetimeExceeded: If the expiry would not be in the future or
                would exceed the maximum lifetime.
        """
        if ttl <= 0:
            raise LifetimeExceeded("Expiry must be in the future")
        if ttl > self.max_lifetime:
            raise LifetimeExceeded()
        return self._clock() + ttl

    def _arm(self, object_id: str) -> None:
        self._timers.schedule(object_id, self.inactivity_timeout, self._on_inactive)
        metrics.set_pending_uploads(len(self._timers))

    def _disarm(self, object_id: str) -> None:
        self._timers.cancel(object_id)
        metrics.set_pending_uploads(len(self._timers))

    async def _require_pending(self, object_id: str, owner_id: int) -> StoredObject:
        obj = await self._store.get(object_id)
        if obj is None or obj.committed or obj.owner_id != owner_id:
            raise InvalidTarget()
        return obj

    async def begin(
        self,
        owner_id: int,
        display_name: str,
        ttl: float,
        access_secret: str | None = None,
    ) -> str:
        """Create a pending object and arm its inactivity timer.

        An empty blob is created alongside the row so the row and blob
        exist together from the start.

        Returns:
            The new object id.
        """
        expiry = self.expiry_for(ttl)
        object_id = await self._store.create_pending(owner_id, display_name, expiry, access_secret)
        try:
            await self._blobs.put(object_id, b"")
        except BlobIOError:
            await self._store.delete(object_id)
            raise

        self._arm(object_id)
        logger.info(
            "Upload %s started", object_id, extra={"object_id": object_id, "owner_id": owner_id}
        )
        return object_id

    async def append(self, object_id: str, owner_id: int, chunk: bytes) -> int:
        """Append a chunk to a pending upload.

        Returns:
            The blob size after the append.

        Raises:
            ChunkTooLarge: If the chunk exceeds ``chunk_size``; nothing is written.
            InvalidTarget: If the object is not a pending upload of ``owner_id``.
            BlobIOError: If the write fails; the inactivity timer is re-armed.
        """
        if len(chunk) > self.chunk_size:
            raise ChunkTooLarge(len(chunk), self.chunk_size)

        async with self._locks.hold(object_id):
            await self._require_pending(object_id, owner_id)
            self._disarm(object_id)
            try:
                size = await self._blobs.append(object_id, chunk)
            finally:
                self._arm(object_id)

        metrics.record_chunk()
        return size

    async def finish(self, object_id: str, owner_id: int) -> StoredObject:
        """Commit a pending upload and hand it to the expiry scheduler.

        Raises:
            InvalidTarget: If the object is not a pending upload of ``owner_id``.
        """
        async with self._locks.hold(object_id):
            await self._require_pending(object_id, owner_id)
            self._disarm(object_id)
            try:
                obj = await self._store.commit(object_id, owner_id)
            except NotFound as exc:
                # The row vanished under us; the blob would otherwise leak
                # until the next startup.
                await purge(self._store, self._blobs, object_id, reason="reclaimed")
                raise InvalidTarget() from exc
            except Exception:
                self._arm(object_id)
                raise

            metrics.record_committed("chunked")
            logger.info(
                "Upload %s finished", object_id, extra={"object_id": object_id, "owner_id": owner_id}
            )
            await self._scheduler.arm(object_id, obj.expiry)
        return obj

    async def abort(self, object_id: str, owner_id: int) -> None:
        """Discard a pending upload at the owner's request.

        Raises:
            InvalidTarget: If the object is not a pending upload of ``owner_id``.
        """
        async with self._locks.hold(object_id):
            await self._require_pending(object_id, owner_id)
            self._disarm(object_id)
            try:
                await remove_object(self._store, self._blobs, object_id)
            except Exception:
                self._arm(object_id)
                raise
        metrics.record_deleted("manual")

    async def _on_inactive(self, timer: Timer) -> None:
        object_id = timer.key
        async with self._locks.hold(object_id):
            # An append or finish that won the lock has replaced or removed
            # this timer.
            if not self._timers.is_current(object_id, timer):
                return
            self._timers.discard(object_id, timer)
            metrics.set_pending_uploads(len(self._timers))
            logger.info("File %s timed out", object_id, extra={"object_id": object_id})
            await purge(self._store, self._blobs, object_id, reason="reclaimed")

    async def close(self) -> None:
        """Cancel every inactivity timer.

        Nothing is deleted here; the next startup recovery reclaims the
        pending rows.
        """
        await self._timers.close()
        metrics.set_pending_uploads(0)

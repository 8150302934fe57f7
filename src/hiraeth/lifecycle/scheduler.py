"""Expiry scheduling for committed objects.

The scheduler owns one timer per committed object and deletes the blob and
the row once the object's expiry instant is reached. Nothing about timers is
persisted: on startup ``recover()`` re-derives the whole timer set from the
object store, reclaims uploads that were interrupted by the restart and
removes orphans, so no object outlives its TTL across restarts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from hiraeth import metrics
from hiraeth.errors import BlobIOError, StorageError
from hiraeth.lifecycle.timers import Timer, TimerTable
from hiraeth.metadata.store import ObjectStore
from hiraeth.storage.backend import BlobStore

logger = logging.getLogger(__name__)


async def remove_object(store: ObjectStore, blobs: BlobStore, object_id: str) -> None:
    """Remove an object's blob, then its row.

    Both steps are idempotent, so removing an already-removed object is a
    no-op.

    Raises:
        BlobIOError: If the blob cannot be removed. The row is left intact.
        StorageError: If the row cannot be deleted.
    """
    await blobs.delete(object_id)
    await store.delete(object_id)


async def purge(store: ObjectStore, blobs: BlobStore, object_id: str, reason: str) -> bool:
    """Best-effort removal used by timer callbacks and recovery.

    Failures are logged as operator-visible faults and counted, never
    raised and never retried. Both the blob and the row are attempted, so a
    failure leaves at most one of them behind for reconciliation.

    Returns:
        True if both the blob and the row are gone.
    """
    clean = True
    extra = {"object_id": object_id, "reason": reason}

    try:
        await blobs.delete(object_id)
    except BlobIOError as exc:
        clean = False
        logger.error("Unable to remove blob of %s (%s): %s", object_id, reason, exc.message, extra=extra)

    try:
        await store.delete(object_id)
    except StorageError as exc:
        clean = False
        logger.error("Unable to delete row of %s (%s): %s", object_id, reason, exc.message, extra=extra)

    if clean:
        metrics.record_deleted(reason)
    else:
        metrics.record_deletion_failure()
    return clean


@dataclass
class RecoveryReport:
    """Outcome of startup recovery.

    Attributes:
        reclaimed: Pending uploads removed because they cannot be resumed.
        armed: Committed objects with a freshly armed expiry timer.
        expired: Committed objects already past expiry and deleted at once.
        orphan_blobs: Blob files with no row, removed.
        orphan_rows: Committed rows whose blob was missing, removed.
    """

    reclaimed: int = 0
    armed: int = 0
    expired: int = 0
    orphan_blobs: int = 0
    orphan_rows: int = 0


class Scheduler(Protocol):
    """Expiry timer abstraction.

    The in-process ``ExpiryScheduler`` is the default; a durable timer wheel
    can be substituted for deployments that need multi-process recovery.
    """

    async def arm(self, object_id: str, expiry: float) -> bool:
        """Schedule deletion at ``expiry``; delete now if it has passed.

        Returns:
            True if a timer was armed, False if the object was deleted now.
        """
        ...

    def cancel(self, object_id: str) -> bool:
        """Stop a pending timer without deleting anything."""
        ...

    async def on_fire(self, object_id: str) -> None:
        """Delete the object whose expiry was reached."""
        ...

    async def recover(self) -> RecoveryReport:
        """Rebuild timer state from the object store at startup."""
        ...

    def is_armed(self, object_id: str) -> bool:
        ...

    async def close(self) -> None:
        ...


class ExpiryScheduler:
    """In-process expiry scheduler backed by event-loop timers.

    Attributes:
        store: The object store.
        blobs: The blob store.
    """

    def __init__(
        self,
        store: ObjectStore,
        blobs: BlobStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: The object store holding committed rows.
            blobs: The blob store holding object contents.
            clock: Wall-clock source in UNIX seconds; expiries are compared
                   against it.
        """
        self.store = store
        self.blobs = blobs
        self._clock = clock
        self._timers = TimerTable("expiry")

    def armed_count(self) -> int:
        return len(self._timers)

    def is_armed(self, object_id: str) -> bool:
        return object_id in self._timers

    async def arm(self, object_id: str, expiry: float) -> bool:
        """Schedule a one-shot deletion at ``expiry``.

        An expiry that is now or in the past deletes the object immediately
        and synchronously.

        Returns:
            True if a timer was armed, False if the object was deleted now.
        """
        delay = expiry - self._clock()
        if delay <= 0:
            self._timers.cancel(object_id)
            logger.info("Deleting %s (expired)", object_id, extra={"object_id": object_id})
            await purge(self.store, self.blobs, object_id, reason="expired")
            metrics.set_armed_expiries(len(self._timers))
            return False

        logger.info("Watching %s", object_id, extra={"object_id": object_id, "expiry": expiry})
        self._timers.schedule(object_id, delay, self._fire)
        metrics.set_armed_expiries(len(self._timers))
        return True

    def cancel(self, object_id: str) -> bool:
        """Stop a pending expiry timer without deleting the object."""
        stopped = self._timers.cancel(object_id)
        metrics.set_armed_expiries(len(self._timers))
        return stopped

    async def _fire(self, timer: Timer) -> None:
        if not self._timers.is_current(timer.key, timer):
            return
        await self.on_fire(timer.key)

    async def on_fire(self, object_id: str) -> None:
        """Delete an expired object.

        The timer entry is discarded regardless of the outcome, so a timer
        fires at most once. Failures are logged, not raised.
        """
        self._timers.discard(object_id)
        metrics.set_armed_expiries(len(self._timers))
        logger.info("Deleting %s", object_id, extra={"object_id": object_id})
        await purge(self.store, self.blobs, object_id, reason="expired")

    async def recover(self) -> RecoveryReport:
        """Rebuild timer state from durable state.

        Must run before any request is served. Steps:
            1. Reclaim every pending upload (its inactivity timer did not
               survive the restart).
            2. Remove orphan blobs (no row) and orphan rows (committed, no
               blob).
            3. Arm every remaining committed object with its expiry.
        """
        report = RecoveryReport()

        for object_id in await self.store.all_pending():
            logger.info("File %s is unfinished", object_id, extra={"object_id": object_id})
            await purge(self.store, self.blobs, object_id, reason="reclaimed")
            report.reclaimed += 1

        known = await self.store.all_ids()
        for object_id in sorted(await self.blobs.list_ids() - known):
            logger.warning("Removing orphan blob %s", object_id, extra={"object_id": object_id})
            try:
                await self.blobs.delete(object_id)
            except BlobIOError as exc:
                logger.error("Unable to remove orphan blob %s: %s", object_id, exc.message)
                metrics.record_deletion_failure()
                continue
            metrics.record_deleted("orphan")
            report.orphan_blobs += 1

        for object_id, expiry in await self.store.all_committed():
            if not await self.blobs.exists(object_id):
                logger.warning("Removing orphan row %s", object_id, extra={"object_id": object_id})
                await purge(self.store, self.blobs, object_id, reason="orphan")
                report.orphan_rows += 1
            elif await self.arm(object_id, expiry):
                report.armed += 1
            else:
                report.expired += 1

        logger.info(
            "Recovery complete: %d reclaimed, %d armed, %d expired, %d orphan blobs, %d orphan rows",
            report.reclaimed,
            report.armed,
            report.expired,
            report.orphan_blobs,
            report.orphan_rows,
        )
        return report

    async def close(self) -> None:
        """Cancel all expiry timers and wait for in-flight deletions."""
        await self._timers.close()
        metrics.set_armed_expiries(0)

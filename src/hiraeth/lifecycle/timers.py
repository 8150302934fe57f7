"""Owned timer and lock tables keyed by object id.

``TimerTable`` maps an id to at most one cancellable deferred callback on
the running event loop. ``KeyedLocks`` provides the per-id critical section
that serializes append, finish and timeout-reclaim for one object while
leaving different objects uncontended.

Cancellation is cooperative: a timer that has not fired can be cancelled,
but once its callback task has started it runs to completion. Callbacks
receive their own ``Timer`` so they can detect that a newer timer has
superseded them while they waited for a lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class Timer:
    """A single scheduled callback for one key.

    Attributes:
        key: The object id the timer belongs to.
        deadline: Event-loop time at which the timer fires.
        fired: Whether the callback has been started.
    """

    __slots__ = ("key", "deadline", "fired", "_handle")

    def __init__(self, key: str, deadline: float) -> None:
        self.key = key
        self.deadline = deadline
        self.fired = False
        self._handle: asyncio.TimerHandle | None = None

    def cancel(self) -> bool:
        """Stop the timer if it has not fired. Returns True if it was stopped."""
        if self.fired or self._handle is None or self._handle.cancelled():
            return False
        self._handle.cancel()
        return True

    def __repr__(self) -> str:
        return f"Timer(key={self.key!r}, deadline={self.deadline:.3f}, fired={self.fired})"


TimerCallback = Callable[[Timer], Awaitable[None]]


class TimerTable:
    """Table of id -> cancellable timer on the running event loop.

    Scheduling a key that already has a timer cancels the old one first, so
    at most one timer exists per key at any instant.
    """

    def __init__(self, name: str = "timers") -> None:
        self.name = name
        self._timers: dict[str, Timer] = {}
        self._running: set[asyncio.Task] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    def get(self, key: str) -> Timer | None:
        return self._timers.get(key)

    def schedule(self, key: str, delay: float, callback: TimerCallback) -> Timer:
        """Arm ``callback`` to run after ``delay`` seconds, replacing any timer for ``key``.

        Must be called from within the running event loop.
        """
        loop = asyncio.get_running_loop()
        self.cancel(key)
        delay = max(delay, 0.0)
        timer = Timer(key, loop.time() + delay)
        timer._handle = loop.call_later(delay, self._fire, timer, callback)
        self._timers[key] = timer
        return timer

    def cancel(self, key: str) -> bool:
        """Stop and discard the timer for ``key``. Returns True if one was stopped."""
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        return timer.cancel()

    def is_current(self, key: str, timer: Timer) -> bool:
        """Whether ``timer`` is still the live timer for ``key``."""
        return self._timers.get(key) is timer

    def discard(self, key: str, timer: Timer | None = None) -> None:
        """Drop the entry for ``key`` without cancelling it.

        When ``timer`` is given, the entry is only dropped if it is that timer.
        """
        if timer is None or self._timers.get(key) is timer:
            self._timers.pop(key, None)

    def _fire(self, timer: Timer, callback: TimerCallback) -> None:
        timer.fired = True
        task = asyncio.get_running_loop().create_task(
            callback(timer), name=f"{self.name}:{timer.key}"
        )
        self._running.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Timer callback %s failed", task.get_name(), exc_info=(type(exc), exc, exc.__traceback__)
            )

    async def drain(self) -> None:
        """Wait for every callback that has already started."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def close(self) -> None:
        """Cancel every pending timer and wait for in-flight callbacks."""
        for key in list(self._timers):
            self.cancel(key)
        await self.drain()


class KeyedLocks:
    """Per-key asyncio locks, created on demand and dropped when unused."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the critical section for ``key``."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

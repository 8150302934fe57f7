"""Object lifecycle: chunked uploads, expiry timers and recovery."""

from hiraeth.lifecycle.assembler import ChunkAssembler
from hiraeth.lifecycle.manager import LifecycleManager
from hiraeth.lifecycle.scheduler import ExpiryScheduler, RecoveryReport, Scheduler
from hiraeth.lifecycle.timers import KeyedLocks, Timer, TimerTable

__all__ = [
    "ChunkAssembler",
    "ExpiryScheduler",
    "KeyedLocks",
    "LifecycleManager",
    "RecoveryReport",
    "Scheduler",
    "Timer",
    "TimerTable",
]

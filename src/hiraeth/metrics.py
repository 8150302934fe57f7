"""Prometheus metrics definitions for Hiraeth.

All custom metrics use the ``hiraeth_`` prefix. These are lifecycle
metrics; ``prometheus-fastapi-instrumentator`` provides the HTTP-level
request metrics.

Counters reset to zero on restart. The gauges track in-memory timer
tables, which are rebuilt by startup recovery.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

_initialized: bool = False

objects_committed_total: Counter | None = None
objects_deleted_total: Counter | None = None
deletion_failures_total: Counter | None = None
chunks_appended_total: Counter | None = None

pending_uploads: Gauge | None = None
armed_expiries: Gauge | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Must be called once when metrics are enabled. When metrics are disabled
    the module-level references stay ``None`` and the ``record_*`` helpers
    are no-ops.
    """
    global _initialized
    global objects_committed_total, objects_deleted_total, deletion_failures_total
    global chunks_appended_total, pending_uploads, armed_expiries

    if _initialized:
        return

    objects_committed_total = Counter(
        "hiraeth_objects_committed_total",
        "Objects committed, by upload path",
        ["path"],
    )

    objects_deleted_total = Counter(
        "hiraeth_objects_deleted_total",
        "Objects deleted, by reason",
        ["reason"],
    )

    deletion_failures_total = Counter(
        "hiraeth_deletion_failures_total",
        "Scheduled deletions that left an object partially cleaned up",
    )

    chunks_appended_total = Counter(
        "hiraeth_chunks_appended_total",
        "Chunks appended to pending uploads",
    )

    pending_uploads = Gauge(
        "hiraeth_pending_uploads",
        "Pending uploads with an armed inactivity timer",
    )

    armed_expiries = Gauge(
        "hiraeth_armed_expiries",
        "Committed objects with an armed expiry timer",
    )

    _initialized = True


def record_committed(path: str) -> None:
    if objects_committed_total is not None:
        objects_committed_total.labels(path=path).inc()


def record_deleted(reason: str) -> None:
    if objects_deleted_total is not None:
        objects_deleted_total.labels(reason=reason).inc()


def record_deletion_failure() -> None:
    if deletion_failures_total is not None:
        deletion_failures_total.inc()


def record_chunk() -> None:
    if chunks_appended_total is not None:
        chunks_appended_total.inc()


def set_pending_uploads(count: int) -> None:
    if pending_uploads is not None:
        pending_uploads.set(count)


def set_armed_expiries(count: int) -> None:
    if armed_expiries is not None:
        armed_expiries.set(count)

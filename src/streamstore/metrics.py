"""Prometheus metrics definitions for streamstore.

All custom metrics use the ``streamstore_`` prefix. These are object
protocol metrics; the ``prometheus-fastapi-instrumentator`` package provides
HTTP-level metrics for the gateway.

Collectors stay ``None`` until ``init_metrics()`` is called, so library users
who never enable metrics register nothing in the global registry. Use the
``record_*`` helpers rather than touching the collectors directly.
"""

from __future__ import annotations

from prometheus_client import Counter

_initialized: bool = False

# ---------------------------------------------------------------------------
# Operation counter  (labels: operation, status)
# ---------------------------------------------------------------------------
object_operations_total: Counter | None = None

# ---------------------------------------------------------------------------
# Transfer counters
# ---------------------------------------------------------------------------
chunks_published_total: Counter | None = None
bytes_written_total: Counter | None = None
bytes_read_total: Counter | None = None

# ---------------------------------------------------------------------------
# Cleanup counters
# ---------------------------------------------------------------------------
rollbacks_total: Counter | None = None
reclaims_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics. Idempotent."""
    global _initialized
    global object_operations_total, chunks_published_total
    global bytes_written_total, bytes_read_total, rollbacks_total, reclaims_total

    if _initialized:
        return

    object_operations_total = Counter(
        "streamstore_object_operations_total",
        "Total object store operations by type and outcome",
        ["operation", "status"],
    )

    chunks_published_total = Counter(
        "streamstore_chunks_published_total",
        "Total chunk messages published",
    )

    bytes_written_total = Counter(
        "streamstore_bytes_written_total",
        "Total object bytes published as chunks",
    )

    bytes_read_total = Counter(
        "streamstore_bytes_read_total",
        "Total object bytes delivered to readers",
    )

    rollbacks_total = Counter(
        "streamstore_rollbacks_total",
        "Total failed puts whose chunks were rolled back",
    )

    reclaims_total = Counter(
        "streamstore_reclaims_total",
        "Total reclamations of superseded object versions by outcome",
        ["status"],
    )

    _initialized = True


def record_operation(operation: str, status: str) -> None:
    if object_operations_total is not None:
        object_operations_total.labels(operation=operation, status=status).inc()


def record_chunk(size: int) -> None:
    if chunks_published_total is not None:
        chunks_published_total.inc()
    if bytes_written_total is not None:
        bytes_written_total.inc(size)


def record_bytes_read(size: int) -> None:
    if bytes_read_total is not None and size > 0:
        bytes_read_total.inc(size)


def record_rollback() -> None:
    if rollbacks_total is not None:
        rollbacks_total.inc()


def record_reclaim(status: str) -> None:
    if reclaims_total is not None:
        reclaims_total.labels(status=status).inc()

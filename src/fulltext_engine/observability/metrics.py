"""Prometheus metrics for the indexing engine's store traffic."""

from __future__ import annotations

from contextlib import contextmanager
import time
from typing import TYPE_CHECKING

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator


STORE_CALLS = Counter(
    "fulltext_store_calls_total",
    "Key-value store calls issued by the engine",
    ["operation"],
)

STORE_UNPROCESSED_RETRIES = Counter(
    "fulltext_store_unprocessed_retries_total",
    "Batch calls re-issued because the store returned unprocessed requests",
    ["operation"],
)

INDEX_WRITES = Counter(
    "fulltext_index_writes_total",
    "Write requests applied to fulltext tables",
    ["table", "kind"],
)

INDEX_OPERATION_LATENCY = Histogram(
    "fulltext_index_operation_latency_seconds",
    "Latency of document index operations",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


@contextmanager
def track_latency(histogram: Histogram, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get content type for a metrics endpoint."""
    return CONTENT_TYPE_LATEST

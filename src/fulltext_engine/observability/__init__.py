"""Observability module for logging, tracing, and metrics."""

from fulltext_engine.observability.context import (
    bind_index_context,
    get_trace_context,
    set_trace_context,
    trace_context,
)
from fulltext_engine.observability.logging import JsonFormatter, configure_logging
from fulltext_engine.observability.metrics import (
    INDEX_OPERATION_LATENCY,
    INDEX_WRITES,
    STORE_CALLS,
    STORE_UNPROCESSED_RETRIES,
    get_metrics,
    get_metrics_content_type,
    track_latency,
)
from fulltext_engine.observability.tracing import (
    configure_trace_exporter,
    create_span,
    get_tracer,
    init_tracing,
)


__all__ = [
    "INDEX_OPERATION_LATENCY",
    "INDEX_WRITES",
    "STORE_CALLS",
    "STORE_UNPROCESSED_RETRIES",
    "JsonFormatter",
    "bind_index_context",
    "configure_logging",
    "configure_trace_exporter",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "track_latency",
]

"""Unit tests for observability module."""

import json
import logging
from unittest.mock import Mock

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import REGISTRY
import pytest

from fulltext_engine.config import ObservabilityCollectorConfig
from fulltext_engine.observability import (
    INDEX_OPERATION_LATENCY,
    JsonFormatter,
    bind_index_context,
    configure_logging,
    configure_trace_exporter,
    create_span,
    get_metrics,
    get_metrics_content_type,
    get_trace_context,
    init_tracing,
    set_trace_context,
    track_latency,
)
from fulltext_engine.observability import tracing as tracing_module
from fulltext_engine.observability.context import update_span_id
from fulltext_engine.search.backend import FullTextBackend


def _record(msg: str = "test message", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="fulltext_engine.search.backend",
        level=level,
        pathname="backend.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def span_exporter(monkeypatch):
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setitem(tracing_module._tracer_holder, "tracer", provider.get_tracer("test"))
    return exporter


class TestJsonFormatter:
    """Tests for structured JSON logging."""

    def test_format_includes_trace_context(self):
        data = json.loads(JsonFormatter().format(_record()))

        assert data["message"] == "test message"
        assert data["level"] == "INFO"
        assert data["component"] == "backend"
        assert "timestamp" in data
        assert len(data["trace_id"]) == 32
        assert len(data["span_id"]) == 16

    def test_format_includes_bound_index_context(self):
        bind_index_context(doc_id="42", index_field="bio")

        data = json.loads(JsonFormatter().format(_record()))

        assert data["doc_id"] == "42"
        assert data["index_field"] == "bio"

    def test_format_includes_extra_fields(self):
        record = _record(level=logging.ERROR)
        record.added_lossy = 4
        record.token = "fox"

        data = json.loads(JsonFormatter().format(record))

        assert data["added_lossy"] == 4
        assert data["token"] == "fox"

    def test_format_truncates_and_redacts(self):
        record = _record("x" * 5000)
        record.api_key = "secret"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"].endswith("...")
        assert data["api_key"] == "[REDACTED]"

    def test_json_default_handles_set_and_bytes(self):
        formatter = JsonFormatter()

        assert formatter._json_default(frozenset({3, 1, 2})) == [1, 2, 3]
        assert formatter._json_default(b"ok") == "ok"

    def test_json_default_handles_unorderable_set(self):
        value = JsonFormatter()._json_default({1, "a"})

        assert isinstance(value, list)
        assert len(value) == 2


class TestTraceContext:
    """Tests for trace context propagation."""

    def test_get_trace_context_generates_ids(self):
        ctx = get_trace_context()

        assert len(ctx["trace_id"]) == 32
        assert len(ctx["span_id"]) == 16

    def test_update_span_id_preserves_trace_id_and_bindings(self):
        set_trace_context("aa" * 16, "bb" * 8, index_field="bio")
        update_span_id("cc" * 8)

        ctx = get_trace_context()

        assert ctx["trace_id"] == "aa" * 16
        assert ctx["span_id"] == "cc" * 8
        assert ctx["index_field"] == "bio"

    def test_bind_index_context_skips_none(self):
        bind_index_context(doc_id="1", index_field=None)

        ctx = get_trace_context()

        assert ctx["doc_id"] == "1"
        assert "index_field" not in ctx


class TestTracing:
    """Tests for OpenTelemetry tracing."""

    def test_init_tracing_applies_resource_attributes(self):
        provider = init_tracing("test-service", resource_attributes={"service.version": "2.0.0"})

        assert provider.resource.attributes["service.name"] == "test-service"
        assert provider.resource.attributes["service.version"] == "2.0.0"

    def test_create_span_records_attributes(self, span_exporter):
        with create_span("fulltext.test", attributes={"fulltext.index_field": "bio"}) as span:
            span.set_attribute("fulltext.writes", 3)

        (finished,) = span_exporter.get_finished_spans()
        assert finished.name == "fulltext.test"
        assert finished.attributes["fulltext.index_field"] == "bio"
        assert finished.attributes["fulltext.writes"] == 3

    def test_create_span_marks_errors(self, span_exporter):
        with pytest.raises(RuntimeError), create_span("fulltext.fail"):
            raise RuntimeError("boom")

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR

    @pytest.mark.asyncio
    async def test_write_document_emits_span(self, span_exporter, store):
        await FullTextBackend(store).write_document({"id": "1", "bio": "fox"}, "id", "bio")

        (finished,) = span_exporter.get_finished_spans()
        assert finished.name == "fulltext.write_document"
        assert finished.attributes["fulltext.doc_id"] == "1"
        assert finished.attributes["fulltext.batch_calls"] == 1

    def test_configure_trace_exporter_disabled(self):
        assert configure_trace_exporter(ObservabilityCollectorConfig()) is False
        assert configure_trace_exporter(None) is False

    def test_configure_trace_exporter_adds_span_processor(self, monkeypatch):
        provider = TracerProvider()
        config = ObservabilityCollectorConfig(
            enabled=True,
            otlp_protocol="http",
            collector_endpoint="http://collector/v1/traces",
        )
        exporter = InMemorySpanExporter()
        exporter_cls = Mock(return_value=exporter)
        monkeypatch.setattr(tracing_module, "HttpOTLPSpanExporter", exporter_cls)
        add_processor = Mock()
        provider.add_span_processor = add_processor  # type: ignore[method-assign]

        assert configure_trace_exporter(config, provider=provider) is True

        add_processor.assert_called_once()
        assert exporter_cls.call_args.kwargs["endpoint"] == "http://collector/v1/traces"

    def test_configure_trace_exporter_handles_exporter_failure(self, monkeypatch):
        config = ObservabilityCollectorConfig(enabled=True, otlp_protocol="grpc")
        monkeypatch.setattr(tracing_module, "GrpcOTLPSpanExporter", Mock(side_effect=RuntimeError("boom")))

        assert configure_trace_exporter(config, provider=TracerProvider()) is False


class TestMetrics:
    """Tests for Prometheus metrics."""

    def test_get_metrics_exposes_engine_counters(self):
        output = get_metrics()

        assert isinstance(output, bytes)
        assert b"fulltext_store_calls_total" in output
        assert get_metrics_content_type().startswith("text/plain")

    def test_track_latency_records_histogram(self):
        labels = {"operation": "unit_test"}
        before = REGISTRY.get_sample_value("fulltext_index_operation_latency_seconds_count", labels) or 0

        with track_latency(INDEX_OPERATION_LATENCY, **labels):
            pass

        assert REGISTRY.get_sample_value("fulltext_index_operation_latency_seconds_count", labels) == before + 1

    @pytest.mark.asyncio
    async def test_index_writes_counted_by_table_and_kind(self, store):
        labels = {"table": "FullTextDocMirror", "kind": "put"}
        before = REGISTRY.get_sample_value("fulltext_index_writes_total", labels) or 0

        await FullTextBackend(store).write_document({"id": "1", "bio": "fox"}, "id", "bio")

        assert REGISTRY.get_sample_value("fulltext_index_writes_total", labels) == before + 1

    @pytest.mark.asyncio
    async def test_unprocessed_retries_counted(self, make_backend):
        backend, _ = make_backend(throttled_calls={"batch_write_item": {1}})
        labels = {"operation": "batch_write_item"}
        before = REGISTRY.get_sample_value("fulltext_store_unprocessed_retries_total", labels) or 0

        await backend.write_document({"id": "1", "bio": "fox"}, "id", "bio")

        assert REGISTRY.get_sample_value("fulltext_store_unprocessed_retries_total", labels) == before + 1


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_logging_sets_level(self, restore_root_logger):
        configure_logging(level="DEBUG")

        assert restore_root_logger.level == logging.DEBUG
        assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)

    def test_configure_logging_non_json_formatter(self, restore_root_logger):
        configure_logging(level="INFO", json_output=False)

        formatter = restore_root_logger.handlers[0].formatter
        assert not isinstance(formatter, JsonFormatter)
        assert "%(asctime)s" in formatter._style._fmt

    def test_configure_logging_logger_overrides(self, restore_root_logger):
        configure_logging(level="INFO", logger_levels={"fulltext_engine.search.batching": "ERROR"})

        assert logging.getLogger("fulltext_engine.search.batching").level == logging.ERROR
        logging.getLogger("fulltext_engine.search.batching").setLevel(logging.NOTSET)

"""OpenTelemetry + Prometheus fallback wiring for the session monitor."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from session_monitor import config

logger = logging.getLogger("session_monitor.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_scan_counter: Any | None = None
_scan_latency_hist: Any | None = None
_skipped_lines_counter: Any | None = None
_change_events_counter: Any | None = None
_subscriber_drops_counter: Any | None = None

_prom_enabled = False
_prom_scan_counter: Any | None = None
_prom_scan_latency_hist: Any | None = None
_prom_skipped_lines_counter: Any | None = None
_prom_change_events_counter: Any | None = None
_prom_subscriber_drops_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _scan_counter, _scan_latency_hist, _skipped_lines_counter
    global _change_events_counter, _subscriber_drops_counter
    global _prom_enabled, _prom_scan_counter, _prom_scan_latency_hist, _prom_skipped_lines_counter
    global _prom_change_events_counter, _prom_subscriber_drops_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (SESSION_MONITOR_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "session-monitor"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "session-monitor",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("session_monitor")

    _scan_counter = meter.create_counter(
        "session_monitor_scans_total",
        unit="1",
        description="Count of session repository scans",
    )
    _scan_latency_hist = meter.create_histogram(
        "session_monitor_scan_latency_ms",
        unit="ms",
        description="Latency of session repository scans",
    )
    _skipped_lines_counter = meter.create_counter(
        "session_monitor_skipped_lines_total",
        unit="1",
        description="Log lines skipped as malformed or incomplete",
    )
    _change_events_counter = meter.create_counter(
        "session_monitor_change_events_total",
        unit="1",
        description="File change notifications published to subscribers",
    )
    _subscriber_drops_counter = meter.create_counter(
        "session_monitor_subscriber_drops_total",
        unit="1",
        description="Subscribers removed after a failed delivery",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("session_monitor")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_scan_counter = Counter(
                "session_monitor_scans_total",
                "Count of session repository scans",
                ["scope"],
            )
            _prom_scan_latency_hist = Histogram(
                "session_monitor_scan_latency_ms",
                "Latency of session repository scans",
                ["scope"],
            )
            _prom_skipped_lines_counter = Counter(
                "session_monitor_skipped_lines_total",
                "Log lines skipped as malformed or incomplete",
            )
            _prom_change_events_counter = Counter(
                "session_monitor_change_events_total",
                "File change notifications published to subscribers",
                ["kind"],
            )
            _prom_subscriber_drops_counter = Counter(
                "session_monitor_subscriber_drops_total",
                "Subscribers removed after a failed delivery",
                ["reason"],
            )
            _prom_enabled = True
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception:
        logger.debug("FastAPI uninstrumentation failed", exc_info=True)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception:
            logger.debug("Telemetry provider shutdown failed", exc_info=True)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_scan(scope: str, session_count: int, duration_ms: float) -> None:
    labels = {"scope": scope or "unknown"}
    duration = max(0.0, float(duration_ms))
    logger.debug("Scanned %s sessions (scope=%s) in %.1fms", session_count, scope, duration)
    if _enabled and _scan_counter is not None:
        _scan_counter.add(1, labels)
    if _enabled and _scan_latency_hist is not None:
        _scan_latency_hist.record(duration, labels)
    if _prom_enabled and _prom_scan_counter is not None:
        _prom_scan_counter.labels(**labels).inc()
    if _prom_enabled and _prom_scan_latency_hist is not None:
        _prom_scan_latency_hist.labels(**labels).observe(duration)


def record_skipped_line(count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    if _enabled and _skipped_lines_counter is not None:
        _skipped_lines_counter.add(safe_count)
    if _prom_enabled and _prom_skipped_lines_counter is not None:
        _prom_skipped_lines_counter.inc(safe_count)


def record_change_event(kind: str) -> None:
    labels = {"kind": kind or "unknown"}
    if _enabled and _change_events_counter is not None:
        _change_events_counter.add(1, labels)
    if _prom_enabled and _prom_change_events_counter is not None:
        _prom_change_events_counter.labels(**labels).inc()


def record_subscriber_drop(reason: str) -> None:
    labels = {"reason": reason or "unknown"}
    if _enabled and _subscriber_drops_counter is not None:
        _subscriber_drops_counter.add(1, labels)
    if _prom_enabled and _prom_subscriber_drops_counter is not None:
        _prom_subscriber_drops_counter.labels(**labels).inc()

"""OpenTelemetry + Prometheus fallback wiring for the inference engine."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from feature_engine import config

logger = logging.getLogger("feature_engine.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None

_stage_units_counter: Any | None = None
_stage_latency_hist: Any | None = None
_provider_calls_counter: Any | None = None
_unit_failure_counter: Any | None = None

_prom_enabled = False
_prom_stage_units_counter: Any | None = None
_prom_stage_latency_hist: Any | None = None
_prom_provider_calls_counter: Any | None = None
_prom_unit_failure_counter: Any | None = None


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


def _labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def initialize() -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider
    global _stage_units_counter, _stage_latency_hist, _provider_calls_counter, _unit_failure_counter
    global _prom_enabled
    global _prom_stage_units_counter, _prom_stage_latency_hist
    global _prom_provider_calls_counter, _prom_unit_failure_counter

    if _initialized:
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (FEATURE_ENGINE_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
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
    service_name = config.OTEL_SERVICE_NAME or "feature-engine"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "feature_engine",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_exporter = OTLPSpanExporter(endpoint=traces_endpoint or None)
    trace_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("feature_engine")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("feature_engine")

    _stage_units_counter = meter.create_counter(
        "feature_engine_stage_units_total",
        unit="1",
        description="Units attempted and succeeded per pipeline stage",
    )
    _stage_latency_hist = meter.create_histogram(
        "feature_engine_stage_latency_ms",
        unit="ms",
        description="Wall time per pipeline stage",
    )
    _provider_calls_counter = meter.create_counter(
        "feature_engine_provider_calls_total",
        unit="1",
        description="Embedding and reasoning provider call outcomes",
    )
    _unit_failure_counter = meter.create_counter(
        "feature_engine_unit_failures_total",
        unit="1",
        description="Per-unit failures recorded by pipeline stages",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _enabled = True

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_stage_units_counter = Counter(
                "feature_engine_stage_units_total",
                "Units attempted and succeeded per pipeline stage",
                ["stage", "outcome"],
            )
            _prom_stage_latency_hist = Histogram(
                "feature_engine_stage_latency_ms",
                "Wall time per pipeline stage",
                ["stage"],
            )
            _prom_provider_calls_counter = Counter(
                "feature_engine_provider_calls_total",
                "Embedding and reasoning provider call outcomes",
                ["provider", "operation", "result"],
            )
            _prom_unit_failure_counter = Counter(
                "feature_engine_unit_failures_total",
                "Per-unit failures recorded by pipeline stages",
                ["stage", "error_type"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown() -> None:
    global _enabled
    if not _initialized:
        return
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
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


def record_stage(stage: str, attempted: int, succeeded: int, duration_ms: float) -> None:
    failed = max(0, int(attempted) - int(succeeded))
    if _enabled and _stage_units_counter is not None:
        _stage_units_counter.add(max(0, int(succeeded)), _labels(stage=stage, outcome="succeeded"))
        if failed:
            _stage_units_counter.add(failed, _labels(stage=stage, outcome="failed"))
    if _enabled and _stage_latency_hist is not None:
        _stage_latency_hist.record(max(0.0, float(duration_ms)), _labels(stage=stage))
    if _prom_enabled and _prom_stage_units_counter is not None:
        _prom_stage_units_counter.labels(**_labels(stage=stage, outcome="succeeded")).inc(max(0, int(succeeded)))
        if failed:
            _prom_stage_units_counter.labels(**_labels(stage=stage, outcome="failed")).inc(failed)
    if _prom_enabled and _prom_stage_latency_hist is not None:
        _prom_stage_latency_hist.labels(**_labels(stage=stage)).observe(max(0.0, float(duration_ms)))


def record_provider_call(provider: str, operation: str, result: str) -> None:
    labels = _labels(provider=provider, operation=operation, result=result)
    if _enabled and _provider_calls_counter is not None:
        _provider_calls_counter.add(1, labels)
    if _prom_enabled and _prom_provider_calls_counter is not None:
        _prom_provider_calls_counter.labels(**labels).inc()


def record_unit_failure(stage: str, error_type: str) -> None:
    labels = _labels(stage=stage, error_type=error_type)
    if _enabled and _unit_failure_counter is not None:
        _unit_failure_counter.add(1, labels)
    if _prom_enabled and _prom_unit_failure_counter is not None:
        _prom_unit_failure_counter.labels(**labels).inc()

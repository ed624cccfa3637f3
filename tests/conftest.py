# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Callable, Generator
from typing import Any

from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from pytest import fixture

from otel_genai_bridges import GenAITelemetry, TelemetryOptions

ENV_VARS = [
    "OTEL_GENAI_ENABLED",
    "OTEL_GENAI_SYSTEM",
    "OTEL_GENAI_DEFAULT_MODEL",
    "OTEL_GENAI_OPERATION_NAME",
    "OTEL_GENAI_CAPTURE_PROMPTS",
    "OTEL_GENAI_CAPTURE_COMPLETIONS",
    "OTEL_GENAI_DEFAULT_CACHED",
    "OTEL_GENAI_COST_ENABLED",
    "OTEL_GENAI_COST_CURRENCY",
    "OTEL_GENAI_COST_INPUT_PER_THOUSAND",
    "OTEL_GENAI_COST_OUTPUT_PER_THOUSAND",
    "OTEL_GENAI_TEMPERATURE",
    "OTEL_GENAI_TOP_P",
    "OTEL_GENAI_MAX_TOKENS",
    "OTEL_GENAI_STOP_SEQUENCES",
    "OTEL_GENAI_TIMEOUT_MS",
    "OTEL_GENAI_ENABLE_CONSOLE_EXPORTERS",
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT",
    "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT",
    "OTEL_EXPORTER_OTLP_PROTOCOL",
    "OTEL_EXPORTER_OTLP_HEADERS",
    "OTEL_EXPORTER_OTLP_TRACES_HEADERS",
    "OTEL_EXPORTER_OTLP_METRICS_HEADERS",
    "OTEL_SERVICE_NAME",
    "OTEL_SERVICE_VERSION",
    "OTEL_RESOURCE_ATTRIBUTES",
]


@fixture(autouse=True)
def clean_environment(monkeypatch) -> None:
    """Fixture to remove environment variables read by the bridges."""
    for key in ENV_VARS:
        monkeypatch.delenv(key, raising=False)  # type: ignore


@fixture
def options(request: Any) -> TelemetryOptions:
    """Fixture that returns the telemetry options, parametrize indirectly to override."""
    return request.param if hasattr(request, "param") else TelemetryOptions()


@fixture
def span_exporter() -> Generator[InMemorySpanExporter, Any, Any]:
    exporter = InMemorySpanExporter()
    yield exporter
    exporter.clear()


@fixture
def tracer_provider(span_exporter: InMemorySpanExporter) -> TracerProvider:
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@fixture
def meter_provider(metric_reader: InMemoryMetricReader) -> MeterProvider:
    return MeterProvider(metric_readers=[metric_reader])


@fixture
def telemetry(
    options: TelemetryOptions, tracer_provider: TracerProvider, meter_provider: MeterProvider
) -> GenAITelemetry:
    """Fixture for a telemetry engine writing to the in-memory exporter and reader."""
    return GenAITelemetry(options, tracer_provider=tracer_provider, meter_provider=meter_provider)


@fixture
def metric_points(metric_reader: InMemoryMetricReader) -> Callable[[str], list[Any]]:
    """Fixture returning a function that collects the data points of a metric by name."""

    def _points(name: str) -> list[Any]:
        data = metric_reader.get_metrics_data()
        if data is None:
            return []
        return [
            point
            for resource_metrics in data.resource_metrics
            for scope_metrics in resource_metrics.scope_metrics
            for metric in scope_metrics.metrics
            if metric.name == name
            for point in metric.data.data_points
        ]

    return _points


@fixture
def metric_units(metric_reader: InMemoryMetricReader) -> Callable[[], dict[str, str]]:
    """Fixture returning a function that maps the collected metric names to their units."""

    def _units() -> dict[str, str]:
        data = metric_reader.get_metrics_data()
        if data is None:
            return {}
        return {
            metric.name: metric.unit
            for resource_metrics in data.resource_metrics
            for scope_metrics in resource_metrics.scope_metrics
            for metric in scope_metrics.metrics
        }

    return _units

# Copyright (c) Microsoft. All rights reserved.

import asyncio
import contextlib
import os
from collections.abc import Awaitable, Callable, Generator, Mapping
from datetime import timedelta
from enum import Enum
from time import perf_counter, time_ns
from typing import TYPE_CHECKING, Any, Final, TypedDict, TypeVar

from dotenv import load_dotenv
from opentelemetry import metrics, trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.semconv.attributes import service_attributes
from opentelemetry.semconv_ai import GenAISystem, Meters, SpanAttributes

from . import __version__ as version_info
from ._logging import get_logger
from ._options import TelemetryOptions, load_telemetry_options
from ._settings import load_settings
from .exceptions import TelemetryException

if TYPE_CHECKING:  # pragma: no cover
    from opentelemetry.sdk.metrics.export import MetricExporter
    from opentelemetry.sdk.metrics.view import View
    from opentelemetry.sdk.trace.export import SpanExporter
    from opentelemetry.util.types import AttributeValue

    from ._context import InvocationContext
    from ._types import ChatResponse

__all__ = [
    "GenAITelemetry",
    "OtelAttr",
    "capture_exception",
    "configure_otel_providers",
    "create_metric_views",
    "create_resource",
    "error_type",
    "get_meter",
    "get_tracer",
]

TResponse = TypeVar("TResponse", bound="ChatResponse | None")

logger = get_logger()

INSTRUMENTATION_NAME: Final[str] = "otel_genai_bridges"
OPEN_TELEMETRY_CHAT_CLIENT_MARKER: Final[str] = "__open_telemetry_chat_client__"
TOKEN_USAGE_BUCKET_BOUNDARIES: Final[tuple[float, ...]] = (
    1,
    4,
    16,
    64,
    256,
    1024,
    4096,
    16384,
    65536,
    262144,
    1048576,
    4194304,
    16777216,
    67108864,
)
OPERATION_DURATION_BUCKET_BOUNDARIES: Final[tuple[float, ...]] = (
    0.01,
    0.02,
    0.04,
    0.08,
    0.16,
    0.32,
    0.64,
    1.28,
    2.56,
    5.12,
    10.24,
    20.48,
    40.96,
    81.92,
)
RETRIEVAL_LATENCY_BUCKET_BOUNDARIES: Final[tuple[float, ...]] = (
    1,
    5,
    10,
    25,
    50,
    100,
    250,
    500,
    1000,
    2500,
    5000,
    10000,
)


class OtelAttr(str, Enum):
    """Enum to capture the attributes used in OpenTelemetry for Generative AI.

    Based on: https://opentelemetry.io/docs/specs/semconv/gen-ai/gen-ai-spans/
    and https://opentelemetry.io/docs/specs/semconv/gen-ai/gen-ai-events/
    """

    OPERATION = "gen_ai.operation.name"
    ERROR_TYPE = "error.type"
    # Request attributes
    STOP_SEQUENCES = "gen_ai.request.stop_sequences"
    TIMEOUT_MS = "gen_ai.request.timeout_ms"
    # Response attributes
    FINISH_REASONS = "gen_ai.response.finish_reasons"
    CACHED = "gen_ai.response.cached"
    # Usage attributes
    INPUT_TOKENS = "gen_ai.usage.input_tokens"
    OUTPUT_TOKENS = "gen_ai.usage.output_tokens"
    # Event attributes
    PROMPT_CONTENT = "gen_ai.prompt.content"
    RESPONSE_CONTENT = "gen_ai.response.content"
    ROLE = "role"
    TOOL_CALL_NAME = "tool.name"
    # Retrieval attributes
    DATASOURCE = "datasource"
    # Client attributes
    # replaced TOKEN with T, because both ruff and bandit,
    # complain about TOKEN being a potential secret
    T_UNIT = "{token}"
    T_TYPE_INPUT = "input"
    T_TYPE_OUTPUT = "output"
    DURATION_UNIT = "s"
    ERROR_UNIT = "{error}"
    TOOL_CALL_UNIT = "{call}"
    LATENCY_UNIT = "ms"

    # Events
    SYSTEM_MESSAGE = "gen_ai.system.message"
    USER_MESSAGE = "gen_ai.user.message"
    ASSISTANT_MESSAGE = "gen_ai.assistant.message"
    TOOL_MESSAGE = "gen_ai.tool.message"

    # Metrics
    OPERATION_ERRORS = "gen_ai.client.operation.errors"
    OPERATION_COST = "gen_ai.client.operation.cost"
    TOOL_CALLS = "gen_ai.client.tool.calls"
    RETRIEVAL_LATENCY = "gen_ai.rag.retrieval.latency"

    def __repr__(self) -> str:
        """Return the string representation of the enum member."""
        return self.value

    def __str__(self) -> str:
        """Return the string representation of the enum member."""
        return self.value


# region Telemetry utils


# Parse headers helper
def _parse_headers(header_str: str) -> dict[str, str]:
    """Parse header string like 'key1=value1,key2=value2' into dict."""
    headers: dict[str, str] = {}
    if not header_str:
        return headers
    for pair in header_str.split(","):
        if "=" in pair:
            key, value = pair.split("=", 1)
            headers[key.strip()] = value.strip()
    return headers


def _create_otlp_exporters(
    endpoint: str | None = None,
    protocol: str = "grpc",
    headers: dict[str, str] | None = None,
    traces_endpoint: str | None = None,
    traces_headers: dict[str, str] | None = None,
    metrics_endpoint: str | None = None,
    metrics_headers: dict[str, str] | None = None,
) -> list["SpanExporter | MetricExporter"]:
    """Create OTLP span and metric exporters for a given endpoint and protocol.

    Args:
        endpoint: The OTLP endpoint URL, used for both signals unless a specific endpoint is given.
        protocol: The protocol to use ("grpc", "http/protobuf" or "http"). Default is "grpc".
        headers: Optional headers, used for both signals unless specific headers are given.
        traces_endpoint: Optional specific endpoint for traces.
        traces_headers: Optional specific headers for traces.
        metrics_endpoint: Optional specific endpoint for metrics.
        metrics_headers: Optional specific headers for metrics.

    Returns:
        The OTLPSpanExporter and/or OTLPMetricExporter, for the signals that have an endpoint.

    Raises:
        ImportError: If the required OTLP exporter package is not installed.
        TelemetryException: If the protocol is not supported.
    """
    actual_traces_endpoint = traces_endpoint or endpoint
    actual_metrics_endpoint = metrics_endpoint or endpoint
    actual_traces_headers = traces_headers or headers
    actual_metrics_headers = metrics_headers or headers

    exporters: list["SpanExporter | MetricExporter"] = []

    if not actual_traces_endpoint and not actual_metrics_endpoint:
        return exporters

    if protocol == "grpc":
        try:
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
                OTLPMetricExporter as GRPCMetricExporter,
            )
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as GRPCSpanExporter
        except ImportError as exc:
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-grpc is required for OTLP gRPC exporters. "
                "Install it with: pip install otel-genai-bridges[otlp]"
            ) from exc

        if actual_traces_endpoint:
            exporters.append(
                GRPCSpanExporter(endpoint=actual_traces_endpoint, headers=actual_traces_headers or None)
            )
        if actual_metrics_endpoint:
            exporters.append(
                GRPCMetricExporter(endpoint=actual_metrics_endpoint, headers=actual_metrics_headers or None)
            )

    elif protocol in ("http/protobuf", "http"):
        try:
            from opentelemetry.exporter.otlp.proto.http.metric_exporter import (
                OTLPMetricExporter as HTTPMetricExporter,
            )
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HTTPSpanExporter
        except ImportError as exc:
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required for OTLP HTTP exporters. "
                "Install it with: pip install otel-genai-bridges[otlp]"
            ) from exc

        if actual_traces_endpoint:
            exporters.append(
                HTTPSpanExporter(endpoint=actual_traces_endpoint, headers=actual_traces_headers or None)
            )
        if actual_metrics_endpoint:
            exporters.append(
                HTTPMetricExporter(endpoint=actual_metrics_endpoint, headers=actual_metrics_headers or None)
            )
    else:
        raise TelemetryException(f"Unsupported OTLP protocol '{protocol}', use 'grpc' or 'http/protobuf'.")

    return exporters


def _get_exporters_from_env(
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
) -> list["SpanExporter | MetricExporter"]:
    """Parse OpenTelemetry environment variables and create exporters.

    The following environment variables are supported:
    - OTEL_EXPORTER_OTLP_ENDPOINT: Base endpoint for all signals
    - OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: Endpoint specifically for traces
    - OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: Endpoint specifically for metrics
    - OTEL_EXPORTER_OTLP_PROTOCOL: Protocol to use (grpc, http/protobuf)
    - OTEL_EXPORTER_OTLP_HEADERS: Headers for all signals
    - OTEL_EXPORTER_OTLP_TRACES_HEADERS: Headers specifically for traces
    - OTEL_EXPORTER_OTLP_METRICS_HEADERS: Headers specifically for metrics

    Args:
        env_file_path: Path to a .env file to load environment variables from.
            Default is None, which loads from '.env' if present.
        env_file_encoding: Encoding to use when reading the .env file.

    Returns:
        List of configured exporters (empty if no relevant env vars are set).

    References:
        - https://opentelemetry.io/docs/languages/sdk-configuration/otlp-exporter/
    """
    load_dotenv(dotenv_path=env_file_path, encoding=env_file_encoding)

    base_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    traces_endpoint = os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT") or base_endpoint
    metrics_endpoint = os.getenv("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT") or base_endpoint

    protocol = os.getenv("OTEL_EXPORTER_OTLP_PROTOCOL", "grpc").lower()

    # Signal specific headers are merged over the base headers
    base_headers = _parse_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS", ""))
    traces_headers = {**base_headers, **_parse_headers(os.getenv("OTEL_EXPORTER_OTLP_TRACES_HEADERS", ""))}
    metrics_headers = {**base_headers, **_parse_headers(os.getenv("OTEL_EXPORTER_OTLP_METRICS_HEADERS", ""))}

    return _create_otlp_exporters(
        protocol=protocol,
        traces_endpoint=traces_endpoint,
        traces_headers=traces_headers or None,
        metrics_endpoint=metrics_endpoint,
        metrics_headers=metrics_headers or None,
    )


def create_resource(
    service_name: str | None = None,
    service_version: str | None = None,
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
    **attributes: Any,
) -> "Resource":
    """Create an OpenTelemetry Resource from environment variables and parameters.

    The following environment variables are read:
    - OTEL_SERVICE_NAME: The name of the service (defaults to "otel_genai_bridges")
    - OTEL_SERVICE_VERSION: The version of the service (defaults to package version)
    - OTEL_RESOURCE_ATTRIBUTES: Additional resource attributes as key=value pairs

    Args:
        service_name: Override the service name.
        service_version: Override the service version.
        env_file_path: Path to a .env file to load environment variables from.
            Default is None, which loads from '.env' if present.
        env_file_encoding: Encoding to use when reading the .env file.
        **attributes: Additional resource attributes, merged with OTEL_RESOURCE_ATTRIBUTES.

    Returns:
        A configured OpenTelemetry Resource instance.

    Examples:
        .. code-block:: python

            from otel_genai_bridges.observability import create_resource

            resource = create_resource(service_name="chat-service", deployment_environment="staging")
    """
    load_dotenv(dotenv_path=env_file_path, encoding=env_file_encoding)

    resource_attributes: dict[str, Any] = dict(attributes)

    if service_name is None:
        service_name = os.getenv("OTEL_SERVICE_NAME", INSTRUMENTATION_NAME)
    resource_attributes[service_attributes.SERVICE_NAME] = service_name

    if service_version is None:
        service_version = os.getenv("OTEL_SERVICE_VERSION", version_info)
    resource_attributes[service_attributes.SERVICE_VERSION] = service_version

    # Format: key1=value1,key2=value2
    if resource_attrs_env := os.getenv("OTEL_RESOURCE_ATTRIBUTES"):
        resource_attributes.update(_parse_headers(resource_attrs_env))
    return Resource.create(resource_attributes)


def create_metric_views() -> list["View"]:
    """Create metric views that keep the ``gen_ai`` instruments and drop everything else."""
    from opentelemetry.sdk.metrics.view import DropAggregation, View

    return [
        View(instrument_name="gen_ai*"),
        View(instrument_name="*", aggregation=DropAggregation()),
    ]


def get_tracer(
    instrumenting_module_name: str = INSTRUMENTATION_NAME,
    instrumenting_library_version: str = version_info,
    tracer_provider: "trace.TracerProvider | None" = None,
    schema_url: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> "trace.Tracer":
    """Returns a Tracer for use by the given instrumentation library.

    If tracer_provider is omitted the current configured one is used.

    Args:
        instrumenting_module_name: The name of the instrumenting library.
            Default is "otel_genai_bridges".
        instrumenting_library_version: The version of the instrumenting library.
            Default is the current otel_genai_bridges version.
        tracer_provider: Optional tracer provider, defaults to the global one.
        schema_url: Optional schema URL for the emitted telemetry.
        attributes: Optional attributes associated with the emitted telemetry.
    """
    return trace.get_tracer(
        instrumenting_module_name=instrumenting_module_name,
        instrumenting_library_version=instrumenting_library_version,
        tracer_provider=tracer_provider,
        schema_url=schema_url,
        attributes=attributes,
    )


def get_meter(
    name: str = INSTRUMENTATION_NAME,
    version: str = version_info,
    meter_provider: "metrics.MeterProvider | None" = None,
    schema_url: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> "metrics.Meter":
    """Returns a Meter for otel_genai_bridges.

    Args:
        name: The name of the instrumenting library. Default is "otel_genai_bridges".
        version: The version of the instrumenting library. Default is the package version.
        meter_provider: Optional meter provider, defaults to the global one.
        schema_url: Optional schema URL of the emitted telemetry.
        attributes: Optional attributes associated with the emitted telemetry.
    """
    return metrics.get_meter(
        name=name,
        version=version,
        meter_provider=meter_provider,
        schema_url=schema_url,
        attributes=attributes,
    )


def _configure_providers(
    exporters: list["SpanExporter | MetricExporter"],
    resource: "Resource",
    views: list["View"] | None = None,
) -> tuple["trace.TracerProvider | None", "metrics.MeterProvider | None"]:
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import MetricExporter, PeriodicExportingMetricReader
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

    span_exporters = [exp for exp in exporters if isinstance(exp, SpanExporter)]
    metric_exporters = [exp for exp in exporters if isinstance(exp, MetricExporter)]

    tracer_provider: TracerProvider | None = None
    if span_exporters:
        tracer_provider = TracerProvider(resource=resource)
        for exporter in span_exporters:
            tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(tracer_provider)

    meter_provider: MeterProvider | None = None
    if metric_exporters:
        meter_provider = MeterProvider(
            metric_readers=[
                PeriodicExportingMetricReader(exporter, export_interval_millis=5000) for exporter in metric_exporters
            ],
            resource=resource,
            views=views or [],
        )
        metrics.set_meter_provider(meter_provider)

    return tracer_provider, meter_provider


class ProviderSettings(TypedDict, total=False):
    enable_console_exporters: bool | None


def configure_otel_providers(
    *,
    exporters: list["SpanExporter | MetricExporter"] | None = None,
    views: list["View"] | None = None,
    enable_console_exporters: bool | None = None,
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
) -> tuple["trace.TracerProvider | None", "metrics.MeterProvider | None"]:
    """Create the tracer and meter providers and register them globally.

    Call this method once during application startup, before any telemetry is captured.
    Applications that already configure OpenTelemetry, e.g. through a vendor distro,
    should skip it and pass their providers to :class:`GenAITelemetry` instead.

    The function reads the standard OpenTelemetry environment variables:
    - OTEL_EXPORTER_OTLP_ENDPOINT: Base OTLP endpoint for all signals
    - OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: OTLP endpoint for traces
    - OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: OTLP endpoint for metrics
    - OTEL_EXPORTER_OTLP_PROTOCOL: Protocol (grpc/http)
    - OTEL_EXPORTER_OTLP_HEADERS: Headers for all signals
    - OTEL_GENAI_ENABLE_CONSOLE_EXPORTERS: Enable console output for telemetry

    Keyword Args:
        exporters: Span and/or metric exporters, added to the ones configured via environment variables.
        views: Optional metric views, see :func:`create_metric_views`.
        enable_console_exporters: Add console exporters, overrides OTEL_GENAI_ENABLE_CONSOLE_EXPORTERS.
        env_file_path: An optional path to a .env file to load environment variables from.
        env_file_encoding: The encoding to use when loading the .env file.

    Returns:
        The created tracer provider and meter provider, None for a signal without exporters.

    Examples:
        .. code-block:: python

            from otel_genai_bridges.observability import configure_otel_providers, create_metric_views

            # Set OTEL_EXPORTER_OTLP_ENDPOINT=http://localhost:4317
            configure_otel_providers(views=create_metric_views())

    References:
        - https://opentelemetry.io/docs/languages/sdk-configuration/general/
        - https://opentelemetry.io/docs/languages/sdk-configuration/otlp-exporter/
    """
    settings = load_settings(
        ProviderSettings,
        env_prefix="OTEL_GENAI_",
        env_file_path=env_file_path,
        env_file_encoding=env_file_encoding,
        enable_console_exporters=enable_console_exporters,
    )

    # 1. Exporters from standard OTEL environment variables
    all_exporters: list["SpanExporter | MetricExporter"] = []
    all_exporters.extend(_get_exporters_from_env(env_file_path=env_file_path, env_file_encoding=env_file_encoding))

    # 2. Passed-in exporters
    if exporters:
        all_exporters.extend(exporters)

    # 3. Console exporters if explicitly enabled
    if settings.get("enable_console_exporters"):
        from opentelemetry.sdk.metrics.export import ConsoleMetricExporter
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        all_exporters.extend([ConsoleSpanExporter(), ConsoleMetricExporter()])

    return _configure_providers(
        all_exporters,
        create_resource(env_file_path=env_file_path, env_file_encoding=env_file_encoding),
        views=views,
    )


def error_type(exception: BaseException) -> str:
    """The fully qualified class name of an exception, builtins are not prefixed."""
    exception_type = type(exception)
    if exception_type.__module__ == "builtins":
        return exception_type.__qualname__
    return f"{exception_type.__module__}.{exception_type.__qualname__}"


def capture_exception(span: trace.Span, exception: BaseException, timestamp: int | None = None) -> None:
    """Set an error for spans."""
    span.set_attribute(OtelAttr.ERROR_TYPE, error_type(exception))
    span.record_exception(exception=exception, timestamp=timestamp)
    span.set_status(status=trace.StatusCode.ERROR, description=repr(exception))


# region Chat Client Telemetry


class GenAITelemetry:
    """Turns chat invocations into spans and metrics following the GenAI semantic conventions.

    One instance owns the tracer and the metric instruments and is shared by every
    instrumented client. It holds no per call state, so it can be used concurrently.

    Args:
        options: The telemetry policy, loaded from ``OTEL_GENAI_*`` environment variables when omitted.

    Keyword Args:
        tracer_provider: Tracer provider, defaults to the global one.
        meter_provider: Meter provider, defaults to the global one.

    Examples:
        .. code-block:: python

            from otel_genai_bridges import GenAITelemetry, InvocationContext, TelemetryOptions

            telemetry = GenAITelemetry(TelemetryOptions(capture_prompts=True))
            context = InvocationContext.create(telemetry.options, "ping", model="gpt-4o-mini")
            response = telemetry.instrument_call(context, lambda: client.generate("ping"))

            with telemetry.measure_retrieval("kb"):
                documents = store.search("ping")
    """

    def __init__(
        self,
        options: TelemetryOptions | None = None,
        *,
        tracer_provider: "trace.TracerProvider | None" = None,
        meter_provider: "metrics.MeterProvider | None" = None,
    ) -> None:
        self.options = options if options is not None else load_telemetry_options()
        if self.options.system.lower() not in {system.value.lower() for system in GenAISystem}:
            # that list is not complete, so just logging, no consequences.
            logger.debug(
                f"The GenAI system '{self.options.system}' is not recognized. "
                f"Consider using one of the following: {', '.join(system.value for system in GenAISystem)}"
            )
        self._tracer = get_tracer(tracer_provider=tracer_provider)
        meter = get_meter(meter_provider=meter_provider)
        self._duration_histogram = meter.create_histogram(
            name=Meters.LLM_OPERATION_DURATION,
            unit=OtelAttr.DURATION_UNIT,
            description="Captures the duration of chat client operations",
            explicit_bucket_boundaries_advisory=OPERATION_DURATION_BUCKET_BOUNDARIES,
        )
        self._token_usage_histogram = meter.create_histogram(
            name=Meters.LLM_TOKEN_USAGE,
            unit=OtelAttr.T_UNIT,
            description="Captures the token usage of chat clients",
            explicit_bucket_boundaries_advisory=TOKEN_USAGE_BUCKET_BOUNDARIES,
        )
        self._error_counter = meter.create_counter(
            name=OtelAttr.OPERATION_ERRORS,
            unit=OtelAttr.ERROR_UNIT,
            description="Counts failed chat client operations",
        )
        self._cost_histogram = meter.create_histogram(
            name=OtelAttr.OPERATION_COST,
            unit=self.options.cost.currency.lower(),
            description="Captures the estimated cost of chat client operations",
        )
        self._tool_call_counter = meter.create_counter(
            name=OtelAttr.TOOL_CALLS,
            unit=OtelAttr.TOOL_CALL_UNIT,
            description="Counts the tool calls requested by the model",
        )
        self._retrieval_latency_histogram = meter.create_histogram(
            name=OtelAttr.RETRIEVAL_LATENCY,
            unit=OtelAttr.LATENCY_UNIT,
            description="Captures the latency of document retrieval",
            explicit_bucket_boundaries_advisory=RETRIEVAL_LATENCY_BUCKET_BOUNDARIES,
        )

    @property
    def enabled(self) -> bool:
        return self.options.enabled

    def instrument_call(self, context: "InvocationContext", call: Callable[[], TResponse]) -> TResponse:
        """Run a synchronous chat call inside a CLIENT span and record its metrics.

        The result, or the exception, of ``call`` is passed through unchanged.

        Args:
            context: The resolved invocation.
            call: Invokes the underlying chat client.
        """
        if not self.enabled:
            return call()
        start_time_stamp = perf_counter()
        with self._get_span(context) as span:
            try:
                response = call()
            except (Exception, asyncio.CancelledError) as exception:
                self._capture_failure(span, context, exception, start_time_stamp)
                raise
            self._capture_success(span, context, response, start_time_stamp)
            return response

    async def instrument_call_async(
        self, context: "InvocationContext", call: Callable[[], Awaitable[TResponse]]
    ) -> TResponse:
        """Await a chat call inside a CLIENT span and record its metrics.

        Cancellation of the awaited call is recorded as a failure and re-raised.

        Args:
            context: The resolved invocation.
            call: Returns the awaitable invocation of the underlying chat client.
        """
        if not self.enabled:
            return await call()
        start_time_stamp = perf_counter()
        with self._get_span(context) as span:
            try:
                response = await call()
            except (Exception, asyncio.CancelledError) as exception:
                self._capture_failure(span, context, exception, start_time_stamp)
                raise
            self._capture_success(span, context, response, start_time_stamp)
            return response

    def record_rag_latency(
        self,
        datasource: str,
        latency: timedelta | float,
        base_attributes: Mapping[str, "AttributeValue"] | None = None,
    ) -> None:
        """Record the latency of a document retrieval, independent of any chat span.

        Args:
            datasource: Name of the searched datasource, recorded as the ``datasource`` attribute.
            latency: The elapsed time, a number is taken as milliseconds.
            base_attributes: Additional metric attributes.
        """
        if not self.enabled:
            return
        milliseconds = latency / timedelta(milliseconds=1) if isinstance(latency, timedelta) else float(latency)
        self._retrieval_latency_histogram.record(
            milliseconds, attributes={**(base_attributes or {}), OtelAttr.DATASOURCE: datasource}
        )

    @contextlib.contextmanager
    def measure_retrieval(
        self,
        datasource: str,
        base_attributes: Mapping[str, "AttributeValue"] | None = None,
    ) -> Generator[None, Any, Any]:
        """Time the enclosed retrieval and record it with :meth:`record_rag_latency`.

        The latency is recorded when the block raises as well.
        """
        start_time_stamp = perf_counter()
        try:
            yield
        finally:
            self.record_rag_latency(
                datasource, timedelta(seconds=perf_counter() - start_time_stamp), base_attributes
            )

    @contextlib.contextmanager
    def _get_span(self, context: "InvocationContext") -> Generator[trace.Span, Any, Any]:
        """Start the span of a chat invocation and make it current.

        The span is not ended on exit, the capture methods end it before recording the duration.
        """
        span = self._tracer.start_span(
            context.span_name(), kind=trace.SpanKind.CLIENT, attributes=context.to_attributes()
        )
        with trace.use_span(
            span=span,
            end_on_exit=False,
            record_exception=False,
            set_status_on_exception=False,
        ) as current_span:
            try:
                context.emit_prompt_events(current_span, self.options)
            except Exception as exc:
                logger.debug(f"Could not capture the prompt events: {exc!r}")
            yield current_span

    def _capture_success(
        self,
        span: trace.Span,
        context: "InvocationContext",
        response: "ChatResponse | None",
        start_time_stamp: float,
    ) -> None:
        attributes = context.to_attributes()
        if response is not None:
            try:
                self._capture_response(span, context, response)
            except Exception as exc:
                # the delegate already returned, its response is passed through regardless
                logger.debug(f"Could not capture the response of {context.span_name()}: {exc!r}")
        span.set_status(trace.StatusCode.OK)
        span.end()
        self._duration_histogram.record(perf_counter() - start_time_stamp, attributes=attributes)

    def _capture_response(self, span: trace.Span, context: "InvocationContext", response: "ChatResponse") -> None:
        attributes = context.to_attributes()
        if response.finish_reason is not None:
            span.set_attribute(OtelAttr.FINISH_REASONS, [str(response.finish_reason).lower()])
        if (usage := response.usage_details) is not None:
            self._capture_usage(span, attributes, usage.input_token_count, usage.output_token_count)
        for tool_call in response.tool_calls:
            self._tool_call_counter.add(1, attributes={**attributes, OtelAttr.TOOL_CALL_NAME: tool_call.name})
        context.process_response(span, response, self.options)

    def _capture_usage(
        self,
        span: trace.Span,
        attributes: Mapping[str, "AttributeValue"],
        input_tokens: int | None,
        output_tokens: int | None,
    ) -> None:
        if input_tokens is not None:
            span.set_attribute(OtelAttr.INPUT_TOKENS, input_tokens)
            self._token_usage_histogram.record(
                input_tokens, attributes={**attributes, SpanAttributes.LLM_TOKEN_TYPE: OtelAttr.T_TYPE_INPUT}
            )
        if output_tokens is not None:
            span.set_attribute(OtelAttr.OUTPUT_TOKENS, output_tokens)
            self._token_usage_histogram.record(
                output_tokens, attributes={**attributes, SpanAttributes.LLM_TOKEN_TYPE: OtelAttr.T_TYPE_OUTPUT}
            )
        cost = self.options.cost
        if not cost.enabled:
            return
        total = 0.0
        if input_tokens is not None and cost.input_per_thousand is not None:
            total += (input_tokens / 1000) * cost.input_per_thousand
        if output_tokens is not None and cost.output_per_thousand is not None:
            total += (output_tokens / 1000) * cost.output_per_thousand
        if total > 0:
            self._cost_histogram.record(total, attributes=attributes)

    def _capture_failure(
        self,
        span: trace.Span,
        context: "InvocationContext",
        exception: BaseException,
        start_time_stamp: float,
    ) -> None:
        attributes = context.to_attributes()
        capture_exception(span=span, exception=exception, timestamp=time_ns())
        self._error_counter.add(1, attributes=attributes)
        span.end()
        self._duration_histogram.record(perf_counter() - start_time_stamp, attributes=attributes)

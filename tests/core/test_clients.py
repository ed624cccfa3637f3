# Copyright (c) Microsoft. All rights reserved.

from unittest.mock import Mock

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.semconv_ai import Meters, SpanAttributes
from opentelemetry.trace import StatusCode

from otel_genai_bridges import (
    ChatClientInitializationError,
    ChatClientProtocol,
    ChatResponse,
    GenAITelemetry,
    InstrumentedChatClient,
    ModelIntrospector,
    ModelMetadata,
    SyncChatClientProtocol,
    TelemetryOptions,
    use_instrumentation,
)
from otel_genai_bridges.observability import OPEN_TELEMETRY_CHAT_CLIENT_MARKER, OtelAttr

from .conftest import MockChatClient, MockSyncChatClient

# region Test use_instrumentation


def test_protocols(mock_chat_client, mock_sync_chat_client):
    assert isinstance(mock_chat_client, ChatClientProtocol)
    assert isinstance(mock_sync_chat_client, SyncChatClientProtocol)
    assert not isinstance(mock_chat_client, SyncChatClientProtocol)


def test_marker():
    """Test that the instrumented client carries the marker attribute."""
    assert getattr(InstrumentedChatClient, OPEN_TELEMETRY_CHAT_CLIENT_MARKER) is True


def test_wrap(mock_chat_client, telemetry: GenAITelemetry):
    client = use_instrumentation(mock_chat_client, telemetry)

    assert isinstance(client, InstrumentedChatClient)
    assert client.inner_client is mock_chat_client
    assert client.telemetry is telemetry


def test_wrap_is_idempotent(mock_chat_client, telemetry: GenAITelemetry):
    client = use_instrumentation(mock_chat_client, telemetry)

    assert use_instrumentation(client, telemetry) is client


def test_wrap_client_with_marker(telemetry: GenAITelemetry):
    class AlreadyInstrumentedClient:
        __open_telemetry_chat_client__ = True

        async def get_response(self, messages, **kwargs):
            return None

    client = AlreadyInstrumentedClient()

    assert use_instrumentation(client, telemetry) is client


def test_wrap_mock_is_not_treated_as_instrumented(telemetry: GenAITelemetry):
    """Test that only a marker that is exactly True counts."""
    client = Mock()

    assert isinstance(use_instrumentation(client, telemetry), InstrumentedChatClient)


def test_wrap_object_without_generation_methods(telemetry: GenAITelemetry):
    with pytest.raises(ChatClientInitializationError, match="neither a get_response nor a generate"):
        use_instrumentation(object(), telemetry)


async def test_double_wrap_creates_one_span(
    mock_chat_client, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter
):
    client = use_instrumentation(use_instrumentation(mock_chat_client, telemetry), telemetry)

    await client.get_response("ping")

    assert len(span_exporter.get_finished_spans()) == 1


# region Test get_response


async def test_get_response(
    mock_chat_client, chat_response: ChatResponse, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter
):
    """Test that the async call is traced with the metadata of the wrapped client."""
    client = use_instrumentation(mock_chat_client, telemetry)

    response = await client.get_response("ping", tool_choice="auto")

    assert response is chat_response
    assert mock_chat_client.calls == [("ping", {"tool_choice": "auto"})]
    spans = span_exporter.get_finished_spans()
    assert len(spans) == 1
    span = spans[0]
    assert span.name == "chat mock-model"
    assert span.attributes[SpanAttributes.LLM_REQUEST_MODEL] == "mock-model"
    assert span.attributes[SpanAttributes.LLM_REQUEST_TEMPERATURE] == 0.2
    assert span.attributes[SpanAttributes.LLM_SYSTEM] == "openai"
    assert span.attributes[OtelAttr.INPUT_TOKENS] == 32
    assert span.attributes[OtelAttr.OUTPUT_TOKENS] == 12
    assert span.status.status_code == StatusCode.OK


async def test_get_response_reads_metadata_per_call(
    mock_chat_client, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter
):
    client = use_instrumentation(mock_chat_client, telemetry)

    await client.get_response("ping")
    mock_chat_client.temperature = 0.9
    await client.get_response("ping")

    spans = span_exporter.get_finished_spans()
    temperatures = [span.attributes[SpanAttributes.LLM_REQUEST_TEMPERATURE] for span in spans]
    assert temperatures == [0.2, 0.9]


@pytest.mark.parametrize("options", [TelemetryOptions(default_model="fallback-model")], indirect=True)
async def test_get_response_falls_back_to_options(telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter):
    client = use_instrumentation(MockChatClient(None, model_name=None, temperature=None), telemetry)

    assert await client.get_response("ping") is None

    span = span_exporter.get_finished_spans()[0]
    assert span.name == "chat fallback-model"
    assert SpanAttributes.LLM_REQUEST_TEMPERATURE not in span.attributes


async def test_get_response_failure(telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter, metric_points):
    error = RuntimeError("rate limited")
    client = use_instrumentation(MockChatClient(exception=error), telemetry)

    with pytest.raises(RuntimeError) as exc_info:
        await client.get_response("ping")

    assert exc_info.value is error
    span = span_exporter.get_finished_spans()[0]
    assert span.status.status_code == StatusCode.ERROR
    assert span.attributes[OtelAttr.ERROR_TYPE] == "RuntimeError"
    assert metric_points(OtelAttr.OPERATION_ERRORS)[0].value == 1


async def test_get_response_missing_method(
    mock_sync_chat_client, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter
):
    """Test that calling a method the wrapped client lacks fails before any span is started."""
    client = use_instrumentation(mock_sync_chat_client, telemetry)

    with pytest.raises(AttributeError):
        await client.get_response("ping")

    assert span_exporter.get_finished_spans() == ()


@pytest.mark.parametrize("options", [TelemetryOptions(enabled=False)], indirect=True)
async def test_get_response_disabled(
    mock_chat_client,
    chat_response: ChatResponse,
    telemetry: GenAITelemetry,
    span_exporter: InMemorySpanExporter,
    metric_points,
):
    client = use_instrumentation(mock_chat_client, telemetry)

    assert await client.get_response("ping", seed=1) is chat_response

    assert mock_chat_client.calls == [("ping", {"seed": 1})]
    assert span_exporter.get_finished_spans() == ()
    assert metric_points(Meters.LLM_OPERATION_DURATION) == []


# region Test generate


def test_generate(
    mock_sync_chat_client,
    chat_response: ChatResponse,
    telemetry: GenAITelemetry,
    span_exporter: InMemorySpanExporter,
    metric_points,
):
    """Test that the sync call is traced and extra arguments are passed through."""
    client = use_instrumentation(mock_sync_chat_client, telemetry)
    tools = [{"name": "search"}]

    response = client.generate("ping", tools, user="alice")

    assert response is chat_response
    assert mock_sync_chat_client.calls == [("ping", (tools,), {"user": "alice"})]
    span = span_exporter.get_finished_spans()[0]
    assert span.name == "chat sync-model"
    assert span.attributes[SpanAttributes.LLM_REQUEST_MAX_TOKENS] == 256
    assert span.attributes[OtelAttr.STOP_SEQUENCES] == ("END",)
    assert span.attributes[OtelAttr.FINISH_REASONS] == ("stop",)
    assert len(metric_points(Meters.LLM_OPERATION_DURATION)) == 1


def test_generate_failure(telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter):
    client = use_instrumentation(MockSyncChatClient(exception=TimeoutError("slow")), telemetry)

    with pytest.raises(TimeoutError, match="slow"):
        client.generate("ping")

    assert span_exporter.get_finished_spans()[0].attributes[OtelAttr.ERROR_TYPE] == "TimeoutError"


def test_generate_missing_method(mock_chat_client, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter):
    client = use_instrumentation(mock_chat_client, telemetry)

    with pytest.raises(AttributeError):
        client.generate("ping")

    assert span_exporter.get_finished_spans() == ()


def test_generate_with_custom_introspector(
    mock_sync_chat_client, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter
):
    introspector = ModelIntrospector(lambda client: ModelMetadata(model="custom", system="ollama"))
    client = use_instrumentation(mock_sync_chat_client, telemetry, introspector=introspector)

    client.generate("ping")

    span = span_exporter.get_finished_spans()[0]
    assert span.name == "chat custom"
    assert span.attributes[SpanAttributes.LLM_SYSTEM] == "ollama"
    assert SpanAttributes.LLM_REQUEST_MAX_TOKENS not in span.attributes


# region Test provider specific messages


@pytest.mark.parametrize("options", [TelemetryOptions(capture_prompts=True)], indirect=True)
def test_generate_with_dict_messages(
    mock_sync_chat_client, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter
):
    """Test that messages in the provider's own format reach the client and are not captured."""
    messages = [{"role": "user", "content": "ping"}]
    client = use_instrumentation(mock_sync_chat_client, telemetry)

    client.generate(messages)

    assert mock_sync_chat_client.calls == [(messages, (), {})]
    span = span_exporter.get_finished_spans()[0]
    assert span.status.status_code == StatusCode.OK
    assert span.events == ()


@pytest.mark.parametrize("options", [TelemetryOptions(capture_prompts=True)], indirect=True)
async def test_get_response_with_single_dict_message(
    mock_chat_client, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter
):
    message = {"role": "user", "content": "ping"}
    client = use_instrumentation(mock_chat_client, telemetry)

    await client.get_response(message)

    assert mock_chat_client.calls == [(message, {})]
    assert span_exporter.get_finished_spans()[0].events == ()


@pytest.mark.parametrize("options", [TelemetryOptions(capture_prompts=True)], indirect=True)
def test_generate_with_iterator(mock_sync_chat_client, telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter):
    """Test that a one-shot iterable is read once and still delivered in full."""
    client = use_instrumentation(mock_sync_chat_client, telemetry)

    client.generate(iter(["ping"]))

    assert mock_sync_chat_client.calls == [(["ping"], (), {})]
    span = span_exporter.get_finished_spans()[0]
    assert [event.attributes[OtelAttr.PROMPT_CONTENT] for event in span.events] == ["ping"]


async def test_get_response_with_generator(mock_chat_client, telemetry: GenAITelemetry):
    client = use_instrumentation(mock_chat_client, telemetry)

    await client.get_response(text for text in ("ping", "pong"))

    assert mock_chat_client.calls == [(["ping", "pong"], {})]


def test_generate_with_unusable_metadata(telemetry: GenAITelemetry, span_exporter: InMemorySpanExporter):
    """Test that metadata which cannot be turned into attributes is ignored."""
    metadata = ModelMetadata(model="custom", temperature="hot")  # type: ignore[arg-type]
    introspector = ModelIntrospector(lambda client: metadata)
    client = use_instrumentation(MockSyncChatClient(ChatResponse("pong")), telemetry, introspector=introspector)

    assert client.generate("ping").text == "pong"

    span = span_exporter.get_finished_spans()[0]
    assert span.name == "chat unknown-model"
    assert SpanAttributes.LLM_REQUEST_TEMPERATURE not in span.attributes


# region Test attribute forwarding


def test_attribute_forwarding(mock_chat_client, telemetry: GenAITelemetry):
    client = use_instrumentation(mock_chat_client, telemetry)

    assert client.model_name == "mock-model"
    assert client.calls is mock_chat_client.calls
    with pytest.raises(AttributeError):
        _ = client.does_not_exist


def test_repr(mock_chat_client, telemetry: GenAITelemetry):
    client = use_instrumentation(mock_chat_client, telemetry)

    assert repr(client).startswith("InstrumentedChatClient(inner_client=")

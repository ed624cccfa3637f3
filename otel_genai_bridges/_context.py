# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

from opentelemetry.semconv_ai import SpanAttributes

from ._types import ChatMessage, ChatResponse, Role, prepare_messages
from .observability import OtelAttr

if TYPE_CHECKING:  # pragma: no cover
    from opentelemetry import trace
    from opentelemetry.util.types import AttributeValue

    from ._options import TelemetryOptions

__all__ = ["InvocationContext", "truncate_text"]

MAX_CAPTURED_TEXT_LENGTH: Final[int] = 4000
TRUNCATION_MARKER: Final[str] = "…"
UNKNOWN_MODEL: Final[str] = "unknown-model"


def truncate_text(text: str | None) -> str:
    """Bound the length of captured message text.

    ``None`` becomes an empty string, longer text is cut to the first 4000 characters
    followed by a single ``…``.
    """
    if text is None:
        return ""
    if len(text) > MAX_CAPTURED_TEXT_LENGTH:
        return text[:MAX_CAPTURED_TEXT_LENGTH] + TRUNCATION_MARKER
    return text


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


@dataclass(frozen=True)
class InvocationContext:
    """The resolved, read-only description of a single chat invocation.

    Use :meth:`create` rather than the constructor, it applies the option defaults.
    """

    messages: tuple[ChatMessage | None, ...]
    system: str
    operation: str
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    cached: bool = False
    timeout: timedelta | None = None
    _attributes: Mapping[str, "AttributeValue"] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_attributes", MappingProxyType(self._build_attributes()))

    @classmethod
    def create(
        cls,
        options: "TelemetryOptions",
        messages: str | ChatMessage | Sequence[str | ChatMessage | None] | None,
        *,
        model: str | None = None,
        system: str | None = None,
        operation: str | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        max_tokens: int | None = None,
        stop_sequences: Sequence[str] | None = None,
        cached: bool | None = False,
        timeout: timedelta | None = None,
    ) -> "InvocationContext":
        """Resolve every field as the explicit value, else the option default, else absent.

        Args:
            options: The telemetry options providing the defaults.
            messages: The messages sent to the chat client.

        Keyword Args:
            model: Explicit model name.
            system: Explicit ``gen_ai.system`` value.
            operation: Explicit operation name.
            temperature: Explicit sampling temperature.
            top_p: Explicit nucleus sampling value.
            max_tokens: Explicit maximum number of output tokens.
            stop_sequences: Explicit stop sequences.
            cached: Whether the response is served from a cache, combined with
                ``options.default_cached``.
            timeout: Explicit request timeout.
        """
        tuning = options.tuning
        stop = _first_present(stop_sequences, tuning.stop_sequences)
        return cls(
            messages=prepare_messages(messages),
            system=_first_present(system, options.system),
            operation=_first_present(operation, options.operation_name),
            model=_first_present(model, options.default_model),
            temperature=_first_present(temperature, tuning.temperature),
            top_p=_first_present(top_p, tuning.top_p),
            max_tokens=_first_present(max_tokens, tuning.max_tokens),
            stop_sequences=tuple(stop) if stop is not None else None,
            cached=bool(cached) or options.default_cached,
            timeout=_first_present(timeout, tuning.timeout),
        )

    def span_name(self) -> str:
        return f"{self.operation} {self.model or UNKNOWN_MODEL}"

    def to_attributes(self) -> Mapping[str, "AttributeValue"]:
        """The attributes shared by the span and the metrics of this invocation.

        Absent fields are left out, no placeholder values are emitted.
        """
        return self._attributes

    def _build_attributes(self) -> dict[str, "AttributeValue"]:
        attributes: dict[str, AttributeValue] = {
            SpanAttributes.LLM_SYSTEM: self.system,
            OtelAttr.OPERATION: self.operation,
            OtelAttr.CACHED: self.cached,
        }
        if self.model is not None:
            attributes[SpanAttributes.LLM_REQUEST_MODEL] = self.model
        if self.temperature is not None:
            attributes[SpanAttributes.LLM_REQUEST_TEMPERATURE] = float(self.temperature)
        if self.top_p is not None:
            attributes[SpanAttributes.LLM_REQUEST_TOP_P] = float(self.top_p)
        if self.max_tokens is not None:
            attributes[SpanAttributes.LLM_REQUEST_MAX_TOKENS] = int(self.max_tokens)
        if self.stop_sequences is not None:
            attributes[OtelAttr.STOP_SEQUENCES] = self.stop_sequences
        if self.timeout is not None:
            attributes[OtelAttr.TIMEOUT_MS] = self.timeout // timedelta(milliseconds=1)
        return attributes

    def emit_prompt_events(self, span: "trace.Span", options: "TelemetryOptions") -> None:
        """Add the system and user messages as span events, when prompt capture is enabled."""
        if not options.capture_prompts:
            return
        for message in self.messages:
            if not isinstance(message, ChatMessage):
                continue
            if message.role == Role.SYSTEM:
                span.add_event(
                    OtelAttr.SYSTEM_MESSAGE,
                    {
                        SpanAttributes.LLM_SYSTEM: self.system,
                        OtelAttr.PROMPT_CONTENT: truncate_text(message.text),
                    },
                )
            elif message.role == Role.USER:
                span.add_event(
                    OtelAttr.USER_MESSAGE,
                    {
                        SpanAttributes.LLM_SYSTEM: self.system,
                        OtelAttr.PROMPT_CONTENT: truncate_text(message.text),
                        OtelAttr.ROLE: message.author_name or Role.USER.value,
                    },
                )

    def process_response(
        self, span: "trace.Span", response: ChatResponse | None, options: "TelemetryOptions"
    ) -> None:
        """Add the completion and the requested tool calls as span events.

        Tool call events only carry the tool name and are emitted regardless of
        ``capture_completions``.
        """
        if response is None or response.message is None:
            return
        if options.capture_completions:
            span.add_event(
                OtelAttr.ASSISTANT_MESSAGE,
                {
                    SpanAttributes.LLM_SYSTEM: self.system,
                    OtelAttr.RESPONSE_CONTENT: truncate_text(response.text),
                },
            )
        for tool_call in response.tool_calls:
            span.add_event(
                OtelAttr.TOOL_MESSAGE,
                {
                    SpanAttributes.LLM_SYSTEM: self.system,
                    OtelAttr.TOOL_CALL_NAME: tool_call.name,
                },
            )

# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Awaitable, Iterable, Mapping, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

from ._context import InvocationContext
from ._introspection import ModelIntrospector
from ._logging import get_logger
from ._types import ChatMessage, ChatResponse
from .exceptions import ChatClientInitializationError
from .observability import OPEN_TELEMETRY_CHAT_CLIENT_MARKER, GenAITelemetry

__all__ = [
    "ChatClientProtocol",
    "InstrumentedChatClient",
    "SyncChatClientProtocol",
    "use_instrumentation",
]

logger = get_logger()

TChatClient = TypeVar("TChatClient")


@runtime_checkable
class ChatClientProtocol(Protocol):
    """A chat client that generates responses asynchronously.

    Note:
        Protocols use structural subtyping (duck typing). Classes don't need
        to explicitly inherit from this protocol to be considered compatible.
    """

    def get_response(
        self,
        messages: str | ChatMessage | Sequence[str | ChatMessage],
        **kwargs: Any,
    ) -> Awaitable[ChatResponse]: ...


@runtime_checkable
class SyncChatClientProtocol(Protocol):
    """A chat client that generates responses in the calling thread.

    Extra positional arguments, e.g. tool specifications, are passed through untouched.
    """

    def generate(
        self,
        messages: str | ChatMessage | Sequence[str | ChatMessage],
        *args: Any,
        **kwargs: Any,
    ) -> ChatResponse: ...


class InstrumentedChatClient:
    """Transparent stand-in for a chat client that instruments every generation call.

    Every call introspects the wrapped client, builds an InvocationContext from the
    derived metadata and the messages, and runs the real call through the telemetry
    engine. Any other attribute is read from the wrapped client.

    Use :func:`use_instrumentation` to create one, it does not wrap a client twice.

    Args:
        inner_client: The chat client to instrument.
        telemetry: The telemetry engine.

    Keyword Args:
        introspector: Derives the request parameters of ``inner_client``.
    """

    __open_telemetry_chat_client__ = True

    def __init__(
        self,
        inner_client: Any,
        telemetry: GenAITelemetry,
        *,
        introspector: ModelIntrospector | None = None,
    ) -> None:
        self.inner_client = inner_client
        self.telemetry = telemetry
        self.introspector = introspector or ModelIntrospector()

    async def get_response(
        self,
        messages: str | ChatMessage | Sequence[str | ChatMessage],
        **kwargs: Any,
    ) -> ChatResponse:
        """Instrument ``inner_client.get_response(messages, **kwargs)``.

        Raises:
            AttributeError: The wrapped client has no ``get_response`` method.
        """
        get_response = self.inner_client.get_response
        if not self.telemetry.enabled:
            return await get_response(messages, **kwargs)
        messages = _materialize(messages)
        return await self.telemetry.instrument_call_async(
            self._create_context(messages), lambda: get_response(messages, **kwargs)
        )

    def generate(
        self,
        messages: str | ChatMessage | Sequence[str | ChatMessage],
        *args: Any,
        **kwargs: Any,
    ) -> ChatResponse:
        """Instrument ``inner_client.generate(messages, *args, **kwargs)``.

        Raises:
            AttributeError: The wrapped client has no ``generate`` method.
        """
        generate = self.inner_client.generate
        if not self.telemetry.enabled:
            return generate(messages, *args, **kwargs)
        messages = _materialize(messages)
        return self.telemetry.instrument_call(
            self._create_context(messages), lambda: generate(messages, *args, **kwargs)
        )

    def _create_context(self, messages: Any) -> InvocationContext:
        metadata = self.introspector.introspect(self.inner_client)
        try:
            return InvocationContext.create(
                self.telemetry.options,
                messages,
                model=metadata.model,
                system=metadata.system,
                temperature=metadata.temperature,
                top_p=metadata.top_p,
                max_tokens=metadata.max_tokens,
                stop_sequences=metadata.stop_sequences,
                cached=metadata.cached,
                timeout=metadata.timeout,
            )
        except Exception as exc:
            logger.debug(f"Ignoring the metadata of {type(self.inner_client).__name__}: {exc!r}")
            return InvocationContext.create(self.telemetry.options, messages)

    def __getattr__(self, name: str) -> Any:
        # Only called for attributes missing on the wrapper itself.
        if name.startswith("__") or name == "inner_client":
            raise AttributeError(name)
        return getattr(self.inner_client, name)

    def __repr__(self) -> str:
        return f"InstrumentedChatClient(inner_client={self.inner_client!r})"


def _materialize(messages: Any) -> Any:
    """Turn a one-shot iterable of messages into a list, so it can be read and still delegated."""
    if isinstance(messages, (str, ChatMessage, Sequence, Mapping)) or not isinstance(messages, Iterable):
        return messages
    return list(messages)


def use_instrumentation(
    chat_client: TChatClient,
    telemetry: GenAITelemetry,
    *,
    introspector: ModelIntrospector | None = None,
) -> "InstrumentedChatClient | TChatClient":
    """Wrap a chat client so that its generation calls emit spans and metrics.

    Wrapping is idempotent, an already instrumented client is returned unchanged.

    Args:
        chat_client: A client with an async ``get_response`` and/or a sync ``generate`` method.
        telemetry: The telemetry engine.

    Keyword Args:
        introspector: Custom metadata introspector, defaults to a new ModelIntrospector.

    Returns:
        The instrumented client.

    Raises:
        ChatClientInitializationError: If the chat client has neither a get_response
            nor a generate method.

    Examples:
        .. code-block:: python

            from otel_genai_bridges import GenAITelemetry, TelemetryOptions, use_instrumentation

            telemetry = GenAITelemetry(TelemetryOptions(system="ollama"))
            client = use_instrumentation(OllamaChatClient(model_name="llama3"), telemetry)
            response = await client.get_response("Hello")
    """
    if isinstance(chat_client, InstrumentedChatClient) or (
        getattr(chat_client, OPEN_TELEMETRY_CHAT_CLIENT_MARKER, False) is True
    ):
        # Already decorated
        return chat_client

    if not callable(getattr(chat_client, "get_response", None)) and not callable(
        getattr(chat_client, "generate", None)
    ):
        raise ChatClientInitializationError(
            f"The chat client {type(chat_client).__name__} has neither a get_response nor a generate method."
        )

    logger.debug(f"Instrumenting chat client {type(chat_client).__name__}")
    return InstrumentedChatClient(chat_client, telemetry, introspector=introspector)

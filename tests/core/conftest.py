# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Sequence
from typing import Any

from pytest import fixture

from otel_genai_bridges import ChatMessage, ChatResponse, FinishReason, UsageDetails

# region Chat clients


class MockChatClient:
    """Async chat client exposing its request parameters as attributes."""

    def __init__(
        self,
        response: ChatResponse | None = None,
        *,
        model_name: str | None = "mock-model",
        temperature: float | None = 0.2,
        exception: BaseException | None = None,
    ) -> None:
        self.model_name = model_name
        self.temperature = temperature
        self.response = response
        self.exception = exception
        self.calls: list[tuple[Any, dict[str, Any]]] = []

    async def get_response(self, messages: str | ChatMessage | Sequence[str | ChatMessage], **kwargs: Any):
        self.calls.append((messages, kwargs))
        if self.exception is not None:
            raise self.exception
        return self.response


class MockSyncChatClient:
    """Synchronous chat client exposing its request parameters through getters."""

    def __init__(self, response: ChatResponse | None = None, *, exception: BaseException | None = None) -> None:
        self.response = response
        self.exception = exception
        self.max_tokens = 256
        self.calls: list[tuple[Any, tuple[Any, ...], dict[str, Any]]] = []

    def get_model_name(self) -> str:
        return "sync-model"

    def get_stop_sequences(self) -> list[str]:
        return ["END"]

    def generate(self, messages: str | ChatMessage | Sequence[str | ChatMessage], *args: Any, **kwargs: Any):
        self.calls.append((messages, args, kwargs))
        if self.exception is not None:
            raise self.exception
        return self.response


@fixture
def chat_response() -> ChatResponse:
    return ChatResponse(
        "pong",
        finish_reason=FinishReason.STOP,
        usage_details=UsageDetails(input_token_count=32, output_token_count=12),
    )


@fixture
def mock_chat_client(chat_response: ChatResponse) -> MockChatClient:
    return MockChatClient(chat_response)


@fixture
def mock_sync_chat_client(chat_response: ChatResponse) -> MockSyncChatClient:
    return MockSyncChatClient(chat_response)

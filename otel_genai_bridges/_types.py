# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, ClassVar, Literal

__all__ = [
    "ChatMessage",
    "ChatResponse",
    "FinishReason",
    "Role",
    "ToolCall",
    "UsageDetails",
    "prepare_messages",
]


class EnumLike(type):
    """Generic metaclass for creating enum-like classes with predefined constants.

    This metaclass automatically creates class-level constants based on a _constants
    class attribute. Each constant maps a constant name to the constructor argument.
    Unlike a real Enum, values outside of the constants are still accepted, since
    providers keep adding roles and finish reasons.
    """

    def __new__(mcs, name: str, bases: tuple[type, ...], namespace: dict[str, Any]) -> "EnumLike":
        cls = super().__new__(mcs, name, bases, namespace)

        if (const := getattr(cls, "_constants", None)) and isinstance(const, dict):
            for const_name, const_value in const.items():
                setattr(cls, const_name, cls(const_value))

        return cls


class _StringValue:
    """Shared behavior of the enum-like value classes."""

    def __init__(self, value: str) -> None:
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return False
        return self.value == other.value

    def __hash__(self) -> int:
        return hash(self.value)

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(value={self.value!r})"


class Role(_StringValue, metaclass=EnumLike):
    """Describes the intended purpose of a message within a chat interaction.

    Properties:
        SYSTEM: The role that instructs or sets the behavior of the AI system.
        USER: The role that provides user input for chat interactions.
        ASSISTANT: The role that provides responses to system-instructed, user-prompted input.
        TOOL: The role that provides additional information and references in response to tool use requests.
    """

    _constants: ClassVar[dict[str, str]] = {
        "SYSTEM": "system",
        "USER": "user",
        "ASSISTANT": "assistant",
        "TOOL": "tool",
    }

    SYSTEM: "Role"
    USER: "Role"
    ASSISTANT: "Role"
    TOOL: "Role"


class FinishReason(_StringValue, metaclass=EnumLike):
    """Represents the reason a chat response completed."""

    _constants: ClassVar[dict[str, str]] = {
        "CONTENT_FILTER": "content_filter",
        "LENGTH": "length",
        "STOP": "stop",
        "TOOL_CALLS": "tool_calls",
    }

    CONTENT_FILTER: "FinishReason"
    LENGTH: "FinishReason"
    STOP: "FinishReason"
    TOOL_CALLS: "FinishReason"


class UsageDetails:
    """Provides usage details about a request/response.

    Attributes:
        input_token_count: The number of tokens in the input.
        output_token_count: The number of tokens in the output.
    """

    def __init__(
        self,
        input_token_count: int | None = None,
        output_token_count: int | None = None,
    ) -> None:
        self.input_token_count = input_token_count
        self.output_token_count = output_token_count

    def __repr__(self) -> str:
        return f"UsageDetails(input_token_count={self.input_token_count}, output_token_count={self.output_token_count})"


class ToolCall:
    """A request from the model to execute a tool.

    Attributes:
        name: The name of the tool requested.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"ToolCall(name={self.name!r})"


class ChatMessage:
    """Represents a chat message.

    Attributes:
        role: The role of the author of the message.
        text: The text content of the message, can be None for pure tool call messages.
        author_name: The display name of the author of the message.
        tool_calls: Tool execution requests carried by an assistant message.
    """

    def __init__(
        self,
        role: Role | Literal["system", "user", "assistant", "tool"],
        text: str | None = None,
        *,
        author_name: str | None = None,
        tool_calls: Sequence[ToolCall] | None = None,
    ) -> None:
        if isinstance(role, str):
            role = Role(value=role)
        self.role = role
        self.text = text
        self.author_name = author_name
        self.tool_calls: list[ToolCall] = list(tool_calls or [])

    def __repr__(self) -> str:
        return f"ChatMessage(role={self.role.value!r}, text={self.text!r}, tool_calls={self.tool_calls!r})"


class ChatResponse:
    """The response of a chat client to a single generation request.

    Attributes:
        message: The generated message, None when the provider returned no content.
        finish_reason: Why the generation stopped.
        usage_details: Token usage, None when the provider does not report it.
    """

    def __init__(
        self,
        message: ChatMessage | str | None = None,
        *,
        finish_reason: FinishReason | str | None = None,
        usage_details: UsageDetails | None = None,
    ) -> None:
        if isinstance(message, str):
            message = ChatMessage(role=Role.ASSISTANT, text=message)
        if isinstance(finish_reason, str):
            finish_reason = FinishReason(value=finish_reason)
        self.message = message
        self.finish_reason = finish_reason
        self.usage_details = usage_details

    @property
    def text(self) -> str | None:
        """Text of the generated message."""
        return self.message.text if self.message is not None else None

    @property
    def tool_calls(self) -> list[ToolCall]:
        """Tool execution requests of the generated message."""
        return self.message.tool_calls if self.message is not None else []


def prepare_messages(messages: Any) -> tuple[ChatMessage | None, ...]:
    """Normalize the input of a chat call to a tuple of messages.

    Plain strings become user messages. Entries that are not ChatMessage instances,
    e.g. provider specific dicts, are kept as None so callers can skip them.
    A mapping or any other non iterable input counts as a single entry.
    """
    if messages is None:
        return ()
    if isinstance(messages, (str, ChatMessage, Mapping)) or not isinstance(messages, Iterable):
        messages = [messages]
    return tuple(_as_chat_message(msg) for msg in messages)


def _as_chat_message(message: Any) -> ChatMessage | None:
    if isinstance(message, str):
        return ChatMessage(role=Role.USER, text=message)
    if isinstance(message, ChatMessage):
        return message
    return None

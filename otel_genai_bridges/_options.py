# Copyright (c) Microsoft. All rights reserved.

from datetime import timedelta
from typing import Any, TypedDict

from pydantic import BaseModel, ConfigDict, Field

from ._settings import load_settings

__all__ = [
    "CostOptions",
    "TelemetryOptions",
    "TuningOptions",
    "load_telemetry_options",
]

ENV_PREFIX = "OTEL_GENAI_"


class CostOptions(BaseModel):
    """Cost calculation for chat calls, based on configured prices per thousand tokens.

    Attributes:
        enabled: Whether cost is recorded at all.
        currency: ISO currency code, used (lower cased) as the unit of the cost histogram.
        input_per_thousand: Price of 1000 input tokens.
        output_per_thousand: Price of 1000 output tokens.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    currency: str = "USD"
    input_per_thousand: float | None = None
    output_per_thousand: float | None = None


class TuningOptions(BaseModel):
    """Request parameters used when they cannot be derived from the chat client."""

    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    timeout: timedelta | None = None


class TelemetryOptions(BaseModel):
    """Static telemetry policy, read on every call and never mutated.

    Warning:
        Prompt and completion capture export message text, only enable them
        on test and development environments.

    Keyword Args:
        enabled: Emit spans and metrics. When False the instrumentation is a pure pass-through.
        system: Value of ``gen_ai.system`` when it cannot be derived from the client.
        default_model: Model name used when it cannot be derived from the client.
        operation_name: Value of ``gen_ai.operation.name``, e.g. ``chat`` or ``text_completion``.
        capture_prompts: Emit system and user messages as span events.
        capture_completions: Emit the assistant message as a span event.
        default_cached: Mark every response as cached.
        cost: Cost calculation settings.
        tuning: Fallback request parameters.

    Examples:
        .. code-block:: python

            from otel_genai_bridges import CostOptions, TelemetryOptions

            options = TelemetryOptions(
                system="openai",
                capture_prompts=True,
                cost=CostOptions(enabled=True, input_per_thousand=0.001, output_per_thousand=0.002),
            )
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    system: str = "openai"
    default_model: str | None = None
    operation_name: str = "chat"
    capture_prompts: bool = False
    capture_completions: bool = False
    default_cached: bool = False
    cost: CostOptions = Field(default_factory=CostOptions)
    tuning: TuningOptions = Field(default_factory=TuningOptions)


class TelemetrySettings(TypedDict, total=False):
    """Flat view of the ``OTEL_GENAI_*`` environment variables."""

    enabled: bool | None
    system: str | None
    default_model: str | None
    operation_name: str | None
    capture_prompts: bool | None
    capture_completions: bool | None
    default_cached: bool | None
    cost_enabled: bool | None
    cost_currency: str | None
    cost_input_per_thousand: float | None
    cost_output_per_thousand: float | None
    temperature: float | None
    top_p: float | None
    max_tokens: int | None
    stop_sequences: list[str] | None
    timeout_ms: int | None


def load_telemetry_options(
    *,
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
    **overrides: Any,
) -> TelemetryOptions:
    """Build TelemetryOptions from ``OTEL_GENAI_*`` environment variables and explicit overrides.

    Keyword Args:
        env_file_path: Optional path of a .env file, defaults to ``.env`` when present.
        env_file_encoding: Encoding of the .env file.
        overrides: Values for any of the flat settings, e.g. ``capture_prompts=True``
            or ``cost_input_per_thousand=0.5``. ``None`` values are ignored.

    Returns:
        A frozen TelemetryOptions instance.
    """
    settings = load_settings(
        TelemetrySettings,
        env_prefix=ENV_PREFIX,
        env_file_path=env_file_path,
        env_file_encoding=env_file_encoding,
        **overrides,
    )

    def _pick(**values: Any) -> dict[str, Any]:
        return {key: value for key, value in values.items() if value is not None}

    timeout_ms = settings.get("timeout_ms")
    stop_sequences = settings.get("stop_sequences")
    return TelemetryOptions(
        **_pick(
            enabled=settings.get("enabled"),
            system=settings.get("system"),
            default_model=settings.get("default_model"),
            operation_name=settings.get("operation_name"),
            capture_prompts=settings.get("capture_prompts"),
            capture_completions=settings.get("capture_completions"),
            default_cached=settings.get("default_cached"),
        ),
        cost=CostOptions(
            **_pick(
                enabled=settings.get("cost_enabled"),
                currency=settings.get("cost_currency"),
                input_per_thousand=settings.get("cost_input_per_thousand"),
                output_per_thousand=settings.get("cost_output_per_thousand"),
            )
        ),
        tuning=TuningOptions(
            **_pick(
                temperature=settings.get("temperature"),
                top_p=settings.get("top_p"),
                max_tokens=settings.get("max_tokens"),
                stop_sequences=tuple(stop_sequences) if stop_sequences is not None else None,
                timeout=timedelta(milliseconds=timeout_ms) if timeout_ms is not None else None,
            )
        ),
    )

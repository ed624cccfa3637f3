# Copyright (c) Microsoft. All rights reserved.

import importlib
import importlib.metadata
from typing import Any

try:
    __version__ = importlib.metadata.version("otel-genai-bridges")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"  # Fallback for development mode

_IMPORTS: dict[str, str] = {
    "AccessorMetadataAdapter": "otel_genai_bridges._introspection",
    "ChatClientException": "otel_genai_bridges.exceptions",
    "ChatClientInitializationError": "otel_genai_bridges.exceptions",
    "ChatClientProtocol": "otel_genai_bridges._clients",
    "ChatMessage": "otel_genai_bridges._types",
    "ChatResponse": "otel_genai_bridges._types",
    "CostOptions": "otel_genai_bridges._options",
    "FinishReason": "otel_genai_bridges._types",
    "GenAITelemetry": "otel_genai_bridges.observability",
    "InstrumentedChatClient": "otel_genai_bridges._clients",
    "InvocationContext": "otel_genai_bridges._context",
    "ModelIntrospector": "otel_genai_bridges._introspection",
    "ModelMetadata": "otel_genai_bridges._introspection",
    "OtelAttr": "otel_genai_bridges.observability",
    "OtelGenAIBridgesException": "otel_genai_bridges.exceptions",
    "Role": "otel_genai_bridges._types",
    "SupportsModelMetadata": "otel_genai_bridges._introspection",
    "SyncChatClientProtocol": "otel_genai_bridges._clients",
    "TelemetryOptions": "otel_genai_bridges._options",
    "ToolCall": "otel_genai_bridges._types",
    "TuningOptions": "otel_genai_bridges._options",
    "UsageDetails": "otel_genai_bridges._types",
    "configure_otel_providers": "otel_genai_bridges.observability",
    "create_metric_views": "otel_genai_bridges.observability",
    "create_resource": "otel_genai_bridges.observability",
    "get_logger": "otel_genai_bridges._logging",
    "get_meter": "otel_genai_bridges.observability",
    "get_tracer": "otel_genai_bridges.observability",
    "guess_system": "otel_genai_bridges._introspection",
    "load_settings": "otel_genai_bridges._settings",
    "load_telemetry_options": "otel_genai_bridges._options",
    "register_metadata_adapter": "otel_genai_bridges._introspection",
    "setup_logging": "otel_genai_bridges._logging",
    "truncate_text": "otel_genai_bridges._context",
    "unregister_metadata_adapter": "otel_genai_bridges._introspection",
    "use_instrumentation": "otel_genai_bridges._clients",
}

__all__ = ["__version__", *_IMPORTS]


def __getattr__(name: str) -> Any:
    if name in _IMPORTS:
        return getattr(importlib.import_module(_IMPORTS[name]), name)
    raise AttributeError(f"Module `otel_genai_bridges` has no attribute {name}.")


def __dir__() -> list[str]:
    return [*globals(), *_IMPORTS]

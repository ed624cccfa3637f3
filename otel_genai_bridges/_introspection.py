# Copyright (c) Microsoft. All rights reserved.

"""Best-effort extraction of request parameters from chat clients of unknown shape.

Metadata is resolved, in order, from:

1. a client implementing :class:`SupportsModelMetadata`,
2. an adapter registered for the client type with :func:`register_metadata_adapter`,
3. :class:`AccessorMetadataAdapter`, which reads well-known attribute and getter names.

None of these paths raise, a failing source yields an empty snapshot.
"""

import numbers
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Final, Protocol, runtime_checkable

from ._logging import get_logger

__all__ = [
    "AccessorMetadataAdapter",
    "MetadataAdapter",
    "ModelIntrospector",
    "ModelMetadata",
    "SupportsModelMetadata",
    "guess_system",
    "register_metadata_adapter",
    "unregister_metadata_adapter",
]

logger = get_logger("otel_genai_bridges.introspection")


@dataclass(frozen=True)
class ModelMetadata:
    """Snapshot of the request parameters of a chat client, every field is optional."""

    system: str | None = None
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    cached: bool | None = None
    timeout: timedelta | None = None

    @classmethod
    def empty(cls) -> "ModelMetadata":
        return cls()


@runtime_checkable
class SupportsModelMetadata(Protocol):
    """Chat clients that describe their own request parameters."""

    def model_metadata(self) -> ModelMetadata: ...


MetadataAdapter = Callable[[Any], ModelMetadata]

# Ordered provider keywords, matched against the lower cased type name.
SYSTEM_KEYWORDS: Final[tuple[tuple[str, str], ...]] = (
    ("openai", "openai"),
    ("ollama", "ollama"),
    ("mistral", "mistral_ai"),
    ("azure", "azure.ai.openai"),
    ("bedrock", "aws.bedrock"),
)

# Ordered attribute / getter names read for each metadata field.
DEFAULT_CANDIDATES: Final[dict[str, tuple[str, ...]]] = {
    "model": ("model_name", "get_model_name", "model", "get_model", "model_id", "deployment_name"),
    "temperature": ("temperature", "get_temperature"),
    "top_p": ("top_p", "get_top_p"),
    "max_tokens": ("max_tokens", "get_max_tokens"),
    "stop_sequences": ("stop", "get_stop", "stop_sequences", "get_stop_sequences"),
    "cached": ("cache", "is_cache", "cached", "is_cached"),
    "timeout": ("timeout", "get_timeout", "request_timeout", "get_request_timeout"),
}

_ADAPTERS: dict[type, MetadataAdapter] = {}


def register_metadata_adapter(client_type: type, adapter: MetadataAdapter) -> None:
    """Register the metadata adapter for a chat client type and its subclasses.

    Args:
        client_type: The chat client class.
        adapter: Callable receiving the client instance and returning its ModelMetadata.
    """
    _ADAPTERS[client_type] = adapter


def unregister_metadata_adapter(client_type: type) -> None:
    """Remove the adapter registered for ``client_type``, if any."""
    _ADAPTERS.pop(client_type, None)


def guess_system(client_type: type) -> str | None:
    """Guess the ``gen_ai.system`` identifier from the name of a client type."""
    name = f"{client_type.__module__}.{client_type.__qualname__}".lower()
    for keyword, system in SYSTEM_KEYWORDS:
        if keyword in name:
            return system
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _as_float(value: Any) -> float | None:
    return float(value) if _is_number(value) else None


def _as_int(value: Any) -> int | None:
    return int(value) if _is_number(value) else None


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else str(value)


def _as_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _as_str_tuple(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return tuple(value)
    return None


def _as_timedelta(value: Any) -> timedelta | None:
    # plain numbers are milliseconds, like OTEL_GENAI_TIMEOUT_MS
    if isinstance(value, timedelta):
        return value
    if _is_number(value):
        return timedelta(milliseconds=float(value))
    return None


class AccessorMetadataAdapter:
    """Reads metadata by probing candidate attribute and getter names on the client.

    Each field has an ordered list of candidates. A candidate can be a plain attribute
    or a method taking no arguments. The first candidate that resolves to a value of a
    compatible type wins, failing candidates are skipped.
    """

    def __init__(self, candidates: dict[str, Sequence[str]] | None = None) -> None:
        self.candidates = {**DEFAULT_CANDIDATES, **(candidates or {})}

    def __call__(self, client: Any) -> ModelMetadata:
        return ModelMetadata(
            model=self._first(client, "model", _as_str),
            temperature=self._first(client, "temperature", _as_float),
            top_p=self._first(client, "top_p", _as_float),
            max_tokens=self._first(client, "max_tokens", _as_int),
            stop_sequences=self._first(client, "stop_sequences", _as_str_tuple),
            cached=self._first(client, "cached", _as_bool),
            timeout=self._first(client, "timeout", _as_timedelta),
        )

    def _first(self, client: Any, field: str, convert: Callable[[Any], Any]) -> Any:
        for name in self.candidates.get(field, ()):
            if not name:
                continue
            try:
                value = getattr(client, name)
                if callable(value):
                    value = value()
                if value is None:
                    continue
                converted = convert(value)
            except Exception as exc:
                logger.debug(f"Accessor '{name}' failed on {type(client).__name__}: {exc!r}")
                continue
            if converted is not None:
                return converted
        return None


def _self_described(client: SupportsModelMetadata) -> ModelMetadata:
    return client.model_metadata()


class ModelIntrospector:
    """Derives ModelMetadata from a chat client.

    Metadata is derived again on every call, since request parameters such as the
    temperature can be changed on a client between two calls.

    Args:
        default_adapter: Adapter used when the client neither describes itself nor has a
            registered adapter. Defaults to an AccessorMetadataAdapter.

    Examples:
        .. code-block:: python

            from otel_genai_bridges import ModelIntrospector

            metadata = ModelIntrospector().introspect(client)
            metadata.model  # e.g. "gpt-4o-mini", or None when it cannot be derived
    """

    def __init__(self, default_adapter: MetadataAdapter | None = None) -> None:
        self.default_adapter: MetadataAdapter = default_adapter or AccessorMetadataAdapter()

    def introspect(self, client: Any) -> ModelMetadata:
        """Return a best-effort, possibly empty, metadata snapshot for ``client``. Never raises."""
        if client is None:
            return ModelMetadata.empty()
        try:
            metadata = self._resolve_adapter(client)(client)
        except Exception as exc:
            logger.debug(f"Could not introspect {type(client).__name__}: {exc!r}")
            metadata = ModelMetadata.empty()
        if not isinstance(metadata, ModelMetadata):
            logger.debug(f"Metadata adapter for {type(client).__name__} returned {type(metadata).__name__}")
            metadata = ModelMetadata.empty()
        if metadata.system is None and (system := guess_system(type(client))) is not None:
            metadata = replace(metadata, system=system)
        return metadata

    def _resolve_adapter(self, client: Any) -> MetadataAdapter:
        if isinstance(client, SupportsModelMetadata):
            return _self_described
        for klass in type(client).__mro__:
            if (adapter := _ADAPTERS.get(klass)) is not None:
                return adapter
        return self.default_adapter

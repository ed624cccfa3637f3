# Copyright (c) Microsoft. All rights reserved.

"""Populate a ``TypedDict`` from explicit values, ``<PREFIX><FIELD>`` variables and a ``.env`` file.

Usage::

    class ProviderSettings(TypedDict, total=False):
        enable_console_exporters: bool | None


    settings = load_settings(ProviderSettings, env_prefix="OTEL_GENAI_")
    settings["enable_console_exporters"]  # from OTEL_GENAI_ENABLE_CONSOLE_EXPORTERS
"""

from __future__ import annotations

import os
import sys
import types
from typing import Any, Union, get_args, get_origin, get_type_hints

from dotenv import load_dotenv

from .exceptions import ServiceInitializationError

if sys.version_info >= (3, 13):
    from typing import TypeVar  # type: ignore # pragma: no cover
else:
    from typing_extensions import TypeVar  # type: ignore # pragma: no cover

__all__ = ["load_settings"]

SettingsT = TypeVar("SettingsT", default=dict[str, Any])

TRUTHY_VALUES = ("true", "1", "yes", "on")


def _value_type(field_type: Any) -> Any:
    """Strip ``None`` from an optional annotation, ``float | None`` becomes ``float``."""
    if get_origin(field_type) in (Union, types.UnionType):
        arms = [arm for arm in get_args(field_type) if arm is not type(None)]
        if len(arms) == 1:
            return arms[0]
    return field_type


def _from_env(raw: str, field_type: Any) -> Any:
    """Convert the text of an environment variable, unparsable numbers are kept as text."""
    value_type = _value_type(field_type)
    if get_origin(value_type) in (list, tuple):
        # comma separated, e.g. "END,STOP"
        return [item.strip() for item in raw.split(",") if item.strip()]
    if value_type is bool:
        return raw.strip().lower() in TRUTHY_VALUES
    if value_type in (int, float):
        try:
            return value_type(raw)
        except ValueError:
            return raw
    return raw


def _check_override(name: str, value: Any, field_type: Any) -> None:
    value_type = _value_type(field_type)
    expected = get_origin(value_type) or value_type
    if not isinstance(expected, type) or isinstance(value, expected):
        return
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return
    if expected is list and isinstance(value, tuple):
        return
    raise ServiceInitializationError(
        f"Invalid type for setting '{name}': expected {expected.__name__}, got {type(value).__name__}."
    )


def load_settings(
    settings_type: type[SettingsT],
    *,
    env_prefix: str = "",
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
    **overrides: Any,
) -> SettingsT:
    """Resolve every field of ``settings_type``.

    Precedence, highest first: a non-``None`` keyword override, the
    ``<env_prefix><FIELD_NAME>`` environment variable, the same variable in the
    ``.env`` file (never overriding the environment), a class level default, ``None``.

    Args:
        settings_type: A ``TypedDict`` class describing the settings.

    Keyword Args:
        env_prefix: Prefix of the environment variables, e.g. ``"OTEL_GENAI_"``.
        env_file_path: Path of the ``.env`` file, defaults to ``.env`` when present.
        env_file_encoding: Encoding of the ``.env`` file, defaults to utf-8.
        overrides: Explicit field values.

    Raises:
        ServiceInitializationError: An override does not match the type of its field.
    """
    env_path = env_file_path or ".env"
    if os.path.isfile(env_path):
        load_dotenv(dotenv_path=env_path, encoding=env_file_encoding or "utf-8")

    result: dict[str, Any] = {}
    for name, field_type in get_type_hints(settings_type).items():
        if (override := overrides.get(name)) is not None:
            _check_override(name, override, field_type)
            result[name] = override
        elif (raw := os.getenv(f"{env_prefix}{name.upper()}")) is not None:
            result[name] = _from_env(raw, field_type)
        else:
            result[name] = getattr(settings_type, name, None)
    return result  # type: ignore[return-value]

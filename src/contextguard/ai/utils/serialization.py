"""Failure-tolerant JSON serialization for tool output."""

from __future__ import annotations

import json
import logging
from dataclasses import fields, is_dataclass
from typing import Any, Mapping

from ..tools.errors import SerializationFailure

LOGGER = logging.getLogger(__name__)

CIRCULAR_MARKER = "[Circular]"
SERIALIZATION_FAILURE_TEXT = '{"error": "tool result could not be serialized"}'


def safe_serialize(value: Any) -> str:
    """Serialize ``value`` to text without ever raising.

    Strings pass through untouched. Everything else is rendered as JSON;
    containers that reference one of their ancestors are replaced with
    :data:`CIRCULAR_MARKER`, and objects JSON cannot represent fall back to
    ``str()``. If rendering still fails the fixed
    :data:`SERIALIZATION_FAILURE_TEXT` payload is returned instead.
    """
    try:
        return serialize_strict(value)
    except SerializationFailure as exc:
        LOGGER.warning("%s (details=%s)", exc, exc.details)
        return SERIALIZATION_FAILURE_TEXT


def serialize_strict(value: Any) -> str:
    """Serialize like :func:`safe_serialize` but raise on total failure.

    Raises:
        SerializationFailure: If the value cannot be rendered at all.
    """
    if isinstance(value, str):
        return value
    try:
        prepared = _prepare(value, set())
        return json.dumps(prepared, ensure_ascii=False, default=_fallback)
    except Exception as exc:
        type_name = type(value).__name__
        raise SerializationFailure(
            message=f"Could not serialize {type_name} result",
            details={"reason": str(exc)[:200]},
            type_name=type_name,
        ) from exc


def _prepare(value: Any, ancestors: set[int]) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    marker = id(value)
    if marker in ancestors:
        return CIRCULAR_MARKER

    if is_dataclass(value) and not isinstance(value, type):
        source: Any = {item.name: getattr(value, item.name) for item in fields(value)}
    elif isinstance(value, Mapping):
        source = value
    elif isinstance(value, (list, tuple, set, frozenset)):
        source = value
    elif callable(getattr(value, "model_dump", None)):
        source = value.model_dump()
    else:
        return value

    ancestors.add(marker)
    try:
        if isinstance(source, Mapping):
            return {_key(key): _prepare(item, ancestors) for key, item in source.items()}
        return [_prepare(item, ancestors) for item in source]
    finally:
        ancestors.discard(marker)


def _key(key: Any) -> str:
    return key if isinstance(key, str) else str(key)


def _fallback(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


__all__ = ["CIRCULAR_MARKER", "SERIALIZATION_FAILURE_TEXT", "safe_serialize", "serialize_strict"]

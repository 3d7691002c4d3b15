"""Token estimation utilities for context budgeting."""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping

from .serialization import safe_serialize

# Average characters per token for mixed prose/JSON payloads
CHARS_PER_TOKEN = 3.5

# Extra characters charged for every tool call recorded on a message
TOOL_CALL_OVERHEAD = 50

# Approximate tokens consumed by one tool schema in the request preamble
TOOL_SCHEMA_OVERHEAD = 150

_TOOL_CALL_KEYS: tuple[str, ...] = ("toolInvocations", "tool_invocations", "tool_calls")


def estimate_tokens(content: Any) -> int:
    """Estimate the number of tokens represented by ``content``.

    Strings are measured directly; any other object is serialized with
    :func:`safe_serialize` first. The estimate is a fixed character ratio,
    so it is deterministic and never decreases as the input grows.

    Args:
        content: Text or an arbitrary JSON-like object.

    Returns:
        Estimated token count (0 for empty or missing content).
    """
    if content is None:
        return 0
    text = content if isinstance(content, str) else safe_serialize(content)
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(messages: Iterable[Any] | None) -> int:
    """Estimate tokens for a sequence of chat messages.

    Every message is serialized on its own; messages carrying tool calls are
    charged :data:`TOOL_CALL_OVERHEAD` characters per call.
    """
    if not messages:
        return 0
    total_chars = 0
    for message in messages:
        total_chars += len(safe_serialize(message))
        total_chars += _tool_call_count(message) * TOOL_CALL_OVERHEAD
    return math.ceil(total_chars / CHARS_PER_TOKEN)


def estimate_tool_schema_tokens(tool_count: int) -> int:
    return max(0, int(tool_count)) * TOOL_SCHEMA_OVERHEAD


def chars_for_tokens(tokens: int) -> int:
    """Convert a token budget into the equivalent character count."""

    return int(max(0, tokens) * CHARS_PER_TOKEN)


def _tool_call_count(message: Any) -> int:
    if not isinstance(message, Mapping):
        return 0
    for key in _TOOL_CALL_KEYS:
        calls = message.get(key)
        if isinstance(calls, (list, tuple)) and calls:
            return len(calls)
    return 0


__all__ = [
    "CHARS_PER_TOKEN",
    "TOOL_CALL_OVERHEAD",
    "TOOL_SCHEMA_OVERHEAD",
    "chars_for_tokens",
    "estimate_message_tokens",
    "estimate_tokens",
    "estimate_tool_schema_tokens",
]

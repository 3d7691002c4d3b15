"""Transcript helpers used before estimating or summarizing history."""

from __future__ import annotations

from typing import Any, Iterable, Mapping


def cleanup_tool_invocations(messages: Iterable[Any]) -> list[Any]:
    """Drop tool invocations that never produced a result.

    Pending calls carry arguments but no output, and counting them inflates
    the estimate for a transcript the model will never see in that shape.
    Messages left without any completed invocation lose the key entirely.
    Input messages are not mutated.
    """

    cleaned: list[Any] = []
    for message in messages:
        if not isinstance(message, Mapping):
            cleaned.append(message)
            continue
        invocations = message.get("toolInvocations")
        if not isinstance(invocations, list) or not invocations:
            cleaned.append(message)
            continue
        completed = [
            item for item in invocations if isinstance(item, Mapping) and item.get("result") is not None
        ]
        if len(completed) == len(invocations):
            cleaned.append(message)
            continue
        updated = {key: value for key, value in message.items() if key != "toolInvocations"}
        if completed:
            updated["toolInvocations"] = completed
        cleaned.append(updated)
    return cleaned


__all__ = ["cleanup_tool_invocations"]

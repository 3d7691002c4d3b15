"""Tagged tool results handed back to the model loop.

A governed tool call always ends in exactly one of three immutable values:

* :class:`ToolResultOk` carries the serialized content unchanged.
* :class:`SizeExceeded` replaces content that was too large to forward.
* :class:`ExecutionError` replaces a call that raised.

Each variant renders to a single string via ``to_payload()``. The failure
variants render as JSON objects whose ``type`` field is one of
:data:`FAILURE_TYPES`, so any consumer can tell a diagnostic apart from real
tool output.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from .errors import ErrorCode

FAILURE_TYPES: frozenset[str] = frozenset({ErrorCode.TOOL_RESULT_SIZE, ErrorCode.TOOL_EXECUTION})


@dataclass(slots=True, frozen=True)
class ToolDiagnostic:
    """Context captured for a failed tool call."""

    tool: str
    returned_chars: int | None = None
    max_allowed_chars: int | None = None
    estimated_tokens: int | None = None
    max_allowed_tokens: int | None = None
    error: str | None = None
    stack: str | None = None
    content_sample: str | None = None


@dataclass(slots=True, frozen=True)
class ToolResultOk:
    content: str

    @property
    def ok(self) -> bool:
        return True

    def to_payload(self) -> str:
        return self.content


@dataclass(slots=True, frozen=True)
class SizeExceeded:
    """Serialized output exceeded the effective limit and was discarded."""

    diagnostic: ToolDiagnostic

    def __post_init__(self) -> None:
        _require_fields(self, "returned_chars", "max_allowed_chars", "estimated_tokens", "max_allowed_tokens")

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        diag = self.diagnostic
        return (
            f"Tool '{diag.tool}' returned {diag.returned_chars:,} characters "
            f"(~{diag.estimated_tokens:,} tokens), exceeding the limit of "
            f"{diag.max_allowed_chars:,} characters (~{diag.max_allowed_tokens:,} tokens). "
            "The result was discarded and none of it is included here. Do not make any "
            "assumptions about what the data contained; ask the user to narrow the request "
            "or call the tool with more specific arguments."
        )

    def to_dict(self) -> dict[str, Any]:
        diag = self.diagnostic
        return {
            "type": ErrorCode.TOOL_RESULT_SIZE,
            "tool": diag.tool,
            "message": self.message,
            "returnedChars": diag.returned_chars,
            "maxAllowedChars": diag.max_allowed_chars,
            "estimatedTokens": diag.estimated_tokens,
            "maxAllowedTokens": diag.max_allowed_tokens,
        }

    def to_payload(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass(slots=True, frozen=True)
class ExecutionError:
    """The wrapped tool raised; the failure is reported as data."""

    diagnostic: ToolDiagnostic

    def __post_init__(self) -> None:
        _require_fields(self, "error")

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return f"Tool '{self.diagnostic.tool}' failed: {self.diagnostic.error}"

    def to_dict(self) -> dict[str, Any]:
        diag = self.diagnostic
        payload: dict[str, Any] = {
            "type": ErrorCode.TOOL_EXECUTION,
            "tool": diag.tool,
            "message": self.message,
            "error": diag.error,
        }
        if diag.stack:
            payload["stack"] = diag.stack
        return payload

    def to_payload(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


ToolResult = Union[ToolResultOk, SizeExceeded, ExecutionError]


def _require_fields(result: Any, *names: str) -> None:
    diag = result.diagnostic
    missing = [name for name in names if getattr(diag, name) is None]
    if missing:
        raise ValueError(
            f"{type(result).__name__} for tool '{diag.tool}' is missing diagnostic field(s): {', '.join(missing)}"
        )


def detect_failure_type(payload: str) -> str | None:
    """Return the diagnostic ``type`` carried by ``payload``, if any.

    Consumers use this to treat governed failures as terminal for the call
    instead of parsing them as tool output.
    """
    if not payload or not payload.lstrip().startswith("{"):
        return None
    try:
        data = json.loads(payload)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    kind = data.get("type")
    return kind if kind in FAILURE_TYPES else None


__all__ = [
    "FAILURE_TYPES",
    "ExecutionError",
    "SizeExceeded",
    "ToolDiagnostic",
    "ToolResult",
    "ToolResultOk",
    "detect_failure_type",
]

"""Tool governance types for the orchestration layer.

This module defines the invocation record handled by the result governor,
the validated per-tool size limit mapping, and the callable shapes used at
the governed-call boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterator, Mapping

from ...tools.errors import InvalidSizeLimitError

__all__ = [
    "GovernedTool",
    "SizeLimitConfig",
    "ToolCallable",
    "ToolInvocation",
    "validate_limit",
]


# -----------------------------------------------------------------------------
# Callable Shapes
# -----------------------------------------------------------------------------

# Raw tool function: sync or async, any positional/keyword arguments
ToolCallable = Callable[..., Any]

# Governed tool function: always resolves to a string, never raises
GovernedTool = Callable[..., Awaitable[str]]


# -----------------------------------------------------------------------------
# Invocation
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolInvocation:
    """A single call routed through the result governor.

    Attributes:
        tool_name: Name the model used to request the tool.
        producer: The tool function; may return a value or an awaitable.
        args: Positional arguments, in order.
        kwargs: Keyword arguments.
    """

    tool_name: str
    producer: ToolCallable
    args: tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Size Limits
# -----------------------------------------------------------------------------


def validate_limit(limit: Any, *, tool_name: str | None = None) -> int:
    """Return ``limit`` if it is a positive integer, otherwise raise.

    Raises:
        InvalidSizeLimitError: For zero, negative, boolean, or non-integer values.
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        target = f" for tool '{tool_name}'" if tool_name else ""
        raise InvalidSizeLimitError(
            message=f"Invalid size limit{target}: {limit!r} (must be a positive integer)",
            tool_name=tool_name,
            limit=limit,
        )
    return limit


class SizeLimitConfig(Mapping[str, int]):
    """Read-only mapping of tool name to maximum result characters.

    Limits are validated when the mapping is built so an unusable governor
    can never be configured. Tools without an entry use the governor default.
    """

    __slots__ = ("_limits",)

    def __init__(self, limits: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        merged: dict[str, int] = {}
        for source in (limits or {}, kwargs):
            for name, limit in source.items():
                if not isinstance(name, str) or not name:
                    raise InvalidSizeLimitError(
                        message=f"Size limit keys must be non-empty tool names, got {name!r}",
                        limit=limit,
                    )
                merged[name] = validate_limit(limit, tool_name=name)
        self._limits: Mapping[str, int] = MappingProxyType(merged)

    def __getitem__(self, name: str) -> int:
        return self._limits[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._limits)

    def __len__(self) -> int:
        return len(self._limits)

    def __repr__(self) -> str:
        return f"SizeLimitConfig({dict(self._limits)!r})"

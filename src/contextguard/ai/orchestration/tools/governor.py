"""Result governor for tool calls made by the model loop.

The governor wraps tool functions so that every call resolves to a bounded,
self-describing string. Failures and oversized output are converted into
diagnostic payloads instead of propagating, which keeps the model turn alive
when a single tool misbehaves.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ....services import telemetry as telemetry_service
from ...tools.errors import InvalidSizeLimitError
from ...tools.results import ExecutionError, SizeExceeded, ToolDiagnostic, ToolResult, ToolResultOk
from ...utils.serialization import safe_serialize
from ...utils.tokens import CHARS_PER_TOKEN, chars_for_tokens, estimate_tokens
from .types import GovernedTool, SizeLimitConfig, ToolCallable, ToolInvocation, validate_limit

__all__ = [
    "DEFAULT_MAX_ERROR_CHARS",
    "DEFAULT_MAX_RESULT_CHARS",
    "DEFAULT_MAX_RESULT_TOKENS",
    "GovernorConfig",
    "ResultGovernor",
    "govern_tools",
    "wrap",
]

LOGGER = logging.getLogger(__name__)

# Keeps one tool result well under half of a 128k-token context window
DEFAULT_MAX_RESULT_TOKENS = 25_000
DEFAULT_MAX_RESULT_CHARS = chars_for_tokens(DEFAULT_MAX_RESULT_TOKENS)

# Cap for the exception text and stack carried by an execution error payload
DEFAULT_MAX_ERROR_CHARS = 2_000


# -----------------------------------------------------------------------------
# Governor Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class GovernorConfig:
    """Configuration for the result governor.

    Attributes:
        default_max_chars: Limit applied to tools without an override.
        limits: Per-tool overrides, validated on construction.
        include_stack: Attach stack traces to execution error payloads.
        sample_chars: Length of the content sample written to logs.
        max_error_chars: Cap applied separately to the error text and the stack
            trace of an execution error payload.
    """

    default_max_chars: int = DEFAULT_MAX_RESULT_CHARS
    limits: SizeLimitConfig = field(default_factory=SizeLimitConfig)
    include_stack: bool = False
    sample_chars: int = 200
    max_error_chars: int = DEFAULT_MAX_ERROR_CHARS

    def __post_init__(self) -> None:
        validate_limit(self.default_max_chars)
        _validate_positive("sample_chars", self.sample_chars)
        _validate_positive("max_error_chars", self.max_error_chars)
        if not isinstance(self.limits, SizeLimitConfig):
            object.__setattr__(self, "limits", SizeLimitConfig(self.limits))

    def limit_for(self, tool_name: str) -> int:
        """Return the effective character limit for ``tool_name``."""
        return self.limits.get(tool_name, self.default_max_chars)


# -----------------------------------------------------------------------------
# Result Governor
# -----------------------------------------------------------------------------


class ResultGovernor:
    """Size-checks and serializes tool output before it reaches the model.

    Example:
        governor = ResultGovernor(GovernorConfig(limits={"fetch": 10_000}))
        tools = governor.govern({"fetch": fetch_url})
        payload = await tools["fetch"]("https://example.com")
    """

    def __init__(
        self,
        config: GovernorConfig | None = None,
        *,
        telemetry_emitter: Callable[[str, Mapping[str, Any]], Any] | None = None,
    ) -> None:
        self._config = config or GovernorConfig()
        self._emit = telemetry_emitter or telemetry_service.emit

    @property
    def config(self) -> GovernorConfig:
        return self._config

    async def invoke(self, invocation: ToolInvocation) -> ToolResult:
        """Run one invocation and classify its outcome.

        Never raises for failures of the wrapped function. Cancellation of the
        calling task is the one exception: it propagates so the caller's own
        cancellation is honored.
        """
        name = invocation.tool_name
        start_time = time.perf_counter()
        try:
            raw = invocation.producer(*invocation.args, **dict(invocation.kwargs))
            if inspect.isawaitable(raw):
                raw = await raw
        except asyncio.CancelledError as exc:
            if _current_task_cancelling():
                raise
            return self._execution_error(name, exc, start_time)
        except Exception as exc:
            return self._execution_error(name, exc, start_time)

        content = safe_serialize(raw)
        limit = self._config.limit_for(name)
        if len(content) > limit:
            return self._size_exceeded(name, content, limit)

        LOGGER.debug(
            "Tool %s returned %d chars in %.1fms",
            name,
            len(content),
            (time.perf_counter() - start_time) * 1000,
            extra={"tool": name},
        )
        return ToolResultOk(content)

    def wrap(self, tool_name: str, fn: ToolCallable) -> GovernedTool:
        """Return a coroutine function that calls ``fn`` under governance."""

        @functools.wraps(fn)
        async def governed(*args: Any, **kwargs: Any) -> str:
            invocation = ToolInvocation(tool_name=tool_name, producer=fn, args=args, kwargs=kwargs)
            result = await self.invoke(invocation)
            return result.to_payload()

        return governed

    def govern(self, tools: Mapping[str, ToolCallable]) -> dict[str, GovernedTool]:
        """Wrap every tool in ``tools``, keyed by the same names."""
        return {name: self.wrap(name, fn) for name, fn in tools.items()}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _size_exceeded(self, name: str, content: str, limit: int) -> SizeExceeded:
        sample = content[: self._config.sample_chars]
        diagnostic = ToolDiagnostic(
            tool=name,
            returned_chars=len(content),
            max_allowed_chars=limit,
            estimated_tokens=estimate_tokens(content),
            max_allowed_tokens=int(limit // CHARS_PER_TOKEN),
            content_sample=sample,
        )
        LOGGER.warning(
            "Tool %s result discarded: %d chars exceeds limit of %d (~%d tokens); sample=%r",
            name,
            diagnostic.returned_chars,
            limit,
            diagnostic.estimated_tokens,
            sample,
            extra={"tool": name},
        )
        self._emit(
            "tool_result.size_exceeded",
            {
                "tool": name,
                "returned_chars": diagnostic.returned_chars,
                "max_allowed_chars": limit,
                "estimated_tokens": diagnostic.estimated_tokens,
            },
        )
        return SizeExceeded(diagnostic)

    def _execution_error(self, name: str, exc: BaseException, start_time: float) -> ExecutionError:
        duration_ms = (time.perf_counter() - start_time) * 1000
        cap = self._config.max_error_chars
        full_message = str(exc) or exc.__class__.__name__
        message = _clip_head(full_message, cap)
        stack = None
        if self._config.include_stack:
            stack = _clip_tail("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), cap)
        diagnostic = ToolDiagnostic(
            tool=name,
            error=message,
            stack=stack,
            content_sample=message[: self._config.sample_chars],
        )
        LOGGER.warning(
            "Tool %s failed after %.1fms: %s: %r (%d chars)",
            name,
            duration_ms,
            exc.__class__.__name__,
            diagnostic.content_sample,
            len(full_message),
            exc_info=LOGGER.isEnabledFor(logging.DEBUG),
            extra={"tool": name},
        )
        self._emit(
            "tool_result.execution_error",
            {
                "tool": name,
                "error_type": exc.__class__.__name__,
                "error": diagnostic.content_sample,
                "duration_ms": round(duration_ms, 3),
            },
        )
        return ExecutionError(diagnostic)


def _current_task_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


def _clip_head(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... [truncated {len(text) - limit} chars]"


def _clip_tail(text: str, limit: int) -> str:
    # The innermost frames sit at the end of a traceback
    if len(text) <= limit:
        return text
    return f"[truncated {len(text) - limit} chars] ...{text[-limit:]}"


def _validate_positive(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidSizeLimitError(
            message=f"{name} must be a positive integer, got {value!r}",
            limit=value,
        )


# -----------------------------------------------------------------------------
# Module-level helpers
# -----------------------------------------------------------------------------


def wrap(tool_name: str, fn: ToolCallable, config: GovernorConfig | None = None) -> GovernedTool:
    """Wrap a single tool function with a governor built from ``config``."""
    return ResultGovernor(config).wrap(tool_name, fn)


def govern_tools(
    tools: Mapping[str, ToolCallable],
    config: GovernorConfig | None = None,
) -> dict[str, GovernedTool]:
    """Wrap a name-to-callable mapping for handoff to the model loop."""
    return ResultGovernor(config).govern(tools)

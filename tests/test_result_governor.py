"""Tests for orchestration/tools/governor.py."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any

import pytest

from contextguard.ai.orchestration.tools import (
    DEFAULT_MAX_ERROR_CHARS,
    DEFAULT_MAX_RESULT_CHARS,
    GovernorConfig,
    ResultGovernor,
    SizeLimitConfig,
    ToolInvocation,
    govern_tools,
    wrap,
)
from contextguard.ai.tools.errors import InvalidSizeLimitError
from contextguard.ai.tools.results import ExecutionError, SizeExceeded, ToolResultOk
from contextguard.ai.utils.serialization import CIRCULAR_MARKER
from contextguard.services.telemetry import EventRecorder


# -----------------------------------------------------------------------------
# Test Fixtures and Helpers
# -----------------------------------------------------------------------------


def echo(value: Any) -> Any:
    return value


async def async_echo(value: Any) -> Any:
    await asyncio.sleep(0)
    return value


def failing_tool() -> None:
    raise ValueError("Intentional failure")


async def async_failing_tool() -> None:
    await asyncio.sleep(0)
    raise RuntimeError("remote exploded")


# -----------------------------------------------------------------------------
# Tests: SizeLimitConfig / GovernorConfig
# -----------------------------------------------------------------------------


class TestSizeLimitConfig:
    """Tests for per-tool size limits."""

    def test_accepts_positive_limits(self) -> None:
        limits = SizeLimitConfig({"fetch": 10}, search=500)
        assert dict(limits) == {"fetch": 10, "search": 500}
        assert len(limits) == 2

    @pytest.mark.parametrize("bad", [0, -1, 1.5, "100", True, None])
    def test_rejects_invalid_limits(self, bad: Any) -> None:
        with pytest.raises(InvalidSizeLimitError) as exc_info:
            SizeLimitConfig({"fetch": bad})
        assert exc_info.value.tool_name == "fetch"

    def test_rejects_empty_tool_name(self) -> None:
        with pytest.raises(InvalidSizeLimitError):
            SizeLimitConfig({"": 10})

    def test_read_only(self) -> None:
        limits = SizeLimitConfig({"fetch": 10})
        with pytest.raises(TypeError):
            limits["fetch"] = 20  # type: ignore[index]


class TestGovernorConfig:
    """Tests for GovernorConfig."""

    def test_defaults(self) -> None:
        config = GovernorConfig()
        assert config.default_max_chars == DEFAULT_MAX_RESULT_CHARS == 87_500
        assert config.include_stack is False
        assert len(config.limits) == 0

    def test_plain_mapping_is_validated(self) -> None:
        config = GovernorConfig(limits={"fetch": 10})
        assert isinstance(config.limits, SizeLimitConfig)
        assert config.limit_for("fetch") == 10
        assert config.limit_for("other") == DEFAULT_MAX_RESULT_CHARS

    def test_invalid_override_rejected_at_construction(self) -> None:
        with pytest.raises(InvalidSizeLimitError):
            GovernorConfig(limits={"fetch": 0})

    def test_invalid_default_rejected(self) -> None:
        with pytest.raises(InvalidSizeLimitError):
            GovernorConfig(default_max_chars=0)

    @pytest.mark.parametrize("field_name", ["sample_chars", "max_error_chars"])
    @pytest.mark.parametrize("value", [0, -50, 1.5, True])
    def test_sample_and_error_caps_must_be_positive(self, field_name: str, value: Any) -> None:
        with pytest.raises(InvalidSizeLimitError):
            GovernorConfig(**{field_name: value})

    def test_frozen(self) -> None:
        config = GovernorConfig()
        with pytest.raises(AttributeError):
            config.include_stack = True  # type: ignore[misc]


# -----------------------------------------------------------------------------
# Tests: ResultGovernor.invoke
# -----------------------------------------------------------------------------


class TestResultGovernorInvoke:
    """Tests for the typed invocation path."""

    @pytest.mark.asyncio
    async def test_sync_result_ok(self) -> None:
        governor = ResultGovernor()
        result = await governor.invoke(ToolInvocation("echo", echo, args=("hello",)))
        assert isinstance(result, ToolResultOk)
        assert result.content == "hello"

    @pytest.mark.asyncio
    async def test_async_result_serialized(self) -> None:
        governor = ResultGovernor()
        result = await governor.invoke(ToolInvocation("echo", async_echo, kwargs={"value": {"a": 1}}))
        assert isinstance(result, ToolResultOk)
        assert json.loads(result.content) == {"a": 1}

    @pytest.mark.asyncio
    async def test_exactly_at_limit_is_ok(self) -> None:
        governor = ResultGovernor(GovernorConfig(limits={"echo": 10}))
        result = await governor.invoke(ToolInvocation("echo", echo, args=("0123456789",)))
        assert isinstance(result, ToolResultOk)

    @pytest.mark.asyncio
    async def test_over_limit_is_size_exceeded(self) -> None:
        governor = ResultGovernor(GovernorConfig(limits={"echo": 10}))
        result = await governor.invoke(ToolInvocation("echo", echo, args=("01234567890",)))
        assert isinstance(result, SizeExceeded)
        assert result.diagnostic.returned_chars == 11

    @pytest.mark.asyncio
    async def test_exception_is_execution_error(self) -> None:
        governor = ResultGovernor()
        result = await governor.invoke(ToolInvocation("fail", failing_tool))
        assert isinstance(result, ExecutionError)
        assert result.diagnostic.error == "Intentional failure"
        assert result.diagnostic.stack is None

    @pytest.mark.asyncio
    async def test_include_stack(self) -> None:
        governor = ResultGovernor(GovernorConfig(include_stack=True))
        result = await governor.invoke(ToolInvocation("fail", async_failing_tool))
        assert isinstance(result, ExecutionError)
        assert "Traceback" in (result.diagnostic.stack or "")
        assert "remote exploded" in (result.diagnostic.stack or "")

    @pytest.mark.asyncio
    async def test_empty_exception_message_uses_class_name(self) -> None:
        def raises_bare() -> None:
            raise KeyError()

        result = await ResultGovernor().invoke(ToolInvocation("bare", raises_bare))
        assert isinstance(result, ExecutionError)
        assert result.diagnostic.error == "KeyError"


# -----------------------------------------------------------------------------
# Tests: wrap / govern_tools
# -----------------------------------------------------------------------------


class TestGovernedCalls:
    """Tests for the string-returning governed boundary."""

    @pytest.mark.asyncio
    async def test_oversized_fetch_payload(self) -> None:
        tools = govern_tools({"fetch": echo}, GovernorConfig(limits={"fetch": 10}))
        payload = await tools["fetch"]("0123456789abcdefghij")
        data = json.loads(payload)
        assert data["type"] == "tool-result-size-error"
        assert data["tool"] == "fetch"
        assert data["returnedChars"] == 20
        assert data["maxAllowedChars"] == 10
        assert data["estimatedTokens"] == 6
        assert data["maxAllowedTokens"] == 2
        assert "0123456789" not in payload

    @pytest.mark.asyncio
    async def test_string_result_passes_through(self) -> None:
        governed = wrap("echo", echo)
        assert await governed("unchanged text") == "unchanged text"

    @pytest.mark.asyncio
    async def test_execution_error_payload(self) -> None:
        governed = wrap("fail", failing_tool)
        data = json.loads(await governed())
        assert data["type"] == "tool-execution-error"
        assert data["tool"] == "fail"
        assert data["error"] == "Intentional failure"
        assert "stack" not in data

    @pytest.mark.asyncio
    async def test_cyclic_result_uses_marker(self) -> None:
        data: dict = {"id": 1}
        data["me"] = data
        governed = wrap("cycle", echo)
        assert json.loads(await governed(data)) == {"id": 1, "me": CIRCULAR_MARKER}

    @pytest.mark.asyncio
    async def test_wrapped_keeps_name(self) -> None:
        governed = wrap("echo", async_echo)
        assert governed.__name__ == "async_echo"
        assert inspect.iscoroutinefunction(governed)

    @pytest.mark.asyncio
    async def test_per_tool_limits_are_independent(self) -> None:
        tools = govern_tools({"small": echo, "large": echo}, GovernorConfig(limits={"small": 5}))
        assert json.loads(await tools["small"]("abcdefgh"))["type"] == "tool-result-size-error"
        assert await tools["large"]("abcdefgh") == "abcdefgh"

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_isolated(self) -> None:
        tools = govern_tools({"echo": async_echo, "fail": async_failing_tool})
        results = await asyncio.gather(tools["echo"]("one"), tools["fail"](), tools["echo"]("two"))
        assert results[0] == "one"
        assert json.loads(results[1])["type"] == "tool-execution-error"
        assert results[2] == "two"


# -----------------------------------------------------------------------------
# Tests: Cancellation
# -----------------------------------------------------------------------------


class TestCancellation:
    """Tests for cancellation handling."""

    @pytest.mark.asyncio
    async def test_tool_raised_cancellation_becomes_error(self) -> None:
        async def gives_up() -> None:
            raise asyncio.CancelledError()

        data = json.loads(await wrap("gives_up", gives_up)())
        assert data["type"] == "tool-execution-error"
        assert data["error"] == "CancelledError"

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self) -> None:
        started = asyncio.Event()

        async def slow() -> str:
            started.set()
            await asyncio.sleep(10)
            return "late"

        task = asyncio.create_task(wrap("slow", slow)())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


# -----------------------------------------------------------------------------
# Tests: Logging and Telemetry
# -----------------------------------------------------------------------------


class TestGovernorObservability:
    """Tests for warning logs and telemetry events."""

    @pytest.mark.asyncio
    async def test_size_exceeded_logs_and_emits(self, caplog: pytest.LogCaptureFixture) -> None:
        with EventRecorder("tool_result.size_exceeded") as recorder, caplog.at_level(logging.WARNING):
            await wrap("fetch", echo, GovernorConfig(limits={"fetch": 4}))("abcdefgh")
        events = recorder.events("tool_result.size_exceeded")
        assert len(events) == 1
        assert events[0]["tool"] == "fetch"
        assert events[0]["returned_chars"] == 8
        assert "fetch" in caplog.text
        assert "abcd" in caplog.text

    @pytest.mark.asyncio
    async def test_execution_error_emits(self) -> None:
        with EventRecorder("tool_result.execution_error") as recorder:
            await wrap("fail", failing_tool)()
        events = recorder.events()
        assert events[0]["tool"] == "fail"
        assert events[0]["error_type"] == "ValueError"

    @pytest.mark.asyncio
    async def test_custom_emitter(self) -> None:
        seen: list[tuple[str, dict]] = []
        governor = ResultGovernor(
            GovernorConfig(limits={"fetch": 1}),
            telemetry_emitter=lambda name, payload: seen.append((name, dict(payload))),
        )
        await governor.wrap("fetch", echo)("too long")
        assert seen and seen[0][0] == "tool_result.size_exceeded"


# -----------------------------------------------------------------------------
# Tests: bounded execution errors
# -----------------------------------------------------------------------------


def huge_failure() -> None:
    raise RuntimeError("x" * 1_000_000)


class TestExecutionErrorBounds:
    """Tests that failure payloads stay small regardless of the exception."""

    @pytest.mark.asyncio
    async def test_huge_error_message_is_clipped(self) -> None:
        payload = await wrap("fetch", huge_failure, GovernorConfig(limits={"fetch": 10}))()
        data = json.loads(payload)
        assert data["type"] == "tool-execution-error"
        assert data["error"].startswith("x" * DEFAULT_MAX_ERROR_CHARS + "... [truncated ")
        assert data["error"].endswith(f"[truncated {1_000_000 - DEFAULT_MAX_ERROR_CHARS} chars]")
        assert len(payload) < 3 * DEFAULT_MAX_ERROR_CHARS

    @pytest.mark.asyncio
    async def test_stack_is_clipped_to_cap(self) -> None:
        config = GovernorConfig(include_stack=True, max_error_chars=300)
        payload = await wrap("fetch", huge_failure, config)()
        data = json.loads(payload)
        assert data["stack"].startswith("[truncated ")
        assert len(data["stack"]) <= 300 + len("[truncated 9999999 chars] ...")
        assert len(data["error"]) <= 300 + len("... [truncated 9999999 chars]")
        assert len(payload) < 1_500

    @pytest.mark.asyncio
    async def test_short_errors_are_untouched(self) -> None:
        payload = await wrap("fail", failing_tool, GovernorConfig(max_error_chars=500))()
        assert json.loads(payload)["error"] == "Intentional failure"

    @pytest.mark.asyncio
    async def test_log_carries_only_a_sample(self, caplog: pytest.LogCaptureFixture) -> None:
        with EventRecorder("tool_result.execution_error") as recorder, caplog.at_level(logging.WARNING):
            await wrap("fetch", huge_failure, GovernorConfig(sample_chars=50))()
        assert len(caplog.text) < 1_000
        assert "1000000 chars" in caplog.text
        assert recorder.events()[0]["error"] == "x" * 50

"""Governed tool execution for the model loop.

Example:
    from contextguard.ai.orchestration.tools import GovernorConfig, govern_tools

    tools = govern_tools(
        {"fetch": fetch_url},
        GovernorConfig(limits={"fetch": 30_000}),
    )
    payload = await tools["fetch"]("https://example.com")
"""

from .types import (
    GovernedTool,
    SizeLimitConfig,
    ToolCallable,
    ToolInvocation,
    validate_limit,
)

from .governor import (
    DEFAULT_MAX_ERROR_CHARS,
    DEFAULT_MAX_RESULT_CHARS,
    DEFAULT_MAX_RESULT_TOKENS,
    GovernorConfig,
    ResultGovernor,
    govern_tools,
    wrap,
)

__all__ = [
    # types.py
    "GovernedTool",
    "SizeLimitConfig",
    "ToolCallable",
    "ToolInvocation",
    "validate_limit",
    # governor.py
    "DEFAULT_MAX_ERROR_CHARS",
    "DEFAULT_MAX_RESULT_CHARS",
    "DEFAULT_MAX_RESULT_TOKENS",
    "GovernorConfig",
    "ResultGovernor",
    "govern_tools",
    "wrap",
]

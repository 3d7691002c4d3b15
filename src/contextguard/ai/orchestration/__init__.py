"""Orchestration helpers that sit between the model loop and its tools."""

from .budget_manager import BudgetMonitor, ContextBudgetExceeded, ensure_headroom
from .tools import (
    GovernorConfig,
    ResultGovernor,
    SizeLimitConfig,
    ToolInvocation,
    govern_tools,
    wrap,
)

__all__ = [
    "BudgetMonitor",
    "ContextBudgetExceeded",
    "GovernorConfig",
    "ResultGovernor",
    "SizeLimitConfig",
    "ToolInvocation",
    "ensure_headroom",
    "govern_tools",
    "wrap",
]

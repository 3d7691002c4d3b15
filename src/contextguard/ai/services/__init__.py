"""AI service helpers (context budgeting, compaction, guardrails)."""

from .context_manager import ContextManagerResult, Summarizer, manage_context
from .context_policy import (
    DEFAULT_MAX_CONTEXT_TOKENS,
    MODEL_CONTEXT_LIMITS,
    BudgetState,
    BudgetTracker,
    TierThresholds,
    WarningTier,
    classify_usage,
    max_tokens_for,
)
from .guardrails import MAX_INPUT_LENGTH, ValidationResult, validate_input_length

__all__ = [
    "BudgetState",
    "BudgetTracker",
    "ContextManagerResult",
    "DEFAULT_MAX_CONTEXT_TOKENS",
    "MAX_INPUT_LENGTH",
    "MODEL_CONTEXT_LIMITS",
    "Summarizer",
    "TierThresholds",
    "ValidationResult",
    "WarningTier",
    "classify_usage",
    "manage_context",
    "max_tokens_for",
    "validate_input_length",
]

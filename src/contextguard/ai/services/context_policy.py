"""Context budget tiers and usage classification."""

from __future__ import annotations

import enum
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Mapping

from ..utils.serialization import safe_serialize
from ..utils.tokens import estimate_tokens

# Context window sizes (tokens) for the models the chat client offers
MODEL_CONTEXT_LIMITS: Mapping[str, int] = {
    "claude-4-5-sonnet": 200_000,
    "claude-sonnet-4-5": 200_000,
    "gpt-4.1-mini": 128_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "grok-3-mini": 128_000,
    "qwen-qwq": 32_000,
}

# Ceiling assumed for models missing from the table
DEFAULT_MAX_CONTEXT_TOKENS = 128_000


class WarningTier(str, enum.Enum):
    """Ordered usage tiers shown by presentation code."""

    SAFE = "safe"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True, frozen=True)
class TierThresholds:
    """Usage ratios at which each tier begins."""

    info: float = 0.70
    warning: float = 0.85
    critical: float = 0.95

    def __post_init__(self) -> None:
        values = (self.info, self.warning, self.critical)
        if any(not 0 < value <= 1 for value in values):
            raise ValueError(f"Tier thresholds must be within (0, 1]: {values}")
        if not self.info < self.warning < self.critical:
            raise ValueError(f"Tier thresholds must be strictly ascending: {values}")

    def tier_for(self, ratio: float) -> WarningTier:
        """Return the highest tier whose threshold does not exceed ``ratio``."""
        if ratio >= self.critical:
            return WarningTier.CRITICAL
        if ratio >= self.warning:
            return WarningTier.WARNING
        if ratio >= self.info:
            return WarningTier.INFO
        return WarningTier.SAFE


@dataclass(slots=True, frozen=True)
class BudgetState:
    """Snapshot of context usage for the active conversation."""

    current_tokens: int
    max_tokens: int
    usage_ratio: float
    usage_percent: int
    tier: WarningTier
    model: str | None = None
    timestamp: float = field(default_factory=time.time)

    @property
    def display_text(self) -> str:
        return f"{self.usage_percent}%"

    @property
    def is_critical(self) -> bool:
        return self.tier is WarningTier.CRITICAL

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.max_tokens - self.current_tokens)

    def as_payload(self) -> dict[str, object]:
        """Return a telemetry-friendly dictionary for this state."""

        return {
            "current_tokens": self.current_tokens,
            "max_tokens": self.max_tokens,
            "usage_ratio": round(self.usage_ratio, 6),
            "usage_percent": self.usage_percent,
            "tier": self.tier.value,
            "display_text": self.display_text,
            "model": self.model,
            "timestamp": self.timestamp,
        }


def max_tokens_for(model: str | None, limits: Mapping[str, int] | None = None) -> int:
    """Look up the context window for ``model``, falling back to the default ceiling."""

    table = MODEL_CONTEXT_LIMITS if limits is None else limits
    key = (model or "").strip()
    if key in table:
        return int(table[key])
    lowered = key.lower()
    for name, limit in table.items():
        if name.lower() == lowered:
            return int(limit)
    return DEFAULT_MAX_CONTEXT_TOKENS


def classify_usage(
    current_tokens: int | None,
    max_tokens: int,
    thresholds: TierThresholds | None = None,
    *,
    model: str | None = None,
) -> BudgetState:
    """Build a :class:`BudgetState` from raw token counts.

    Negative or missing token counts are treated as zero, and a non-positive
    ceiling yields a zero ratio rather than an error.
    """

    thresholds = thresholds or TierThresholds()
    current = max(0, int(current_tokens or 0))
    ceiling = max(0, int(max_tokens or 0))
    ratio = current / ceiling if ceiling > 0 else 0.0
    percent = min(100, max(0, math.floor(ratio * 100 + 0.5)))
    return BudgetState(
        current_tokens=current,
        max_tokens=ceiling,
        usage_ratio=ratio,
        usage_percent=percent,
        tier=thresholds.tier_for(ratio),
        model=model,
    )


@dataclass(slots=True)
class BudgetTracker:
    """Estimates transcript usage against the active model's context window."""

    model_name: str | None = None
    system_prompt_tokens: int = 0
    thresholds: TierThresholds = field(default_factory=TierThresholds)
    model_limits: Mapping[str, int] | None = None
    history_limit: int = 50
    _recent_states: Deque[BudgetState] = field(default_factory=deque, init=False, repr=False)

    def evaluate(self, transcript: Any, model: str | None = None) -> BudgetState:
        """Return the budget state for ``transcript`` on ``model`` (or the tracker's model)."""

        active_model = model or self.model_name
        serialized = "" if transcript is None else safe_serialize(transcript)
        tokens = estimate_tokens(serialized) + max(0, int(self.system_prompt_tokens or 0))
        state = classify_usage(
            tokens,
            max_tokens_for(active_model, self.model_limits),
            self.thresholds,
            model=active_model,
        )
        self._record_state(state)
        return state

    @property
    def last_state(self) -> BudgetState | None:
        return self._recent_states[-1] if self._recent_states else None

    def status_snapshot(self) -> dict[str, object]:
        """Return a lightweight snapshot for UI widgets."""

        latest = self.last_state
        return {
            "model": self.model_name,
            "system_prompt_tokens": self.system_prompt_tokens,
            "summary_text": self._format_summary(latest),
            "tier": latest.tier.value if latest else None,
            "usage_percent": latest.usage_percent if latest else 0,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _record_state(self, state: BudgetState) -> None:
        self._recent_states.append(state)
        while len(self._recent_states) > self.history_limit:
            self._recent_states.popleft()

    def _format_summary(self, state: BudgetState | None) -> str:
        if state is None:
            ceiling = max_tokens_for(self.model_name, self.model_limits)
            return f"Context: 0/{ceiling:,} tokens"
        return f"Context: {state.current_tokens:,}/{state.max_tokens:,} ({state.tier.value.upper()})"


__all__ = [
    "DEFAULT_MAX_CONTEXT_TOKENS",
    "MODEL_CONTEXT_LIMITS",
    "BudgetState",
    "BudgetTracker",
    "TierThresholds",
    "WarningTier",
    "classify_usage",
    "max_tokens_for",
]

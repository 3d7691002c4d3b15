"""Debounced context budget supervision for live transcripts."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

from ..services.context_policy import BudgetState, BudgetTracker
from ...services import telemetry as telemetry_service

LOGGER = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3

BudgetListener = Callable[[BudgetState], Any]


class ContextBudgetExceeded(RuntimeError):
    """Raised when a caller requires headroom and the budget is critical."""

    def __init__(self, state: BudgetState):
        super().__init__(
            f"Context budget exceeded: {state.current_tokens:,}/{state.max_tokens:,} tokens "
            f"({state.display_text})"
        )
        self.state = state


def ensure_headroom(state: BudgetState) -> BudgetState:
    """Return ``state`` unchanged unless it sits in the critical tier."""

    if state.is_critical:
        raise ContextBudgetExceeded(state)
    return state


class BudgetMonitor:
    """Recomputes budget state after transcript changes settle.

    Each :meth:`schedule` call replaces any pending recomputation, so only the
    latest transcript is measured once the debounce window elapses.
    """

    def __init__(
        self,
        tracker: BudgetTracker | None = None,
        *,
        model: str | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        telemetry_emitter: Callable[[str, Mapping[str, Any]], Any] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if debounce_seconds < 0:
            raise ValueError("debounce_seconds must be non-negative")
        self._tracker = tracker or BudgetTracker(model_name=model)
        self._model = model or self._tracker.model_name
        self._debounce = float(debounce_seconds)
        self._emit = telemetry_emitter or telemetry_service.emit
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._pending_transcript: Any = None
        self._state: BudgetState | None = None
        self._listeners: list[BudgetListener] = []
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def tracker(self) -> BudgetTracker:
        return self._tracker

    @property
    def model(self) -> str | None:
        return self._model

    @property
    def state(self) -> BudgetState | None:
        """Most recently published state, or ``None`` before the first evaluation."""
        return self._state

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def debounce_seconds(self) -> float:
        return self._debounce

    def add_listener(self, listener: BudgetListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: BudgetListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def schedule(self, transcript: Any) -> None:
        """Queue a recomputation for ``transcript`` after the debounce window."""

        if self._closed:
            raise RuntimeError("BudgetMonitor is closed")
        self._pending_transcript = transcript
        self._cancel_pending()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self._debounce, self._run_pending)

    def set_model(self, model: str | None, transcript: Any = None) -> None:
        """Switch models; recompute against ``transcript`` or the last scheduled one."""

        self._model = model
        self._tracker.model_name = model
        target = transcript if transcript is not None else self._pending_transcript
        if target is not None and not self._closed:
            self.schedule(target)

    def evaluate_now(self, transcript: Any) -> BudgetState:
        """Compute and publish immediately, discarding any pending recomputation."""

        self._cancel_pending()
        self._pending_transcript = transcript
        return self._publish(transcript)

    def flush(self) -> BudgetState | None:
        """Run a pending recomputation now, returning the current state."""

        if self._handle is None:
            return self._state
        self._cancel_pending()
        return self._publish(self._pending_transcript)

    async def aclose(self) -> None:
        self._closed = True
        self._cancel_pending()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _run_pending(self) -> None:
        self._handle = None
        if self._closed:
            return
        self._publish(self._pending_transcript)

    def _publish(self, transcript: Any) -> BudgetState:
        state = self._tracker.evaluate(transcript, model=self._model)
        previous = self._state
        self._state = state
        if previous is None or previous.tier is not state.tier:
            LOGGER.info(
                "Context budget tier %s -> %s (%s of %s tokens)",
                previous.tier.value if previous else None,
                state.tier.value,
                state.current_tokens,
                state.max_tokens,
            )
        self._emit("context_budget.state", state.as_payload())
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                LOGGER.debug("Budget listener %r failed", listener, exc_info=True)
        return state


__all__ = [
    "DEFAULT_DEBOUNCE_SECONDS",
    "BudgetListener",
    "BudgetMonitor",
    "ContextBudgetExceeded",
    "ensure_headroom",
]

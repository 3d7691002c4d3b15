"""Transcript compaction once the context budget is exhausted.

When a transcript (plus system prompt) reaches ``max_tokens``, the older
messages are replaced by a single summary message and only the most recent
ones are kept verbatim. The summary itself comes from an injected async
callable, so any provider can supply it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Mapping, Sequence

from ...services import telemetry as telemetry_service
from ..utils.serialization import safe_serialize
from ..utils.tokens import estimate_message_tokens, estimate_tokens

LOGGER = logging.getLogger(__name__)

DEFAULT_COMPACTION_MAX_TOKENS = 100_000
DEFAULT_KEEP_RECENT_MESSAGES = 8
MIN_MESSAGES_TO_SUMMARIZE = 3
SUMMARY_LINE_CHARS = 300

Summarizer = Callable[[str], Awaitable[str]]
CompactionMethod = Literal["none", "summary"]


@dataclass(slots=True, frozen=True)
class ContextManagerResult:
    """Outcome of :func:`manage_context`."""

    messages: list[Any] = field(default_factory=list)
    was_summarized: bool = False
    original_tokens: int = 0
    new_tokens: int = 0
    tokens_saved: int = 0
    method: CompactionMethod = "none"

    def as_dict(self) -> dict[str, Any]:
        return {
            "was_summarized": self.was_summarized,
            "original_tokens": self.original_tokens,
            "new_tokens": self.new_tokens,
            "tokens_saved": self.tokens_saved,
            "method": self.method,
            "message_count": len(self.messages),
        }


def format_message_for_summary(message: Any) -> str:
    """Render one message as ``ROLE: content`` with the content clipped."""

    if isinstance(message, Mapping):
        role = str(message.get("role") or "unknown")
        content = message.get("content")
    else:
        role, content = "unknown", message
    text = content if isinstance(content, str) else safe_serialize(content)
    return f"{role.upper()}: {text[:SUMMARY_LINE_CHARS]}"


def format_conversation(messages: Sequence[Any]) -> str:
    return "\n".join(format_message_for_summary(message) for message in messages)


def summary_message(summary: str, compacted: int) -> dict[str, str]:
    body = summary.strip()
    return {
        "role": "system",
        "content": f"[CONVERSATION SUMMARY - {compacted} messages compacted]\n{body}\n[END SUMMARY]",
    }


async def manage_context(
    messages: Sequence[Any],
    *,
    summarizer: Summarizer,
    max_tokens: int = DEFAULT_COMPACTION_MAX_TOKENS,
    keep_recent: int = DEFAULT_KEEP_RECENT_MESSAGES,
    system_prompt: str | None = None,
    telemetry_emitter: Callable[[str, Mapping[str, Any]], Any] | None = None,
) -> ContextManagerResult:
    """Summarize older messages when the transcript no longer fits.

    Nothing changes while ``messages`` plus ``system_prompt`` stay below
    ``max_tokens``, or when fewer than :data:`MIN_MESSAGES_TO_SUMMARIZE`
    messages sit outside the ``keep_recent`` window. Otherwise those older
    messages are handed to ``summarizer`` as one formatted conversation and
    replaced by a single system message.

    Raises:
        ValueError: If ``max_tokens`` is not positive or ``keep_recent`` is negative.
        Exception: Whatever ``summarizer`` raises is propagated unchanged.
    """

    if max_tokens <= 0:
        raise ValueError(f"max_tokens must be positive, got {max_tokens!r}")
    if keep_recent < 0:
        raise ValueError(f"keep_recent must be non-negative, got {keep_recent!r}")

    history = list(messages)
    if not history:
        return ContextManagerResult()

    message_tokens = estimate_message_tokens(history)
    system_tokens = estimate_tokens(system_prompt) if system_prompt else 0
    original_tokens = message_tokens + system_tokens
    unchanged = ContextManagerResult(
        messages=history,
        original_tokens=original_tokens,
        new_tokens=original_tokens,
    )

    if original_tokens < max_tokens:
        LOGGER.debug("Context at %d/%d tokens; no compaction needed", original_tokens, max_tokens)
        return unchanged

    split_point = max(0, len(history) - keep_recent)
    older, recent = history[:split_point], history[split_point:]
    if len(older) < MIN_MESSAGES_TO_SUMMARIZE:
        LOGGER.info(
            "Context at %d/%d tokens but only %d older message(s); skipping summary",
            original_tokens,
            max_tokens,
            len(older),
        )
        return unchanged

    LOGGER.info("Context at %d/%d tokens; summarizing %d older messages", original_tokens, max_tokens, len(older))
    summary = await summarizer(format_conversation(older))
    compacted = [summary_message(summary, len(older)), *recent]
    new_tokens = estimate_message_tokens(compacted) + system_tokens
    result = ContextManagerResult(
        messages=compacted,
        was_summarized=True,
        original_tokens=original_tokens,
        new_tokens=new_tokens,
        tokens_saved=original_tokens - new_tokens,
        method="summary",
    )
    LOGGER.info("Summarization done: %d -> %d tokens (saved %d)", original_tokens, new_tokens, result.tokens_saved)
    emit = telemetry_emitter or telemetry_service.emit
    emit("context.summarized", result.as_dict())
    return result


__all__ = [
    "DEFAULT_COMPACTION_MAX_TOKENS",
    "DEFAULT_KEEP_RECENT_MESSAGES",
    "MIN_MESSAGES_TO_SUMMARIZE",
    "ContextManagerResult",
    "Summarizer",
    "format_conversation",
    "format_message_for_summary",
    "manage_context",
    "summary_message",
]

"""CLI helper to estimate tokens and the budget tier for text or a transcript."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Sequence

from ..ai.services.context_policy import BudgetTracker, max_tokens_for
from ..ai.utils.tokens import estimate_message_tokens, estimate_tokens
from ..ai.utils.transcript import cleanup_tool_invocations


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Estimate token usage and the context budget tier.")
    parser.add_argument("--model", default="claude-4-5-sonnet", help="Model identifier used for the context ceiling.")
    parser.add_argument(
        "--file",
        type=Path,
        help="File containing text or a JSON transcript. Reads stdin when omitted and --text not provided.",
    )
    parser.add_argument("--text", help="Inline text to estimate. Overrides --file when provided.")
    parser.add_argument(
        "--system-prompt-tokens",
        type=int,
        default=0,
        help="Fixed overhead added for the system prompt.",
    )
    parser.add_argument("--json", action="store_true", help="Emit the result as JSON.")
    args = parser.parse_args(argv)

    payload = _load_text(args.text, args.file)
    if not payload:
        print("No input text provided.", file=sys.stderr)
        return 1

    transcript = _parse_transcript(payload)
    tracker = BudgetTracker(model_name=args.model, system_prompt_tokens=args.system_prompt_tokens)
    if transcript is None:
        tokens = estimate_tokens(payload)
        state = tracker.evaluate(payload)
    else:
        cleaned = cleanup_tool_invocations(transcript)
        tokens = estimate_message_tokens(cleaned)
        state = tracker.evaluate(cleaned)

    if args.json:
        report = {
            "model": args.model,
            "characters": len(payload),
            "tokens": tokens,
            "messages": len(transcript) if transcript is not None else None,
            "budget": state.as_payload(),
        }
        print(json.dumps(report, indent=2))
        return 0

    print(f"model: {args.model}")
    print(f"context window: {max_tokens_for(args.model):,}")
    print(f"characters: {len(payload)}")
    if transcript is not None:
        print(f"messages: {len(transcript)}")
    print(f"tokens (estimate): {tokens}")
    print(f"usage: {state.display_text} ({state.tier.value})")
    return 0


def _load_text(inline: str | None, path: Path | None) -> str:
    if inline:
        return inline
    if path:
        return path.read_text(encoding="utf-8")
    data = sys.stdin.read()
    return data.strip()


def _parse_transcript(payload: str) -> list[Any] | None:
    stripped = payload.lstrip()
    if not stripped.startswith("["):
        return None
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, list) else None


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

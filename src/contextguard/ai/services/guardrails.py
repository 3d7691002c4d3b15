"""Request-level guardrails applied before a turn reaches the model."""

from __future__ import annotations

import logging
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

# Maximum characters accepted for a single user message
MAX_INPUT_LENGTH = 8000
CONTENT_TOO_LARGE_STATUS = 413
CONTENT_TOO_LARGE_ERROR = (
    f"Request too large. Please limit input to {MAX_INPUT_LENGTH:,} characters."
)


@dataclass(slots=True, frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None
    status_code: int | None = None


def validate_input_length(content: str | None, *, max_length: int = MAX_INPUT_LENGTH) -> ValidationResult:
    """Reject user input longer than ``max_length`` characters."""

    length = len(content or "")
    if length > max_length:
        LOGGER.info("Rejected input of %d chars (limit %d)", length, max_length)
        message = CONTENT_TOO_LARGE_ERROR
        if max_length != MAX_INPUT_LENGTH:
            message = f"Request too large. Please limit input to {max_length:,} characters."
        return ValidationResult(valid=False, error=message, status_code=CONTENT_TOO_LARGE_STATUS)
    return ValidationResult(valid=True)


__all__ = [
    "CONTENT_TOO_LARGE_ERROR",
    "CONTENT_TOO_LARGE_STATUS",
    "MAX_INPUT_LENGTH",
    "ValidationResult",
    "validate_input_length",
]

"""Token estimate for the tool schema set sent with each request."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping

from ...services import telemetry as telemetry_service

LOGGER = logging.getLogger(__name__)

# Schema JSON is denser than prose, so a tighter ratio than the transcript estimator
SCHEMA_CHARS_PER_TOKEN = 3
TOKEN_WARNING_THRESHOLD = 150_000
TOKEN_ERROR_THRESHOLD = 180_000


@dataclass(slots=True, frozen=True)
class ToolSchemaSizeResult:
    estimated_tokens: int
    tool_count: int
    is_near_limit: bool
    exceeds_limit: bool

    def as_payload(self) -> dict[str, object]:
        return {
            "estimated_tokens": self.estimated_tokens,
            "tool_count": self.tool_count,
            "is_near_limit": self.is_near_limit,
            "exceeds_limit": self.exceeds_limit,
        }


def check_tool_schema_size(tools: Mapping[str, Any]) -> ToolSchemaSizeResult:
    """Estimate how many tokens ``tools`` consume and classify against the limits."""

    tool_count = len(tools)
    body = json.dumps(tools, default=str, ensure_ascii=False)
    estimated = math.ceil(len(body) / SCHEMA_CHARS_PER_TOKEN)

    if estimated > TOKEN_ERROR_THRESHOLD:
        LOGGER.error("Schema too large: ~%d tokens (%d tools)", estimated, tool_count)
        result = ToolSchemaSizeResult(estimated, tool_count, is_near_limit=True, exceeds_limit=True)
    elif estimated > TOKEN_WARNING_THRESHOLD:
        LOGGER.warning("Schema approaching limit: ~%d tokens (%d tools)", estimated, tool_count)
        result = ToolSchemaSizeResult(estimated, tool_count, is_near_limit=True, exceeds_limit=False)
    else:
        LOGGER.info("Tools loaded: %d tools, ~%dk tokens estimated", tool_count, round(estimated / 1000))
        result = ToolSchemaSizeResult(estimated, tool_count, is_near_limit=False, exceeds_limit=False)

    telemetry_service.emit("tool_schema.size", result.as_payload())
    return result


__all__ = [
    "TOKEN_ERROR_THRESHOLD",
    "TOKEN_WARNING_THRESHOLD",
    "ToolSchemaSizeResult",
    "check_tool_schema_size",
]

"""Provider-hosted web tools attached for models that support them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

LOGGER = logging.getLogger(__name__)

WEB_SEARCH_TOOL_TYPE = "web_search_20250305"
WEB_FETCH_TOOL_TYPE = "web_fetch_20250910"


@dataclass(slots=True, frozen=True)
class WebToolsConfig:
    max_uses: int = 5
    max_content_tokens: int = 5000
    enable_citations: bool = True


@dataclass(slots=True, frozen=True)
class ModelCapabilities:
    model: str
    supports_web_tools: bool = False


def model_capabilities(model: str | None) -> ModelCapabilities:
    """Return what the hosting provider offers for ``model``."""
    name = (model or "").strip()
    return ModelCapabilities(model=name, supports_web_tools=name.lower().startswith("claude"))


def web_tool_definitions(config: WebToolsConfig | None = None) -> dict[str, dict[str, Any]]:
    config = config or WebToolsConfig()
    return {
        "web_fetch": {
            "type": WEB_FETCH_TOOL_TYPE,
            "name": "web_fetch",
            "max_uses": config.max_uses,
            "max_content_tokens": config.max_content_tokens,
            "citations": {"enabled": config.enable_citations},
        },
        "web_search": {
            "type": WEB_SEARCH_TOOL_TYPE,
            "name": "web_search",
            "max_uses": config.max_uses,
        },
    }


def augment_tools_for_model(
    tools: Mapping[str, Any] | None,
    model: str | None,
    config: WebToolsConfig | None = None,
) -> dict[str, Any]:
    """Return a copy of ``tools`` with web tools added when ``model`` supports them.

    ``tools`` itself is never modified.
    """

    augmented = dict(tools or {})
    if not model_capabilities(model).supports_web_tools:
        return augmented
    augmented.update(web_tool_definitions(config))
    LOGGER.info("Added provider web search and fetch tools for %s", model)
    return augmented


__all__ = [
    "ModelCapabilities",
    "WebToolsConfig",
    "augment_tools_for_model",
    "model_capabilities",
    "web_tool_definitions",
]

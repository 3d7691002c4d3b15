"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Mapping

from ..ai.orchestration.budget_manager import BudgetMonitor
from ..ai.orchestration.tools.governor import DEFAULT_MAX_RESULT_CHARS, GovernorConfig
from ..ai.orchestration.tools.types import SizeLimitConfig
from ..ai.services.context_policy import BudgetTracker, TierThresholds

__all__ = [
    "ContextThresholdSettings",
    "Settings",
    "SettingsStore",
    "ToolResultSettings",
    "ToolServerSettings",
    "TRANSPORT_CHOICES",
    "redact_secret",
    "redact_headers",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".contextguard"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "CONTEXTGUARD_MODEL": "model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "CONTEXTGUARD_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "CONTEXTGUARD_DEBOUNCE_SECONDS": "debounce_seconds",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "CONTEXTGUARD_SYSTEM_PROMPT_TOKENS": "system_prompt_tokens",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_SENSITIVE_HEADERS = {"authorization", "x-api-key", "api-key", "proxy-authorization"}
TRANSPORT_CHOICES: tuple[str, ...] = ("sse", "stdio", "streamable-http")
Transport = Literal["sse", "stdio", "streamable-http"]


@dataclass(slots=True)
class ContextThresholdSettings:
    """Usage ratios at which the budget tiers begin."""

    info: float = 0.70
    warning: float = 0.85
    critical: float = 0.95

    def to_thresholds(self) -> TierThresholds:
        return TierThresholds(info=self.info, warning=self.warning, critical=self.critical)


@dataclass(slots=True)
class ToolResultSettings:
    """Result governor limits surfaced in the settings file."""

    default_max_chars: int = DEFAULT_MAX_RESULT_CHARS
    limits: dict[str, int] = field(default_factory=dict)
    include_stack: bool = False
    sample_chars: int = 200


@dataclass(slots=True)
class ToolServerSettings:
    """Connection details for one tool server."""

    key: str
    name: str = ""
    url: str | None = None
    transport: Transport = "sse"
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    catalog_path: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.key
        if self.transport not in TRANSPORT_CHOICES:
            raise ValueError(
                f"Unsupported transport {self.transport!r} for server '{self.key}'; "
                f"expected one of {', '.join(TRANSPORT_CHOICES)}"
            )
        if self.transport == "stdio" and not self.command:
            raise ValueError(f"Server '{self.key}' uses stdio transport but has no command")
        if self.transport != "stdio" and not self.url:
            raise ValueError(f"Server '{self.key}' uses {self.transport} transport but has no url")

    @property
    def endpoint(self) -> str:
        """Human-readable location used in logs and error messages."""
        if self.transport == "stdio":
            return " ".join([self.command or "", *self.args]).strip()
        return self.url or ""

    @classmethod
    def from_mapping(cls, key: str, payload: Mapping[str, Any]) -> "ToolServerSettings":
        allowed = {item.name for item in fields(cls)}
        data = {name: value for name, value in payload.items() if name in allowed and name != "key"}
        unknown = sorted(set(payload) - allowed)
        if unknown:
            LOGGER.warning("Ignoring unknown keys for tool server %s: %s", key, unknown)
        return cls(key=key, **data)


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    model: str = "claude-4-5-sonnet"
    system_prompt_tokens: int = 0
    debounce_seconds: float = 0.3
    connect_timeout: float = 15.0
    connect_retries: int = 3
    debug_logging: bool = False
    context_thresholds: ContextThresholdSettings = field(default_factory=ContextThresholdSettings)
    tool_results: ToolResultSettings = field(default_factory=ToolResultSettings)
    tool_servers: list[ToolServerSettings] = field(default_factory=list)

    def to_governor_config(self) -> GovernorConfig:
        """Build a validated :class:`GovernorConfig` from the tool result settings.

        Raises:
            InvalidSizeLimitError: When any configured limit is not a positive integer.
        """

        results = self.tool_results
        return GovernorConfig(
            default_max_chars=results.default_max_chars,
            limits=SizeLimitConfig(results.limits),
            include_stack=results.include_stack or self.debug_logging,
            sample_chars=results.sample_chars,
        )

    def to_budget_tracker(self) -> BudgetTracker:
        """Build a :class:`BudgetTracker` for the configured model and thresholds."""

        return BudgetTracker(
            model_name=self.model,
            system_prompt_tokens=self.system_prompt_tokens,
            thresholds=self.context_thresholds.to_thresholds(),
        )

    def to_budget_monitor(
        self,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        telemetry_emitter: Callable[[str, Mapping[str, Any]], Any] | None = None,
    ) -> BudgetMonitor:
        """Build a debounced :class:`BudgetMonitor` wired to :meth:`to_budget_tracker`.

        Raises:
            ValueError: When the thresholds are not ascending or the debounce is negative.
        """

        return BudgetMonitor(
            self.to_budget_tracker(),
            model=self.model,
            debounce_seconds=self.debounce_seconds,
            telemetry_emitter=telemetry_emitter,
            loop=loop,
        )

    def server(self, key: str) -> ToolServerSettings | None:
        for server in self.tool_servers:
            if server.key == key:
                return server
        return None


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            settings = self._settings_from_payload(payload)
            LOGGER.debug(
                "Settings loaded from %s: model=%s, %d tool server(s)",
                self._path,
                settings.model,
                len(settings.tool_servers),
            )

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        servers: Dict[str, Any] = {}
        for server in data.pop("tool_servers", []):
            key = server.pop("key")
            servers[key] = server
        data["tool_servers"] = servers
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _settings_from_payload(self, payload: Mapping[str, Any]) -> Settings:
        data = _filter_fields(payload)
        thresholds = data.get("context_thresholds")
        if isinstance(thresholds, Mapping):
            try:
                data["context_thresholds"] = ContextThresholdSettings(**thresholds)
            except TypeError:
                LOGGER.warning("Ignoring invalid context_thresholds: %s", thresholds)
                data["context_thresholds"] = ContextThresholdSettings()
        results = data.get("tool_results")
        if isinstance(results, Mapping):
            try:
                data["tool_results"] = ToolResultSettings(**results)
            except TypeError:
                LOGGER.warning("Ignoring invalid tool_results: %s", results)
                data["tool_results"] = ToolResultSettings()
        if "tool_servers" in data:
            data["tool_servers"] = _parse_servers(data["tool_servers"])
        try:
            return Settings(**data)
        except TypeError as exc:
            LOGGER.warning("Settings payload contained unexpected data: %s", exc)
            return Settings()

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            if key != "version":
                LOGGER.warning("Ignoring unknown settings key %r", key)
            continue
        result[key] = value
    return result


def _parse_servers(payload: Any) -> list[ToolServerSettings]:
    items: list[tuple[str, Any]]
    if isinstance(payload, Mapping):
        items = [(str(key), value) for key, value in payload.items()]
    elif isinstance(payload, list):
        items = [(str(entry.get("key", "")), entry) for entry in payload if isinstance(entry, Mapping)]
    else:
        LOGGER.warning("Ignoring tool_servers of type %s", type(payload).__name__)
        return []
    servers: list[ToolServerSettings] = []
    for key, entry in items:
        if not key or not isinstance(entry, Mapping):
            LOGGER.warning("Skipping tool server entry without a key: %r", entry)
            continue
        try:
            servers.append(ToolServerSettings.from_mapping(key, entry))
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Skipping invalid tool server %s: %s", key, exc)
    return servers


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def redact_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not isinstance(headers, Mapping):
        return {}
    return {
        key: redact_secret(str(value)) if key.lower() in _SENSITIVE_HEADERS else str(value)
        for key, value in headers.items()
    }

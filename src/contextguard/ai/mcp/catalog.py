"""Trusted tool schema descriptors grouped per tool server."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from ..tools.errors import MalformedSchemaError

LOGGER = logging.getLogger(__name__)

_SCHEMA_KEYS = ("inputSchema", "input_schema", "parameters")


@dataclass(slots=True, frozen=True)
class MalformedSchema:
    """A catalog entry that failed descriptor validation."""

    name: str
    reason: str

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "reason": self.reason}


@dataclass(slots=True, frozen=True)
class SchemaDescriptor:
    """Validated input schema for one tool.

    Construction raises :class:`MalformedSchemaError` when the schema is not a
    mapping, is not a valid Draft 7 JSON Schema, or does not describe an object.
    """

    name: str
    input_schema: Mapping[str, Any]
    description: str = ""
    _validator: Draft7Validator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise MalformedSchemaError(
                message=f"Tool name must be a non-empty string, got {self.name!r}",
                tool_name=str(self.name),
                reason="missing tool name",
            )
        schema = self.input_schema
        if not isinstance(schema, Mapping):
            self._reject(f"input schema must be an object, got {type(schema).__name__}")
        schema = dict(schema)
        try:
            Draft7Validator.check_schema(schema)
        except SchemaError as exc:
            self._reject(f"invalid JSON Schema: {exc.message}")
        if schema.get("type") != "object":
            self._reject(f"input schema type must be 'object', got {schema.get('type')!r}")
        object.__setattr__(self, "input_schema", MappingProxyType(schema))
        object.__setattr__(self, "_validator", Draft7Validator(schema))

    def validate(self, arguments: Mapping[str, Any] | None) -> list[str]:
        """Return validation messages for ``arguments`` (empty when valid)."""

        errors = sorted(self._validator.iter_errors(dict(arguments or {})), key=lambda err: list(err.path))
        messages = []
        for error in errors:
            location = "/".join(str(part) for part in error.path)
            messages.append(f"{location}: {error.message}" if location else error.message)
        return messages

    def _reject(self, reason: str) -> None:
        raise MalformedSchemaError(
            message=f"Schema for tool '{self.name}' is malformed: {reason}",
            tool_name=self.name,
            reason=reason,
        )


@dataclass(slots=True, frozen=True)
class SchemaCatalog:
    """Ordered trusted descriptors for a single tool server."""

    server: str
    entries: Mapping[str, SchemaDescriptor] = field(default_factory=dict)
    malformed: tuple[MalformedSchema, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))
        object.__setattr__(self, "malformed", tuple(self.malformed))

    def names(self) -> tuple[str, ...]:
        """All trusted tool names, including malformed ones, in catalog order."""
        seen = list(self.entries)
        seen.extend(item.name for item in self.malformed if item.name not in self.entries)
        return tuple(seen)

    def get(self, name: str) -> SchemaDescriptor | None:
        return self.entries.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_descriptors(cls, server: str, descriptors: Iterable[SchemaDescriptor]) -> "SchemaCatalog":
        return cls(server=server, entries={descriptor.name: descriptor for descriptor in descriptors})

    @classmethod
    def from_mapping(cls, server: str, tools: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> "SchemaCatalog":
        """Build a catalog from raw definitions without raising on bad entries.

        ``tools`` may map tool names to definitions or be a list of definitions
        carrying a ``name`` key. Definitions may use ``inputSchema``,
        ``input_schema`` or ``parameters`` for the schema.

        Raises:
            MalformedSchemaError: If ``tools`` is neither a mapping nor a list.
        """

        if tools is not None and not isinstance(tools, (Mapping, list, tuple)):
            raise MalformedSchemaError(
                message=f"Tool catalog for server '{server}' must be an object or a list",
                reason=f"catalog must be an object or a list, got {type(tools).__name__}",
            )
        entries: dict[str, SchemaDescriptor] = {}
        malformed: list[MalformedSchema] = []
        for name, definition in _iter_definitions(tools):
            if name in entries or any(item.name == name for item in malformed):
                LOGGER.warning("Duplicate schema for tool %s on %s; keeping the first", name, server)
                continue
            try:
                entries[name] = _descriptor_from_definition(name, definition)
            except MalformedSchemaError as exc:
                LOGGER.warning("Malformed schema for tool %s on %s: %s", name, server, exc.reason)
                malformed.append(MalformedSchema(name=name, reason=exc.reason or exc.message))
        return cls(server=server, entries=entries, malformed=tuple(malformed))

    @classmethod
    def from_json_file(cls, server: str, path: str | Path) -> "SchemaCatalog":
        payload = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
        if isinstance(payload, Mapping) and "tools" in payload:
            payload = payload["tools"]
        return cls.from_mapping(server, payload)


def _iter_definitions(tools: Any) -> Iterable[tuple[str, Any]]:
    if isinstance(tools, Mapping):
        for name, definition in tools.items():
            yield str(name), definition
        return
    for index, definition in enumerate(tools or ()):
        name = definition.get("name") if isinstance(definition, Mapping) else None
        yield (str(name) if name else f"<entry {index}>"), definition


def _descriptor_from_definition(name: str, definition: Any) -> SchemaDescriptor:
    if not isinstance(definition, Mapping):
        raise MalformedSchemaError(
            message=f"Definition for tool '{name}' must be an object",
            tool_name=name,
            reason=f"definition must be an object, got {type(definition).__name__}",
        )
    schema: Any = None
    for key in _SCHEMA_KEYS:
        if key in definition:
            schema = definition[key]
            break
    else:
        # Bare JSON Schema supplied directly as the definition
        if "type" in definition or "properties" in definition:
            schema = definition
    if schema is None:
        raise MalformedSchemaError(
            message=f"Definition for tool '{name}' has no input schema",
            tool_name=name,
            reason="missing input schema",
        )
    description = definition.get("description") or ""
    return SchemaDescriptor(name=name, input_schema=schema, description=str(description))


__all__ = ["MalformedSchema", "SchemaCatalog", "SchemaDescriptor"]

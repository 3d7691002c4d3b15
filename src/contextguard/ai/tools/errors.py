"""Standardized error types for tool governance.

This module provides a hierarchy of error classes with consistent
JSON serialization for diagnostics and audit reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Sequence


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used in tool payloads and reports."""

    # Payload types surfaced to the model loop
    TOOL_RESULT_SIZE = "tool-result-size-error"
    TOOL_EXECUTION = "tool-execution-error"

    # Local failures
    SERIALIZATION_FAILURE = "serialization-failure"
    INVALID_SIZE_LIMIT = "invalid-size-limit"

    # Tool server audit
    CONNECTION_FAILED = "tool-server-connection-error"
    SCHEMA_DRIFT = "schema-drift"
    MALFORMED_SCHEMA = "malformed-schema"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ToolError(Exception):
    """Base exception class for all governance errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for JSON payloads."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Configuration Errors
# -----------------------------------------------------------------------------

@dataclass
class InvalidSizeLimitError(ToolError):
    """Error raised when a result size limit is not a positive integer."""

    error_code: str = field(default=ErrorCode.INVALID_SIZE_LIMIT)
    message: str = field(default="Tool result size limits must be positive integers")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Remove the override or set it to a character count greater than zero")

    tool_name: str | None = field(default=None)
    limit: Any = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_name is not None:
            result["tool"] = self.tool_name
        result["limit"] = repr(self.limit)
        return result


@dataclass
class SerializationFailure(ToolError):
    """Describes content that could not be converted to text.

    The governor substitutes a fixed payload instead of raising this; it is
    exposed so callers that serialize outside the governor can report it.
    """

    error_code: str = field(default=ErrorCode.SERIALIZATION_FAILURE)
    message: str = field(default="Tool result could not be serialized")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    severity: ClassVar[str] = "warning"

    type_name: str | None = field(default=None)


# -----------------------------------------------------------------------------
# Tool Server Errors
# -----------------------------------------------------------------------------

@dataclass
class ToolServerConnectionError(ToolError):
    """Error raised when a tool server cannot be reached or listed."""

    error_code: str = field(default=ErrorCode.CONNECTION_FAILED)
    message: str = field(default="Failed to connect to tool server")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check the server URL and transport, then rerun the audit")

    server: str | None = field(default=None)
    url: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.server is not None:
            result["server"] = self.server
        if self.url is not None:
            result["url"] = self.url
        return result


@dataclass
class MalformedSchemaError(ToolError):
    """Error raised when a schema descriptor is structurally invalid."""

    error_code: str = field(default=ErrorCode.MALFORMED_SCHEMA)
    message: str = field(default="Schema descriptor is malformed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Provide an inputSchema object that is a valid JSON Schema of type 'object'")

    tool_name: str | None = field(default=None)
    reason: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_name is not None:
            result["tool"] = self.tool_name
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass
class SchemaDriftError(ToolError):
    """Error raised by audit gates when a server's schemas have drifted."""

    error_code: str = field(default=ErrorCode.SCHEMA_DRIFT)
    message: str = field(default="Trusted schemas are out of sync with the tool server")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Update the schema catalog to match the live tool list")

    server: str | None = field(default=None)
    missing: Sequence[str] = field(default=())
    orphaned: Sequence[str] = field(default=())
    malformed: Sequence[str] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.server is not None:
            result["server"] = self.server
        result["missing"] = list(self.missing)
        result["orphaned"] = list(self.orphaned)
        result["malformed"] = list(self.malformed)
        return result


__all__ = [
    "ErrorCode",
    "InvalidSizeLimitError",
    "MalformedSchemaError",
    "SchemaDriftError",
    "SerializationFailure",
    "ToolError",
    "ToolServerConnectionError",
]

"""Tool result types and governance errors."""

from .errors import (
    ErrorCode,
    InvalidSizeLimitError,
    MalformedSchemaError,
    SchemaDriftError,
    SerializationFailure,
    ToolError,
    ToolServerConnectionError,
)
from .results import (
    FAILURE_TYPES,
    ExecutionError,
    SizeExceeded,
    ToolDiagnostic,
    ToolResult,
    ToolResultOk,
    detect_failure_type,
)

__all__ = [
    # errors.py
    "ErrorCode",
    "InvalidSizeLimitError",
    "MalformedSchemaError",
    "SchemaDriftError",
    "SerializationFailure",
    "ToolError",
    "ToolServerConnectionError",
    # results.py
    "FAILURE_TYPES",
    "ExecutionError",
    "SizeExceeded",
    "ToolDiagnostic",
    "ToolResult",
    "ToolResultOk",
    "detect_failure_type",
]

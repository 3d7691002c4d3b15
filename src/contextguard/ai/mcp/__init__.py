"""Tool server connections and schema drift auditing."""

from .catalog import MalformedSchema, SchemaCatalog, SchemaDescriptor
from .reconciler import (
    AuditResult,
    AuditTarget,
    ReconciliationReport,
    ReconciliationSession,
    ServerAuditOutcome,
    audit_servers,
    reconcile,
)
from .transport import McpToolHandle, ToolHandle, connect_tool_server

__all__ = [
    "AuditResult",
    "AuditTarget",
    "MalformedSchema",
    "McpToolHandle",
    "ReconciliationReport",
    "ReconciliationSession",
    "SchemaCatalog",
    "SchemaDescriptor",
    "ServerAuditOutcome",
    "ToolHandle",
    "audit_servers",
    "connect_tool_server",
    "reconcile",
]

"""Context budgeting, tool result governance, and tool server auditing."""

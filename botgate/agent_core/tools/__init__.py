"""Tools executed by the agent runtime.

Every tool is gated by exactly one ``PermissionKey``; the executor checks it
through the approval gate before ``invoke`` is called.
"""

from .base import Tool, ToolContext, ToolDefinition, ToolResult
from .builtin import DryRunTool, dry_run_registry
from .registry import TOOL_CATALOG, ToolRegistry

__all__ = [
    "TOOL_CATALOG",
    "DryRunTool",
    "Tool",
    "ToolContext",
    "ToolDefinition",
    "ToolRegistry",
    "ToolResult",
    "dry_run_registry",
]

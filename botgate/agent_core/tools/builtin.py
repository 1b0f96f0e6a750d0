from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from .base import Tool, ToolContext, ToolDefinition, ToolResult
from .registry import TOOL_CATALOG, ToolRegistry


@dataclass(frozen=True)
class DryRunTool(Tool):
    """
    Tool that performs no side effect and echoes what it would have done.

    Used as the default implementation for catalog tools when no concrete
    integration is configured, so plans can be exercised end to end.
    """

    definition: ToolDefinition

    async def invoke(self, ctx: ToolContext, *, args: Dict[str, Any]) -> ToolResult:
        return ToolResult(
            ok=True,
            output={"tool": self.definition.tool_key, "dry_run": True, "args": dict(args)},
            rationale=f"dry run of {self.definition.tool_key} for goal: {ctx.goal}",
        )


def dry_run_registry(tool_keys: Optional[Iterable[str]] = None) -> ToolRegistry:
    """Registry with a ``DryRunTool`` for each catalog entry (or the given keys)."""
    registry = ToolRegistry()
    for key in tool_keys if tool_keys is not None else TOOL_CATALOG:
        registry.register(DryRunTool(TOOL_CATALOG[key]))
    return registry

"""Tool registry and the catalog of known tools.

``TOOL_CATALOG`` lists every tool the planner may propose, with the permission
it is gated by. ``ToolRegistry`` maps tool keys to executable implementations.
File tools only run on a trusted (local) host.
"""

from __future__ import annotations

from typing import Dict, List

from ..schemas.domain import EgressLevel, PermissionKey
from .base import Tool, ToolDefinition

TOOL_CATALOG: Dict[str, ToolDefinition] = {
    d.tool_key: d
    for d in (
        ToolDefinition("web.rss", PermissionKey.WEB_RSS, "Collect items from configured RSS feeds"),
        ToolDefinition("web.fetch", PermissionKey.WEB_FETCH, "Fetch a public web page", critical=False, cancellable=True),
        ToolDefinition(
            "llm.analyze",
            PermissionKey.LLM_USE,
            "Analyze collected content with a language model",
            cancellable=True,
            uses_reasoning=True,
            required_egress=EgressLevel.METADATA_ONLY,
        ),
        ToolDefinition("sources.manage", PermissionKey.SOURCE_WRITE, "Add, edit or remove content sources"),
        ToolDefinition("schedule.set", PermissionKey.SCHEDULE_WRITE, "Create or change a run schedule"),
        ToolDefinition("files.read", PermissionKey.FS_READ, "Read files in allowed folders", trusted_host_only=True),
        ToolDefinition(
            "files.write",
            PermissionKey.FS_WRITE,
            "Write or export files to allowed folders",
            trusted_host_only=True,
        ),
        ToolDefinition(
            "files.delete", PermissionKey.FS_DELETE, "Delete files in allowed folders", trusted_host_only=True
        ),
        ToolDefinition("calendar.read", PermissionKey.CAL_READ, "Read calendar events"),
        ToolDefinition("calendar.write", PermissionKey.CAL_WRITE, "Create or modify calendar events"),
        ToolDefinition("telegram.send", PermissionKey.TELEGRAM_SEND, "Send a Telegram message", critical=False),
        ToolDefinition("memory.write", PermissionKey.MEMORY_WRITE, "Store a long-term memory for the bot"),
    )
}


class ToolRegistry:
    """
    In-memory mapping of tool keys to implementations.

    Notes:
        - ``register`` overwrites any existing mapping for the tool key.
        - ``get`` will raise ``KeyError`` if the tool is missing.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.definition.tool_key] = tool

    def get(self, tool_key: str) -> Tool:
        """
        Retrieve a registered tool by key.

        Raises:
            KeyError: If no tool is registered with the given key.
        """
        return self._tools[tool_key]

    def has(self, tool_key: str) -> bool:
        return tool_key in self._tools

    def keys(self) -> List[str]:
        return sorted(self._tools)

    def definition(self, tool_key: str) -> ToolDefinition:
        """Definition of a registered tool, falling back to the catalog."""
        if tool_key in self._tools:
            return self._tools[tool_key].definition
        return TOOL_CATALOG[tool_key]

"""Unit tests for the tool catalog, registry and dry-run tools."""

import pytest

from botgate.agent_core.schemas.domain import EgressLevel, PermissionKey, RiskTier
from botgate.agent_core.tools import TOOL_CATALOG, DryRunTool, ToolContext, ToolRegistry, dry_run_registry


class TestCatalog:
    def test_every_tool_is_gated_by_a_known_key(self):
        for key, definition in TOOL_CATALOG.items():
            assert definition.tool_key == key
            assert isinstance(definition.permission_key, PermissionKey)

    def test_risk_tier_comes_from_permission(self):
        assert TOOL_CATALOG["web.rss"].risk_tier == RiskTier.low
        assert TOOL_CATALOG["llm.analyze"].risk_tier == RiskTier.medium
        assert TOOL_CATALOG["files.delete"].risk_tier == RiskTier.high

    def test_llm_tool_requires_egress_and_reasoning(self):
        analyze = TOOL_CATALOG["llm.analyze"]

        assert analyze.required_egress == EgressLevel.METADATA_ONLY
        assert analyze.uses_reasoning is True
        assert analyze.cancellable is True

    def test_only_file_tools_are_host_bound(self):
        bound = sorted(k for k, d in TOOL_CATALOG.items() if d.trusted_host_only)

        assert bound == ["files.delete", "files.read", "files.write"]


class TestRegistry:
    def test_register_and_get(self):
        registry = ToolRegistry()
        tool = DryRunTool(TOOL_CATALOG["web.rss"])

        registry.register(tool)

        assert registry.has("web.rss")
        assert registry.get("web.rss") is tool
        assert registry.keys() == ["web.rss"]

    def test_missing_tool_raises(self):
        with pytest.raises(KeyError):
            ToolRegistry().get("web.rss")

    def test_definition_falls_back_to_catalog(self):
        assert ToolRegistry().definition("files.read") is TOOL_CATALOG["files.read"]

    def test_dry_run_registry_covers_catalog(self):
        assert dry_run_registry().keys() == sorted(TOOL_CATALOG)
        assert dry_run_registry(["web.rss"]).keys() == ["web.rss"]


class TestDryRunTool:
    async def test_echoes_without_side_effects(self):
        tool = DryRunTool(TOOL_CATALOG["files.delete"])
        ctx = ToolContext(bot_id="bot-1", run_id="run-1", step_index=0, goal="delete old downloads")

        result = await tool.invoke(ctx, args={"path": "/tmp/old"})

        assert result.ok is True
        assert result.output == {"tool": "files.delete", "dry_run": True, "args": {"path": "/tmp/old"}}
        assert "delete old downloads" in result.rationale

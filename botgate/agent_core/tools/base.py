"""Tool protocol and execution data models.

A tool is the concrete execution unit behind a plan step. The executor
resolves ``PlanStep.tool_key`` through a ``ToolRegistry`` and invokes the
implementation with a ``ToolContext``.

Tools should:

- return structured outputs in ``ToolResult.output``,
- never perform policy decisions themselves (the executor gates every
  invocation through the approval gate before calling ``invoke``),
- raise on unexpected failures; the executor records the failure on the step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from ..policy.models import get_spec
from ..schemas.domain import EgressLevel, PermissionKey, RiskTier


@dataclass(frozen=True)
class ToolDefinition:
    """Static description of a tool.

    Attributes
    ----------
    tool_key:
        Stable identifier referenced by plan steps (e.g. ``web.rss``).
    permission_key:
        The permission gated before every invocation.
    critical:
        A failure of a critical tool ends the run with ``error``; a failure of
        a non-critical tool is recorded and the run continues.
    cancellable:
        The invocation may be interrupted when the run is cancelled or runs
        out of wall-clock budget.
    uses_reasoning:
        The invocation counts against the reasoning-call budget.
    required_egress:
        Egress level toward an AI provider needed by the tool, if any.
    trusted_host_only:
        The tool may only run when the host environment is trusted.
    """

    tool_key: str
    permission_key: PermissionKey
    description: str = ""
    critical: bool = True
    cancellable: bool = False
    uses_reasoning: bool = False
    required_egress: Optional[EgressLevel] = None
    trusted_host_only: bool = False

    @property
    def risk_tier(self) -> RiskTier:
        return get_spec(self.permission_key).risk_tier


@dataclass(frozen=True)
class ToolContext:
    """Execution context passed to tool implementations."""

    bot_id: str
    run_id: str
    step_index: int
    goal: str = ""


@dataclass(frozen=True)
class ToolResult:
    """Structured tool execution result."""

    ok: bool
    output: Dict[str, Any] = field(default_factory=dict)
    rationale: Optional[str] = None
    error: Optional[str] = None


class Tool(Protocol):
    """Protocol for tool implementations."""

    definition: ToolDefinition

    async def invoke(self, ctx: ToolContext, *, args: Dict[str, Any]) -> ToolResult: ...

"""Runtime budget, dependency bundle and LangGraph state types.

- ``RunBudget`` holds the hard limits every run is bounded by.
- ``ExecutorDeps`` collects the collaborators the executor needs.
- ``_GraphState`` is the mutable state passed between LangGraph nodes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, NotRequired, Required, TypedDict

from ..audit import AuditLog
from ..planning.planner import StructuredPlanner
from ..planning.steps import PlanStep, PlanStore
from ..policy.gate import ApprovalGate
from ..policy.resolver import PermissionResolver
from ..repos import RunRepository, StepRepository
from ..tools.registry import ToolRegistry


@dataclass(frozen=True)
class RunBudget:
    """Hard resource limits for a single run.

    Attributes
    ----------
    max_steps:
        Steps beyond this index are never attempted.
    max_runtime_seconds:
        Wall-clock budget, checked before every step and bounding approval
        waits and cancellable tool calls.
    max_reasoning_calls:
        Cap on steps whose tool uses a reasoning model.
    max_tool_calls:
        Cap on tool invocations.
    cooldown_seconds:
        Minimum interval between the end of one run and the start of the
        next one for the same bot.
    approval_wait_seconds:
        Longest a run waits for a human approval, further capped by the
        remaining wall-clock budget.
    summary_max_chars:
        Length bound for recorded input/output summaries.
    """

    max_steps: int = 5
    max_runtime_seconds: float = 30.0
    max_reasoning_calls: int = 3
    max_tool_calls: int = 5
    cooldown_seconds: float = 60.0
    approval_wait_seconds: float = 120.0
    summary_max_chars: int = 280

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError("max_steps must be >= 1")
        if self.max_runtime_seconds <= 0:
            raise ValueError("max_runtime_seconds must be > 0")
        if self.summary_max_chars < 16:
            raise ValueError("summary_max_chars must be >= 16")


@dataclass(frozen=True)
class ExecutorDeps:
    """Dependency bundle for ``AgentExecutor``.

    Typically constructed by ``AgentService`` from a repository bundle.
    """

    runs: RunRepository
    steps: StepRepository
    resolver: PermissionResolver
    gate: ApprovalGate
    audit: AuditLog
    tools: ToolRegistry
    plans: PlanStore
    planner: StructuredPlanner


class _GraphState(TypedDict):
    """Mutable LangGraph state for a single run.

    Required keys:

    - ``run_id``: current run identifier.
    - ``steps``: the ordered plan steps.
    - ``idx``: index of the next step.
    - ``interactive``: whether a human can answer approval prompts.

    Optional keys:

    - ``_finished`` / ``_terminal_status`` / ``_reason`` / ``_summary``: used
      to terminate the graph with a run outcome.
    """

    run_id: Required[str]
    steps: Required[List[PlanStep]]
    idx: Required[int]
    interactive: Required[bool]
    _finished: NotRequired[bool]
    _terminal_status: NotRequired[str]
    _reason: NotRequired[str]
    _summary: NotRequired[str]

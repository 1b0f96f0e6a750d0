"""Convenience factory for wiring the agent core.

``build_agent_service`` assembles the resolver, approval gate, audit log,
planner, plan store and executor around a set of repositories. Applications
and tests pass their own repositories (SQL or in-memory) and, optionally, a
tool registry, planner, budget and host environment.
"""

from __future__ import annotations

from typing import Optional

from .audit import AuditLog
from .planning.planner import StructuredPlanner
from .planning.steps import PlanStore
from .policy.gate import ApprovalGate
from .policy.resolver import HostEnvironment, PermissionResolver
from .repos import AuditRepository, PermissionOverrideRepository, RunRepository, StepRepository
from .runtime import AgentExecutor, ExecutorDeps, RunBudget
from .service import AgentService
from .tools.builtin import dry_run_registry
from .tools.registry import ToolRegistry


def build_agent_service(
    *,
    overrides: PermissionOverrideRepository,
    audit: AuditRepository,
    runs: RunRepository,
    steps: StepRepository,
    tools: Optional[ToolRegistry] = None,
    planner: Optional[StructuredPlanner] = None,
    budget: Optional[RunBudget] = None,
    host: Optional[HostEnvironment] = None,
    plans: Optional[PlanStore] = None,
) -> AgentService:
    """Construct an ``AgentService`` from repositories and optional collaborators.

    Without a tool registry every catalog tool is backed by a ``DryRunTool``.
    """
    budget = budget or RunBudget()
    resolver = PermissionResolver(overrides, host=host or HostEnvironment())
    audit_log = AuditLog(audit)
    gate = ApprovalGate(resolver=resolver, overrides=overrides, audit=audit_log)
    planner = planner or StructuredPlanner(max_steps=budget.max_steps)
    plans = plans if plans is not None else PlanStore()
    executor = AgentExecutor(
        deps=ExecutorDeps(
            runs=runs,
            steps=steps,
            resolver=resolver,
            gate=gate,
            audit=audit_log,
            tools=tools if tools is not None else dry_run_registry(),
            plans=plans,
            planner=planner,
        ),
        budget=budget,
    )
    return AgentService(
        overrides=overrides,
        runs=runs,
        steps=steps,
        resolver=resolver,
        gate=gate,
        audit=audit_log,
        planner=planner,
        plans=plans,
        executor=executor,
    )

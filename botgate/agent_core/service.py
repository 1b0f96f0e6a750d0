"""High-level service facade over the agent core.

``AgentService`` is what transports (the HTTP server, schedulers, tests) talk
to. It exposes the logical operations of the core:

- effective permissions, override writes and deletes;
- synchronous gate checks for UI actions, approvals and denials;
- audit queries;
- planning and running agents, and inspecting runs and steps.

``AgentService`` is intentionally thin: policy semantics live in the resolver
and the gate, execution semantics in ``AgentExecutor``.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .audit import AuditLog
from .planning.planner import StructuredPlanner
from .planning.steps import AgentPlan, PlanStore
from .policy.gate import ApprovalGate, ApprovalRequest, ApprovalScope, Decision
from .policy.models import EffectivePermission, PermissionOverride, PermissionValue
from .policy.resolver import PermissionResolver
from .repos import PermissionOverrideRepository, RunRepository, StepRepository
from .runtime.engine import AgentExecutor
from .schemas.domain import (
    ActorKind,
    AgentRun,
    AgentStep,
    AuditEntry,
    AuditEventType,
    PermissionKey,
    PermissionScope,
    RunTrigger,
)

logger = logging.getLogger(__name__)


class AgentService:
    """Facade over policy, approvals, audit, planning and execution."""

    def __init__(
        self,
        *,
        overrides: PermissionOverrideRepository,
        runs: RunRepository,
        steps: StepRepository,
        resolver: PermissionResolver,
        gate: ApprovalGate,
        audit: AuditLog,
        planner: StructuredPlanner,
        plans: PlanStore,
        executor: AgentExecutor,
    ) -> None:
        self._overrides = overrides
        self._runs = runs
        self._steps = steps
        self._resolver = resolver
        self._gate = gate
        self._audit = audit
        self._planner = planner
        self._plans = plans
        self._executor = executor

    @property
    def executor(self) -> AgentExecutor:
        return self._executor

    @property
    def gate(self) -> ApprovalGate:
        return self._gate

    # Policy

    async def effective_permissions(self, bot_id: Optional[str]) -> Dict[PermissionKey, EffectivePermission]:
        return await self._resolver.resolve_all(bot_id)

    async def put_permission(
        self,
        *,
        scope: PermissionScope,
        scope_id: Optional[str],
        permission_key: PermissionKey,
        value: PermissionValue,
        actor: ActorKind = ActorKind.user,
    ) -> PermissionOverride:
        """
        Upsert an override.

        Raises:
            ValueError: If ``scope=bot`` without ``scope_id``, ``scope=global``
                with one, or a resource scope of the wrong kind.
        """
        override = PermissionOverride(
            scope=scope,
            scope_id=scope_id,
            permission_key=permission_key,
            value=value,
        )
        stored = await self._overrides.upsert(override)
        await self._audit.record(
            AuditEventType.permission_updated,
            bot_id=scope_id if scope == PermissionScope.bot else None,
            permission_key=stored.permission_key,
            actor=actor,
            details={"scope": stored.scope_key, "value": stored.value.model_dump(mode="json")},
        )
        return stored

    async def delete_permission(
        self,
        *,
        scope: PermissionScope,
        scope_id: Optional[str],
        permission_key: PermissionKey,
        actor: ActorKind = ActorKind.user,
    ) -> bool:
        scope = PermissionScope(scope)
        if scope == PermissionScope.bot and not scope_id:
            raise ValueError("bot scope requires a scope_id")
        if scope == PermissionScope.global_:
            scope_id = None
        deleted = await self._overrides.delete(scope, scope_id, permission_key)
        if deleted:
            await self._audit.record(
                AuditEventType.permission_deleted,
                bot_id=scope_id,
                permission_key=permission_key,
                actor=actor,
                details={"scope": scope.value},
            )
        return deleted

    # Approvals

    async def check_permission(
        self,
        *,
        bot_id: Optional[str],
        permission_key: PermissionKey,
        action: str,
        payload_summary: str = "",
        actor: ActorKind = ActorKind.user,
    ) -> Decision:
        return await self._gate.check(bot_id, permission_key, action, payload_summary, actor=actor)

    async def approve_once(
        self, *, permission_key: PermissionKey, action: str, bot_id: Optional[str]
    ) -> Optional[ApprovalRequest]:
        return await self._gate.approve_matching(permission_key, action, bot_id, ApprovalScope.once)

    async def approve_request(self, request_id: str, scope: ApprovalScope) -> ApprovalRequest:
        return await self._gate.approve(request_id, scope)

    async def deny_request(self, request_id: str) -> ApprovalRequest:
        return await self._gate.deny(request_id)

    def list_pending(self, bot_id: Optional[str] = None) -> List[ApprovalRequest]:
        return self._gate.list_pending(bot_id)

    # Audit

    async def audit_logs(
        self,
        *,
        bot_id: Optional[str] = None,
        since_days: Optional[float] = 7,
        permission_key: Optional[PermissionKey] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        return await self._audit.query(
            bot_id=bot_id,
            since_days=since_days,
            permission_key=permission_key,
            limit=limit,
        )

    # Agent

    async def plan(self, *, bot_id: str, goal: str) -> AgentPlan:
        """Produce and store a plan. Nothing is executed and no gate is consulted."""
        plan = await self._planner.plan(bot_id=bot_id, goal=goal)
        self._plans.put(plan)
        await self._audit.record(
            AuditEventType.plan_created,
            bot_id=bot_id,
            actor=ActorKind.agent,
            details={
                "plan_id": plan.id,
                "plan_hash": plan.plan_hash,
                "steps": [s.tool_key for s in plan.steps],
                "risk_summary": plan.risk_summary.model_dump(),
            },
        )
        logger.debug("plan %s created for bot=%s with %d steps", plan.id, bot_id, len(plan.steps))
        return plan

    async def run(
        self,
        *,
        bot_id: str,
        goal: str = "",
        plan_id: Optional[str] = None,
        plan_hash: Optional[str] = None,
        trigger: RunTrigger = RunTrigger.manual,
    ) -> AgentRun:
        return await self._executor.run(
            bot_id=bot_id,
            goal=goal,
            plan_id=plan_id,
            plan_hash=plan_hash,
            trigger=trigger,
        )

    async def list_runs(self, *, bot_id: Optional[str] = None, limit: int = 50) -> List[AgentRun]:
        return await self._runs.list(bot_id=bot_id, limit=limit)

    async def get_run(self, run_id: str) -> Optional[AgentRun]:
        return await self._runs.get(run_id)

    async def list_steps(self, run_id: str) -> List[AgentStep]:
        return await self._steps.list(run_id)

    def cancel_run(self, run_id: str) -> bool:
        return self._executor.cancel_run(run_id)

"""LangGraph runtime executor.

``AgentExecutor`` drives one ``AgentRun`` through its plan, one step per graph
iteration, and always ends the run in a well-defined terminal status.

Entry
-----

Admission happens under a per-bot lock before any run row exists. A request is
rejected (raised to the caller) when the bot is in manual mode (L0), agent runs
are disabled, a run is already in progress, the cooldown since the previous
run has not elapsed, the plan is unknown or was changed, or the bot is at L1
and the goal is not a single low-risk step without an approved plan.

Per step
--------

1. Budget: cancellation, wall clock, step, tool call and reasoning call limits
   are checked before the step starts. A violation writes one marker step for
   everything not attempted and ends the run.
2. A tool restricted to a trusted host is not attempted on any other host;
   a denied marker is written and the run ends as ``denied``.
3. A step row is created in ``running``, carrying the tool's risk tier.
4. The approval gate is consulted and its decision is kept on the step.
   ``Denied`` ends the run as ``denied``. ``RequiresApproval`` suspends the
   run on the request for at most ``min(approval_wait_seconds, remaining
   wall clock)`` when a human can answer; non-interactive runs end as
   ``blocked``.
5. Tools that declare a required egress level are checked against the egress
   policy.
6. The tool is invoked. Failures are caught at the step boundary; a critical
   step failure ends the run as ``error``, a non-critical one continues.

Cancellation
------------

``cancel_run`` is honoured at the next budget check, immediately when the run
is suspended on an approval, and mid-call only for cancellable tools.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from langgraph.graph import END, StateGraph

from ..errors import (
    ApprovalTimeout,
    CooldownActive,
    PlanApprovalRequired,
    PlanMismatch,
    PlanNotFound,
    PolicyDenied,
    RunInProgress,
    StoreUnavailable,
)
from ..planning.steps import AgentPlan, PlanStep
from ..policy.gate import Allowed, Denied, RequiresApproval, Resolution
from ..policy.models import EffectivePermission, PolicySnapshot
from ..policy.resolver import egress_level_of
from ..schemas.domain import (
    ActorKind,
    AgentRun,
    AgentRunStatus,
    AgentStep,
    AgentStepStatus,
    ApprovalMode,
    AuditEventType,
    AutonomyLevel,
    EgressLevel,
    PermissionKey,
    RiskTier,
    RunTrigger,
    TerminationReason,
)
from ..tools.base import ToolContext, ToolDefinition, ToolResult
from .models import ExecutorDeps, RunBudget, _GraphState
from .recorder import RunRecorder

logger = logging.getLogger(__name__)

_STEP_STATUS_FOR_RUN = {
    AgentRunStatus.timeout: AgentStepStatus.timeout,
    AgentRunStatus.denied: AgentStepStatus.denied,
    AgentRunStatus.error: AgentStepStatus.error,
}


@dataclass
class _ActiveRun:
    run: AgentRun
    started: float
    cancelled: bool = False
    waiting_request_id: Optional[str] = None
    tool_task: Optional["asyncio.Task[ToolResult]"] = None


def _is_blocking(perm: EffectivePermission) -> bool:
    return not perm.enabled or perm.approval_mode == ApprovalMode.AUTO_DENIED


class AgentExecutor:
    """Execute agent runs with gate enforcement, hard budgets and recording."""

    def __init__(
        self,
        *,
        deps: ExecutorDeps,
        budget: Optional[RunBudget] = None,
        recorder: Optional[RunRecorder] = None,
    ) -> None:
        self._deps = deps
        self._budget = budget or RunBudget()
        self._recorder = recorder or RunRecorder(
            runs=deps.runs,
            steps=deps.steps,
            summary_max_chars=self._budget.summary_max_chars,
        )
        self._bot_locks: Dict[str, asyncio.Lock] = {}
        self._active: Dict[str, _ActiveRun] = {}
        self._graph = self._build_graph()

    @property
    def budget(self) -> RunBudget:
        return self._budget

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("start", self._node_start)
        g.add_node("execute", self._node_execute_next)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("start")
        g.add_edge("start", "execute")
        g.add_conditional_edges(
            "execute",
            self._route_after_execute,
            {
                "finish": "finish",
                "continue": "execute",
            },
        )
        g.add_edge("finish", END)
        return g.compile()

    async def run(
        self,
        *,
        bot_id: str,
        goal: str = "",
        plan_id: Optional[str] = None,
        plan_hash: Optional[str] = None,
        trigger: RunTrigger = RunTrigger.manual,
        interactive: Optional[bool] = None,
    ) -> AgentRun:
        """Admit and execute a run to completion.

        Args:
            bot_id: The bot to run.
            goal: The goal. Ignored when ``plan_id`` is given.
            plan_id: An approved plan to execute.
            plan_hash: Optional hash the caller approved; must match the plan.
            trigger: What started the run.
            interactive: Whether a human can answer approval prompts. Defaults
                to true for manual and chat triggers.

        Returns:
            The finished run.

        Raises:
            PolicyDenied: Manual mode, agent runs disabled, run in progress,
                cooldown active, or plan approval required.
            PlanNotFound: The plan is unknown, expired, or for another bot.
            PlanMismatch: ``plan_hash`` does not match the stored plan.
        """
        if interactive is None:
            interactive = trigger != RunTrigger.scheduled

        lock = self._bot_locks.setdefault(bot_id, asyncio.Lock())
        async with lock:
            try:
                autonomy, goal, steps, policy = await self._admit(bot_id, goal, plan_id, plan_hash)
            except PolicyDenied as exc:
                try:
                    await self._deps.audit.record(
                        AuditEventType.agent_run_rejected,
                        bot_id=bot_id,
                        permission_key=exc.permission_key,
                        details={"reason": exc.reason, "plan_id": plan_id, "trigger": trigger.value},
                    )
                except StoreUnavailable:
                    logger.exception("could not audit rejected run for bot=%s", bot_id)
                raise
            run = await self._recorder.start_run(
                bot_id=bot_id,
                goal=goal,
                trigger=trigger,
                autonomy_level=autonomy,
                plan_id=plan_id,
                policy_snapshot=policy,
            )
            control = _ActiveRun(run=run, started=time.monotonic())
            self._active[run.id] = control

        try:
            await self._deps.audit.record(
                AuditEventType.agent_run_start,
                bot_id=bot_id,
                permission_key=PermissionKey.AGENT_RUN,
                details={"run_id": run.id, "plan_id": plan_id, "steps": len(steps), "autonomy": autonomy.value},
            )
            state: _GraphState = {
                "run_id": run.id,
                "steps": steps,
                "idx": 0,
                "interactive": interactive,
            }
            await self._graph.ainvoke(state, config={"recursion_limit": 2 * self._budget.max_steps + 10})
        except Exception:
            logger.exception("run %s aborted by an unexpected error", run.id)
            if run.finished_at is None:
                await self._recorder.finish_run(
                    run,
                    AgentRunStatus.error,
                    reason=TerminationReason.internal_error,
                    summary="run aborted by an internal error",
                )
            raise
        finally:
            self._active.pop(run.id, None)
        return run

    async def _admit(
        self,
        bot_id: str,
        goal: str,
        plan_id: Optional[str],
        plan_hash: Optional[str],
    ) -> Tuple[AutonomyLevel, str, List[PlanStep], Dict[str, Any]]:
        resolver = self._deps.resolver
        try:
            snapshot = await resolver.snapshot(bot_id)
        except StoreUnavailable as exc:
            logger.error("policy store unavailable, rejecting run for bot=%s: %s", bot_id, exc)
            raise PolicyDenied("policy store unavailable", permission_key=PermissionKey.AGENT_RUN) from exc

        autonomy = resolver.autonomy_from(snapshot)
        if autonomy == AutonomyLevel.L0:
            raise PolicyDenied("manual mode", permission_key=PermissionKey.AUTONOMY_LEVEL)

        agent_run = resolver.resolve_from(snapshot, PermissionKey.AGENT_RUN)
        if _is_blocking(agent_run):
            raise PolicyDenied("agent runs are disabled for this bot", permission_key=PermissionKey.AGENT_RUN)

        policy = self._policy_snapshot(snapshot, autonomy)
        await self._check_previous_run(bot_id)

        plan: Optional[AgentPlan] = None
        if plan_id is not None:
            plan = self._deps.plans.get(plan_id)
            if plan is None or plan.bot_id != bot_id:
                raise PlanNotFound(f"plan {plan_id} not found")
            if plan_hash is not None and plan_hash != plan.plan_hash:
                raise PlanMismatch(f"plan {plan_id} does not match the approved hash")
            self._deps.plans.discard(plan_id)
            return autonomy, plan.goal, list(plan.steps), policy

        goal = goal.strip()
        if not goal:
            raise ValueError("goal must not be empty")
        proposal = await self._deps.planner.plan(bot_id=bot_id, goal=goal)
        needs_plan = autonomy == AutonomyLevel.L1 or agent_run.approval_mode == ApprovalMode.APPROVAL_REQUIRED
        trivial = len(proposal.steps) == 1 and proposal.steps[0].risk_tier == RiskTier.low
        if needs_plan and not trivial:
            raise PlanApprovalRequired(
                "this goal needs an approved plan before it can run",
                permission_key=PermissionKey.AGENT_RUN,
            )
        return autonomy, goal, list(proposal.steps), policy

    def _policy_snapshot(self, snapshot: PolicySnapshot, autonomy: AutonomyLevel) -> Dict[str, Any]:
        """Summary of the policy a run was admitted under, stored with the run."""
        resolver = self._deps.resolver
        effective = resolver.resolve_all_from(snapshot)
        budget = self._budget
        return {
            "autonomy_level": autonomy.value,
            "trusted_host": resolver.host.trusted,
            "egress_level": egress_level_of(effective[PermissionKey.LLM_EGRESS_LEVEL]).value,
            "agent_run_allowed": not _is_blocking(effective[PermissionKey.AGENT_RUN]),
            "tool_use_allowed": not _is_blocking(effective[PermissionKey.TOOL_USE]),
            "denied_permissions": sorted(k.value for k, p in effective.items() if _is_blocking(p)),
            "approval_required": sorted(
                k.value
                for k, p in effective.items()
                if not _is_blocking(p) and p.approval_mode == ApprovalMode.APPROVAL_REQUIRED
            ),
            "budget": {
                "max_steps": budget.max_steps,
                "max_runtime_seconds": budget.max_runtime_seconds,
                "max_tool_calls": budget.max_tool_calls,
                "max_reasoning_calls": budget.max_reasoning_calls,
            },
        }

    async def _check_previous_run(self, bot_id: str) -> None:
        latest = await self._deps.runs.latest_for_bot(bot_id)
        if latest is None:
            return
        if latest.status == AgentRunStatus.running:
            if latest.id in self._active:
                raise RunInProgress(
                    f"run {latest.id} is still in progress",
                    permission_key=PermissionKey.AGENT_RUN,
                )
            logger.warning("run %s was left running by a previous process, closing it", latest.id)
            await self._recorder.finish_run(
                latest,
                AgentRunStatus.error,
                reason=TerminationReason.internal_error,
                summary="run abandoned before completion",
            )

        finished = latest.finished_at or latest.started_at
        ready_at = finished + timedelta(seconds=self._budget.cooldown_seconds)
        remaining = (ready_at - datetime.now(timezone.utc)).total_seconds()
        if remaining > 0:
            raise CooldownActive(remaining)

    def cancel_run(self, run_id: str) -> bool:
        """
        Request cancellation of an active run.

        Returns:
            False if the run is not active in this executor.
        """
        control = self._active.get(run_id)
        if control is None:
            return False
        control.cancelled = True
        if control.waiting_request_id is not None:
            self._deps.gate.cancel(control.waiting_request_id)
        if control.tool_task is not None and not control.tool_task.done():
            control.tool_task.cancel()
        logger.info("cancellation requested for run %s", run_id)
        return True

    def is_active(self, run_id: str) -> bool:
        return run_id in self._active

    def _elapsed(self, control: _ActiveRun) -> float:
        return time.monotonic() - control.started

    def _remaining(self, control: _ActiveRun) -> float:
        return max(self._budget.max_runtime_seconds - self._elapsed(control), 0.0)

    def _budget_violation(
        self, control: _ActiveRun, step: PlanStep, idx: int
    ) -> Optional[Tuple[AgentRunStatus, TerminationReason]]:
        run = control.run
        if control.cancelled:
            return AgentRunStatus.blocked, TerminationReason.cancelled
        if self._elapsed(control) >= self._budget.max_runtime_seconds:
            return AgentRunStatus.timeout, TerminationReason.timeout
        if idx >= self._budget.max_steps:
            return AgentRunStatus.blocked, TerminationReason.step_limit
        if run.tool_call_count >= self._budget.max_tool_calls:
            return AgentRunStatus.blocked, TerminationReason.tool_limit
        tool = self._definition(step)
        if tool is not None and tool.uses_reasoning and run.reasoning_call_count >= self._budget.max_reasoning_calls:
            return AgentRunStatus.blocked, TerminationReason.reasoning_limit
        return None

    def _definition(self, step: PlanStep) -> Optional[ToolDefinition]:
        if not self._deps.tools.has(step.tool_key):
            return None
        return self._deps.tools.get(step.tool_key).definition

    @staticmethod
    def _terminate(
        state: _GraphState, status: AgentRunStatus, reason: TerminationReason, summary: str
    ) -> _GraphState:
        state["_finished"] = True
        state["_terminal_status"] = status.value
        state["_reason"] = reason.value
        state["_summary"] = summary
        return state

    async def _end_with_step(
        self,
        state: _GraphState,
        step: AgentStep,
        step_status: AgentStepStatus,
        run_status: AgentRunStatus,
        reason: TerminationReason,
        summary: str,
        *,
        blocked_by_policy: bool = False,
    ) -> _GraphState:
        await self._recorder.finish_step(
            step,
            step_status,
            output_summary=summary,
            decision_reason=summary if blocked_by_policy else None,
            blocked_by_policy=blocked_by_policy,
        )
        return self._terminate(state, run_status, reason, summary)

    async def _node_start(self, state: _GraphState) -> _GraphState:
        """Graph entry node. Currently a no-op."""
        return state

    async def _node_execute_next(self, state: _GraphState) -> _GraphState:
        """Execute the next plan step, or terminate the run."""
        control = self._active[state["run_id"]]
        run = control.run
        steps = state["steps"]
        idx = state["idx"]

        if idx >= len(steps):
            if not control.cancelled and self._elapsed(control) > self._budget.max_runtime_seconds:
                return self._terminate(
                    state, AgentRunStatus.timeout, TerminationReason.timeout, "wall-clock budget exceeded"
                )
            done = ", ".join(s.tool_key for s in steps)
            return self._terminate(
                state,
                AgentRunStatus.success,
                TerminationReason.completed,
                f"completed {run.step_count} step(s): {done}",
            )

        plan_step = steps[idx]
        violation = self._budget_violation(control, plan_step, idx)
        if violation is not None:
            run_status, reason = violation
            await self._recorder.mark_not_attempted(
                run,
                step_index=idx,
                tool_key=plan_step.tool_key,
                permission_key=plan_step.permission_key,
                remaining=len(steps) - idx,
                status=_STEP_STATUS_FOR_RUN.get(run_status, AgentStepStatus.blocked),
                reason=reason,
            )
            return self._terminate(state, run_status, reason, f"stopped before step {idx}: {reason.value}")

        tool_def = self._definition(plan_step)
        if tool_def is not None and tool_def.trusted_host_only and not self._deps.resolver.host.trusted:
            detail = f"{plan_step.tool_key} requires a trusted host"
            await self._recorder.mark_not_attempted(
                run,
                step_index=idx,
                tool_key=plan_step.tool_key,
                permission_key=plan_step.permission_key,
                remaining=len(steps) - idx,
                status=AgentStepStatus.denied,
                reason=TerminationReason.policy_denied,
                decision_reason=detail,
                blocked_by_policy=True,
            )
            return self._terminate(state, AgentRunStatus.denied, TerminationReason.policy_denied, detail)

        step = await self._recorder.start_step(
            run,
            step_index=idx,
            tool_key=plan_step.tool_key,
            permission_key=plan_step.permission_key,
            risk_tier=plan_step.risk_tier,
            input_summary=plan_step.args or plan_step.description,
        )
        run.step_count += 1
        await self._recorder.update_counters(run)

        if tool_def is None:
            return await self._tool_failed(state, step, plan_step, f"tool {plan_step.tool_key} is not available")

        blocked = await self._pass_gate(state, control, step, plan_step)
        if blocked is not None:
            return blocked

        if tool_def.required_egress is not None:
            blocked = await self._check_egress(state, control, step, tool_def.tool_key, tool_def.required_egress)
            if blocked is not None:
                return blocked

        return await self._invoke(state, control, step, plan_step, tool_def)

    async def _pass_gate(
        self, state: _GraphState, control: _ActiveRun, step: AgentStep, plan_step: PlanStep
    ) -> Optional[_GraphState]:
        """Run the approval gate for one step. Returns a terminated state if the step may not run."""
        run = control.run
        gate = self._deps.gate
        key = plan_step.permission_key
        decision = await gate.check(
            run.bot_id,
            key,
            plan_step.tool_key,
            self._recorder.summarize(plan_step.args) or "",
            actor=ActorKind.agent,
            will_wait=state["interactive"],
        )
        if isinstance(decision, Allowed):
            if decision.via_grant:
                step.decision_reason = f"{key.value} allowed by a single-use approval"
            else:
                step.decision_reason = f"{key.value} auto-allowed by {decision.permission.source.value} policy"
            return None
        if isinstance(decision, Denied):
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.denied,
                AgentRunStatus.denied,
                TerminationReason.policy_denied,
                f"{decision.message.title}: {decision.reason}",
                blocked_by_policy=True,
            )
        if not isinstance(decision, RequiresApproval):
            raise TypeError(f"unexpected gate decision {decision!r}")

        request = decision.request
        if not state["interactive"]:
            gate.cancel(request.id)
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.blocked,
                AgentRunStatus.blocked,
                TerminationReason.approval_required,
                f"{decision.message.title}: approval required but nobody can answer",
                blocked_by_policy=True,
            )

        remaining = self._remaining(control)
        wait = min(self._budget.approval_wait_seconds, remaining)
        control.waiting_request_id = request.id
        try:
            resolution = await gate.wait_for_resolution(request.id, wait)
        except ApprovalTimeout:
            reason = TerminationReason.approval_timeout
            if wait < self._budget.approval_wait_seconds:
                reason = TerminationReason.timeout
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.timeout,
                AgentRunStatus.timeout,
                reason,
                f"no approval for {key.value} within {wait:.1f}s",
                blocked_by_policy=True,
            )
        finally:
            control.waiting_request_id = None

        if resolution == Resolution.deny:
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.denied,
                AgentRunStatus.denied,
                TerminationReason.policy_denied,
                f"{decision.message.title}: denied by user",
                blocked_by_policy=True,
            )
        if resolution == Resolution.cancelled:
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.blocked,
                AgentRunStatus.blocked,
                TerminationReason.cancelled,
                "run cancelled while waiting for approval",
            )

        # Policy may have changed while the run was suspended.
        try:
            perm = await self._deps.resolver.resolve(run.bot_id, key)
        except StoreUnavailable as exc:
            logger.error("policy store unavailable after approval of %s: %s", key.value, exc)
            perm = None
        if perm is None or _is_blocking(perm):
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.denied,
                AgentRunStatus.denied,
                TerminationReason.policy_denied,
                f"{key.value} was revoked before the approved step could run",
                blocked_by_policy=True,
            )
        step.decision_reason = f"{key.value} approved by user ({resolution.value})"
        return None

    async def _check_egress(
        self, state: _GraphState, control: _ActiveRun, step: AgentStep, tool_key: str, required: EgressLevel
    ) -> Optional[_GraphState]:
        run = control.run
        try:
            egress = await self._deps.resolver.check_egress(run.bot_id, required)
            allowed, reason = egress.allowed, egress.reason
        except StoreUnavailable as exc:
            logger.error("policy store unavailable during egress check: %s", exc)
            allowed, reason = False, "policy store unavailable"
        if allowed:
            return None
        await self._deps.audit.record(
            AuditEventType.auto_denied,
            bot_id=run.bot_id,
            permission_key=PermissionKey.LLM_EGRESS_LEVEL,
            actor=ActorKind.agent,
            details={"action": tool_key, "reason": reason, "required": required.value},
        )
        return await self._end_with_step(
            state,
            step,
            AgentStepStatus.denied,
            AgentRunStatus.denied,
            TerminationReason.policy_denied,
            reason,
            blocked_by_policy=True,
        )

    async def _invoke(
        self,
        state: _GraphState,
        control: _ActiveRun,
        step: AgentStep,
        plan_step: PlanStep,
        tool_def: ToolDefinition,
    ) -> _GraphState:
        run = control.run
        impl = self._deps.tools.get(plan_step.tool_key)
        run.tool_call_count += 1
        if tool_def.uses_reasoning:
            run.reasoning_call_count += 1
        await self._recorder.update_counters(run)

        ctx = ToolContext(bot_id=run.bot_id, run_id=run.id, step_index=state["idx"], goal=run.goal)
        try:
            if tool_def.cancellable:
                control.tool_task = asyncio.ensure_future(impl.invoke(ctx, args=dict(plan_step.args)))
                result = await asyncio.wait_for(control.tool_task, timeout=self._remaining(control))
            else:
                result = await impl.invoke(ctx, args=dict(plan_step.args))
        except asyncio.TimeoutError:
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.timeout,
                AgentRunStatus.timeout,
                TerminationReason.timeout,
                f"{plan_step.tool_key} interrupted by the wall-clock budget",
            )
        except asyncio.CancelledError:
            if not control.cancelled:
                raise
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.blocked,
                AgentRunStatus.blocked,
                TerminationReason.cancelled,
                f"{plan_step.tool_key} interrupted by cancellation",
            )
        except Exception as exc:
            logger.warning("tool %s raised in run %s: %s", plan_step.tool_key, run.id, exc)
            return await self._tool_failed(state, step, plan_step, f"{type(exc).__name__}: {exc}")
        finally:
            control.tool_task = None

        if not result.ok:
            return await self._tool_failed(
                state, step, plan_step, result.error or str(result.output.get("error") or "tool reported failure")
            )

        await self._recorder.finish_step(
            step,
            AgentStepStatus.success,
            output_summary=result.output,
            rationale=result.rationale,
        )
        state["idx"] = state["idx"] + 1
        return state

    async def _tool_failed(self, state: _GraphState, step: AgentStep, plan_step: PlanStep, detail: str) -> _GraphState:
        if plan_step.critical:
            return await self._end_with_step(
                state,
                step,
                AgentStepStatus.error,
                AgentRunStatus.error,
                TerminationReason.tool_error,
                f"{plan_step.tool_key} failed: {detail}",
            )
        await self._recorder.finish_step(step, AgentStepStatus.error, output_summary=detail)
        logger.info("non-critical step %s failed, continuing", plan_step.tool_key)
        state["idx"] = state["idx"] + 1
        return state

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        """Finish node.

        Sets the terminal run status and writes the completion audit entry.
        """
        control = self._active[state["run_id"]]
        run = control.run
        status = AgentRunStatus(state.get("_terminal_status") or AgentRunStatus.success.value)
        reason = TerminationReason(state.get("_reason") or TerminationReason.completed.value)
        await self._recorder.finish_run(run, status, reason=reason, summary=state.get("_summary"))
        await self._deps.audit.record(
            AuditEventType.agent_run_complete,
            bot_id=run.bot_id,
            permission_key=PermissionKey.AGENT_RUN,
            details={
                "run_id": run.id,
                "status": status.value,
                "reason": reason.value,
                "step_count": run.step_count,
                "duration_ms": run.duration_ms,
            },
        )
        return state

    def _route_after_execute(self, state: _GraphState) -> str:
        if state.get("_finished"):
            return "finish"
        return "continue"

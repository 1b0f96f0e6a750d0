"""
Unit tests for ``AgentExecutor``.

Tests cover:
- Admission: manual mode, disabled runs, cooldown, runs in progress, plans
- Hard budgets: steps, tool calls, reasoning calls, wall clock
- Gate integration: denials, egress, interactive and scheduled approvals
- Host-bound tools, per-step decision reasons and the stored policy summary
- Cancellation while suspended and during a cancellable tool call
- Critical and non-critical tool failures

Runs go through ``build_agent_service`` over the in-memory fake repositories.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

from botgate.agent_core.errors import (
    CooldownActive,
    PlanApprovalRequired,
    PlanMismatch,
    PlanNotFound,
    PolicyDenied,
    RunInProgress,
)
from botgate.agent_core.factory import build_agent_service
from botgate.agent_core.planning.steps import PlanStep, PlanStore, build_plan
from botgate.agent_core.policy.gate import ApprovalScope
from botgate.agent_core.policy.models import AutonomyScope, EgressScope
from botgate.agent_core.policy.resolver import HostEnvironment
from botgate.agent_core.runtime import RunBudget
from botgate.agent_core.schemas.domain import (
    AgentRun,
    AgentRunStatus,
    AgentStepStatus,
    ApprovalMode,
    AutonomyLevel,
    EgressLevel,
    PermissionKey,
    RunTrigger,
    TerminationReason,
)
from botgate.agent_core.tools import TOOL_CATALOG, ToolDefinition, ToolRegistry, ToolResult, dry_run_registry


@dataclass
class RecordingTool:
    definition: ToolDefinition
    delay: float = 0.0
    raises: bool = False
    ok: bool = True
    calls: List[Dict[str, Any]] = field(default_factory=list)

    async def invoke(self, ctx, *, args):
        self.calls.append(dict(args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises:
            raise RuntimeError("boom")
        if not self.ok:
            return ToolResult(ok=False, error="upstream returned 500")
        return ToolResult(ok=True, output={"tool": self.definition.tool_key, "step": ctx.step_index})


def _registry(*tools):
    registry = dry_run_registry()
    for tool in tools:
        registry.register(tool)
    return registry


@pytest.fixture
def plans():
    return PlanStore()


@pytest.fixture
def make_service(fake_repos, plans):
    def _make(*, tools=None, budget=None, host=None):
        return build_agent_service(
            overrides=fake_repos.overrides,
            audit=fake_repos.audit,
            runs=fake_repos.runs,
            steps=fake_repos.steps,
            tools=tools,
            budget=budget or RunBudget(cooldown_seconds=0),
            host=host,
            plans=plans,
        )

    return _make


@pytest.fixture
async def l2_bot(put_override):
    await put_override(
        PermissionKey.AUTONOMY_LEVEL,
        "bot-1",
        enabled=True,
        approval_mode=ApprovalMode.AUTO_ALLOWED,
        resource_scope=AutonomyScope(level=AutonomyLevel.L2),
    )
    return "bot-1"


def _stored_plan(plans, *tool_keys, bot_id="bot-1"):
    steps = [PlanStep.from_tool(TOOL_CATALOG[k]) for k in tool_keys]
    return plans.put(build_plan(bot_id, "stored plan", steps))


async def _pending(service, bot_id="bot-1"):
    for _ in range(300):
        pending = service.list_pending(bot_id)
        if pending:
            return pending[0]
        await asyncio.sleep(0.01)
    raise AssertionError("no approval request was registered")


async def _running_run_id(fake_repos):
    for _ in range(300):
        running = [r for r in fake_repos.runs.by_id.values() if r.status == AgentRunStatus.running]
        if running:
            return running[0].id
        await asyncio.sleep(0.01)
    raise AssertionError("no run started")


class TestAdmission:
    async def test_manual_mode_rejected_without_run(self, make_service, put_override, fake_repos):
        await put_override(PermissionKey.AUTONOMY_LEVEL, "bot-1", enabled=False, approval_mode=ApprovalMode.AUTO_ALLOWED)
        service = make_service()

        with pytest.raises(PolicyDenied) as exc_info:
            await service.run(bot_id="bot-1", goal="collect rss feeds")

        assert exc_info.value.reason == "manual mode"
        assert fake_repos.runs.by_id == {}
        assert fake_repos.audit.types() == ["agent_run_rejected"]

    async def test_agent_runs_disabled(self, make_service, put_override, l2_bot, fake_repos):
        await put_override(PermissionKey.AGENT_RUN, "bot-1", enabled=False, approval_mode=ApprovalMode.AUTO_ALLOWED)

        with pytest.raises(PolicyDenied):
            await make_service().run(bot_id="bot-1", goal="collect rss feeds")
        assert fake_repos.runs.by_id == {}

    async def test_store_unavailable_rejects(self, make_service, fake_repos):
        fake_repos.overrides.fail = True

        with pytest.raises(PolicyDenied):
            await make_service().run(bot_id="bot-1", goal="collect rss feeds")
        assert fake_repos.runs.by_id == {}

    async def test_rejection_survives_audit_failure(self, make_service, fake_repos):
        fake_repos.overrides.fail = True
        fake_repos.audit.fail = True

        with pytest.raises(PolicyDenied) as exc_info:
            await make_service().run(bot_id="bot-1", goal="collect rss feeds")

        assert exc_info.value.reason == "policy store unavailable"
        assert fake_repos.runs.by_id == {}
        assert fake_repos.audit.entries == []

    async def test_l1_multi_step_goal_needs_plan(self, make_service, fake_repos):
        with pytest.raises(PlanApprovalRequired):
            await make_service().run(bot_id="bot-1", goal="summarize today's RSS items")
        assert fake_repos.runs.by_id == {}

    async def test_l1_single_low_risk_step_runs(self, make_service):
        run = await make_service().run(bot_id="bot-1", goal="collect rss feeds")

        assert run.status == AgentRunStatus.success
        assert run.autonomy_level == AutonomyLevel.L1

    async def test_empty_goal_rejected(self, make_service, l2_bot):
        with pytest.raises(ValueError):
            await make_service().run(bot_id="bot-1", goal="")

    async def test_cooldown_between_runs(self, make_service, l2_bot):
        service = make_service(budget=RunBudget(cooldown_seconds=60))
        await service.run(bot_id="bot-1", goal="collect rss feeds")

        with pytest.raises(CooldownActive) as exc_info:
            await service.run(bot_id="bot-1", goal="collect rss feeds")

        assert 0 < exc_info.value.retry_after_seconds <= 60
        other_bot = await service.run(bot_id="bot-2", goal="collect rss feeds")
        assert other_bot.status == AgentRunStatus.success

    async def test_stale_running_run_is_closed(self, make_service, l2_bot, fake_repos):
        stale = AgentRun(
            bot_id="bot-1",
            goal="old",
            autonomy_level=AutonomyLevel.L2,
            started_at=datetime.now(timezone.utc) - timedelta(hours=2),
        )
        await fake_repos.runs.create(stale)

        run = await make_service().run(bot_id="bot-1", goal="collect rss feeds")

        closed = await fake_repos.runs.get(stale.id)
        assert closed.status == AgentRunStatus.error
        assert closed.termination_reason == TerminationReason.internal_error
        assert run.status == AgentRunStatus.success

    async def test_run_in_progress_rejected(self, make_service, l2_bot):
        service = make_service()
        first = asyncio.create_task(service.run(bot_id="bot-1", goal="add source"))
        request = await _pending(service)

        with pytest.raises(RunInProgress):
            await service.run(bot_id="bot-1", goal="collect rss feeds")

        await service.deny_request(request.id)
        assert (await first).status == AgentRunStatus.denied


class TestPlans:
    async def test_planned_run_at_l1(self, make_service, fake_repos):
        service = make_service()
        plan = await service.plan(bot_id="bot-1", goal="summarize today's RSS items")

        run = await service.run(bot_id="bot-1", plan_id=plan.id, plan_hash=plan.plan_hash)

        steps = await service.list_steps(run.id)
        assert run.status == AgentRunStatus.success
        assert run.termination_reason == TerminationReason.completed
        assert run.step_count == 2
        assert run.plan_id == plan.id
        assert run.summary == "completed 2 step(s): web.rss, llm.analyze"
        assert [s.status for s in steps] == [AgentStepStatus.success, AgentStepStatus.success]
        assert fake_repos.audit.types() == [
            "plan_created",
            "agent_run_start",
            "auto_allowed",
            "auto_allowed",
            "agent_run_complete",
        ]

    async def test_plan_is_single_use(self, make_service):
        service = make_service()
        plan = await service.plan(bot_id="bot-1", goal="summarize today's RSS items")
        await service.run(bot_id="bot-1", plan_id=plan.id)

        with pytest.raises(PlanNotFound):
            await service.run(bot_id="bot-1", plan_id=plan.id)

    async def test_plan_of_another_bot(self, make_service):
        service = make_service()
        plan = await service.plan(bot_id="bot-2", goal="summarize today's RSS items")

        with pytest.raises(PlanNotFound):
            await service.run(bot_id="bot-1", plan_id=plan.id)

    async def test_plan_hash_mismatch(self, make_service, fake_repos):
        service = make_service()
        plan = await service.plan(bot_id="bot-1", goal="summarize today's RSS items")

        with pytest.raises(PlanMismatch):
            await service.run(bot_id="bot-1", plan_id=plan.id, plan_hash="0" * 64)
        assert fake_repos.runs.by_id == {}


class TestBudgets:
    async def test_step_limit(self, make_service, l2_bot, plans, fake_repos):
        plan = _stored_plan(plans, "web.rss", "web.rss", "web.rss")
        service = make_service(budget=RunBudget(max_steps=1, cooldown_seconds=0))

        run = await service.run(bot_id="bot-1", plan_id=plan.id)

        steps = await service.list_steps(run.id)
        assert run.status == AgentRunStatus.blocked
        assert run.termination_reason == TerminationReason.step_limit
        assert [s.status for s in steps] == [AgentStepStatus.success, AgentStepStatus.blocked]
        assert steps[1].output_summary == "not attempted: 2 remaining step(s), step_limit"
        assert run.step_count == 1

    async def test_tool_limit(self, make_service, l2_bot, plans):
        plan = _stored_plan(plans, "web.rss", "web.rss")
        service = make_service(budget=RunBudget(max_tool_calls=1, cooldown_seconds=0))

        run = await service.run(bot_id="bot-1", plan_id=plan.id)

        assert run.status == AgentRunStatus.blocked
        assert run.termination_reason == TerminationReason.tool_limit
        assert run.tool_call_count == 1

    async def test_reasoning_limit(self, make_service, l2_bot, plans):
        plan = _stored_plan(plans, "llm.analyze", "llm.analyze")
        service = make_service(budget=RunBudget(max_reasoning_calls=1, cooldown_seconds=0))

        run = await service.run(bot_id="bot-1", plan_id=plan.id)

        assert run.status == AgentRunStatus.blocked
        assert run.termination_reason == TerminationReason.reasoning_limit
        assert run.reasoning_call_count == 1

    async def test_slow_tool_interrupted_by_wall_clock(self, make_service, l2_bot, plans):
        slow = RecordingTool(TOOL_CATALOG["web.fetch"], delay=5)
        plan = _stored_plan(plans, "web.fetch")
        service = make_service(tools=_registry(slow), budget=RunBudget(max_runtime_seconds=0.2, cooldown_seconds=0))

        run = await service.run(bot_id="bot-1", plan_id=plan.id)

        steps = await service.list_steps(run.id)
        assert run.status == AgentRunStatus.timeout
        assert run.termination_reason == TerminationReason.timeout
        assert steps[0].status == AgentStepStatus.timeout
        assert run.duration_ms < 5000
        assert run.step_count < service.executor.budget.max_steps

    async def test_uncancellable_slow_tool_stops_at_next_step(self, make_service, l2_bot, plans):
        slow = RecordingTool(TOOL_CATALOG["web.rss"], delay=0.3)
        plan = _stored_plan(plans, "web.rss", "web.rss")
        service = make_service(tools=_registry(slow), budget=RunBudget(max_runtime_seconds=0.2, cooldown_seconds=0))

        run = await service.run(bot_id="bot-1", plan_id=plan.id)

        steps = await service.list_steps(run.id)
        markers = [s for s in steps if s.output_summary and s.output_summary.startswith("not attempted")]
        assert run.status == AgentRunStatus.timeout
        assert run.termination_reason == TerminationReason.timeout
        assert [s.status for s in steps] == [AgentStepStatus.success, AgentStepStatus.timeout]
        assert [m.output_summary for m in markers] == ["not attempted: 1 remaining step(s), timeout"]
        assert len(slow.calls) == 1
        assert run.step_count == 1 < service.executor.budget.max_steps

    async def test_budget_validation(self):
        with pytest.raises(ValueError):
            RunBudget(max_steps=0)
        with pytest.raises(ValueError):
            RunBudget(max_runtime_seconds=0)


class TestGate:
    async def test_denied_step_ends_run(self, make_service, l2_bot, plans, fake_repos):
        delete = RecordingTool(TOOL_CATALOG["files.delete"])
        plan = _stored_plan(plans, "files.delete", "web.rss")

        service = make_service(tools=_registry(delete), host=HostEnvironment(trusted=True))
        run = await service.run(bot_id="bot-1", plan_id=plan.id)

        steps = await fake_repos.steps.list(run.id)
        assert run.status == AgentRunStatus.denied
        assert run.termination_reason == TerminationReason.policy_denied
        assert [s.status for s in steps] == [AgentStepStatus.denied]
        assert steps[0].blocked_by_policy is True
        assert steps[0].decision_reason == "Wants to delete files: Permission 'FS_DELETE' is disabled"
        assert delete.calls == []

    async def test_file_tool_needs_trusted_host(self, make_service, l2_bot, plans, put_override, fake_repos):
        await put_override(PermissionKey.FS_READ, "bot-1", enabled=True, approval_mode=ApprovalMode.AUTO_ALLOWED)
        read = RecordingTool(TOOL_CATALOG["files.read"])
        rss = RecordingTool(TOOL_CATALOG["web.rss"])
        plan = _stored_plan(plans, "files.read", "web.rss")

        run = await make_service(tools=_registry(read, rss)).run(bot_id="bot-1", plan_id=plan.id)

        steps = await fake_repos.steps.list(run.id)
        assert run.status == AgentRunStatus.denied
        assert run.termination_reason == TerminationReason.policy_denied
        assert run.step_count == 0
        assert [s.status for s in steps] == [AgentStepStatus.denied]
        assert steps[0].output_summary == "not attempted: 2 remaining step(s), policy_denied"
        assert steps[0].decision_reason == "files.read requires a trusted host"
        assert steps[0].blocked_by_policy is True
        assert read.calls == [] and rss.calls == []

    async def test_file_tool_runs_on_trusted_host(self, make_service, l2_bot, plans, put_override):
        await put_override(PermissionKey.FS_READ, "bot-1", enabled=True, approval_mode=ApprovalMode.AUTO_ALLOWED)
        read = RecordingTool(TOOL_CATALOG["files.read"])
        plan = _stored_plan(plans, "files.read")

        service = make_service(tools=_registry(read), host=HostEnvironment(trusted=True))
        run = await service.run(bot_id="bot-1", plan_id=plan.id)

        steps = await service.list_steps(run.id)
        assert run.status == AgentRunStatus.success
        assert steps[0].decision_reason == "FS_READ auto-allowed by bot policy"
        assert len(read.calls) == 1

    async def test_egress_denied(self, make_service, l2_bot, plans, put_override, fake_repos):
        await put_override(
            PermissionKey.LLM_EGRESS_LEVEL,
            "bot-1",
            enabled=True,
            approval_mode=ApprovalMode.AUTO_ALLOWED,
            resource_scope=EgressScope(level=EgressLevel.NO_EGRESS),
        )
        plan = _stored_plan(plans, "llm.analyze")

        run = await make_service().run(bot_id="bot-1", plan_id=plan.id)

        assert run.status == AgentRunStatus.denied
        denied = [e for e in fake_repos.audit.entries if e.event_type.value == "auto_denied"]
        assert denied[0].permission_key == PermissionKey.LLM_EGRESS_LEVEL

    async def test_scheduled_run_blocks_on_approval(self, make_service, l2_bot):
        service = make_service()

        run = await service.run(bot_id="bot-1", goal="add source", trigger=RunTrigger.scheduled)

        assert run.status == AgentRunStatus.blocked
        assert run.termination_reason == TerminationReason.approval_required
        assert service.list_pending("bot-1") == []

    async def test_interactive_approval_resumes_run(self, make_service, l2_bot):
        tool = RecordingTool(TOOL_CATALOG["sources.manage"])
        service = make_service(tools=_registry(tool))
        task = asyncio.create_task(service.run(bot_id="bot-1", goal="add source"))

        request = await _pending(service)
        assert tool.calls == []
        await service.approve_request(request.id, ApprovalScope.once)
        run = await task

        assert run.status == AgentRunStatus.success
        assert len(tool.calls) == 1

    async def test_interactive_deny(self, make_service, l2_bot):
        tool = RecordingTool(TOOL_CATALOG["sources.manage"])
        service = make_service(tools=_registry(tool))
        task = asyncio.create_task(service.run(bot_id="bot-1", goal="add source"))

        await service.deny_request((await _pending(service)).id)
        run = await task

        assert run.status == AgentRunStatus.denied
        assert tool.calls == []

    async def test_revoked_while_waiting(self, make_service, l2_bot, put_override):
        tool = RecordingTool(TOOL_CATALOG["sources.manage"])
        service = make_service(tools=_registry(tool))
        task = asyncio.create_task(service.run(bot_id="bot-1", goal="add source"))
        request = await _pending(service)

        await put_override(PermissionKey.SOURCE_WRITE, "bot-1", enabled=False, approval_mode=ApprovalMode.APPROVAL_REQUIRED)
        await service.approve_request(request.id, ApprovalScope.once)
        run = await task

        assert run.status == AgentRunStatus.denied
        assert tool.calls == []

    async def test_approval_wait_capped_by_wall_clock(self, make_service, l2_bot):
        service = make_service(budget=RunBudget(max_runtime_seconds=0.2, cooldown_seconds=0))

        run = await service.run(bot_id="bot-1", goal="add source")

        assert run.status == AgentRunStatus.timeout
        assert run.termination_reason == TerminationReason.timeout


class TestCancellation:
    async def test_cancel_while_waiting_for_approval(self, make_service, l2_bot, fake_repos):
        service = make_service()
        task = asyncio.create_task(service.run(bot_id="bot-1", goal="add source"))
        await _pending(service)
        run_id = await _running_run_id(fake_repos)

        assert service.cancel_run(run_id) is True
        run = await task

        assert run.status == AgentRunStatus.blocked
        assert run.termination_reason == TerminationReason.cancelled
        assert service.list_pending() == []

    async def test_cancel_interrupts_cancellable_tool(self, make_service, l2_bot, fake_repos):
        slow = RecordingTool(TOOL_CATALOG["web.fetch"], delay=5)
        service = make_service(tools=_registry(slow))
        task = asyncio.create_task(service.run(bot_id="bot-1", goal="fetch the url"))
        run_id = await _running_run_id(fake_repos)
        for _ in range(300):
            if slow.calls:
                break
            await asyncio.sleep(0.01)

        service.cancel_run(run_id)
        run = await task

        steps = await service.list_steps(run.id)
        assert run.status == AgentRunStatus.blocked
        assert run.termination_reason == TerminationReason.cancelled
        assert steps[0].status == AgentStepStatus.blocked
        assert not service.executor.is_active(run.id)

    async def test_cancel_unknown_run(self, make_service):
        assert make_service().cancel_run("missing") is False


class TestToolFailures:
    async def test_non_critical_failure_continues(self, make_service, l2_bot, plans):
        fetch = RecordingTool(TOOL_CATALOG["web.fetch"], raises=True)
        plan = _stored_plan(plans, "web.fetch", "web.rss")

        service = make_service(tools=_registry(fetch))
        run = await service.run(bot_id="bot-1", plan_id=plan.id)

        steps = await service.list_steps(run.id)
        assert run.status == AgentRunStatus.success
        assert [s.status for s in steps] == [AgentStepStatus.error, AgentStepStatus.success]
        assert "RuntimeError: boom" in steps[0].output_summary

    async def test_critical_failure_ends_run(self, make_service, l2_bot, plans):
        rss = RecordingTool(TOOL_CATALOG["web.rss"], raises=True)
        plan = _stored_plan(plans, "web.rss", "llm.analyze")

        run = await make_service(tools=_registry(rss)).run(bot_id="bot-1", plan_id=plan.id)

        assert run.status == AgentRunStatus.error
        assert run.termination_reason == TerminationReason.tool_error
        assert run.step_count == 1

    async def test_failed_result_counts_as_failure(self, make_service, l2_bot, plans):
        rss = RecordingTool(TOOL_CATALOG["web.rss"], ok=False)
        plan = _stored_plan(plans, "web.rss")

        run = await make_service(tools=_registry(rss)).run(bot_id="bot-1", plan_id=plan.id)

        assert run.status == AgentRunStatus.error
        assert "upstream returned 500" in run.summary

    async def test_missing_tool_is_a_failure(self, make_service, l2_bot, plans):
        plan = _stored_plan(plans, "web.rss")

        run = await make_service(tools=ToolRegistry()).run(bot_id="bot-1", plan_id=plan.id)

        assert run.status == AgentRunStatus.error
        assert "not available" in run.summary

"""Run/step recorder.

``RunRecorder`` is the only writer of ``AgentRun`` and ``AgentStep`` rows. It
keeps summaries bounded and redacted, and enforces the lifecycle rules:

- steps are immutable once terminal;
- a run's ``finished_at`` and ``duration_ms`` are set exactly once.

When a run finishes the recorder also writes three plain-text explanations
(outcome, policy and risk) built from the recorded steps and the policy
snapshot taken at admission.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from ..repos import RunRepository, StepRepository
from ..schemas.domain import (
    AgentRun,
    AgentRunStatus,
    AgentStep,
    AgentStepStatus,
    AutonomyLevel,
    PermissionKey,
    RiskTier,
    RunTrigger,
    TerminationReason,
)

logger = logging.getLogger(__name__)

_SECRET_PATTERNS = (
    re.compile(r"sk-[A-Za-z0-9]{10,}"),
    re.compile(r"ghp_[A-Za-z0-9]{10,}"),
    re.compile(r"xoxb-[A-Za-z0-9-]{10,}"),
)


def redact(text: str) -> str:
    for pat in _SECRET_PATTERNS:
        text = pat.sub("<redacted>", text)
    return text


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds() * 1000), 0)


def explain_summary(run: AgentRun, steps: Sequence[AgentStep]) -> str:
    succeeded = sum(1 for s in steps if s.status == AgentStepStatus.success)
    blocked = sum(1 for s in steps if s.blocked_by_policy)
    progress = f"Steps completed: {succeeded}/{len(steps)}"
    if blocked:
        progress += f" ({blocked} blocked by policy)"
    reason = run.termination_reason.value if run.termination_reason else "unknown"
    return "\n".join(
        [
            f'Goal: "{run.goal}"',
            f"Autonomy level: {run.autonomy_level.value}",
            progress,
            f"Termination: {reason}",
        ]
    )


def explain_policy(run: AgentRun, steps: Sequence[AgentStep]) -> str:
    snapshot = run.policy_snapshot
    lines = [
        f"Host: {'trusted' if snapshot.get('trusted_host') else 'untrusted'}",
        f"Autonomy level: {snapshot.get('autonomy_level', run.autonomy_level.value)}",
        f"Egress level: {snapshot.get('egress_level', 'unknown')}",
    ]
    denied = snapshot.get("denied_permissions") or []
    if denied:
        lines.append(f"Denied permissions: {', '.join(denied)}")
    blocked = [s.tool_key for s in steps if s.blocked_by_policy]
    if blocked:
        lines.append(f"Blocked tools: {', '.join(blocked)}")
    return "\n".join(lines)


def explain_risk(run: AgentRun, steps: Sequence[AgentStep]) -> str:
    tally: Dict[RiskTier, int] = {tier: 0 for tier in RiskTier}
    for step in steps:
        if step.risk_tier is not None and step.status == AgentStepStatus.success:
            tally[step.risk_tier] += 1
    lines = ["Executed risk: " + ", ".join(f"{tier.value} {count}" for tier, count in tally.items())]

    budget = run.policy_snapshot.get("budget") or {}
    if budget:
        lines.append(
            f"Budget used: steps {run.step_count}/{budget.get('max_steps')}, "
            f"tool calls {run.tool_call_count}/{budget.get('max_tool_calls')}, "
            f"reasoning calls {run.reasoning_call_count}/{budget.get('max_reasoning_calls')}"
        )

    rated = [s for s in steps if s.risk_tier is not None]
    if rated:
        highest = max(rated, key=lambda s: s.risk_tier.rank)
        lines.append(f"Highest risk step: {highest.tool_key} ({highest.risk_tier.value})")
    blocked = [s for s in steps if s.blocked_by_policy]
    if blocked:
        lines.append("Blocked actions: " + "; ".join(f"{s.tool_key}: {s.decision_reason}" for s in blocked))
    return "\n".join(lines)


class RunRecorder:
    def __init__(self, *, runs: RunRepository, steps: StepRepository, summary_max_chars: int = 280) -> None:
        self._runs = runs
        self._steps = steps
        self._max_chars = summary_max_chars

    def summarize(self, value: Any) -> Optional[str]:
        """Redact secrets and bound ``value`` to ``summary_max_chars`` characters."""
        if value is None:
            return None
        text = redact(value if isinstance(value, str) else repr(value))
        if len(text) <= self._max_chars:
            return text
        return text[: self._max_chars - 3] + "..."

    async def start_run(
        self,
        *,
        bot_id: str,
        goal: str,
        trigger: RunTrigger,
        autonomy_level: AutonomyLevel,
        plan_id: Optional[str] = None,
        policy_snapshot: Optional[Dict[str, Any]] = None,
    ) -> AgentRun:
        run = AgentRun(
            bot_id=bot_id,
            goal=goal,
            trigger=trigger,
            autonomy_level=autonomy_level,
            plan_id=plan_id,
            policy_snapshot=policy_snapshot or {},
        )
        await self._runs.create(run)
        logger.info("run %s started for bot=%s autonomy=%s", run.id, bot_id, autonomy_level.value)
        return run

    async def start_step(
        self,
        run: AgentRun,
        *,
        step_index: int,
        tool_key: str,
        permission_key: Optional[PermissionKey],
        risk_tier: Optional[RiskTier] = None,
        input_summary: Any = None,
    ) -> AgentStep:
        step = AgentStep(
            agent_run_id=run.id,
            step_index=step_index,
            tool_key=tool_key,
            permission_key=permission_key,
            risk_tier=risk_tier,
            status=AgentStepStatus.running,
            input_summary=self.summarize(input_summary),
        )
        await self._steps.create(step)
        return step

    async def finish_step(
        self,
        step: AgentStep,
        status: AgentStepStatus,
        *,
        output_summary: Any = None,
        rationale: Optional[str] = None,
        decision_reason: Optional[str] = None,
        blocked_by_policy: bool = False,
    ) -> AgentStep:
        """
        Move a running step to a terminal status.

        ``decision_reason`` replaces the reason recorded so far only when given.

        Raises:
            ValueError: If the step is already terminal or ``status`` is not terminal.
        """
        if step.status.is_terminal:
            raise ValueError(f"step {step.id} is already {step.status.value}")
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal step status")
        step.status = status
        step.output_summary = self.summarize(output_summary)
        step.rationale = self.summarize(rationale)
        if decision_reason is not None:
            step.decision_reason = self.summarize(decision_reason)
        step.blocked_by_policy = blocked_by_policy
        step.duration_ms = _elapsed_ms(step.created_at, datetime.now(timezone.utc))
        await self._steps.update(step)
        return step

    async def mark_not_attempted(
        self,
        run: AgentRun,
        *,
        step_index: int,
        tool_key: str,
        permission_key: Optional[PermissionKey],
        remaining: int,
        status: AgentStepStatus,
        reason: TerminationReason,
        decision_reason: Optional[str] = None,
        blocked_by_policy: bool = False,
    ) -> AgentStep:
        """Write one terminal marker step covering every step that will not run."""
        step = AgentStep(
            agent_run_id=run.id,
            step_index=step_index,
            tool_key=tool_key,
            permission_key=permission_key,
            status=status,
            output_summary=f"not attempted: {remaining} remaining step(s), {reason.value}",
            decision_reason=self.summarize(decision_reason or reason.value),
            blocked_by_policy=blocked_by_policy,
            duration_ms=0,
        )
        await self._steps.create(step)
        return step

    async def update_counters(self, run: AgentRun) -> None:
        await self._runs.update(run)

    async def finish_run(
        self,
        run: AgentRun,
        status: AgentRunStatus,
        *,
        reason: TerminationReason,
        summary: Optional[str] = None,
    ) -> AgentRun:
        """
        Set the terminal outcome of a run.

        Raises:
            ValueError: If the run was already finished.
        """
        if run.finished_at is not None:
            raise ValueError(f"run {run.id} already finished")
        if status == AgentRunStatus.running:
            raise ValueError("running is not a terminal run status")
        finished = datetime.now(timezone.utc)
        run.status = status
        run.termination_reason = reason
        run.summary = self.summarize(summary)
        run.finished_at = finished
        run.duration_ms = _elapsed_ms(run.started_at, finished)
        steps = await self._steps.list(run.id)
        run.explain_summary = explain_summary(run, steps)
        run.explain_policy = explain_policy(run, steps)
        run.explain_risk = explain_risk(run, steps)
        await self._runs.update(run)
        logger.info(
            "run %s finished status=%s reason=%s steps=%d",
            run.id,
            status.value,
            reason.value,
            run.step_count,
        )
        return run

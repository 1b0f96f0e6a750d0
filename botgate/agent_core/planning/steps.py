"""Plan data model and the in-memory plan store.

A plan is a proposal, not an authorization: the executor re-validates every
step against current policy when the plan runs. Plans are addressed by id and
live only as long as the ``PlanStore`` keeps them.
"""

from __future__ import annotations

import hashlib
import json
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import PermissionKey, RiskTier
from ..tools.base import ToolDefinition


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PlanStep(BaseSchema):
    tool_key: str
    description: str = ""
    permission_key: PermissionKey
    risk_tier: RiskTier
    critical: bool = True
    args: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_tool(cls, tool: ToolDefinition, *, description: str = "", args: Optional[Dict[str, Any]] = None) -> "PlanStep":
        return cls(
            tool_key=tool.tool_key,
            description=description or tool.description,
            permission_key=tool.permission_key,
            risk_tier=tool.risk_tier,
            critical=tool.critical,
            args=dict(args or {}),
        )


class RiskSummary(BaseSchema):
    low: int = 0
    medium: int = 0
    high: int = 0

    @classmethod
    def tally(cls, steps: Iterable[PlanStep]) -> "RiskSummary":
        counts = {tier.value: 0 for tier in RiskTier}
        for step in steps:
            counts[step.risk_tier.value] += 1
        return cls(**counts)


class AgentPlan(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    bot_id: str
    goal: str
    steps: List[PlanStep]
    required_permissions: List[PermissionKey]
    risk_summary: RiskSummary
    plan_hash: str
    created_at: datetime = Field(default_factory=_utc_now)


def compute_plan_hash(steps: Iterable[PlanStep]) -> str:
    """
    Stable fingerprint of a plan's gated content.

    Only the ordered (tool, permission, risk) triples and the sorted permission
    set are hashed; descriptions and args do not change what must be approved.
    """
    steps = list(steps)
    payload = {
        "steps": [
            {"toolKey": s.tool_key, "permissionKey": s.permission_key.value, "riskTier": s.risk_tier.value}
            for s in steps
        ],
        "permissions": sorted({s.permission_key.value for s in steps}),
    }
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def build_plan(bot_id: str, goal: str, steps: List[PlanStep]) -> AgentPlan:
    return AgentPlan(
        bot_id=bot_id,
        goal=goal,
        steps=steps,
        required_permissions=sorted({s.permission_key for s in steps}, key=lambda k: k.value),
        risk_summary=RiskSummary.tally(steps),
        plan_hash=compute_plan_hash(steps),
    )


class PlanStore:
    """Bounded in-memory plan store with expiry.

    Oldest plans are evicted first once ``max_plans`` is reached. Expired or
    evicted plans simply disappear; the executor reports them as not found.
    """

    def __init__(self, *, max_plans: int = 256, ttl_seconds: float = 3600.0) -> None:
        self._plans: "OrderedDict[str, AgentPlan]" = OrderedDict()
        self._max = max_plans
        self._ttl = timedelta(seconds=ttl_seconds)

    def put(self, plan: AgentPlan) -> AgentPlan:
        self._plans[plan.id] = plan
        self._plans.move_to_end(plan.id)
        while len(self._plans) > self._max:
            self._plans.popitem(last=False)
        return plan

    def get(self, plan_id: str) -> Optional[AgentPlan]:
        plan = self._plans.get(plan_id)
        if plan is None:
            return None
        if plan.created_at + self._ttl < _utc_now():
            del self._plans[plan_id]
            return None
        return plan

    def discard(self, plan_id: str) -> None:
        self._plans.pop(plan_id, None)

    def __len__(self) -> int:
        return len(self._plans)

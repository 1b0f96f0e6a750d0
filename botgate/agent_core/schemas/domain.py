from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RiskTier(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {RiskTier.low: 0, RiskTier.medium: 1, RiskTier.high: 2}


class PermissionKey(str, Enum):
    WEB_RSS = "WEB_RSS"
    WEB_FETCH = "WEB_FETCH"
    SOURCE_WRITE = "SOURCE_WRITE"
    LLM_USE = "LLM_USE"
    LLM_EGRESS_LEVEL = "LLM_EGRESS_LEVEL"
    FS_READ = "FS_READ"
    FS_WRITE = "FS_WRITE"
    FS_DELETE = "FS_DELETE"
    CAL_READ = "CAL_READ"
    CAL_WRITE = "CAL_WRITE"
    SCHEDULE_WRITE = "SCHEDULE_WRITE"
    MEMORY_WRITE = "MEMORY_WRITE"
    DATA_RETENTION = "DATA_RETENTION"
    AUTONOMY_LEVEL = "AUTONOMY_LEVEL"
    AGENT_RUN = "AGENT_RUN"
    TOOL_USE = "TOOL_USE"
    TELEGRAM_CONNECT = "TELEGRAM_CONNECT"
    TELEGRAM_SEND = "TELEGRAM_SEND"


class ApprovalMode(str, Enum):
    AUTO_ALLOWED = "AUTO_ALLOWED"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    AUTO_DENIED = "AUTO_DENIED"


class PermissionScope(str, Enum):
    global_ = "global"
    bot = "bot"


class PermissionSource(str, Enum):
    default = "default"
    global_ = "global"
    bot = "bot"


class AutonomyLevel(str, Enum):
    """Ordered autonomy levels, L0 (manual) through L3 (trusted host only)."""

    L0 = "L0"
    L1 = "L1"
    L2 = "L2"
    L3 = "L3"

    @property
    def rank(self) -> int:
        return int(self.value[1:])


class EgressLevel(str, Enum):
    NO_EGRESS = "NO_EGRESS"
    METADATA_ONLY = "METADATA_ONLY"
    FULL_CONTENT_ALLOWED = "FULL_CONTENT_ALLOWED"

    @property
    def rank(self) -> int:
        return _EGRESS_RANK[self]


_EGRESS_RANK = {
    EgressLevel.NO_EGRESS: 0,
    EgressLevel.METADATA_ONLY: 1,
    EgressLevel.FULL_CONTENT_ALLOWED: 2,
}


class ActorKind(str, Enum):
    user = "user"
    system = "system"
    agent = "agent"


class RunTrigger(str, Enum):
    manual = "manual"
    scheduled = "scheduled"
    chat = "chat"


class AgentRunStatus(str, Enum):
    running = "running"
    success = "success"
    error = "error"
    timeout = "timeout"
    blocked = "blocked"
    denied = "denied"


class AgentStepStatus(str, Enum):
    pending = "pending"
    running = "running"
    success = "success"
    error = "error"
    timeout = "timeout"
    blocked = "blocked"
    denied = "denied"

    @property
    def is_terminal(self) -> bool:
        return self not in (AgentStepStatus.pending, AgentStepStatus.running)


class TerminationReason(str, Enum):
    completed = "completed"
    timeout = "timeout"
    step_limit = "step_limit"
    tool_limit = "tool_limit"
    reasoning_limit = "reasoning_limit"
    policy_denied = "policy_denied"
    approval_required = "approval_required"
    approval_timeout = "approval_timeout"
    tool_error = "tool_error"
    cancelled = "cancelled"
    internal_error = "internal_error"


class AuditEventType(str, Enum):
    auto_allowed = "auto_allowed"
    auto_denied = "auto_denied"
    approval_requested = "approval_requested"
    approval_expired = "approval_expired"
    approved_once = "approved_once"
    approved_bot = "approved_bot"
    approved_global = "approved_global"
    denied = "denied"
    permission_updated = "permission_updated"
    permission_deleted = "permission_deleted"
    plan_created = "plan_created"
    agent_run_start = "agent_run_start"
    agent_run_complete = "agent_run_complete"
    agent_run_rejected = "agent_run_rejected"


class AuditEntry(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    bot_id: Optional[str] = None

    event_type: AuditEventType
    permission_key: Optional[PermissionKey] = None
    actor_kind: ActorKind = ActorKind.system

    created_at: datetime = Field(default_factory=_utc_now)
    details: Dict[str, Any] = Field(default_factory=dict)


class AgentRun(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    bot_id: str

    trigger: RunTrigger = RunTrigger.manual
    autonomy_level: AutonomyLevel
    goal: str
    plan_id: Optional[str] = None

    status: AgentRunStatus = AgentRunStatus.running
    step_count: int = 0
    tool_call_count: int = 0
    reasoning_call_count: int = 0
    termination_reason: Optional[TerminationReason] = None
    summary: Optional[str] = None
    policy_snapshot: Dict[str, Any] = Field(default_factory=dict)
    explain_summary: Optional[str] = None
    explain_policy: Optional[str] = None
    explain_risk: Optional[str] = None

    started_at: datetime = Field(default_factory=_utc_now)
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


class AgentStep(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_run_id: str
    step_index: int

    tool_key: str
    permission_key: Optional[PermissionKey] = None
    status: AgentStepStatus = AgentStepStatus.pending
    risk_tier: Optional[RiskTier] = None

    input_summary: Optional[str] = None
    output_summary: Optional[str] = None
    rationale: Optional[str] = None
    decision_reason: Optional[str] = None
    blocked_by_policy: bool = False
    duration_ms: Optional[int] = None

    created_at: datetime = Field(default_factory=_utc_now)

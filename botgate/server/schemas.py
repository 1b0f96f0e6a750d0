"""
API Schemas.

Pydantic models used for API request bodies and response validation. Domain
objects (runs, steps, audit entries, plans, effective permissions) are
returned as-is; only requests and composite responses are defined here.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from botgate.agent_core.policy.gate import Allowed, ApprovalRequest, ApprovalScope, Decision, Denied
from botgate.agent_core.policy.messages import PermissionMessage
from botgate.agent_core.policy.models import EffectivePermission, PermissionValue
from botgate.agent_core.schemas.domain import PermissionKey, PermissionScope, RunTrigger


class PermissionUpdate(BaseModel):
    """
    Schema for writing a permission override.

    ``scope_id`` is the bot id and is required for ``scope=bot``; it must be
    omitted for ``scope=global``.
    """

    scope: PermissionScope = Field(..., examples=["bot"])
    scope_id: Optional[str] = Field(default=None, examples=["bot-1"])
    permission_key: PermissionKey = Field(..., examples=["FS_WRITE"])
    value: PermissionValue

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "scope": "bot",
                "scope_id": "bot-1",
                "permission_key": "AUTONOMY_LEVEL",
                "value": {
                    "enabled": True,
                    "approval_mode": "AUTO_ALLOWED",
                    "resource_scope": {"kind": "autonomy", "level": "L2"},
                },
            }
        }
    )


class EffectivePermissionsResponse(BaseModel):
    bot_id: Optional[str] = None
    permissions: Dict[PermissionKey, EffectivePermission]


class DeleteResult(BaseModel):
    deleted: bool


class PermissionCheck(BaseModel):
    """Schema for a synchronous gate check of a UI action."""

    bot_id: Optional[str] = None
    permission_key: PermissionKey
    action: str = Field(..., min_length=1, examples=["sources.add"])
    payload_summary: str = Field(default="", max_length=1000)


class CheckResult(BaseModel):
    """
    Result of a gate check.

    ``decision`` is ``allowed``, ``denied`` or ``requires_approval``. A pending
    approval request is included for ``requires_approval``.
    """

    decision: str
    permission_key: PermissionKey
    reason: Optional[str] = None
    message: Optional[PermissionMessage] = None
    request: Optional[ApprovalRequest] = None


class ApproveOnce(BaseModel):
    permission_key: PermissionKey
    action: str = Field(..., min_length=1)
    bot_id: Optional[str] = None


class ApproveOnceResult(BaseModel):
    ok: bool = True
    request_id: Optional[str] = Field(
        default=None, description="The pending request that was resolved, if one matched."
    )


class ApprovalResolve(BaseModel):
    scope: ApprovalScope = Field(default=ApprovalScope.once, examples=["once", "bot", "global"])


class PlanCreate(BaseModel):
    bot_id: str = Field(..., min_length=1, examples=["bot-1"])
    goal: str = Field(..., min_length=1, examples=["summarize today's RSS items"])


class RunCreate(BaseModel):
    """
    Schema for starting an agent run.

    Either ``goal`` (direct execution, autonomy L2 and above or trivial L1
    goals) or ``plan_id`` (an approved plan) must be given.
    """

    bot_id: str = Field(..., min_length=1)
    goal: str = Field(default="")
    plan_id: Optional[str] = None
    plan_hash: Optional[str] = Field(default=None, description="Hash of the plan the user approved.")
    trigger: RunTrigger = RunTrigger.manual


class CancelResult(BaseModel):
    run_id: str
    cancelled: bool


def check_result(decision: Decision) -> CheckResult:
    """Build a ``CheckResult`` from a gate decision."""
    if isinstance(decision, Allowed):
        return CheckResult(decision="allowed", permission_key=decision.permission.permission_key)
    if isinstance(decision, Denied):
        return CheckResult(
            decision="denied",
            permission_key=decision.permission_key,
            reason=decision.reason,
            message=decision.message,
        )
    return CheckResult(
        decision="requires_approval",
        permission_key=decision.request.permission_key,
        message=decision.request.message,
        request=decision.request,
    )

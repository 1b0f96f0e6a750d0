"""
Permission Endpoints.

Effective permission lookup, override writes and deletes, the synchronous gate
check used by UI actions, and one-time approvals.
"""

from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from botgate.agent_core.policy.gate import Allowed
from botgate.agent_core.policy.models import PermissionOverride
from botgate.agent_core.schemas.domain import PermissionKey, PermissionScope
from botgate.server.schemas import (
    ApproveOnce,
    ApproveOnceResult,
    CheckResult,
    DeleteResult,
    EffectivePermissionsResponse,
    PermissionCheck,
    PermissionUpdate,
    check_result,
)
from botgate.server.services.deps import AgentServiceDep

router = APIRouter()


@router.get(
    "/effective",
    response_model=EffectivePermissionsResponse,
    summary="Get Effective Permissions",
    description="Resolve every permission key for a bot (or the global layer) from one consistent snapshot.",
)
async def get_effective_permissions(service: AgentServiceDep, bot_id: Optional[str] = None):
    permissions = await service.effective_permissions(bot_id)
    return EffectivePermissionsResponse(bot_id=bot_id, permissions=permissions)


@router.put(
    "",
    response_model=PermissionOverride,
    summary="Upsert Permission Override",
    description="Insert or replace the override for (scope, scope_id, permission_key).",
    responses={400: {"description": "Invalid scope, scope_id or resource scope"}},
)
async def put_permission(body: PermissionUpdate, service: AgentServiceDep):
    return await service.put_permission(
        scope=body.scope,
        scope_id=body.scope_id,
        permission_key=body.permission_key,
        value=body.value,
    )


@router.delete(
    "",
    response_model=DeleteResult,
    summary="Delete Permission Override",
    description="Remove an override; resolution falls back to the next lower scope.",
)
async def delete_permission(
    service: AgentServiceDep,
    scope: PermissionScope,
    permission_key: PermissionKey,
    scope_id: Optional[str] = None,
):
    deleted = await service.delete_permission(scope=scope, scope_id=scope_id, permission_key=permission_key)
    return DeleteResult(deleted=deleted)


@router.post(
    "/check",
    response_model=CheckResult,
    summary="Check Permission",
    description="Run the approval gate for a UI action.",
    responses={403: {"model": CheckResult, "description": "Denied, or approval required"}},
)
async def check_permission(body: PermissionCheck, service: AgentServiceDep):
    """
    Gate a UI action.

    Returns 200 when the action may proceed. Otherwise returns 403 with the
    permission message; for ``requires_approval`` the body includes the
    pending request, which can be resolved through the approvals endpoints
    or ``approve-once`` before retrying.
    """
    decision = await service.check_permission(
        bot_id=body.bot_id,
        permission_key=body.permission_key,
        action=body.action,
        payload_summary=body.payload_summary,
    )
    result = check_result(decision)
    if isinstance(decision, Allowed):
        return result
    return JSONResponse(status_code=403, content=result.model_dump(mode="json"))


@router.post(
    "/approve-once",
    response_model=ApproveOnceResult,
    summary="Approve Once",
    description="Permit exactly one pending or next matching action. No override is written.",
)
async def approve_once(body: ApproveOnce, service: AgentServiceDep):
    request = await service.approve_once(
        permission_key=body.permission_key,
        action=body.action,
        bot_id=body.bot_id,
    )
    return ApproveOnceResult(request_id=request.id if request else None)

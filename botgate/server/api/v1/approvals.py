"""
Approvals API Endpoints.

Human-in-the-loop resolution of pending approval requests: list them, approve
at a scope (once, bot, global), or deny.
"""

from typing import List, Optional

from fastapi import APIRouter

from botgate.agent_core.policy.gate import ApprovalRequest
from botgate.server.schemas import ApprovalResolve
from botgate.server.services.deps import AgentServiceDep

router = APIRouter()


@router.get(
    "",
    response_model=List[ApprovalRequest],
    summary="List Pending Approvals",
    description="Pending approval requests, oldest first, optionally for one bot.",
)
async def list_approvals(service: AgentServiceDep, bot_id: Optional[str] = None):
    return service.list_pending(bot_id)


@router.post(
    "/{request_id}/approve",
    response_model=ApprovalRequest,
    summary="Approve Request",
    description="Approve a pending request. bot and global scopes write an AUTO_ALLOWED override.",
    responses={
        404: {"description": "Request not found or already resolved"},
        400: {"description": "Scope not legal for this request"},
    },
)
async def approve_request(request_id: str, body: ApprovalResolve, service: AgentServiceDep):
    return await service.approve_request(request_id, body.scope)


@router.post(
    "/{request_id}/deny",
    response_model=ApprovalRequest,
    summary="Deny Request",
    description="Deny a pending request. The triggering action is aborted and no override is written.",
    responses={404: {"description": "Request not found or already resolved"}},
)
async def deny_request(request_id: str, service: AgentServiceDep):
    return await service.deny_request(request_id)

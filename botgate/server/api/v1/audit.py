"""
Audit Log Endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Query

from botgate.agent_core.schemas.domain import AuditEntry, PermissionKey
from botgate.server.services.deps import AgentServiceDep

router = APIRouter()


@router.get(
    "",
    response_model=List[AuditEntry],
    summary="List Audit Logs",
    description="Audit entries newest first within the last `since_days` days.",
)
async def list_audit_logs(
    service: AgentServiceDep,
    bot_id: Optional[str] = None,
    permission_key: Optional[PermissionKey] = None,
    since_days: float = Query(default=7, gt=0, le=3650),
    limit: int = Query(default=100, ge=1, le=1000),
):
    return await service.audit_logs(
        bot_id=bot_id,
        since_days=since_days,
        permission_key=permission_key,
        limit=limit,
    )

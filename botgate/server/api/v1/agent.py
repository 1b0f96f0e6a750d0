"""
Agent Endpoints.

Planning, running, inspecting and cancelling agent runs.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from botgate.agent_core.planning.steps import AgentPlan
from botgate.agent_core.schemas.domain import AgentRun, AgentStep
from botgate.server.schemas import CancelResult, PlanCreate, RunCreate
from botgate.server.services.deps import AgentServiceDep

router = APIRouter()


@router.post(
    "/plans",
    response_model=AgentPlan,
    summary="Create Plan",
    description="Propose a plan for a goal. Nothing is executed.",
)
async def create_plan(body: PlanCreate, service: AgentServiceDep):
    return await service.plan(bot_id=body.bot_id, goal=body.goal)


@router.post(
    "/runs",
    response_model=AgentRun,
    status_code=status.HTTP_201_CREATED,
    summary="Run Agent",
    description="Execute a goal or an approved plan to completion and return the finished run.",
    responses={
        400: {"description": "Plan hash mismatch or missing goal"},
        403: {"description": "Rejected by policy (manual mode, disabled, plan approval required)"},
        404: {"description": "Plan not found"},
        429: {"description": "Cooldown active"},
    },
)
async def create_run(body: RunCreate, service: AgentServiceDep):
    if not body.goal.strip() and body.plan_id is None:
        raise HTTPException(status_code=400, detail="either goal or plan_id is required")
    return await service.run(
        bot_id=body.bot_id,
        goal=body.goal,
        plan_id=body.plan_id,
        plan_hash=body.plan_hash,
        trigger=body.trigger,
    )


@router.get(
    "/runs",
    response_model=List[AgentRun],
    summary="List Runs",
    description="Runs newest first, optionally for one bot.",
)
async def list_runs(
    service: AgentServiceDep,
    bot_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
):
    return await service.list_runs(bot_id=bot_id, limit=limit)


@router.get(
    "/runs/{run_id}",
    response_model=AgentRun,
    summary="Get Run",
    responses={404: {"description": "Run not found"}},
)
async def get_run(run_id: str, service: AgentServiceDep):
    run = await service.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@router.get(
    "/runs/{run_id}/steps",
    response_model=List[AgentStep],
    summary="List Run Steps",
    description="Steps of a run ordered by step index.",
    responses={404: {"description": "Run not found"}},
)
async def list_run_steps(run_id: str, service: AgentServiceDep):
    if await service.get_run(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return await service.list_steps(run_id)


@router.post(
    "/runs/{run_id}/cancel",
    response_model=CancelResult,
    summary="Cancel Run",
    description="Request cancellation; honoured at the next step boundary or while waiting for approval.",
    responses={404: {"description": "Run not found"}},
)
async def cancel_run(run_id: str, service: AgentServiceDep):
    if await service.get_run(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return CancelResult(run_id=run_id, cancelled=service.cancel_run(run_id))

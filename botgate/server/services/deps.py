"""
Orchestrator Dependency.

Provides the singleton ``OrchestratorService`` and its ``AgentService`` to API
endpoints.
"""

from typing import Annotated

from fastapi import Depends

from botgate.agent_core.service import AgentService
from botgate.server.services.orchestrator import (
    OrchestratorService,
    get_orchestrator,
)

OrchestratorDep = Annotated[OrchestratorService, Depends(get_orchestrator)]


def get_agent_service(orchestrator: OrchestratorDep) -> AgentService:
    return orchestrator.agent_service


AgentServiceDep = Annotated[AgentService, Depends(get_agent_service)]

"""Service layer behind the HTTP API.

``OrchestratorService`` builds the SQL repositories and one ``AgentService``
for the process. Routes depend on it through ``OrchestratorDep``; the pending
approval registry and the active-run table live in that single instance.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from botgate.agent_core.factory import build_agent_service
from botgate.agent_core.planning.planner import StructuredPlanner
from botgate.agent_core.policy.resolver import HostEnvironment
from botgate.agent_core.repos.sql import SqlRepoBundle, build_sql_repos
from botgate.agent_core.runtime.models import RunBudget
from botgate.agent_core.service import AgentService
from botgate.agent_core.tools.registry import ToolRegistry
from botgate.core.logging_config import get_logger
from botgate.server.core.config import settings

logger = get_logger(__name__)


class OrchestratorService:
    """
    Process-wide wiring of repositories and the core ``AgentService``.

    All arguments are optional; by default the global session factory and
    the values from ``settings`` are used.
    """

    def __init__(
        self,
        *,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        tools: Optional[ToolRegistry] = None,
        planner: Optional[StructuredPlanner] = None,
        budget: Optional[RunBudget] = None,
        host: Optional[HostEnvironment] = None,
    ) -> None:
        if session_factory is None:
            from botgate.server.core.database import async_session_maker

            session_factory = async_session_maker
        budget = budget or settings.budget
        self.repos: SqlRepoBundle = build_sql_repos(session_factory=session_factory)
        self.agent_service: AgentService = build_agent_service(
            overrides=self.repos.overrides,
            audit=self.repos.audit,
            runs=self.repos.runs,
            steps=self.repos.steps,
            tools=tools,
            planner=planner or StructuredPlanner(max_steps=budget.max_steps),
            budget=budget,
            host=host or settings.host,
        )
        logger.debug(
            "orchestrator ready (trusted_host=%s, max_steps=%d)",
            (host or settings.host).trusted,
            budget.max_steps,
        )


_orchestrator: Optional[OrchestratorService] = None


def get_orchestrator() -> OrchestratorService:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = OrchestratorService()
    return _orchestrator

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from botgate.agent_core.policy.resolver import HostEnvironment
from botgate.agent_core.repos.sql import create_all, create_engine, create_sessionmaker
from botgate.agent_core.runtime.models import RunBudget
from botgate.server.main import app
from botgate.server.services.orchestrator import OrchestratorService, get_orchestrator


@pytest.fixture
def run_budget() -> RunBudget:
    return RunBudget(cooldown_seconds=0, approval_wait_seconds=0.2)


@pytest.fixture
async def api_engine(tmp_path):
    """File-backed SQLite database with the core tables, one per test."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def orchestrator(api_engine, run_budget) -> OrchestratorService:
    return OrchestratorService(
        session_factory=create_sessionmaker(api_engine),
        budget=run_budget,
        host=HostEnvironment(trusted=False),
    )


@pytest.fixture
async def client(orchestrator) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the orchestrator dependency overridden."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def set_override(client):
    """PUT a permission override through the API."""

    async def _set(key: str, value: dict, bot_id: str = None):
        body = {
            "scope": "bot" if bot_id else "global",
            "scope_id": bot_id,
            "permission_key": key,
            "value": value,
        }
        response = await client.put("/api/v1/permissions", json=body)
        assert response.status_code == 200, response.text
        return response.json()

    return _set

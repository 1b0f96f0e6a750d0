from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import pytest

os.environ.setdefault("ENABLE_FILE_LOGGING", "false")

from botgate.agent_core.errors import StoreUnavailable
from botgate.agent_core.policy.models import PermissionOverride, PolicySnapshot, scope_key
from botgate.agent_core.schemas.domain import (
    AgentRun,
    AgentStep,
    AuditEntry,
    PermissionKey,
    PermissionScope,
)


class FakeOverrideRepo:
    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, PermissionKey], PermissionOverride] = {}
        self.fail = False
        self.upserts = 0

    def _check(self) -> None:
        if self.fail:
            raise StoreUnavailable("fake store is down")

    async def upsert(self, override: PermissionOverride) -> PermissionOverride:
        self._check()
        self.upserts += 1
        k = (override.scope_key, override.permission_key)
        existing = self.rows.get(k)
        stored = override if existing is None else override.model_copy(update={"id": existing.id})
        self.rows[k] = stored
        return stored

    async def get(self, scope, scope_id, key) -> Optional[PermissionOverride]:
        self._check()
        return self.rows.get((scope_key(scope, scope_id), key))

    async def delete(self, scope, scope_id, key) -> bool:
        self._check()
        return self.rows.pop((scope_key(scope, scope_id), key), None) is not None

    async def list(self, scope, scope_id=None) -> List[PermissionOverride]:
        self._check()
        sk = scope_key(scope, scope_id)
        return [o for (k, _), o in self.rows.items() if k == sk]

    async def snapshot(self, bot_id: Optional[str]) -> PolicySnapshot:
        self._check()
        global_layer = {o.permission_key: o.value for (k, _), o in self.rows.items() if k == "global"}
        bot_layer = {}
        if bot_id:
            bot_layer = {o.permission_key: o.value for (k, _), o in self.rows.items() if k == f"bot:{bot_id}"}
        return PolicySnapshot(bot_id=bot_id, global_overrides=global_layer, bot_overrides=bot_layer)


class FakeAuditRepo:
    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []
        self.fail = False

    async def append(self, entry: AuditEntry) -> None:
        if self.fail:
            raise StoreUnavailable("fake audit log is down")
        self.entries.append(entry)

    async def list(self, *, bot_id=None, since: Optional[datetime] = None, permission_key=None, limit=100):
        out = [
            e
            for e in reversed(self.entries)
            if (bot_id is None or e.bot_id == bot_id)
            and (since is None or e.created_at >= since)
            and (permission_key is None or e.permission_key == permission_key)
        ]
        return out[:limit]

    def types(self) -> List[str]:
        return [e.event_type.value for e in self.entries]


class FakeRunRepo:
    def __init__(self) -> None:
        self.by_id: Dict[str, AgentRun] = {}

    async def create(self, run: AgentRun) -> None:
        self.by_id[run.id] = run.model_copy()

    async def update(self, run: AgentRun) -> None:
        self.by_id[run.id] = run.model_copy()

    async def get(self, run_id: str) -> Optional[AgentRun]:
        return self.by_id.get(run_id)

    async def list(self, bot_id=None, limit=50) -> List[AgentRun]:
        runs = [r for r in self.by_id.values() if bot_id is None or r.bot_id == bot_id]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)[:limit]

    async def latest_for_bot(self, bot_id: str) -> Optional[AgentRun]:
        runs = await self.list(bot_id=bot_id, limit=1)
        return runs[0] if runs else None


class FakeStepRepo:
    def __init__(self) -> None:
        self.by_id: Dict[str, AgentStep] = {}

    async def create(self, step: AgentStep) -> None:
        self.by_id[step.id] = step.model_copy()

    async def update(self, step: AgentStep) -> None:
        self.by_id[step.id] = step.model_copy()

    async def list(self, run_id: str) -> List[AgentStep]:
        steps = [s for s in self.by_id.values() if s.agent_run_id == run_id]
        return sorted(steps, key=lambda s: (s.step_index, s.created_at))


@dataclass
class FakeRepos:
    overrides: FakeOverrideRepo
    audit: FakeAuditRepo
    runs: FakeRunRepo
    steps: FakeStepRepo


@pytest.fixture
def fake_repos() -> FakeRepos:
    return FakeRepos(
        overrides=FakeOverrideRepo(),
        audit=FakeAuditRepo(),
        runs=FakeRunRepo(),
        steps=FakeStepRepo(),
    )


@pytest.fixture
def put_override(fake_repos: FakeRepos):
    """Write an override straight into the fake store, bypassing the service."""

    async def _put(key: PermissionKey, bot_id: Optional[str] = None, **value) -> PermissionOverride:
        from botgate.agent_core.policy.models import PermissionValue

        scope = PermissionScope.bot if bot_id else PermissionScope.global_
        override = PermissionOverride(
            scope=scope,
            scope_id=bot_id,
            permission_key=key,
            value=PermissionValue(**value),
        )
        return await fake_repos.overrides.upsert(override)

    return _put

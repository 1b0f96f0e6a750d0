"""SQLAlchemy async repository implementations.

This module provides a SQL-backed persistence implementation for the
repository interfaces defined in ``botgate.agent_core.repos.interfaces``.
Postgres (asyncpg) and SQLite (aiosqlite) are supported.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (tests/dev; production uses migrations).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. Override writes are a single ``INSERT .. ON CONFLICT DO UPDATE`` so
concurrent writers for the same key converge on one row.

Any ``SQLAlchemyError``, and any stored value that no longer validates, is
re-raised as ``StoreUnavailable``.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..errors import StoreUnavailable
from ..policy.models import PermissionOverride, PermissionValue, PolicySnapshot, scope_key
from ..schemas.domain import (
    ActorKind,
    AgentRun,
    AgentRunStatus,
    AgentStep,
    AgentStepStatus,
    AuditEntry,
    AuditEventType,
    AutonomyLevel,
    PermissionKey,
    PermissionScope,
    RiskTier,
    RunTrigger,
    TerminationReason,
)
from .interfaces import (
    AuditRepository,
    PermissionOverrideRepository,
    RunRepository,
    StepRepository,
)
from .models import AgentRunRow, AgentStepRow, AuditLogRow, Base, PermissionOverrideRow

T = TypeVar("T")


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Postgres URLs are rewritten to the asyncpg driver, e.g. ``postgresql://``
    becomes ``postgresql+asyncpg://``. Other URLs are used as given.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata (tests and local dev)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _store_op(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"{fn.__qualname__} failed: {exc}") from exc
        except ValidationError as exc:
            raise StoreUnavailable(f"{fn.__qualname__} read an invalid stored value: {exc}") from exc

    return wrapper


def _override_from_row(row: PermissionOverrideRow) -> PermissionOverride:
    return PermissionOverride(
        id=row.id,
        scope=PermissionScope(row.scope),
        scope_id=row.scope_id,
        permission_key=PermissionKey(row.permission_key),
        value=PermissionValue.model_validate(row.value),
        updated_at=_as_utc(row.updated_at),
    )


@dataclass(frozen=True)
class SqlPermissionOverrideRepository(PermissionOverrideRepository):
    """SQL implementation of ``PermissionOverrideRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    @_store_op
    async def upsert(self, override: PermissionOverride) -> PermissionOverride:
        """
        Atomically insert or replace one override.

        Args:
            override: The override to write. Its ``id`` is used only if no row
                exists yet for the same scope instance and key.
        """
        key = override.scope_key
        now = _utc_now()
        values = {
            "id": override.id,
            "scope": override.scope.value,
            "scope_id": override.scope_id,
            "scope_key": key,
            "permission_key": override.permission_key.value,
            "value": override.value.model_dump(mode="json"),
            "created_at": now,
            "updated_at": now,
        }
        async with self.session_factory() as s:
            dialect = s.get_bind().dialect.name
            if dialect in ("postgresql", "sqlite"):
                insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
                stmt = insert_fn(PermissionOverrideRow).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["scope_key", "permission_key"],
                    set_={"value": stmt.excluded["value"], "updated_at": stmt.excluded["updated_at"]},
                )
                await s.execute(stmt)
            else:
                row = await self._find(s, key, override.permission_key)
                if row is None:
                    s.add(PermissionOverrideRow(**values))
                else:
                    row.value = values["value"]
                    row.updated_at = now
            await s.commit()
            row = await self._find(s, key, override.permission_key)
            if row is None:
                raise StoreUnavailable(f"override {key}/{override.permission_key.value} missing after upsert")
            return _override_from_row(row)

    @staticmethod
    async def _find(s: AsyncSession, key: str, permission_key: PermissionKey) -> Optional[PermissionOverrideRow]:
        stmt = select(PermissionOverrideRow).where(
            PermissionOverrideRow.scope_key == key,
            PermissionOverrideRow.permission_key == permission_key.value,
        )
        result = await s.execute(stmt)
        return result.scalar_one_or_none()

    @_store_op
    async def get(
        self, scope: PermissionScope, scope_id: Optional[str], key: PermissionKey
    ) -> Optional[PermissionOverride]:
        async with self.session_factory() as s:
            row = await self._find(s, scope_key(scope, scope_id), key)
            return _override_from_row(row) if row is not None else None

    @_store_op
    async def delete(self, scope: PermissionScope, scope_id: Optional[str], key: PermissionKey) -> bool:
        async with self.session_factory() as s:
            stmt = delete(PermissionOverrideRow).where(
                PermissionOverrideRow.scope_key == scope_key(scope, scope_id),
                PermissionOverrideRow.permission_key == key.value,
            )
            result = await s.execute(stmt)
            await s.commit()
            return (result.rowcount or 0) > 0

    @_store_op
    async def list(self, scope: PermissionScope, scope_id: Optional[str] = None) -> list[PermissionOverride]:
        async with self.session_factory() as s:
            stmt = (
                select(PermissionOverrideRow)
                .where(PermissionOverrideRow.scope_key == scope_key(scope, scope_id))
                .order_by(PermissionOverrideRow.permission_key.asc())
            )
            result = await s.execute(stmt)
            return [_override_from_row(row) for row in result.scalars().all()]

    @_store_op
    async def snapshot(self, bot_id: Optional[str]) -> PolicySnapshot:
        """Read the global and bot layers with one SELECT."""
        keys = ["global"]
        if bot_id:
            keys.append(scope_key(PermissionScope.bot, bot_id))
        async with self.session_factory() as s:
            stmt = select(PermissionOverrideRow).where(PermissionOverrideRow.scope_key.in_(keys))
            result = await s.execute(stmt)
            rows = result.scalars().all()

        global_layer: dict[PermissionKey, PermissionValue] = {}
        bot_layer: dict[PermissionKey, PermissionValue] = {}
        for row in rows:
            try:
                key = PermissionKey(row.permission_key)
            except ValueError:
                # Keys retired from the code table are ignored.
                continue
            target = global_layer if row.scope_key == "global" else bot_layer
            target[key] = PermissionValue.model_validate(row.value)
        return PolicySnapshot(bot_id=bot_id, global_overrides=global_layer, bot_overrides=bot_layer)


@dataclass(frozen=True)
class SqlAuditRepository(AuditRepository):
    """SQL implementation of ``AuditRepository`` (append-only)."""

    session_factory: async_sessionmaker[AsyncSession]

    @_store_op
    async def append(self, entry: AuditEntry) -> None:
        async with self.session_factory() as s:
            s.add(
                AuditLogRow(
                    id=entry.id,
                    bot_id=entry.bot_id,
                    event_type=entry.event_type.value,
                    permission_key=entry.permission_key.value if entry.permission_key else None,
                    actor_kind=entry.actor_kind.value,
                    details=entry.details,
                    created_at=entry.created_at,
                )
            )
            await s.commit()

    @_store_op
    async def list(
        self,
        *,
        bot_id: Optional[str] = None,
        since: Optional[datetime] = None,
        permission_key: Optional[PermissionKey] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        async with self.session_factory() as s:
            stmt = select(AuditLogRow)
            if bot_id is not None:
                stmt = stmt.where(AuditLogRow.bot_id == bot_id)
            if since is not None:
                stmt = stmt.where(AuditLogRow.created_at >= since)
            if permission_key is not None:
                stmt = stmt.where(AuditLogRow.permission_key == permission_key.value)
            stmt = stmt.order_by(AuditLogRow.created_at.desc(), AuditLogRow.seq.desc()).limit(limit)
            result = await s.execute(stmt)
            rows = result.scalars().all()

        return [
            AuditEntry(
                id=row.id,
                bot_id=row.bot_id,
                event_type=AuditEventType(row.event_type),
                permission_key=PermissionKey(row.permission_key) if row.permission_key else None,
                actor_kind=ActorKind(row.actor_kind),
                created_at=_as_utc(row.created_at),
                details=row.details or {},
            )
            for row in rows
        ]


def _run_from_row(row: AgentRunRow) -> AgentRun:
    return AgentRun(
        id=row.id,
        bot_id=row.bot_id,
        trigger=RunTrigger(row.trigger),
        autonomy_level=AutonomyLevel(row.autonomy_level),
        goal=row.goal,
        plan_id=row.plan_id,
        status=AgentRunStatus(row.status),
        step_count=row.step_count,
        tool_call_count=row.tool_call_count,
        reasoning_call_count=row.reasoning_call_count,
        termination_reason=TerminationReason(row.termination_reason) if row.termination_reason else None,
        summary=row.summary,
        policy_snapshot=row.policy_snapshot or {},
        explain_summary=row.explain_summary,
        explain_policy=row.explain_policy,
        explain_risk=row.explain_risk,
        started_at=_as_utc(row.started_at),
        finished_at=_as_utc(row.finished_at),
        duration_ms=row.duration_ms,
    )


def _apply_run(row: AgentRunRow, run: AgentRun) -> None:
    row.status = run.status.value
    row.step_count = run.step_count
    row.tool_call_count = run.tool_call_count
    row.reasoning_call_count = run.reasoning_call_count
    row.termination_reason = run.termination_reason.value if run.termination_reason else None
    row.summary = run.summary
    row.explain_summary = run.explain_summary
    row.explain_policy = run.explain_policy
    row.explain_risk = run.explain_risk
    row.finished_at = run.finished_at
    row.duration_ms = run.duration_ms


@dataclass(frozen=True)
class SqlRunRepository(RunRepository):
    """SQL implementation of ``RunRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    @_store_op
    async def create(self, run: AgentRun) -> None:
        async with self.session_factory() as s:
            row = AgentRunRow(
                id=run.id,
                bot_id=run.bot_id,
                trigger=run.trigger.value,
                autonomy_level=run.autonomy_level.value,
                goal=run.goal,
                plan_id=run.plan_id,
                policy_snapshot=run.policy_snapshot,
                started_at=run.started_at,
            )
            _apply_run(row, run)
            s.add(row)
            await s.commit()

    @_store_op
    async def update(self, run: AgentRun) -> None:
        async with self.session_factory() as s:
            row = await s.get(AgentRunRow, run.id)
            if row is None:
                return
            _apply_run(row, run)
            await s.commit()

    @_store_op
    async def get(self, run_id: str) -> Optional[AgentRun]:
        async with self.session_factory() as s:
            row = await s.get(AgentRunRow, run_id)
            return _run_from_row(row) if row is not None else None

    @_store_op
    async def list(self, bot_id: Optional[str] = None, limit: int = 50) -> list[AgentRun]:
        async with self.session_factory() as s:
            stmt = select(AgentRunRow)
            if bot_id is not None:
                stmt = stmt.where(AgentRunRow.bot_id == bot_id)
            stmt = stmt.order_by(AgentRunRow.started_at.desc()).limit(limit)
            result = await s.execute(stmt)
            return [_run_from_row(row) for row in result.scalars().all()]

    @_store_op
    async def latest_for_bot(self, bot_id: str) -> Optional[AgentRun]:
        async with self.session_factory() as s:
            stmt = (
                select(AgentRunRow)
                .where(AgentRunRow.bot_id == bot_id)
                .order_by(AgentRunRow.started_at.desc())
                .limit(1)
            )
            result = await s.execute(stmt)
            row = result.scalar_one_or_none()
            return _run_from_row(row) if row is not None else None


def _step_from_row(row: AgentStepRow) -> AgentStep:
    return AgentStep(
        id=row.id,
        agent_run_id=row.agent_run_id,
        step_index=row.step_index,
        tool_key=row.tool_key,
        permission_key=PermissionKey(row.permission_key) if row.permission_key else None,
        status=AgentStepStatus(row.status),
        risk_tier=RiskTier(row.risk_tier) if row.risk_tier else None,
        input_summary=row.input_summary,
        output_summary=row.output_summary,
        rationale=row.rationale,
        decision_reason=row.decision_reason,
        blocked_by_policy=bool(row.blocked_by_policy),
        duration_ms=row.duration_ms,
        created_at=_as_utc(row.created_at),
    )


@dataclass(frozen=True)
class SqlStepRepository(StepRepository):
    """SQL implementation of ``StepRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    @_store_op
    async def create(self, step: AgentStep) -> None:
        async with self.session_factory() as s:
            s.add(
                AgentStepRow(
                    id=step.id,
                    agent_run_id=step.agent_run_id,
                    step_index=step.step_index,
                    tool_key=step.tool_key,
                    permission_key=step.permission_key.value if step.permission_key else None,
                    status=step.status.value,
                    risk_tier=step.risk_tier.value if step.risk_tier else None,
                    input_summary=step.input_summary,
                    output_summary=step.output_summary,
                    rationale=step.rationale,
                    decision_reason=step.decision_reason,
                    blocked_by_policy=step.blocked_by_policy,
                    duration_ms=step.duration_ms,
                    created_at=step.created_at,
                )
            )
            await s.commit()

    @_store_op
    async def update(self, step: AgentStep) -> None:
        async with self.session_factory() as s:
            row = await s.get(AgentStepRow, step.id)
            if row is None:
                return
            row.status = step.status.value
            row.output_summary = step.output_summary
            row.rationale = step.rationale
            row.decision_reason = step.decision_reason
            row.blocked_by_policy = step.blocked_by_policy
            row.duration_ms = step.duration_ms
            await s.commit()

    @_store_op
    async def list(self, run_id: str) -> list[AgentStep]:
        async with self.session_factory() as s:
            stmt = (
                select(AgentStepRow)
                .where(AgentStepRow.agent_run_id == run_id)
                .order_by(AgentStepRow.step_index.asc(), AgentStepRow.created_at.asc())
            )
            result = await s.execute(stmt)
            return [_step_from_row(row) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    overrides: SqlPermissionOverrideRepository
    audit: SqlAuditRepository
    runs: SqlRunRepository
    steps: SqlStepRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        overrides=SqlPermissionOverrideRepository(session_factory=session_factory),
        audit=SqlAuditRepository(session_factory=session_factory),
        runs=SqlRunRepository(session_factory=session_factory),
        steps=SqlStepRepository(session_factory=session_factory),
    )

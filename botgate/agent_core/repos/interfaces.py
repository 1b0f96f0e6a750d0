"""Repository interface contracts.

The policy engine and the runtime depend on these Protocols instead of
concrete persistence implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak sessions/transactions to callers.
- Infrastructure failures surface as ``StoreUnavailable`` so the approval gate
  can fail closed without knowing the storage technology.
- Permission overrides are written with an atomic per-key upsert: at most one
  row exists per (scope, scope_id, permission_key).
- The audit repository is append-only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..policy.models import PermissionOverride, PolicySnapshot
from ..schemas.domain import (
    AgentRun,
    AgentStep,
    AuditEntry,
    PermissionKey,
    PermissionScope,
)


class PermissionOverrideRepository(Protocol):
    """Durable store of global and per-bot permission overrides."""

    async def upsert(self, override: PermissionOverride) -> PermissionOverride:
        """
        Insert or replace the override for ``(scope, scope_id, permission_key)``.

        Args:
            override: The override to persist.

        Returns:
            The stored override. Its ``id`` is the id of the existing row when
            one was replaced.
        """
        ...

    async def get(
        self, scope: PermissionScope, scope_id: Optional[str], key: PermissionKey
    ) -> Optional[PermissionOverride]:
        ...

    async def delete(self, scope: PermissionScope, scope_id: Optional[str], key: PermissionKey) -> bool:
        """
        Remove an override.

        Returns:
            True if a row was deleted, False if none existed.
        """
        ...

    async def list(self, scope: PermissionScope, scope_id: Optional[str] = None) -> list[PermissionOverride]:
        ...

    async def snapshot(self, bot_id: Optional[str]) -> PolicySnapshot:
        """
        Read the global layer and, if ``bot_id`` is given, that bot's layer in
        a single consistent read.
        """
        ...


class AuditRepository(Protocol):
    """Append-only store of audit entries."""

    async def append(self, entry: AuditEntry) -> None:
        ...

    async def list(
        self,
        *,
        bot_id: Optional[str] = None,
        since: Optional[datetime] = None,
        permission_key: Optional[PermissionKey] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """
        List entries newest first.

        Args:
            bot_id: Restrict to one bot.
            since: Only entries created at or after this instant.
            permission_key: Restrict to one permission key.
            limit: Max number of entries to return.
        """
        ...


class RunRepository(Protocol):
    """Persist and query agent runs."""

    async def create(self, run: AgentRun) -> None:
        ...

    async def update(self, run: AgentRun) -> None:
        """Replace the mutable fields of an existing run."""
        ...

    async def get(self, run_id: str) -> Optional[AgentRun]:
        ...

    async def list(self, bot_id: Optional[str] = None, limit: int = 50) -> list[AgentRun]:
        """List runs newest first, optionally for one bot."""
        ...

    async def latest_for_bot(self, bot_id: str) -> Optional[AgentRun]:
        """Return the most recently started run for ``bot_id``."""
        ...


class StepRepository(Protocol):
    """Persist the ordered steps of a run."""

    async def create(self, step: AgentStep) -> None:
        ...

    async def update(self, step: AgentStep) -> None:
        ...

    async def list(self, run_id: str) -> list[AgentStep]:
        """List steps of a run ordered by ``step_index``."""
        ...

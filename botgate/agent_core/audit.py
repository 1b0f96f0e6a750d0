"""Append-only audit trail for policy decisions and approval resolutions.

``AuditLog`` is a single-writer front for an ``AuditRepository``: appends are
serialized through an ``asyncio.Lock`` and the entry timestamp is taken inside
the lock, so entries for the same (bot, key) pair are ordered exactly as the
decisions were made.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .repos.interfaces import AuditRepository
from .schemas.domain import ActorKind, AuditEntry, AuditEventType, PermissionKey

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, repo: AuditRepository) -> None:
        self._repo = repo
        self._lock = asyncio.Lock()

    async def record(
        self,
        event_type: AuditEventType,
        *,
        bot_id: Optional[str] = None,
        permission_key: Optional[PermissionKey] = None,
        actor: ActorKind = ActorKind.system,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """
        Append one entry.

        Raises:
            StoreUnavailable: If the entry could not be persisted.
        """
        async with self._lock:
            entry = AuditEntry(
                bot_id=bot_id,
                event_type=event_type,
                permission_key=permission_key,
                actor_kind=actor,
                created_at=datetime.now(timezone.utc),
                details=dict(details or {}),
            )
            await self._repo.append(entry)
        logger.debug(
            "audit %s bot=%s key=%s",
            event_type.value,
            bot_id,
            permission_key.value if permission_key else None,
        )
        return entry

    async def query(
        self,
        *,
        bot_id: Optional[str] = None,
        since_days: Optional[float] = 7,
        permission_key: Optional[PermissionKey] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """List entries newest first within the last ``since_days`` days."""
        since = None
        if since_days is not None:
            since = datetime.now(timezone.utc) - timedelta(days=since_days)
        return await self._repo.list(bot_id=bot_id, since=since, permission_key=permission_key, limit=limit)

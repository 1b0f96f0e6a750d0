"""Approval gate: the checkpoint every sensitive action passes through.

``ApprovalGate.check`` turns the effective permission for (bot, key) into one
of three decisions:

- ``Allowed``: auto-allowed, or covered by a single-use grant.
- ``Denied``: disabled or auto-denied, or the policy store could not be read
  (the gate fails closed).
- ``RequiresApproval``: a pending ``ApprovalRequest`` was registered and the
  caller must suspend the action.

Suspension
----------

A caller that intends to suspend passes ``will_wait=True`` to ``check``, which
registers a one-shot ``asyncio.Future`` for the request, then calls
``wait_for_resolution`` with a bounded timeout. A human resolves the request
with ``approve`` or ``deny``. The request is removed from the registry before
its future is completed, so it resolves at most once and resolving one request
never touches another.

``once`` approvals write nothing durable. If nobody is waiting on the request
(the UI flow: check, prompt, approve, retry), the approval is kept as a
single-use grant for exactly that (bot, key, action) and consumed by the next
matching ``check``. The grant is only honoured while the key still resolves to
``APPROVAL_REQUIRED``; a key that became disabled, denied or auto-allowed
discards it, and an unused grant lapses after ``request_ttl_seconds``.

``bot`` and ``global`` approvals upsert an ``AUTO_ALLOWED`` override at that
scope, keeping the resource scope already stored there, after which ``check``
returns ``Allowed`` without prompting again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
from uuid import uuid4

from pydantic import Field

from ..audit import AuditLog
from ..errors import ApprovalNotFound, ApprovalTimeout, StoreUnavailable
from ..repos.interfaces import PermissionOverrideRepository
from ..schemas.base import BaseSchema
from ..schemas.domain import (
    ActorKind,
    ApprovalMode,
    AuditEventType,
    PermissionKey,
    PermissionScope,
)
from .messages import PermissionMessage, message_for
from .models import EffectivePermission, PermissionOverride, PermissionValue
from .resolver import PermissionResolver

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalScope(str, Enum):
    once = "once"
    bot = "bot"
    global_ = "global"


class Resolution(str, Enum):
    once = "once"
    bot = "bot"
    global_ = "global"
    deny = "deny"
    cancelled = "cancelled"


class ApprovalRequest(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    permission_key: PermissionKey
    action: str
    bot_id: Optional[str] = None
    payload_summary: str = ""
    message: PermissionMessage
    legal_scopes: List[ApprovalScope]
    created_at: datetime = Field(default_factory=_utc_now)


@dataclass(frozen=True)
class Allowed:
    permission: EffectivePermission
    via_grant: bool = False


@dataclass(frozen=True)
class Denied:
    reason: str
    permission_key: PermissionKey
    message: PermissionMessage


@dataclass(frozen=True)
class RequiresApproval:
    request: ApprovalRequest

    @property
    def message(self) -> PermissionMessage:
        return self.request.message


Decision = Union[Allowed, Denied, RequiresApproval]

_GrantKey = Tuple[Optional[str], PermissionKey, str]


@dataclass
class _Registry:
    pending: Dict[str, ApprovalRequest] = field(default_factory=dict)
    waiters: Dict[str, "asyncio.Future[Resolution]"] = field(default_factory=dict)
    grants: Dict[_GrantKey, List[datetime]] = field(default_factory=dict)


def legal_scopes_for(bot_id: Optional[str]) -> List[ApprovalScope]:
    if bot_id:
        return [ApprovalScope.once, ApprovalScope.bot, ApprovalScope.global_]
    return [ApprovalScope.once, ApprovalScope.global_]


_APPROVED_EVENT = {
    ApprovalScope.once: AuditEventType.approved_once,
    ApprovalScope.bot: AuditEventType.approved_bot,
    ApprovalScope.global_: AuditEventType.approved_global,
}


class ApprovalGate:
    """Decide, audit, and hold pending approvals for gated actions."""

    def __init__(
        self,
        *,
        resolver: PermissionResolver,
        overrides: PermissionOverrideRepository,
        audit: AuditLog,
        request_ttl_seconds: float = 900.0,
    ) -> None:
        self._resolver = resolver
        self._overrides = overrides
        self._audit = audit
        self._ttl = timedelta(seconds=request_ttl_seconds)
        self._registry = _Registry()

    async def check(
        self,
        bot_id: Optional[str],
        permission_key: PermissionKey,
        action: str,
        payload_summary: str = "",
        *,
        actor: ActorKind = ActorKind.agent,
        will_wait: bool = False,
    ) -> Decision:
        """
        Evaluate one gated action.

        Args:
            bot_id: The bot attempting the action, or None for user-level actions.
            permission_key: The permission the action requires.
            action: Logical action name (tool key or UI action).
            payload_summary: Short, already-redacted description of the input.
            actor: Who is attempting the action.
            will_wait: The caller will suspend on ``wait_for_resolution`` if
                approval is required. A ``once`` approval then releases the
                waiter instead of leaving a single-use grant behind.

        Never raises for store failures: an unreadable policy store yields
        ``Denied`` and is logged as an infrastructure fault.
        """
        key = PermissionKey(permission_key)
        try:
            perm = await self._resolver.resolve(bot_id, key)
            return await self._decide(perm, bot_id, key, action, payload_summary, actor, will_wait)
        except StoreUnavailable as exc:
            logger.error("policy store unavailable, denying %s for bot=%s: %s", key.value, bot_id, exc)
            return Denied(reason="policy store unavailable", permission_key=key, message=message_for(key))

    async def _decide(
        self,
        perm: EffectivePermission,
        bot_id: Optional[str],
        key: PermissionKey,
        action: str,
        payload_summary: str,
        actor: ActorKind,
        will_wait: bool,
    ) -> Decision:
        details = {"action": action, "source": perm.source.value}

        if not perm.enabled or perm.approval_mode == ApprovalMode.AUTO_DENIED:
            self._registry.grants.pop((bot_id, key, action), None)
            if not perm.enabled:
                reason = f"Permission '{key.value}' is disabled"
            else:
                reason = f"Permission '{key.value}' is denied by policy"
            await self._audit.record(
                AuditEventType.auto_denied,
                bot_id=bot_id,
                permission_key=key,
                actor=actor,
                details={**details, "reason": reason},
            )
            return Denied(reason=reason, permission_key=key, message=message_for(key))

        if perm.approval_mode == ApprovalMode.APPROVAL_REQUIRED:
            if self._consume_grant(bot_id, key, action):
                await self._audit.record(
                    AuditEventType.approved_once,
                    bot_id=bot_id,
                    permission_key=key,
                    actor=actor,
                    details={**details, "grant_consumed": True},
                )
                return Allowed(permission=perm, via_grant=True)

            request = ApprovalRequest(
                permission_key=key,
                action=action,
                bot_id=bot_id,
                payload_summary=payload_summary,
                message=message_for(key),
                legal_scopes=legal_scopes_for(bot_id),
            )
            self._prune_expired()
            self._registry.pending[request.id] = request
            if will_wait:
                self._registry.waiters[request.id] = asyncio.get_running_loop().create_future()
            await self._audit.record(
                AuditEventType.approval_requested,
                bot_id=bot_id,
                permission_key=key,
                actor=actor,
                details={**details, "request_id": request.id},
            )
            return RequiresApproval(request=request)

        self._registry.grants.pop((bot_id, key, action), None)
        await self._audit.record(
            AuditEventType.auto_allowed,
            bot_id=bot_id,
            permission_key=key,
            actor=actor,
            details=details,
        )
        return Allowed(permission=perm)

    def _consume_grant(self, bot_id: Optional[str], key: PermissionKey, action: str) -> bool:
        gk = (bot_id, key, action)
        cutoff = _utc_now() - self._ttl
        issued = [at for at in self._registry.grants.get(gk, []) if at >= cutoff]
        if not issued:
            self._registry.grants.pop(gk, None)
            return False
        issued.pop(0)
        if issued:
            self._registry.grants[gk] = issued
        else:
            del self._registry.grants[gk]
        return True

    def _prune_expired(self) -> None:
        cutoff = _utc_now() - self._ttl
        for request_id, request in list(self._registry.pending.items()):
            if request_id not in self._registry.waiters and request.created_at < cutoff:
                del self._registry.pending[request_id]
        for gk, issued in list(self._registry.grants.items()):
            kept = [at for at in issued if at >= cutoff]
            if kept:
                self._registry.grants[gk] = kept
            else:
                del self._registry.grants[gk]

    def list_pending(self, bot_id: Optional[str] = None) -> List[ApprovalRequest]:
        """Pending requests, oldest first."""
        self._prune_expired()
        requests = [r for r in self._registry.pending.values() if bot_id is None or r.bot_id == bot_id]
        return sorted(requests, key=lambda r: r.created_at)

    def get_pending(self, request_id: str) -> Optional[ApprovalRequest]:
        return self._registry.pending.get(request_id)

    def _resolve_waiter(self, request_id: str, resolution: Resolution) -> bool:
        future = self._registry.waiters.get(request_id)
        if future is None:
            return False
        if not future.done():
            future.set_result(resolution)
        return True

    async def wait_for_resolution(self, request_id: str, timeout: float) -> Resolution:
        """
        Suspend until ``request_id`` is resolved or ``timeout`` seconds pass.

        Only requests created with ``check(..., will_wait=True)`` can be
        awaited. If the request was resolved before the caller got here, the
        stored resolution is returned immediately.

        Raises:
            ApprovalNotFound: If no waiter was registered for the request.
            ApprovalTimeout: If nobody resolved it in time. The request is
                withdrawn and an ``approval_expired`` entry is written.
        """
        future = self._registry.waiters.get(request_id)
        if future is None:
            raise ApprovalNotFound(request_id)
        try:
            return await asyncio.wait_for(future, timeout=max(timeout, 0.0))
        except asyncio.TimeoutError:
            request = self._registry.pending.pop(request_id, None)
            if request is not None:
                await self._audit.record(
                    AuditEventType.approval_expired,
                    bot_id=request.bot_id,
                    permission_key=request.permission_key,
                    details={"action": request.action, "request_id": request_id, "waited_s": timeout},
                )
            raise ApprovalTimeout(request_id, timeout) from None
        finally:
            self._registry.waiters.pop(request_id, None)
            self._registry.pending.pop(request_id, None)

    def _take(self, request_id: str) -> ApprovalRequest:
        request = self._registry.pending.pop(request_id, None)
        if request is None:
            raise ApprovalNotFound(request_id)
        return request

    async def approve(
        self,
        request_id: str,
        scope: ApprovalScope,
        *,
        actor: ActorKind = ActorKind.user,
    ) -> ApprovalRequest:
        """
        Resolve a pending request as approved at ``scope``.

        Raises:
            ApprovalNotFound: If the request is not (or no longer) pending.
            ValueError: If ``scope`` is not legal for the request.
        """
        scope = ApprovalScope(scope)
        request = self._registry.pending.get(request_id)
        if request is None:
            raise ApprovalNotFound(request_id)
        if scope not in request.legal_scopes:
            raise ValueError(f"scope '{scope.value}' is not allowed for this request")
        self._take(request_id)

        has_waiter = request_id in self._registry.waiters
        await self._grant(
            request.bot_id,
            request.permission_key,
            request.action,
            scope,
            actor=actor,
            request_id=request.id,
            register_grant=not has_waiter,
        )
        self._resolve_waiter(request_id, Resolution(scope.value))
        return request

    async def approve_matching(
        self,
        permission_key: PermissionKey,
        action: str,
        bot_id: Optional[str],
        scope: ApprovalScope = ApprovalScope.once,
        *,
        actor: ActorKind = ActorKind.user,
    ) -> Optional[ApprovalRequest]:
        """
        Approve by (key, action, bot) instead of by request id.

        Resolves the oldest matching pending request if there is one. Otherwise
        the approval is applied directly: a single-use grant for ``once``, an
        override for ``bot``/``global``.
        """
        key = PermissionKey(permission_key)
        scope = ApprovalScope(scope)
        for request in self.list_pending(bot_id):
            if request.permission_key == key and request.action == action and request.bot_id == bot_id:
                return await self.approve(request.id, scope, actor=actor)

        if scope not in legal_scopes_for(bot_id):
            raise ValueError(f"scope '{scope.value}' requires a bot id")
        await self._grant(bot_id, key, action, scope, actor=actor, request_id=None, register_grant=True)
        return None

    async def _grant(
        self,
        bot_id: Optional[str],
        key: PermissionKey,
        action: str,
        scope: ApprovalScope,
        *,
        actor: ActorKind,
        request_id: Optional[str],
        register_grant: bool,
    ) -> None:
        details = {"action": action, "scope": scope.value, "request_id": request_id}
        if scope == ApprovalScope.once:
            if register_grant:
                self._registry.grants.setdefault((bot_id, key, action), []).append(_utc_now())
        else:
            target_scope = PermissionScope.bot if scope == ApprovalScope.bot else PermissionScope.global_
            target_id = bot_id if scope == ApprovalScope.bot else None
            # Keep only what is already stored at the target scope.
            existing = await self._overrides.get(target_scope, target_id, key)
            override = PermissionOverride(
                scope=target_scope,
                scope_id=target_id,
                permission_key=key,
                value=PermissionValue(
                    enabled=True,
                    approval_mode=ApprovalMode.AUTO_ALLOWED,
                    resource_scope=existing.value.resource_scope if existing is not None else None,
                ),
            )
            stored = await self._overrides.upsert(override)
            details["override_id"] = stored.id
        await self._audit.record(
            _APPROVED_EVENT[scope],
            bot_id=bot_id,
            permission_key=key,
            actor=actor,
            details=details,
        )

    async def deny(self, request_id: str, *, actor: ActorKind = ActorKind.user) -> ApprovalRequest:
        """Abort the action behind ``request_id``. No override is written."""
        request = self._take(request_id)
        await self._audit.record(
            AuditEventType.denied,
            bot_id=request.bot_id,
            permission_key=request.permission_key,
            actor=actor,
            details={"action": request.action, "request_id": request_id},
        )
        self._resolve_waiter(request_id, Resolution.deny)
        return request

    def cancel(self, request_id: str) -> bool:
        """Withdraw a request without a human decision (run cancelled or not interactive)."""
        request = self._registry.pending.pop(request_id, None)
        self._resolve_waiter(request_id, Resolution.cancelled)
        return request is not None

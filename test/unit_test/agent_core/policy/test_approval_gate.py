"""
Unit tests for ``ApprovalGate``.

Tests cover:
- Allowed / Denied / RequiresApproval decisions and their audit entries
- Fail-closed behaviour when the policy store is unreachable
- Single-use grants, their expiry, and scope-wide approvals
- Suspending on a request and resolving it from another task
- Independence of concurrent requests, timeouts and cancellation
"""

import asyncio
from datetime import timedelta

import pytest

from botgate.agent_core.audit import AuditLog
from botgate.agent_core.errors import ApprovalNotFound, ApprovalTimeout
from botgate.agent_core.policy.gate import (
    Allowed,
    ApprovalGate,
    ApprovalScope,
    Denied,
    RequiresApproval,
    Resolution,
    legal_scopes_for,
)
from botgate.agent_core.policy.models import PathsScope
from botgate.agent_core.policy.resolver import HostEnvironment, PermissionResolver
from botgate.agent_core.schemas.domain import (
    ApprovalMode,
    PermissionKey,
    PermissionScope,
)


@pytest.fixture
def gate(fake_repos):
    resolver = PermissionResolver(fake_repos.overrides, host=HostEnvironment())
    return ApprovalGate(resolver=resolver, overrides=fake_repos.overrides, audit=AuditLog(fake_repos.audit))


async def _request(gate, bot_id="bot-1", key=PermissionKey.SOURCE_WRITE, action="sources.manage", **kw):
    decision = await gate.check(bot_id, key, action, **kw)
    assert isinstance(decision, RequiresApproval)
    return decision.request


class TestDecisions:
    async def test_auto_allowed(self, gate, fake_repos):
        decision = await gate.check("bot-1", PermissionKey.WEB_RSS, "web.rss")

        assert isinstance(decision, Allowed)
        assert decision.via_grant is False
        assert fake_repos.audit.types() == ["auto_allowed"]

    async def test_disabled_is_denied_with_message(self, gate, fake_repos):
        decision = await gate.check("bot-1", PermissionKey.FS_DELETE, "files.delete")

        assert isinstance(decision, Denied)
        assert "disabled" in decision.reason
        assert decision.message.title == "Wants to delete files"
        assert fake_repos.audit.types() == ["auto_denied"]

    async def test_auto_denied_override(self, gate, put_override):
        await put_override(PermissionKey.WEB_FETCH, "bot-1", enabled=True, approval_mode=ApprovalMode.AUTO_DENIED)

        decision = await gate.check("bot-1", PermissionKey.WEB_FETCH, "web.fetch")

        assert isinstance(decision, Denied)
        assert "denied by policy" in decision.reason

    async def test_store_unavailable_fails_closed(self, gate, fake_repos):
        fake_repos.overrides.fail = True

        decision = await gate.check("bot-1", PermissionKey.WEB_RSS, "web.rss")

        assert isinstance(decision, Denied)
        assert decision.reason == "policy store unavailable"

    async def test_approval_required_registers_request(self, gate, fake_repos):
        request = await _request(gate, payload_summary="add https://example.com/feed")

        assert request.permission_key == PermissionKey.SOURCE_WRITE
        assert request.legal_scopes == [ApprovalScope.once, ApprovalScope.bot, ApprovalScope.global_]
        assert request.message.title == "Wants to modify sources"
        assert gate.list_pending("bot-1") == [request]
        assert fake_repos.audit.types() == ["approval_requested"]
        assert fake_repos.audit.entries[0].details["request_id"] == request.id

    def test_legal_scopes_without_bot(self):
        assert legal_scopes_for(None) == [ApprovalScope.once, ApprovalScope.global_]


class TestApprovals:
    async def test_once_grant_is_single_use(self, gate, fake_repos):
        request = await _request(gate)
        await gate.approve(request.id, ApprovalScope.once)

        first = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage")
        second = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage")

        assert isinstance(first, Allowed) and first.via_grant
        assert isinstance(second, RequiresApproval)
        assert fake_repos.overrides.rows == {}
        assert fake_repos.audit.types() == [
            "approval_requested",
            "approved_once",
            "approved_once",
            "approval_requested",
        ]

    async def test_once_grant_is_scoped_to_action(self, gate):
        request = await _request(gate)
        await gate.approve(request.id, ApprovalScope.once)

        other_action = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.remove")
        other_bot = await gate.check("bot-2", PermissionKey.SOURCE_WRITE, "sources.manage")

        assert isinstance(other_action, RequiresApproval)
        assert isinstance(other_bot, RequiresApproval)

    async def test_grant_discarded_when_key_disabled(self, gate, put_override):
        await gate.approve_matching(PermissionKey.SOURCE_WRITE, "sources.manage", "bot-1")
        await put_override(PermissionKey.SOURCE_WRITE, "bot-1", enabled=False, approval_mode=ApprovalMode.APPROVAL_REQUIRED)

        denied = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage")
        await put_override(PermissionKey.SOURCE_WRITE, "bot-1", enabled=True, approval_mode=ApprovalMode.APPROVAL_REQUIRED)
        again = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage")

        assert isinstance(denied, Denied)
        assert isinstance(again, RequiresApproval)

    async def test_grant_dropped_once_key_is_auto_allowed(self, gate, put_override):
        await gate.approve_matching(PermissionKey.SOURCE_WRITE, "sources.manage", "bot-1")
        await put_override(PermissionKey.SOURCE_WRITE, "bot-1", enabled=True, approval_mode=ApprovalMode.AUTO_ALLOWED)

        allowed = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage")
        await put_override(PermissionKey.SOURCE_WRITE, "bot-1", enabled=True, approval_mode=ApprovalMode.APPROVAL_REQUIRED)
        again = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage")

        assert isinstance(allowed, Allowed) and not allowed.via_grant
        assert isinstance(again, RequiresApproval)

    async def test_unused_grant_lapses(self, fake_repos):
        resolver = PermissionResolver(fake_repos.overrides, host=HostEnvironment())
        gate = ApprovalGate(
            resolver=resolver,
            overrides=fake_repos.overrides,
            audit=AuditLog(fake_repos.audit),
            request_ttl_seconds=0.05,
        )
        await gate.approve_matching(PermissionKey.SOURCE_WRITE, "sources.manage", "bot-1")
        await asyncio.sleep(0.1)

        decision = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage")

        assert isinstance(decision, RequiresApproval)
        assert fake_repos.audit.types() == ["approved_once", "approval_requested"]

    async def test_bot_scope_writes_override(self, gate, fake_repos):
        request = await _request(gate)
        await gate.approve(request.id, ApprovalScope.bot)

        stored = await fake_repos.overrides.get(PermissionScope.bot, "bot-1", PermissionKey.SOURCE_WRITE)
        same_bot = await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage")
        other_bot = await gate.check("bot-2", PermissionKey.SOURCE_WRITE, "sources.manage")

        assert stored.value.approval_mode == ApprovalMode.AUTO_ALLOWED
        assert isinstance(same_bot, Allowed) and not same_bot.via_grant
        assert isinstance(other_bot, RequiresApproval)
        assert "approved_bot" in fake_repos.audit.types()

    async def test_global_scope_writes_global_override(self, gate, fake_repos):
        request = await _request(gate)
        await gate.approve(request.id, ApprovalScope.global_)

        other_bot = await gate.check("bot-2", PermissionKey.SOURCE_WRITE, "sources.manage")

        assert await fake_repos.overrides.get(PermissionScope.global_, None, PermissionKey.SOURCE_WRITE) is not None
        assert isinstance(other_bot, Allowed)

    async def test_global_approval_does_not_copy_bot_paths(self, gate, fake_repos, put_override):
        await put_override(
            PermissionKey.FS_WRITE,
            "bot-1",
            enabled=True,
            approval_mode=ApprovalMode.APPROVAL_REQUIRED,
            resource_scope=PathsScope(roots=["/home/bot1/private"]),
        )
        request = await _request(gate, key=PermissionKey.FS_WRITE, action="files.write")

        await gate.approve(request.id, ApprovalScope.global_)

        stored = await fake_repos.overrides.get(PermissionScope.global_, None, PermissionKey.FS_WRITE)
        assert stored.value.approval_mode == ApprovalMode.AUTO_ALLOWED
        assert stored.value.resource_scope is None

    async def test_bot_approval_keeps_bot_paths(self, gate, fake_repos, put_override):
        await put_override(
            PermissionKey.FS_WRITE,
            "bot-1",
            enabled=True,
            approval_mode=ApprovalMode.APPROVAL_REQUIRED,
            resource_scope=PathsScope(roots=["/home/bot1/private"]),
        )
        request = await _request(gate, key=PermissionKey.FS_WRITE, action="files.write")

        await gate.approve(request.id, ApprovalScope.bot)

        stored = await fake_repos.overrides.get(PermissionScope.bot, "bot-1", PermissionKey.FS_WRITE)
        assert stored.value.approval_mode == ApprovalMode.AUTO_ALLOWED
        assert stored.value.resource_scope == PathsScope(roots=["/home/bot1/private"])

    async def test_bot_scope_rejected_without_bot(self, gate):
        request = await _request(gate, bot_id=None)

        with pytest.raises(ValueError):
            await gate.approve(request.id, ApprovalScope.bot)
        assert gate.get_pending(request.id) is not None

    async def test_request_resolves_at_most_once(self, gate):
        request = await _request(gate)
        await gate.approve(request.id, ApprovalScope.once)

        with pytest.raises(ApprovalNotFound):
            await gate.approve(request.id, ApprovalScope.once)
        with pytest.raises(ApprovalNotFound):
            await gate.deny(request.id)

    async def test_deny_writes_nothing_durable(self, gate, fake_repos):
        request = await _request(gate)

        await gate.deny(request.id)

        assert fake_repos.overrides.rows == {}
        assert gate.list_pending() == []
        assert fake_repos.audit.types()[-1] == "denied"

    async def test_approve_matching_resolves_pending_request(self, gate):
        request = await _request(gate)

        resolved = await gate.approve_matching(PermissionKey.SOURCE_WRITE, "sources.manage", "bot-1")

        assert resolved is not None and resolved.id == request.id
        assert gate.list_pending() == []

    async def test_list_pending_oldest_first_and_pruned(self, gate):
        old = await _request(gate)
        new = await _request(gate, bot_id="bot-2")
        assert [r.id for r in gate.list_pending()] == [old.id, new.id]
        assert [r.id for r in gate.list_pending("bot-2")] == [new.id]

        gate.get_pending(old.id).created_at -= timedelta(hours=1)

        assert [r.id for r in gate.list_pending()] == [new.id]


class TestWaiting:
    async def test_waiter_released_by_once_approval(self, gate):
        request = await _request(gate, will_wait=True)
        waiter = asyncio.create_task(gate.wait_for_resolution(request.id, 5))
        await asyncio.sleep(0)

        await gate.approve(request.id, ApprovalScope.once)

        assert await waiter == Resolution.once
        # The waiter consumed the approval, no grant is left behind.
        assert isinstance(await gate.check("bot-1", PermissionKey.SOURCE_WRITE, "sources.manage"), RequiresApproval)

    async def test_approval_before_wait_is_not_lost(self, gate):
        request = await _request(gate, will_wait=True)
        await gate.approve(request.id, ApprovalScope.once)

        resolution = await gate.wait_for_resolution(request.id, 0.05)

        assert resolution == Resolution.once

    async def test_concurrent_requests_are_independent(self, gate):
        first = await _request(gate, will_wait=True)
        second = await _request(gate, will_wait=True)
        wait_first = asyncio.create_task(gate.wait_for_resolution(first.id, 5))
        wait_second = asyncio.create_task(gate.wait_for_resolution(second.id, 5))
        await asyncio.sleep(0)

        await gate.deny(first.id)
        assert await wait_first == Resolution.deny
        assert not wait_second.done()
        assert gate.get_pending(second.id) is not None

        await gate.approve(second.id, ApprovalScope.once)
        assert await wait_second == Resolution.once

    async def test_timeout_withdraws_request(self, gate, fake_repos):
        request = await _request(gate, will_wait=True)

        with pytest.raises(ApprovalTimeout):
            await gate.wait_for_resolution(request.id, 0.05)

        assert gate.list_pending() == []
        assert fake_repos.audit.types()[-1] == "approval_expired"
        with pytest.raises(ApprovalNotFound):
            await gate.approve(request.id, ApprovalScope.once)

    async def test_cancel_releases_waiter(self, gate):
        request = await _request(gate, will_wait=True)
        waiter = asyncio.create_task(gate.wait_for_resolution(request.id, 5))
        await asyncio.sleep(0)

        assert gate.cancel(request.id) is True

        assert await waiter == Resolution.cancelled
        assert gate.cancel(request.id) is False

    async def test_wait_requires_registered_waiter(self, gate):
        request = await _request(gate)

        with pytest.raises(ApprovalNotFound):
            await gate.wait_for_resolution(request.id, 0.05)

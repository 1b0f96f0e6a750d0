"""Exception taxonomy for the agent core.

Entry-time rejections (manual mode, cooldown, unknown plan) are raised to the
caller before any run exists. Everything that happens inside a run is resolved
by the executor into a terminal run status instead of escaping as an exception.
"""

from __future__ import annotations

from typing import Optional

from .policy.messages import PermissionMessage, message_for
from .schemas.domain import PermissionKey


class AgentCoreError(Exception):
    """Base class for all agent core errors."""


class PolicyDenied(AgentCoreError):
    """A single action was refused by policy. Not retried automatically."""

    def __init__(
        self,
        reason: str,
        *,
        permission_key: Optional[PermissionKey] = None,
        message: Optional[PermissionMessage] = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.permission_key = permission_key
        if message is None and permission_key is not None:
            message = message_for(permission_key)
        self.message = message


class CooldownActive(PolicyDenied):
    def __init__(self, retry_after_seconds: float) -> None:
        super().__init__(
            f"bot is cooling down, retry in {retry_after_seconds:.0f}s",
            permission_key=PermissionKey.AGENT_RUN,
        )
        self.retry_after_seconds = retry_after_seconds


class PlanApprovalRequired(PolicyDenied):
    """At L1 a multi-step or risky goal must be planned and approved first."""


class RunInProgress(PolicyDenied):
    pass


class ApprovalTimeout(AgentCoreError):
    """Nobody resolved an approval request within its wait window."""

    def __init__(self, request_id: str, waited_seconds: float) -> None:
        super().__init__(f"approval {request_id} not resolved within {waited_seconds:.1f}s")
        self.request_id = request_id
        self.waited_seconds = waited_seconds


class ApprovalNotFound(AgentCoreError):
    pass


class PlanNotFound(AgentCoreError):
    """The referenced plan is unknown, expired, or belongs to another bot."""


class PlanMismatch(AgentCoreError):
    """The submitted plan hash does not match the stored plan."""


class StoreUnavailable(AgentCoreError):
    """Persistent state could not be read or written."""

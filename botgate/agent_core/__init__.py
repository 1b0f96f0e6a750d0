"""Permission policy engine and bounded agent runtime.

This package contains the core of the system: every sensitive action a bot
attempts is checked against a layered policy, audited, and bounded by hard
resource limits.

Design overview
---------------

- ``policy``: the static permission table, override models, the
  ``PermissionResolver`` (default, then global, then bot) and the
  ``ApprovalGate`` (allow, deny, or suspend until a human answers).
- ``audit``: the append-only ``AuditLog``.
- ``planning``: ``StructuredPlanner`` turns a goal into an ``AgentPlan`` of
  annotated tool steps; plans are proposals, never authorizations.
- ``runtime``: ``AgentExecutor`` runs a plan on LangGraph under a
  ``RunBudget``; ``RunRecorder`` persists runs and steps.
- ``repos``: repository Protocols and their async SQLAlchemy implementations.

Typical usage
-------------

Most applications should build an ``AgentService`` with
``factory.build_agent_service`` and use it for every operation.
"""

from .errors import (
    AgentCoreError,
    ApprovalNotFound,
    ApprovalTimeout,
    CooldownActive,
    PlanMismatch,
    PlanNotFound,
    PolicyDenied,
    StoreUnavailable,
)
from .schemas.domain import (
    AgentRun,
    AgentRunStatus,
    AgentStep,
    AuditEntry,
    AutonomyLevel,
    PermissionKey,
)

__all__ = [
    "AgentCoreError",
    "AgentRun",
    "AgentRunStatus",
    "AgentStep",
    "ApprovalNotFound",
    "ApprovalTimeout",
    "AuditEntry",
    "AutonomyLevel",
    "CooldownActive",
    "PermissionKey",
    "PlanMismatch",
    "PlanNotFound",
    "PolicyDenied",
    "StoreUnavailable",
]

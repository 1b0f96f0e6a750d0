from .base import BaseSchema, FrozenSchema
from .domain import (
    ActorKind,
    AgentRun,
    AgentRunStatus,
    AgentStep,
    AgentStepStatus,
    ApprovalMode,
    AuditEntry,
    AuditEventType,
    AutonomyLevel,
    EgressLevel,
    PermissionKey,
    PermissionScope,
    PermissionSource,
    RiskTier,
    RunTrigger,
    TerminationReason,
)

__all__ = [
    "BaseSchema",
    "FrozenSchema",
    "ActorKind",
    "AgentRun",
    "AgentRunStatus",
    "AgentStep",
    "AgentStepStatus",
    "ApprovalMode",
    "AuditEntry",
    "AuditEventType",
    "AutonomyLevel",
    "EgressLevel",
    "PermissionKey",
    "PermissionScope",
    "PermissionSource",
    "RiskTier",
    "RunTrigger",
    "TerminationReason",
]

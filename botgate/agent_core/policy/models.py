from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import Field, model_validator

from ..schemas.base import BaseSchema, FrozenSchema
from ..schemas.domain import (
    ApprovalMode,
    AutonomyLevel,
    EgressLevel,
    PermissionKey,
    PermissionScope,
    PermissionSource,
    RiskTier,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AutonomyScope(BaseSchema):
    kind: Literal["autonomy"] = "autonomy"
    level: AutonomyLevel


class EgressScope(BaseSchema):
    kind: Literal["egress"] = "egress"
    level: EgressLevel


class PathsScope(BaseSchema):
    kind: Literal["paths"] = "paths"
    roots: List[str] = Field(default_factory=list)


class RetentionScope(BaseSchema):
    kind: Literal["retention"] = "retention"
    days: int = Field(ge=1, le=3650)


ResourceScope = Annotated[
    Union[AutonomyScope, EgressScope, PathsScope, RetentionScope],
    Field(discriminator="kind"),
]


class PermissionValue(BaseSchema):
    """
    Stored disposition for one permission key at one scope.

    ``resource_scope`` is a tagged union; which tag a key accepts is fixed by
    its ``PermissionSpec`` and enforced by ``validate_value``.
    """
    enabled: bool = True
    approval_mode: ApprovalMode = ApprovalMode.APPROVAL_REQUIRED
    resource_scope: Optional[ResourceScope] = None


class PermissionCategory(str, Enum):
    web = "web"
    ai = "ai"
    files = "files"
    calendar = "calendar"
    schedule = "schedule"
    memory = "memory"
    agent = "agent"
    messaging = "messaging"


@dataclass(frozen=True)
class PermissionSpec:
    """
    Static, code-level definition of a permission key.

    Attributes:
        key: The permission key.
        risk_tier: Static risk classification used for plan summaries and UI warnings.
        category: Grouping used by the settings UI.
        default: Conservative fallback value when no override exists.
        egress_control: Whether the key governs data leaving toward an AI provider.
        scope_kind: The ``resource_scope`` tag this key accepts, if any.
    """

    key: PermissionKey
    risk_tier: RiskTier
    category: PermissionCategory
    default: PermissionValue
    egress_control: bool = False
    scope_kind: Optional[str] = None


def _spec(
    key: PermissionKey,
    risk: RiskTier,
    category: PermissionCategory,
    *,
    enabled: bool,
    mode: ApprovalMode,
    scope: Optional[BaseSchema] = None,
    egress_control: bool = False,
    scope_kind: Optional[str] = None,
) -> PermissionSpec:
    return PermissionSpec(
        key=key,
        risk_tier=risk,
        category=category,
        default=PermissionValue(enabled=enabled, approval_mode=mode, resource_scope=scope),
        egress_control=egress_control,
        scope_kind=scope_kind,
    )


_A = ApprovalMode
_K = PermissionKey
_C = PermissionCategory

PERMISSION_SPECS: Dict[PermissionKey, PermissionSpec] = {
    s.key: s
    for s in (
        _spec(_K.WEB_RSS, RiskTier.low, _C.web, enabled=True, mode=_A.AUTO_ALLOWED),
        _spec(_K.WEB_FETCH, RiskTier.low, _C.web, enabled=True, mode=_A.AUTO_ALLOWED),
        _spec(_K.SOURCE_WRITE, RiskTier.medium, _C.web, enabled=True, mode=_A.APPROVAL_REQUIRED),
        _spec(_K.LLM_USE, RiskTier.medium, _C.ai, enabled=True, mode=_A.AUTO_ALLOWED, egress_control=True),
        _spec(
            _K.LLM_EGRESS_LEVEL,
            RiskTier.high,
            _C.ai,
            enabled=True,
            mode=_A.AUTO_ALLOWED,
            scope=EgressScope(level=EgressLevel.METADATA_ONLY),
            egress_control=True,
            scope_kind="egress",
        ),
        _spec(_K.FS_READ, RiskTier.medium, _C.files, enabled=False, mode=_A.AUTO_DENIED, scope_kind="paths"),
        _spec(_K.FS_WRITE, RiskTier.medium, _C.files, enabled=False, mode=_A.AUTO_DENIED, scope_kind="paths"),
        _spec(_K.FS_DELETE, RiskTier.high, _C.files, enabled=False, mode=_A.AUTO_DENIED, scope_kind="paths"),
        _spec(_K.CAL_READ, RiskTier.low, _C.calendar, enabled=False, mode=_A.AUTO_DENIED),
        _spec(_K.CAL_WRITE, RiskTier.medium, _C.calendar, enabled=False, mode=_A.AUTO_DENIED),
        _spec(_K.SCHEDULE_WRITE, RiskTier.low, _C.schedule, enabled=True, mode=_A.AUTO_ALLOWED),
        _spec(_K.MEMORY_WRITE, RiskTier.medium, _C.memory, enabled=True, mode=_A.APPROVAL_REQUIRED),
        _spec(
            _K.DATA_RETENTION,
            RiskTier.low,
            _C.memory,
            enabled=True,
            mode=_A.AUTO_ALLOWED,
            scope=RetentionScope(days=30),
            scope_kind="retention",
        ),
        _spec(
            _K.AUTONOMY_LEVEL,
            RiskTier.high,
            _C.agent,
            enabled=True,
            mode=_A.AUTO_ALLOWED,
            scope=AutonomyScope(level=AutonomyLevel.L1),
            scope_kind="autonomy",
        ),
        _spec(_K.AGENT_RUN, RiskTier.medium, _C.agent, enabled=True, mode=_A.AUTO_ALLOWED),
        _spec(_K.TOOL_USE, RiskTier.medium, _C.agent, enabled=True, mode=_A.AUTO_ALLOWED),
        _spec(_K.TELEGRAM_CONNECT, RiskTier.medium, _C.messaging, enabled=False, mode=_A.AUTO_DENIED),
        _spec(_K.TELEGRAM_SEND, RiskTier.medium, _C.messaging, enabled=False, mode=_A.AUTO_DENIED),
    )
}


def get_spec(key: PermissionKey) -> PermissionSpec:
    return PERMISSION_SPECS[PermissionKey(key)]


def validate_value(key: PermissionKey, value: PermissionValue) -> PermissionValue:
    """
    Check that ``value.resource_scope`` carries the tag the key accepts.

    Raises:
        ValueError: If the key takes no resource scope but one was given, or
            the tag does not match.
    """
    spec = get_spec(key)
    scope = value.resource_scope
    if scope is None:
        return value
    if spec.scope_kind is None:
        raise ValueError(f"{key.value} does not accept a resource scope")
    if scope.kind != spec.scope_kind:
        raise ValueError(f"{key.value} expects a '{spec.scope_kind}' resource scope, got '{scope.kind}'")
    return value


def scope_key(scope: PermissionScope, scope_id: Optional[str]) -> str:
    """Return the storage key for a scope instance: ``global`` or ``bot:<id>``."""
    if scope == PermissionScope.global_:
        return "global"
    return f"bot:{scope_id}"


class PermissionOverride(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    scope: PermissionScope
    scope_id: Optional[str] = None
    permission_key: PermissionKey
    value: PermissionValue

    updated_at: datetime = Field(default_factory=_utc_now)

    @model_validator(mode="after")
    def _check_scope(self) -> "PermissionOverride":
        if self.scope == PermissionScope.bot and not self.scope_id:
            raise ValueError("bot scope requires a scope_id")
        if self.scope == PermissionScope.global_ and self.scope_id is not None:
            raise ValueError("global scope must not carry a scope_id")
        validate_value(self.permission_key, self.value)
        return self

    @property
    def scope_key(self) -> str:
        return scope_key(self.scope, self.scope_id)


class EffectivePermission(FrozenSchema):
    """Resolved policy for one (bot, key) pair. Derived, never stored."""

    permission_key: PermissionKey
    enabled: bool
    approval_mode: ApprovalMode
    resource_scope: Optional[ResourceScope] = None
    source: PermissionSource

    risk_tier: RiskTier
    egress_control: bool = False


@dataclass(frozen=True)
class PolicySnapshot:
    """Overrides for one bot read in a single query: the global layer and the bot layer."""

    bot_id: Optional[str] = None
    global_overrides: Dict[PermissionKey, PermissionValue] = field(default_factory=dict)
    bot_overrides: Dict[PermissionKey, PermissionValue] = field(default_factory=dict)

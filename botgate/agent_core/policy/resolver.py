"""Effective permission resolution.

``PermissionResolver`` answers "what is the policy for this bot and this key
right now" by walking an ordered chain of providers over a single
``PolicySnapshot``:

1) bot override (if a bot id is given)
2) global override
3) static default table

The first provider with a value wins and its value is returned whole; layers
are never merged field by field. Adding a scope (e.g. a team layer) only means
inserting a provider into the chain.

Two adjustments are applied at resolution time, never at storage time:

- ``AUTONOMY_LEVEL`` is clamped to what the host environment allows, so the
  stored value keeps the user's intent even when the environment restricts it.
- At effective autonomy L3, default values that require approval for non-high
  risk keys are loosened to auto-allowed. Explicit overrides are untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Sequence

from ..repos.interfaces import PermissionOverrideRepository
from ..schemas.domain import (
    ApprovalMode,
    AutonomyLevel,
    EgressLevel,
    PermissionKey,
    PermissionSource,
    RiskTier,
)
from .models import (
    AutonomyScope,
    EffectivePermission,
    EgressScope,
    PermissionValue,
    PolicySnapshot,
    get_spec,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostEnvironment:
    """Trust signal from the hosting environment.

    ``trusted`` is true for a locally trusted host (desktop shell) and false for
    remote browser sessions. It caps autonomy and keeps host-bound tools (file
    access) from running on an untrusted host.
    """

    trusted: bool = False

    @property
    def max_autonomy(self) -> AutonomyLevel:
        return AutonomyLevel.L3 if self.trusted else AutonomyLevel.L2


class OverrideProvider(Protocol):
    source: PermissionSource

    def lookup(self, snapshot: PolicySnapshot, key: PermissionKey) -> Optional[PermissionValue]: ...


@dataclass(frozen=True)
class BotOverrideProvider:
    source: PermissionSource = PermissionSource.bot

    def lookup(self, snapshot: PolicySnapshot, key: PermissionKey) -> Optional[PermissionValue]:
        return snapshot.bot_overrides.get(key)


@dataclass(frozen=True)
class GlobalOverrideProvider:
    source: PermissionSource = PermissionSource.global_

    def lookup(self, snapshot: PolicySnapshot, key: PermissionKey) -> Optional[PermissionValue]:
        return snapshot.global_overrides.get(key)


@dataclass(frozen=True)
class DefaultProvider:
    source: PermissionSource = PermissionSource.default

    def lookup(self, snapshot: PolicySnapshot, key: PermissionKey) -> Optional[PermissionValue]:
        return get_spec(key).default


DEFAULT_CHAIN: tuple[OverrideProvider, ...] = (
    BotOverrideProvider(),
    GlobalOverrideProvider(),
    DefaultProvider(),
)


def egress_level_of(egress: EffectivePermission) -> EgressLevel:
    """Egress level granted by an effective ``LLM_EGRESS_LEVEL`` permission."""
    if not egress.enabled or egress.approval_mode == ApprovalMode.AUTO_DENIED:
        return EgressLevel.NO_EGRESS
    if isinstance(egress.resource_scope, EgressScope):
        return egress.resource_scope.level
    return EgressLevel.METADATA_ONLY


@dataclass(frozen=True)
class EgressDecision:
    allowed: bool
    reason: str
    effective_level: EgressLevel


class PermissionResolver:
    """Compute effective permissions from the policy store."""

    def __init__(
        self,
        overrides: PermissionOverrideRepository,
        *,
        host: HostEnvironment,
        chain: Sequence[OverrideProvider] = DEFAULT_CHAIN,
    ) -> None:
        if not chain or chain[-1].source != PermissionSource.default:
            raise ValueError("provider chain must end with the default provider")
        self._overrides = overrides
        self._host = host
        self._chain = tuple(chain)

    @property
    def host(self) -> HostEnvironment:
        return self._host

    async def snapshot(self, bot_id: Optional[str]) -> PolicySnapshot:
        return await self._overrides.snapshot(bot_id)

    async def resolve(self, bot_id: Optional[str], key: PermissionKey) -> EffectivePermission:
        """
        Resolve one key.

        Raises:
            StoreUnavailable: If the policy store cannot be read.
        """
        snapshot = await self._overrides.snapshot(bot_id)
        return self.resolve_from(snapshot, key)

    async def resolve_all(self, bot_id: Optional[str]) -> Dict[PermissionKey, EffectivePermission]:
        """Resolve every key from one snapshot."""
        snapshot = await self._overrides.snapshot(bot_id)
        return self.resolve_all_from(snapshot)

    def resolve_all_from(self, snapshot: PolicySnapshot) -> Dict[PermissionKey, EffectivePermission]:
        return {key: self.resolve_from(snapshot, key) for key in PermissionKey}

    def resolve_from(self, snapshot: PolicySnapshot, key: PermissionKey) -> EffectivePermission:
        key = PermissionKey(key)
        spec = get_spec(key)
        value, source = self._lookup(snapshot, key)

        if key == PermissionKey.AUTONOMY_LEVEL:
            level = self._autonomy_from_value(value)
            value = value.model_copy(update={"resource_scope": AutonomyScope(level=level)})
        elif (
            source == PermissionSource.default
            and value.enabled
            and value.approval_mode == ApprovalMode.APPROVAL_REQUIRED
            and spec.risk_tier != RiskTier.high
            and self.autonomy_from(snapshot) == AutonomyLevel.L3
        ):
            value = value.model_copy(update={"approval_mode": ApprovalMode.AUTO_ALLOWED})

        return EffectivePermission(
            permission_key=key,
            enabled=value.enabled,
            approval_mode=value.approval_mode,
            resource_scope=value.resource_scope,
            source=source,
            risk_tier=spec.risk_tier,
            egress_control=spec.egress_control,
        )

    def _lookup(self, snapshot: PolicySnapshot, key: PermissionKey) -> tuple[PermissionValue, PermissionSource]:
        for provider in self._chain:
            value = provider.lookup(snapshot, key)
            if value is not None:
                return value, provider.source
        raise LookupError(f"no provider produced a value for {key.value}")

    def autonomy_from(self, snapshot: PolicySnapshot) -> AutonomyLevel:
        value, _ = self._lookup(snapshot, PermissionKey.AUTONOMY_LEVEL)
        return self._autonomy_from_value(value)

    def _autonomy_from_value(self, value: PermissionValue) -> AutonomyLevel:
        if not value.enabled or value.approval_mode == ApprovalMode.AUTO_DENIED:
            return AutonomyLevel.L0
        level = AutonomyLevel.L1
        if isinstance(value.resource_scope, AutonomyScope):
            level = value.resource_scope.level
        cap = self._host.max_autonomy
        if level.rank > cap.rank:
            logger.debug("autonomy %s clamped to %s (trusted_host=%s)", level.value, cap.value, self._host.trusted)
            return cap
        return level

    async def autonomy_level(self, bot_id: Optional[str]) -> AutonomyLevel:
        snapshot = await self._overrides.snapshot(bot_id)
        return self.autonomy_from(snapshot)

    async def check_egress(self, bot_id: Optional[str], required: EgressLevel) -> EgressDecision:
        """
        Check whether ``required`` egress toward an AI provider is permitted.

        LLM usage must be enabled, and the requested level must not exceed the
        effective ``LLM_EGRESS_LEVEL``. Egress is independent of autonomy.
        """
        snapshot = await self._overrides.snapshot(bot_id)
        llm = self.resolve_from(snapshot, PermissionKey.LLM_USE)
        if not llm.enabled or llm.approval_mode == ApprovalMode.AUTO_DENIED:
            return EgressDecision(False, "LLM usage is disabled", EgressLevel.NO_EGRESS)

        effective = egress_level_of(self.resolve_from(snapshot, PermissionKey.LLM_EGRESS_LEVEL))

        if required.rank <= effective.rank:
            return EgressDecision(True, "Allowed", effective)
        return EgressDecision(
            False,
            f"egress level {required.value} exceeds allowed {effective.value}",
            effective,
        )

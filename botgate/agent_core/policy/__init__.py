"""Permission policy subsystem.

The policy layer decides, for every sensitive action a bot attempts, whether it
is allowed outright, denied, or must wait for a human.

Components
----------

- ``PermissionSpec`` / ``PERMISSION_SPECS``: the static default table, one
  entry per ``PermissionKey`` with its risk tier and accepted resource scope.
- ``PermissionValue`` and ``PermissionOverride``: stored dispositions at the
  global and per-bot scopes.
- ``PermissionResolver`` (``policy.resolver``): merges default, global and bot
  layers through an ordered chain of providers and clamps autonomy to what the
  host environment allows.
- ``ApprovalGate`` (``policy.gate``): the checkpoint every gated action passes
  through, including the suspend-until-a-human-answers protocol.

Only the model modules are re-exported here; the resolver and gate depend on
the repository layer and are imported from their own modules.
"""

from .messages import PERMISSION_MESSAGES, PermissionMessage, message_for
from .models import (
    PERMISSION_SPECS,
    AutonomyScope,
    EffectivePermission,
    EgressScope,
    PathsScope,
    PermissionOverride,
    PermissionSpec,
    PermissionValue,
    PolicySnapshot,
    RetentionScope,
    get_spec,
    validate_value,
)

__all__ = [
    "PERMISSION_MESSAGES",
    "PERMISSION_SPECS",
    "AutonomyScope",
    "EffectivePermission",
    "EgressScope",
    "PathsScope",
    "PermissionMessage",
    "PermissionOverride",
    "PermissionSpec",
    "PermissionValue",
    "PolicySnapshot",
    "RetentionScope",
    "get_spec",
    "message_for",
    "validate_value",
]

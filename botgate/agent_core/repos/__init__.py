"""Repository interfaces and SQL implementations for policy and run persistence.

The repository layer is the persistence boundary for the agent core.

Responsibilities
----------------

- Provide a small set of async repository interfaces (Protocols) that the
  resolver, gate, audit log and executor depend on.
- Persist durable records:

  - permission overrides at the global and per-bot scopes,
  - the append-only audit trail,
  - agent runs and their ordered steps.

Design notes
------------

The core is written against interfaces so it can be used with:

- a SQL database (async SQLAlchemy implementation provided in ``repos.sql``),
- in-memory fakes for unit tests.

The SQL implementation commits at repository-method boundaries, so each
persisted record is written atomically.
"""

from .interfaces import (
    AuditRepository,
    PermissionOverrideRepository,
    RunRepository,
    StepRepository,
)

__all__ = [
    "AuditRepository",
    "PermissionOverrideRepository",
    "RunRepository",
    "StepRepository",
]

"""SQLAlchemy ORM models for policy, audit and run persistence.

These models define the SQL schema used by ``botgate.agent_core.repos.sql``.

Design
------

- Permission overrides carry a non-null ``scope_key`` (``global`` or
  ``bot:<id>``) so a plain unique constraint enforces "one override per key per
  scope instance" on every backend, including for the global scope whose
  ``scope_id`` is NULL.
- Audit rows get an autoincrement ``seq`` in addition to their uuid so entries
  written within the same clock tick still have a total order.
- Runs and steps are keyed by uuid strings.

Table names are prefixed with ``bg_`` to avoid collisions in shared databases.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class PermissionOverrideRow(Base):
    """Row model for ``bg_permission_overrides``."""

    __tablename__ = "bg_permission_overrides"
    __table_args__ = (UniqueConstraint("scope_key", "permission_key", name="uq_bg_permission_overrides_scope_key"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    scope: Mapped[str] = mapped_column(String(16))
    scope_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    scope_key: Mapped[str] = mapped_column(String(160), index=True)
    permission_key: Mapped[str] = mapped_column(String(64))

    value: Mapped[Dict[str, Any]] = mapped_column(JsonType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditLogRow(Base):
    """Row model for ``bg_audit_logs``. Append-only."""

    __tablename__ = "bg_audit_logs"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True)
    bot_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    event_type: Mapped[str] = mapped_column(String(64))
    permission_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    actor_kind: Mapped[str] = mapped_column(String(16))

    details: Mapped[Dict[str, Any]] = mapped_column(JsonType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class AgentRunRow(Base):
    """Row model for ``bg_agent_runs``."""

    __tablename__ = "bg_agent_runs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    bot_id: Mapped[str] = mapped_column(String(128), index=True)

    trigger: Mapped[str] = mapped_column(String(16))
    autonomy_level: Mapped[str] = mapped_column(String(4))
    goal: Mapped[str] = mapped_column(Text)
    plan_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(16))
    step_count: Mapped[int] = mapped_column(Integer, default=0)
    tool_call_count: Mapped[int] = mapped_column(Integer, default=0)
    reasoning_call_count: Mapped[int] = mapped_column(Integer, default=0)
    termination_reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    policy_snapshot: Mapped[Dict[str, Any]] = mapped_column(JsonType, default=dict)
    explain_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    explain_policy: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    explain_risk: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class AgentStepRow(Base):
    """Row model for ``bg_agent_steps``."""

    __tablename__ = "bg_agent_steps"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agent_run_id: Mapped[str] = mapped_column(String(64), index=True)
    step_index: Mapped[int] = mapped_column(Integer)

    tool_key: Mapped[str] = mapped_column(String(64))
    permission_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16))
    risk_tier: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    input_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    output_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rationale: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decision_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    blocked_by_policy: Mapped[bool] = mapped_column(Boolean, default=False)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

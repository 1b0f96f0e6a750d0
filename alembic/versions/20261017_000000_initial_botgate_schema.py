"""Initial schema for botgate

Revision ID: 20261017_000000
Revises: None
Create Date: 2026-10-17 00:00:00.000000

Creates the core tables:
- bg_permission_overrides (one row per scope instance and permission key)
- bg_audit_logs (append-only, ordered by seq)
- bg_agent_runs
- bg_agent_steps

No seed data: absent overrides resolve to the static default table.

Revision format: YYYYMMDD_HHMMSS_description

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261017_000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonType = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    """Create all core tables."""

    op.create_table(
        "bg_permission_overrides",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("scope", sa.String(16), nullable=False),
        sa.Column("scope_id", sa.String(128), nullable=True),
        sa.Column("scope_key", sa.String(160), nullable=False),
        sa.Column("permission_key", sa.String(64), nullable=False),
        sa.Column("value", JsonType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("scope_key", "permission_key", name="uq_bg_permission_overrides_scope_key"),
        sa.Index("ix_bg_permission_overrides_scope_key", "scope_key"),
    )

    op.create_table(
        "bg_audit_logs",
        sa.Column("seq", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("bot_id", sa.String(128), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("permission_key", sa.String(64), nullable=True),
        sa.Column("actor_kind", sa.String(16), nullable=False),
        sa.Column("details", JsonType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("id"),
        sa.Index("ix_bg_audit_logs_bot_id", "bot_id"),
        sa.Index("ix_bg_audit_logs_created_at", "created_at"),
    )

    op.create_table(
        "bg_agent_runs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("bot_id", sa.String(128), nullable=False),
        sa.Column("trigger", sa.String(16), nullable=False),
        sa.Column("autonomy_level", sa.String(4), nullable=False),
        sa.Column("goal", sa.Text(), nullable=False),
        sa.Column("plan_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("step_count", sa.Integer(), nullable=False),
        sa.Column("tool_call_count", sa.Integer(), nullable=False),
        sa.Column("reasoning_call_count", sa.Integer(), nullable=False),
        sa.Column("termination_reason", sa.String(32), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("policy_snapshot", JsonType, nullable=False),
        sa.Column("explain_summary", sa.Text(), nullable=True),
        sa.Column("explain_policy", sa.Text(), nullable=True),
        sa.Column("explain_risk", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_bg_agent_runs_bot_id", "bot_id"),
        sa.Index("ix_bg_agent_runs_started_at", "started_at"),
    )

    op.create_table(
        "bg_agent_steps",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("agent_run_id", sa.String(64), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("tool_key", sa.String(64), nullable=False),
        sa.Column("permission_key", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("risk_tier", sa.String(16), nullable=True),
        sa.Column("input_summary", sa.Text(), nullable=True),
        sa.Column("output_summary", sa.Text(), nullable=True),
        sa.Column("rationale", sa.Text(), nullable=True),
        sa.Column("decision_reason", sa.Text(), nullable=True),
        sa.Column("blocked_by_policy", sa.Boolean(), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.Index("ix_bg_agent_steps_agent_run_id", "agent_run_id"),
    )


def downgrade() -> None:
    """Drop all core tables."""
    op.drop_table("bg_agent_steps")
    op.drop_table("bg_agent_runs")
    op.drop_table("bg_audit_logs")
    op.drop_table("bg_permission_overrides")

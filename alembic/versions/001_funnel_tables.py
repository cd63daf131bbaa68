"""Create funnel, stage, opportunity, history, task and webhook tables.

Revision ID: 001_funnel_tables
Revises:
Create Date: 2026-10-19

Creates the tables the stage-transition engine reads and writes:
- funnels / stages: pipelines and their ordered stages
- required_fields / required_tasks: per-stage entry requirements
- opportunities: records moving through stages
- opportunity_stage_history: append-only transition audit trail
- scheduled_tasks: tasks materialized from required tasks
- webhooks: outbound webhook subscriptions

No foreign key constraints (application-level referential integrity via
the repositories).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_funnel_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── funnels / stages ────────────────────────────────────────────────

    op.create_table(
        "funnels",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    op.create_table(
        "stages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("funnel_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("is_win_stage", sa.Boolean(), nullable=True),
        sa.Column("is_loss_stage", sa.Boolean(), nullable=True),
        sa.Column("win_reason_required", sa.Boolean(), nullable=True),
        sa.Column("loss_reason_required", sa.Boolean(), nullable=True),
        sa.Column("win_reasons", sa.JSON(), nullable=True),
        sa.Column("loss_reasons", sa.JSON(), nullable=True),
        sa.Column("alert_config", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_stages_funnel_id", "stages", ["funnel_id"])

    # ── stage requirements ──────────────────────────────────────────────

    op.create_table(
        "required_fields",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("stage_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="text"),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("is_required", sa.Boolean(), nullable=True),
    )
    op.create_index("ix_required_fields_stage_id", "required_fields", ["stage_id"])

    op.create_table(
        "required_tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("stage_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("default_duration_hours", sa.Integer(), nullable=True),
        sa.Column("is_required", sa.Boolean(), nullable=True),
    )
    op.create_index("ix_required_tasks_stage_id", "required_tasks", ["stage_id"])

    # ── opportunities ───────────────────────────────────────────────────

    op.create_table(
        "opportunities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("funnel_id", sa.String(36), nullable=False),
        sa.Column("stage_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("value", sa.Float(), nullable=True),
        sa.Column("client", sa.String(200), nullable=True),
        sa.Column("company", sa.String(100), nullable=True),
        sa.Column("email", sa.String(200), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("custom_fields", sa.JSON(), nullable=True),
        sa.Column("win_reason", sa.String(200), nullable=True),
        sa.Column("loss_reason", sa.String(200), nullable=True),
        sa.Column("last_stage_change_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_opportunities_funnel_id", "opportunities", ["funnel_id"])
    op.create_index("ix_opportunities_stage_id", "opportunities", ["stage_id"])

    # ── history / tasks / webhooks ──────────────────────────────────────

    op.create_table(
        "opportunity_stage_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("opportunity_id", sa.String(36), nullable=False),
        sa.Column("from_stage_id", sa.String(36), nullable=True),
        sa.Column("to_stage_id", sa.String(36), nullable=False),
        sa.Column("moved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=True),
    )
    op.create_index(
        "ix_opportunity_stage_history_opportunity_id",
        "opportunity_stage_history",
        ["opportunity_id"],
    )
    op.create_index(
        "ix_opportunity_stage_history_to_stage_id",
        "opportunity_stage_history",
        ["to_stage_id"],
    )

    op.create_table(
        "scheduled_tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("opportunity_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=True),
    )
    op.create_index(
        "ix_scheduled_tasks_opportunity_id", "scheduled_tasks", ["opportunity_id"]
    )

    op.create_table(
        "webhooks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("target_type", sa.String(20), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=False, server_default="*"),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("event", sa.String(20), nullable=False),
    )
    op.create_index(
        "ix_webhooks_target_event", "webhooks", ["target_type", "event"]
    )


def downgrade() -> None:
    op.drop_index("ix_webhooks_target_event", table_name="webhooks")
    op.drop_table("webhooks")
    op.drop_index("ix_scheduled_tasks_opportunity_id", table_name="scheduled_tasks")
    op.drop_table("scheduled_tasks")
    op.drop_index(
        "ix_opportunity_stage_history_to_stage_id",
        table_name="opportunity_stage_history",
    )
    op.drop_index(
        "ix_opportunity_stage_history_opportunity_id",
        table_name="opportunity_stage_history",
    )
    op.drop_table("opportunity_stage_history")
    op.drop_index("ix_opportunities_stage_id", table_name="opportunities")
    op.drop_index("ix_opportunities_funnel_id", table_name="opportunities")
    op.drop_table("opportunities")
    op.drop_index("ix_required_tasks_stage_id", table_name="required_tasks")
    op.drop_table("required_tasks")
    op.drop_index("ix_required_fields_stage_id", table_name="required_fields")
    op.drop_table("required_fields")
    op.drop_index("ix_stages_funnel_id", table_name="stages")
    op.drop_table("stages")
    op.drop_table("funnels")

"""Initial task store schema: principals, tasks, events, conversations, projects."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "principals",
        sa.Column("principal_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("principal_id"),
    )
    op.create_index("ix_principals_principal_id", "principals", ["principal_id"])
    op.create_index("ix_principals_display_name", "principals", ["display_name"])

    op.create_table(
        "principal_settings",
        sa.Column("principal_id", sa.String(), nullable=False),
        sa.Column("max_concurrent_tasks", sa.Integer(), nullable=True),
        sa.Column("daily_task_limit", sa.Integer(), nullable=True),
        sa.Column("preferred_tier", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["principal_id"],
            ["principals.principal_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("principal_id"),
    )

    op.create_table(
        "agent_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("principal_id", sa.String(), nullable=False),
        sa.Column("parent_task_id", sa.String(), nullable=True),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("agent", sa.String(), nullable=False),
        sa.Column("intent_summary", sa.Text(), nullable=False),
        sa.Column("input_json", sa.Text(), nullable=False),
        sa.Column("output_json", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("tokens_in", sa.Integer(), nullable=True),
        sa.Column("tokens_out", sa.Integer(), nullable=True),
        sa.Column("cost_usd", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["principal_id"],
            ["principals.principal_id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["parent_task_id"],
            ["agent_tasks.task_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_agent_tasks_principal_id", "agent_tasks", ["principal_id"])
    op.create_index("ix_agent_tasks_task_type", "agent_tasks", ["task_type"])
    op.create_index("ix_agent_tasks_status", "agent_tasks", ["status"])
    op.create_index(
        "idx_agent_tasks_principal_status",
        "agent_tasks",
        ["principal_id", "status"],
    )
    op.create_index(
        "idx_agent_tasks_principal_created",
        "agent_tasks",
        ["principal_id", "created_at"],
    )
    op.create_index(
        "idx_agent_tasks_parent_status",
        "agent_tasks",
        ["parent_task_id", "status"],
    )
    op.create_index(
        "idx_agent_tasks_cancellable",
        "agent_tasks",
        ["principal_id", "status"],
        sqlite_where=sa.text("status IN ('running', 'queued', 'pending')"),
    )

    op.create_table(
        "agent_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("principal_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["agent_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agent_task_events_task_id", "agent_task_events", ["task_id"])
    op.create_index("ix_agent_task_events_principal_id", "agent_task_events", ["principal_id"])
    op.create_index("ix_agent_task_events_event_type", "agent_task_events", ["event_type"])
    op.create_index("ix_agent_task_events_status_from", "agent_task_events", ["status_from"])
    op.create_index("ix_agent_task_events_status_to", "agent_task_events", ["status_to"])
    op.create_index(
        "idx_agent_task_events_task_time",
        "agent_task_events",
        ["task_id", "created_at"],
    )

    op.create_table(
        "conversation_turns",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("task_ids_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["principal_id"],
            ["principals.principal_id"],
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("role IN ('user', 'assistant')", name="ck_conversation_turns_role"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_conversation_turns_principal_time",
        "conversation_turns",
        ["principal_id", "created_at"],
    )

    op.create_table(
        "code_projects",
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("principal_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("repo_full_name", sa.String(), nullable=False),
        sa.Column("default_branch", sa.String(), nullable=False, server_default="main"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["principal_id"],
            ["principals.principal_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("project_id"),
    )
    op.create_index("ix_code_projects_principal_id", "code_projects", ["principal_id"])
    op.create_index(
        "idx_code_projects_principal_active",
        "code_projects",
        ["principal_id", "active"],
    )


def downgrade() -> None:
    op.drop_table("code_projects")
    op.drop_table("conversation_turns")
    op.drop_table("agent_task_events")
    op.drop_table("agent_tasks")
    op.drop_table("principal_settings")
    op.drop_table("principals")

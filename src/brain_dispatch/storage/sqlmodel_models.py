"""SQLModel ORM tables for the task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, text
from sqlmodel import Field, SQLModel


class Principal(SQLModel, table=True):
    __tablename__ = "principals"  # type: ignore[bad-override]

    principal_id: str = Field(primary_key=True, index=True)
    display_name: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PrincipalSettingsRow(SQLModel, table=True):
    __tablename__ = "principal_settings"  # type: ignore[bad-override]

    principal_id: str = Field(
        sa_column=Column(
            ForeignKey("principals.principal_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    max_concurrent_tasks: int | None = None
    daily_task_limit: int | None = None
    preferred_tier: str | None = None
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentTask(SQLModel, table=True):
    __tablename__ = "agent_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_agent_tasks_principal_status", "principal_id", "status"),
        Index("idx_agent_tasks_principal_created", "principal_id", "created_at"),
        Index("idx_agent_tasks_parent_status", "parent_task_id", "status"),
        Index(
            "idx_agent_tasks_cancellable",
            "principal_id",
            "status",
            sqlite_where=text("status IN ('running', 'queued', 'pending')"),
        ),
    )

    task_id: str = Field(primary_key=True)
    principal_id: str = Field(
        sa_column=Column(
            ForeignKey("principals.principal_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    parent_task_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("agent_tasks.task_id", ondelete="CASCADE"),
            nullable=True,
        ),
    )
    task_type: str = Field(index=True)
    status: str = Field(index=True)
    agent: str
    intent_summary: str = Field(sa_column=Column(Text, nullable=False))
    input_json: str = Field(sa_column=Column(Text, nullable=False))
    output_json: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    tokens_in: int | None = None
    tokens_out: int | None = None
    cost_usd: float | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    cancelled_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class AgentTaskEvent(SQLModel, table=True):
    __tablename__ = "agent_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_agent_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("agent_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    principal_id: str = Field(index=True)
    event_type: str = Field(index=True)
    status_from: str | None = Field(default=None, index=True)
    status_to: str | None = Field(default=None, index=True)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ConversationTurn(SQLModel, table=True):
    __tablename__ = "conversation_turns"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_conversation_turns_principal_time", "principal_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    principal_id: str = Field(
        sa_column=Column(
            ForeignKey("principals.principal_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    role: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    task_ids_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CodeProject(SQLModel, table=True):
    __tablename__ = "code_projects"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_code_projects_principal_active", "principal_id", "active"),)

    project_id: str = Field(primary_key=True)
    principal_id: str = Field(
        sa_column=Column(
            ForeignKey("principals.principal_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    name: str
    repo_full_name: str
    default_branch: str = "main"
    active: bool = True
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

"""Domain models for task orchestration and dispatch."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskType(str, Enum):
    """Closed set of task kinds the router may produce."""

    RESEARCH = "research"
    SAVE = "save"
    SEARCH = "search"
    REPORT = "report"
    CODE = "code"
    GENERAL = "general"


class ReplyStatus(str, Enum):
    """Status returned synchronously to the caller of one request."""

    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    NEEDS_CLARIFICATION = "needs_clarification"
    NO_PROJECT = "no_project"


class ParentOutcome(str, Enum):
    """Roll-up summary recorded on a finalized parent."""

    SUCCEEDED = "succeeded"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    ALL_FAILED = "all_failed"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for inserting one task row."""

    task_type: TaskType
    agent: str
    intent_summary: str
    input: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for services, workers and CLI."""

    task_id: str
    principal_id: str
    parent_task_id: str | None
    task_type: TaskType
    status: TaskStatus
    agent: str
    intent_summary: str
    input: dict[str, Any]
    output: dict[str, Any] | None
    error: str | None
    tokens_in: int | None
    tokens_out: int | None
    cost_usd: float | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    cancelled_at: datetime | None

    @property
    def is_root(self) -> bool:
        return self.parent_task_id is None


@dataclass(slots=True)
class TaskBatch:
    """Root task plus the children created with it in one transaction."""

    root: TaskView
    children: list[TaskView]

    @property
    def task_ids(self) -> list[str]:
        return [self.root.task_id, *(child.task_id for child in self.children)]


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream and direct children."""

    task: TaskView
    events: list[TaskEventView]
    children: list[TaskView] = field(default_factory=list)


@dataclass(slots=True)
class ChildCounts:
    """Status breakdown of one parent's children."""

    queued: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    @property
    def pending(self) -> int:
        return self.queued + self.running

    @property
    def total(self) -> int:
        return self.pending + self.completed + self.failed + self.cancelled

    def outcome(self) -> ParentOutcome:
        if self.failed == 0 and self.cancelled == 0:
            return ParentOutcome.SUCCEEDED
        if self.completed == 0 and self.failed > 0:
            return ParentOutcome.ALL_FAILED
        return ParentOutcome.COMPLETED_WITH_ERRORS

    def to_dict(self) -> dict[str, int]:
        return {
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


@dataclass(slots=True)
class ParentFinalization:
    """Result of one parent roll-up attempt."""

    parent_task_id: str
    changed: bool
    counts: ChildCounts
    outcome: ParentOutcome | None = None


@dataclass(slots=True)
class TaskUsage:
    """Cost-accounting fields updated post hoc."""

    tokens_in: int | None = None
    tokens_out: int | None = None
    cost_usd: float | None = None


@dataclass(slots=True)
class ConversationTurnWrite:
    role: str
    content: str


@dataclass(slots=True)
class ConversationTurnView:
    turn_id: int
    principal_id: str
    role: str
    content: str
    task_ids: list[str]
    created_at: datetime


@dataclass(slots=True)
class ProjectWrite:
    """Payload for registering a code project."""

    name: str
    repo_full_name: str
    default_branch: str = "main"
    project_id: str | None = None


@dataclass(slots=True)
class ProjectView:
    """Registered code project visible to its owner."""

    project_id: str
    principal_id: str
    name: str
    repo_full_name: str
    default_branch: str
    active: bool
    created_at: datetime


@dataclass(slots=True)
class PrincipalSettingsView:
    """Per-principal overrides; ``None`` means use configured defaults."""

    principal_id: str
    max_concurrent_tasks: int | None
    daily_task_limit: int | None
    preferred_tier: str | None
    updated_at: datetime


@dataclass(slots=True)
class IntentDescriptor:
    """One independent request extracted from a message."""

    kind: TaskType
    summary: str
    target_agent: str
    extracted_query: str
    project_id: str | None = None
    project_name: str | None = None

    @property
    def is_dispatchable(self) -> bool:
        return self.kind is not TaskType.GENERAL


@dataclass(slots=True)
class RouteHints:
    """Caller-supplied context for routing one message."""

    principal_id: str
    project_id: str | None = None
    tier_override: str | None = None
    context: str = ""
    source: str = "cli"


@dataclass(slots=True)
class ClassificationUsage:
    model: str
    tokens_in: int | None = None
    tokens_out: int | None = None


@dataclass(slots=True)
class RouteResult:
    """Router output consumed by the dispatcher."""

    intents: list[IntentDescriptor]
    ack_message: str
    tier: str
    model: str = ""
    tier_source: str = "default"
    status: ReplyStatus | None = None
    candidates: list[ProjectView] = field(default_factory=list)
    dropped: list[IntentDescriptor] = field(default_factory=list)
    degraded: bool = False
    usage: ClassificationUsage | None = None

    @property
    def needs_short_circuit(self) -> bool:
        return self.status in {ReplyStatus.NEEDS_CLARIFICATION, ReplyStatus.NO_PROJECT}

    @property
    def primary_intent(self) -> TaskType:
        if self.intents:
            return self.intents[0].kind
        if self.dropped:
            return self.dropped[0].kind
        return TaskType.GENERAL


@dataclass(slots=True)
class DispatchResult:
    """Synchronous outcome of persisting and firing one batch."""

    root_task_id: str
    child_task_ids: list[str]
    reply: str
    status: ReplyStatus
    primary_intent: TaskType


@dataclass(slots=True)
class InboundRequest:
    """A single natural-language request from a principal."""

    message: str
    principal_id: str
    source: str = "cli"
    project_id: str | None = None
    tier_override: str | None = None
    context: str = ""


@dataclass(slots=True)
class InboundReply:
    """Synchronous reply returned before any worker completes."""

    ack_message: str
    root_task_id: str | None
    child_task_ids: list[str]
    primary_intent: TaskType
    status: ReplyStatus
    candidates: list[ProjectView] = field(default_factory=list)

    def to_payload(self) -> dict[str, object]:
        return {
            "ack_message": self.ack_message,
            "root_task_id": self.root_task_id,
            "child_task_ids": list(self.child_task_ids),
            "primary_intent": self.primary_intent.value,
            "status": self.status.value,
            "candidates": [
                {"project_id": project.project_id, "name": project.name}
                for project in self.candidates
            ],
        }


@dataclass(slots=True)
class CancelRequest:
    """Cancellation command: ``stop_all`` or ``stop_one`` with a task id."""

    action: str
    task_id: str | None = None


@dataclass(slots=True)
class CancelReply:
    cancelled_ids: list[str]

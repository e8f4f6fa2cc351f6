"""Persistent task store for orchestrated agent tasks."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from brain_dispatch.orchestrator.models import (
    ChildCounts,
    ConversationTurnView,
    ConversationTurnWrite,
    ParentFinalization,
    PrincipalSettingsView,
    ProjectView,
    ProjectWrite,
    TaskBatch,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskType,
    TaskUsage,
    TaskView,
)
from brain_dispatch.orchestrator.transitions import (
    ACTIVE_STATUSES,
    CANCELLABLE_STATUS_VALUES,
    LEGACY_PENDING,
    ensure_transition,
    is_terminal,
    source_values,
)
from brain_dispatch.storage.alembic_runner import upgrade_head
from brain_dispatch.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from brain_dispatch.storage.sqlmodel_models import (
    AgentTask,
    AgentTaskEvent,
    CodeProject,
    ConversationTurn,
    Principal,
    PrincipalSettingsRow,
)

ROOT_AGENT = "dispatcher"


class TaskRepository:
    """Task store facade backed by SQLModel + SQLite.

    Every status change is a conditional update keyed on the expected current
    status; a transition that loses a race reports ``False`` instead of
    overwriting the winner.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 5_000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self.clock = clock
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def ensure_principal(self, principal_id: str, display_name: str | None = None) -> None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Principal).where(Principal.principal_id == principal_id),
            ).one_or_none()
            if row is not None:
                return
            session.add(
                Principal(
                    principal_id=principal_id,
                    display_name=display_name or principal_id,
                    created_at=to_db_datetime(self._now()),
                ),
            )
            session.commit()

    # -- creation ---------------------------------------------------------------

    def create_task_batch(
        self,
        *,
        principal_id: str,
        root: TaskCreate,
        children: Iterable[TaskCreate] = (),
        turns: Iterable[ConversationTurnWrite] = (),
    ) -> TaskBatch:
        """Insert one running root task, its queued children and the batch turns atomically."""

        now = self._now()
        turn_list = _checked_turns(turns)
        root_id = root.task_id or str(uuid4())
        with Session(self.engine) as session:
            root_row = self._new_task_row(
                principal_id=principal_id,
                payload=root,
                task_id=root_id,
                parent_task_id=None,
                status=TaskStatus.RUNNING,
                now=now,
            )
            session.add(root_row)
            session.flush()
            self._add_event(
                session=session,
                task_id=root_id,
                principal_id=principal_id,
                event_type="created",
                status_from=None,
                status_to=TaskStatus.RUNNING,
                details={"task_type": root.task_type.value, "agent": root.agent},
            )

            child_rows: list[AgentTask] = []
            for child in children:
                child_id = child.task_id or str(uuid4())
                child_row = self._new_task_row(
                    principal_id=principal_id,
                    payload=child,
                    task_id=child_id,
                    parent_task_id=root_id,
                    status=TaskStatus.QUEUED,
                    now=now,
                )
                session.add(child_row)
                child_rows.append(child_row)
            session.flush()
            for child_row in child_rows:
                self._add_event(
                    session=session,
                    task_id=child_row.task_id,
                    principal_id=principal_id,
                    event_type="created",
                    status_from=None,
                    status_to=TaskStatus.QUEUED,
                    details={
                        "task_type": child_row.task_type,
                        "agent": child_row.agent,
                        "parent_task_id": root_id,
                    },
                )
            self._add_turns(
                session=session,
                principal_id=principal_id,
                turns=turn_list,
                task_ids=[root_id, *(row.task_id for row in child_rows)],
                now=now,
            )
            session.commit()
            session.refresh(root_row)
            for child_row in child_rows:
                session.refresh(child_row)
            return TaskBatch(
                root=_to_task_view(root_row),
                children=[_to_task_view(row) for row in child_rows],
            )

    # -- conditional transitions --------------------------------------------------

    def start_task(self, *, task_id: str) -> bool:
        """Move a queued task to running."""

        with Session(self.engine) as session:
            previous = self._transition_one(
                session=session,
                task_id=task_id,
                expected=source_values(TaskStatus.RUNNING),
                target=TaskStatus.RUNNING,
                values={},
                event_type="started",
                details={},
            )
            if previous is None:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_task(self, *, task_id: str, output: dict[str, Any] | None = None) -> bool:
        """Mark a running task as completed; a no-op once it left ``running``."""

        now = self._now()
        with Session(self.engine) as session:
            previous = self._transition_one(
                session=session,
                task_id=task_id,
                expected=source_values(TaskStatus.COMPLETED),
                target=TaskStatus.COMPLETED,
                values={
                    "completed_at": to_db_datetime(now),
                    "output_json": _dump_json(output) if output is not None else None,
                },
                event_type="completed",
                details={},
            )
            if previous is None:
                session.rollback()
                return False
            session.commit()
            return True

    def fail_task(
        self,
        *,
        task_id: str,
        error: str,
        expected: tuple[TaskStatus, ...] = (TaskStatus.RUNNING,),
        event_type: str = "failed",
    ) -> bool:
        """Mark a task as failed if it is still in one of ``expected`` statuses."""

        now = self._now()
        with Session(self.engine) as session:
            previous = self._transition_one(
                session=session,
                task_id=task_id,
                expected=tuple(status.value for status in expected),
                target=TaskStatus.FAILED,
                values={"error": error, "completed_at": to_db_datetime(now)},
                event_type=event_type,
                details={"error": error},
            )
            if previous is None:
                session.rollback()
                return False
            session.commit()
            return True

    def finalize_parent(self, *, parent_task_id: str) -> ParentFinalization:
        """Roll a running parent to completed once no child is pending.

        ``changed`` is true only for the caller whose conditional update
        actually moved the row, so side effects can be gated on it.
        """

        now = self._now()
        with Session(self.engine) as session:
            counts = self._child_counts(session=session, parent_task_id=parent_task_id)
            if counts.total == 0 or counts.pending > 0:
                return ParentFinalization(
                    parent_task_id=parent_task_id,
                    changed=False,
                    counts=counts,
                )
            outcome = counts.outcome()
            previous = self._transition_one(
                session=session,
                task_id=parent_task_id,
                expected=source_values(TaskStatus.COMPLETED),
                target=TaskStatus.COMPLETED,
                values={
                    "completed_at": to_db_datetime(now),
                    "output_json": _dump_json(
                        {"outcome": outcome.value, "children": counts.to_dict()},
                    ),
                },
                event_type="finalized",
                details={"outcome": outcome.value, "children": counts.to_dict()},
            )
            if previous is None:
                session.rollback()
                return ParentFinalization(
                    parent_task_id=parent_task_id,
                    changed=False,
                    counts=counts,
                    outcome=outcome,
                )
            session.commit()
            return ParentFinalization(
                parent_task_id=parent_task_id,
                changed=True,
                counts=counts,
                outcome=outcome,
            )

    def cancel_tasks(
        self,
        *,
        principal_id: str,
        reason: str,
        task_id: str | None = None,
    ) -> list[TaskView]:
        """Cancel the principal's non-terminal tasks (all, or one by id)."""

        now = self._now()
        cancelled: list[str] = []
        with Session(self.engine) as session:
            statement = select(AgentTask.task_id).where(
                AgentTask.principal_id == principal_id,
                col(AgentTask.status).in_(CANCELLABLE_STATUS_VALUES),
            )
            if task_id is not None:
                statement = statement.where(AgentTask.task_id == task_id)
            candidate_ids = session.exec(
                statement.order_by(col(AgentTask.created_at).asc()),
            ).all()
            for candidate_id in candidate_ids:
                previous = self._transition_one(
                    session=session,
                    task_id=candidate_id,
                    expected=CANCELLABLE_STATUS_VALUES,
                    target=TaskStatus.CANCELLED,
                    values={"cancelled_at": to_db_datetime(now), "error": reason},
                    event_type="cancelled",
                    details={"reason": reason},
                )
                if previous is not None:
                    cancelled.append(candidate_id)
            session.commit()
        return self._get_many(cancelled)

    def reap_stale(
        self,
        *,
        principal_id: str,
        older_than: datetime,
        reason: str,
    ) -> list[TaskView]:
        """Fail the principal's queued/running tasks created before ``older_than``."""

        now = self._now()
        reaped: list[str] = []
        expected = source_values(TaskStatus.FAILED)
        with Session(self.engine) as session:
            candidate_ids = session.exec(
                select(AgentTask.task_id)
                .where(
                    AgentTask.principal_id == principal_id,
                    col(AgentTask.status).in_(expected),
                    col(AgentTask.created_at) < to_db_datetime(older_than),
                )
                .order_by(col(AgentTask.created_at).asc()),
            ).all()
            for candidate_id in candidate_ids:
                previous = self._transition_one(
                    session=session,
                    task_id=candidate_id,
                    expected=expected,
                    target=TaskStatus.FAILED,
                    values={"error": reason, "completed_at": to_db_datetime(now)},
                    event_type="timed_out",
                    details={"reason": reason},
                )
                if previous is not None:
                    reaped.append(candidate_id)
            session.commit()
        return self._get_many(reaped)

    # -- cost accounting ----------------------------------------------------------

    def record_usage(self, *, task_id: str, usage: TaskUsage) -> bool:
        """Add token/cost usage to a task in any status."""

        values: dict[str, Any] = {}
        if usage.tokens_in is not None:
            values["tokens_in"] = func.coalesce(col(AgentTask.tokens_in), 0) + usage.tokens_in
        if usage.tokens_out is not None:
            values["tokens_out"] = func.coalesce(col(AgentTask.tokens_out), 0) + usage.tokens_out
        if usage.cost_usd is not None:
            values["cost_usd"] = func.coalesce(col(AgentTask.cost_usd), 0.0) + usage.cost_usd
        if not values:
            return False
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(AgentTask).where(col(AgentTask.task_id) == task_id).values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    # -- reads --------------------------------------------------------------------

    def get_task(self, *, task_id: str, principal_id: str | None = None) -> TaskView | None:
        with Session(self.engine) as session:
            statement = select(AgentTask).where(AgentTask.task_id == task_id)
            if principal_id is not None:
                statement = statement.where(AgentTask.principal_id == principal_id)
            row = session.exec(statement).one_or_none()
        return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        principal_id: str,
        status: TaskStatus | None = None,
        roots_only: bool = False,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(AgentTask).where(AgentTask.principal_id == principal_id)
            if status is not None:
                statement = statement.where(AgentTask.status == status.value)
            if roots_only:
                statement = statement.where(col(AgentTask.parent_task_id).is_(None))
            rows = session.exec(
                statement.order_by(col(AgentTask.created_at).desc()).limit(limit),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_children(self, *, parent_task_id: str) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AgentTask)
                .where(AgentTask.parent_task_id == parent_task_id)
                .order_by(col(AgentTask.created_at).asc(), col(AgentTask.task_id).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def get_task_details(
        self,
        *,
        task_id: str,
        principal_id: str | None = None,
    ) -> TaskDetails | None:
        """Return task details with event stream and children."""

        task = self.get_task(task_id=task_id, principal_id=principal_id)
        if task is None:
            return None
        with Session(self.engine) as session:
            event_rows = session.exec(
                select(AgentTaskEvent)
                .where(AgentTaskEvent.task_id == task_id)
                .order_by(col(AgentTaskEvent.created_at).asc(), col(AgentTaskEvent.id).asc()),
            ).all()

        events = [
            TaskEventView(
                event_id=row.id or 0,
                task_id=row.task_id,
                event_type=row.event_type,
                status_from=_status_from_db(row.status_from) if row.status_from else None,
                status_to=_status_from_db(row.status_to) if row.status_to else None,
                created_at=to_utc_aware_datetime(row.created_at),
                details=_load_json_dict(row.details_json),
            )
            for row in event_rows
        ]
        return TaskDetails(
            task=task,
            events=events,
            children=self.list_children(parent_task_id=task_id),
        )

    def count_active(self, *, principal_id: str) -> int:
        """Count the principal's queued/running tasks."""

        with Session(self.engine) as session:
            return session.exec(
                select(func.count())
                .select_from(AgentTask)
                .where(
                    AgentTask.principal_id == principal_id,
                    col(AgentTask.status).in_([status.value for status in ACTIVE_STATUSES]),
                ),
            ).one()

    def count_created_since(self, *, principal_id: str, since: datetime) -> int:
        with Session(self.engine) as session:
            return session.exec(
                select(func.count())
                .select_from(AgentTask)
                .where(
                    AgentTask.principal_id == principal_id,
                    col(AgentTask.created_at) >= to_db_datetime(since),
                ),
            ).one()

    def add_task_event(
        self,
        *,
        task_id: str,
        event_type: str,
        details: dict[str, object],
    ) -> None:
        """Append a non-transition audit event."""

        with Session(self.engine) as session:
            row = session.exec(select(AgentTask).where(AgentTask.task_id == task_id)).one_or_none()
            if row is None:
                raise RuntimeError(f"Task not found: {task_id}")
            self._add_event(
                session=session,
                task_id=task_id,
                principal_id=row.principal_id,
                event_type=event_type,
                status_from=None,
                status_to=None,
                details=details,
            )
            session.commit()

    # -- conversations ----------------------------------------------------------

    def add_conversation_turns(
        self,
        *,
        principal_id: str,
        turns: Iterable[ConversationTurnWrite],
        task_ids: Iterable[str],
    ) -> None:
        turn_list = _checked_turns(turns)
        with Session(self.engine) as session:
            self._add_turns(
                session=session,
                principal_id=principal_id,
                turns=turn_list,
                task_ids=list(task_ids),
                now=self._now(),
            )
            session.commit()

    def _add_turns(
        self,
        *,
        session: Session,
        principal_id: str,
        turns: list[ConversationTurnWrite],
        task_ids: list[str],
        now: datetime,
    ) -> None:
        task_ids_json = json.dumps(task_ids)
        for turn in turns:
            session.add(
                ConversationTurn(
                    principal_id=principal_id,
                    role=turn.role,
                    content=turn.content,
                    task_ids_json=task_ids_json,
                    created_at=to_db_datetime(now),
                ),
            )

    def list_conversation_turns(
        self,
        *,
        principal_id: str,
        limit: int = 20,
    ) -> list[ConversationTurnView]:
        """Most recent turns, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(ConversationTurn)
                .where(ConversationTurn.principal_id == principal_id)
                .order_by(col(ConversationTurn.created_at).desc(), col(ConversationTurn.id).desc())
                .limit(limit),
            ).all()
        views = [
            ConversationTurnView(
                turn_id=row.id or 0,
                principal_id=row.principal_id,
                role=row.role,
                content=row.content,
                task_ids=[str(item) for item in json.loads(row.task_ids_json)],
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]
        views.reverse()
        return views

    # -- project registry ----------------------------------------------------------

    def add_project(self, *, principal_id: str, project: ProjectWrite) -> ProjectView:
        if not project.name.strip():
            raise ValueError("Project name must not be empty.")
        with Session(self.engine) as session:
            row = CodeProject(
                project_id=project.project_id or str(uuid4()),
                principal_id=principal_id,
                name=project.name.strip(),
                repo_full_name=project.repo_full_name.strip(),
                default_branch=project.default_branch.strip() or "main",
                active=True,
                created_at=to_db_datetime(self._now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_project_view(row)

    def list_projects(self, *, principal_id: str, active_only: bool = True) -> list[ProjectView]:
        with Session(self.engine) as session:
            statement = select(CodeProject).where(CodeProject.principal_id == principal_id)
            if active_only:
                statement = statement.where(col(CodeProject.active).is_(True))
            rows = session.exec(
                statement.order_by(col(CodeProject.name).asc(), col(CodeProject.project_id).asc()),
            ).all()
        return [_to_project_view(row) for row in rows]

    def get_project(self, *, principal_id: str, project_id: str) -> ProjectView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(CodeProject).where(
                    CodeProject.project_id == project_id,
                    CodeProject.principal_id == principal_id,
                ),
            ).one_or_none()
        return _to_project_view(row) if row is not None else None

    def deactivate_project(self, *, principal_id: str, project_id: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(CodeProject)
                .where(
                    col(CodeProject.project_id) == project_id,
                    col(CodeProject.principal_id) == principal_id,
                    col(CodeProject.active).is_(True),
                )
                .values(active=False),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    # -- principal settings ------------------------------------------------------

    def get_principal_settings(self, *, principal_id: str) -> PrincipalSettingsView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PrincipalSettingsRow).where(
                    PrincipalSettingsRow.principal_id == principal_id,
                ),
            ).one_or_none()
        return _to_settings_view(row) if row is not None else None

    def upsert_principal_settings(
        self,
        *,
        principal_id: str,
        max_concurrent_tasks: int | None = None,
        daily_task_limit: int | None = None,
        preferred_tier: str | None = None,
        reset: bool = False,
    ) -> PrincipalSettingsView:
        """Store overrides; ``None`` keeps the current value unless ``reset``."""

        now = to_db_datetime(self._now())
        with Session(self.engine) as session:
            row = session.exec(
                select(PrincipalSettingsRow).where(
                    PrincipalSettingsRow.principal_id == principal_id,
                ),
            ).one_or_none()
            if row is None:
                row = PrincipalSettingsRow(principal_id=principal_id, updated_at=now)
            if reset:
                row.max_concurrent_tasks = None
                row.daily_task_limit = None
                row.preferred_tier = None
            if max_concurrent_tasks is not None:
                row.max_concurrent_tasks = max_concurrent_tasks
            if daily_task_limit is not None:
                row.daily_task_limit = daily_task_limit
            if preferred_tier is not None:
                row.preferred_tier = preferred_tier
            row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_settings_view(row)

    # -- internals ---------------------------------------------------------------

    def _now(self) -> datetime:
        return self.clock()

    def _new_task_row(  # noqa: PLR0913
        self,
        *,
        principal_id: str,
        payload: TaskCreate,
        task_id: str,
        parent_task_id: str | None,
        status: TaskStatus,
        now: datetime,
    ) -> AgentTask:
        return AgentTask(
            task_id=task_id,
            principal_id=principal_id,
            parent_task_id=parent_task_id,
            task_type=payload.task_type.value,
            status=status.value,
            agent=payload.agent,
            intent_summary=payload.intent_summary,
            input_json=_dump_json(payload.input),
            created_at=to_db_datetime(now),
            updated_at=to_db_datetime(now),
        )

    def _transition_one(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        expected: tuple[str, ...],
        target: TaskStatus,
        values: dict[str, Any],
        event_type: str,
        details: dict[str, object],
    ) -> str | None:
        """Apply one guarded transition; return the previous status on success."""

        while True:
            row = session.exec(
                select(AgentTask.status, AgentTask.principal_id).where(
                    AgentTask.task_id == task_id,
                ),
            ).one_or_none()
            if row is None:
                return None
            current, principal_id = row
            if current not in expected:
                return None
            previous = _status_from_db(current)
            if is_terminal(previous):
                return None
            ensure_transition(previous, target)

            result = session.exec(
                sa_update(AgentTask)
                .where(
                    col(AgentTask.task_id) == task_id,
                    col(AgentTask.status) == current,
                )
                .values(
                    status=target.value,
                    updated_at=to_db_datetime(self._now()),
                    **values,
                ),
            )
            if result.rowcount != 1:
                continue

            self._add_event(
                session=session,
                task_id=task_id,
                principal_id=principal_id,
                event_type=event_type,
                status_from=previous,
                status_to=target,
                details=details,
            )
            return current

    def _child_counts(self, *, session: Session, parent_task_id: str) -> ChildCounts:
        rows = session.exec(
            select(AgentTask.status, func.count())
            .where(AgentTask.parent_task_id == parent_task_id)
            .group_by(AgentTask.status),
        ).all()
        counts = ChildCounts()
        for status_value, count in rows:
            status = _status_from_db(status_value)
            setattr(counts, status.value, getattr(counts, status.value) + int(count))
        return counts

    def _get_many(self, task_ids: list[str]) -> list[TaskView]:
        if not task_ids:
            return []
        with Session(self.engine) as session:
            rows = session.exec(select(AgentTask).where(col(AgentTask.task_id).in_(task_ids))).all()
        by_id = {row.task_id: row for row in rows}
        return [_to_task_view(by_id[task_id]) for task_id in task_ids if task_id in by_id]

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        principal_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            AgentTaskEvent(
                task_id=task_id,
                principal_id=principal_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=_dump_json(details) if details else None,
                created_at=to_db_datetime(self._now()),
            ),
        )


def _status_from_db(value: str) -> TaskStatus:
    if value == LEGACY_PENDING:
        return TaskStatus.QUEUED
    return TaskStatus(value)


def _dump_json(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _load_json_dict(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    if isinstance(parsed, dict):
        return parsed
    return {}


def _checked_turns(turns: Iterable[ConversationTurnWrite]) -> list[ConversationTurnWrite]:
    turn_list = list(turns)
    for turn in turn_list:
        if turn.role not in {"user", "assistant"}:
            raise ValueError(f"Unsupported conversation role: {turn.role!r}")
    return turn_list


def _to_task_view(row: AgentTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        principal_id=row.principal_id,
        parent_task_id=row.parent_task_id,
        task_type=TaskType(row.task_type),
        status=_status_from_db(row.status),
        agent=row.agent,
        intent_summary=row.intent_summary,
        input=_load_json_dict(row.input_json),
        output=_load_json_dict(row.output_json) if row.output_json is not None else None,
        error=row.error,
        tokens_in=row.tokens_in,
        tokens_out=row.tokens_out,
        cost_usd=row.cost_usd,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
        cancelled_at=(
            to_utc_aware_datetime(row.cancelled_at) if row.cancelled_at is not None else None
        ),
    )


def _to_project_view(row: CodeProject) -> ProjectView:
    return ProjectView(
        project_id=row.project_id,
        principal_id=row.principal_id,
        name=row.name,
        repo_full_name=row.repo_full_name,
        default_branch=row.default_branch,
        active=row.active,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_settings_view(row: PrincipalSettingsRow) -> PrincipalSettingsView:
    return PrincipalSettingsView(
        principal_id=row.principal_id,
        max_concurrent_tasks=row.max_concurrent_tasks,
        daily_task_limit=row.daily_task_limit,
        preferred_tier=row.preferred_tier,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )

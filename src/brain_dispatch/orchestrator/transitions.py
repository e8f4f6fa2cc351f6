"""Task state machine edges."""

from __future__ import annotations

from brain_dispatch.orchestrator.errors import InvalidTransitionError
from brain_dispatch.orchestrator.models import TaskStatus

TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
)
ACTIVE_STATUSES = (TaskStatus.QUEUED, TaskStatus.RUNNING)

# Rows written by older deployments may still carry "pending"; it is never
# produced here but is swept by cancellation like any non-terminal status.
LEGACY_PENDING = "pending"

_ALLOWED: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.QUEUED: frozenset(
        {TaskStatus.RUNNING, TaskStatus.FAILED, TaskStatus.CANCELLED},
    ),
    TaskStatus.RUNNING: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in _ALLOWED[current]


def ensure_transition(current: TaskStatus, target: TaskStatus) -> None:
    """Raise if ``current -> target`` is not an edge of the state machine."""

    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Task status cannot move from {current.value} to {target.value}.",
        )


def sources_for(target: TaskStatus) -> tuple[TaskStatus, ...]:
    """All statuses with an edge into ``target``."""

    return tuple(status for status, targets in _ALLOWED.items() if target in targets)


def source_values(target: TaskStatus) -> tuple[str, ...]:
    """Stored status values a guarded update into ``target`` may match."""

    return tuple(status.value for status in sources_for(target))


CANCELLABLE_STATUS_VALUES = (*source_values(TaskStatus.CANCELLED), LEGACY_PENDING)

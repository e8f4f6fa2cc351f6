from __future__ import annotations

import allure
import pytest

from brain_dispatch.orchestrator.errors import InvalidTransitionError
from brain_dispatch.orchestrator.models import TaskStatus
from brain_dispatch.orchestrator.transitions import (
    CANCELLABLE_STATUS_VALUES,
    LEGACY_PENDING,
    can_transition,
    ensure_transition,
    is_terminal,
    source_values,
    sources_for,
)

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Task Lifecycle"),
]


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (TaskStatus.QUEUED, TaskStatus.RUNNING),
        (TaskStatus.QUEUED, TaskStatus.CANCELLED),
        (TaskStatus.QUEUED, TaskStatus.FAILED),
        (TaskStatus.RUNNING, TaskStatus.COMPLETED),
        (TaskStatus.RUNNING, TaskStatus.FAILED),
        (TaskStatus.RUNNING, TaskStatus.CANCELLED),
    ],
)
def test_lifecycle_edges_are_allowed(current: TaskStatus, target: TaskStatus) -> None:
    assert can_transition(current, target)
    ensure_transition(current, target)


def test_queued_task_cannot_complete_without_running() -> None:
    assert not can_transition(TaskStatus.QUEUED, TaskStatus.COMPLETED)


@pytest.mark.parametrize(
    "terminal",
    [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED],
)
def test_terminal_statuses_are_absorbing(terminal: TaskStatus) -> None:
    assert is_terminal(terminal)
    for target in TaskStatus:
        assert not can_transition(terminal, target)
    with pytest.raises(InvalidTransitionError, match="cannot move"):
        ensure_transition(terminal, TaskStatus.RUNNING)


def test_sources_for_cancelled_are_the_active_statuses() -> None:
    assert set(sources_for(TaskStatus.CANCELLED)) == {TaskStatus.QUEUED, TaskStatus.RUNNING}
    assert sources_for(TaskStatus.COMPLETED) == (TaskStatus.RUNNING,)


def test_guard_values_follow_the_edges() -> None:
    assert source_values(TaskStatus.RUNNING) == ("queued",)
    assert source_values(TaskStatus.FAILED) == ("queued", "running")
    assert CANCELLABLE_STATUS_VALUES == ("queued", "running", LEGACY_PENDING)

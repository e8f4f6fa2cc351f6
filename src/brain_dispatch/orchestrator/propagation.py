"""Roll parents up to completed once every child is terminal."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from brain_dispatch.orchestrator.models import ParentFinalization, TaskView
from brain_dispatch.orchestrator.repository import TaskRepository

logger = logging.getLogger(__name__)

ParentFinalizedHook = Callable[[ParentFinalization], None]


class CompletionPropagator:
    """Fan-in barrier expressed as an idempotent conditional transition.

    Two children finishing at the same instant may both call in; only the
    call whose update moved the parent sees ``changed`` and fires the hook.
    """

    def __init__(
        self,
        repository: TaskRepository,
        *,
        on_parent_finalized: ParentFinalizedHook | None = None,
    ) -> None:
        self.repository = repository
        self.on_parent_finalized = on_parent_finalized

    def on_child_terminal(self, task_id: str) -> ParentFinalization | None:
        """Re-check the parent of a child that just reached a terminal state."""

        task = self.repository.get_task(task_id=task_id)
        if task is None or task.parent_task_id is None:
            return None
        return self.recheck_parent(task.parent_task_id)

    def on_children_terminal(self, tasks: Iterable[TaskView]) -> list[ParentFinalization]:
        """Re-check each distinct parent of a batch of terminal tasks."""

        seen: set[str] = set()
        results: list[ParentFinalization] = []
        for task in tasks:
            parent_id = task.parent_task_id
            if parent_id is None or parent_id in seen:
                continue
            seen.add(parent_id)
            results.append(self.recheck_parent(parent_id))
        return results

    def recheck_parent(self, parent_task_id: str) -> ParentFinalization:
        result = self.repository.finalize_parent(parent_task_id=parent_task_id)
        if not result.changed:
            return result

        logger.info(
            "Parent %s finalized: outcome=%s completed=%d failed=%d cancelled=%d",
            parent_task_id,
            result.outcome.value if result.outcome is not None else "-",
            result.counts.completed,
            result.counts.failed,
            result.counts.cancelled,
        )
        if self.on_parent_finalized is not None:
            try:
                self.on_parent_finalized(result)
            except Exception:  # noqa: BLE001
                logger.exception("on_parent_finalized hook failed for %s", parent_task_id)
        return result

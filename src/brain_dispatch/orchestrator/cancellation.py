"""Cooperative cancellation of a principal's own in-flight tasks."""

from __future__ import annotations

import logging

from brain_dispatch.orchestrator.models import CancelReply, CancelRequest
from brain_dispatch.orchestrator.propagation import CompletionPropagator
from brain_dispatch.orchestrator.repository import TaskRepository

logger = logging.getLogger(__name__)

CANCELLED_BY_USER = "Cancelled by user"
STOP_ALL = "stop_all"
STOP_ONE = "stop_one"


class CancellationGate:
    """Flip queued/running tasks to cancelled; never interrupts running work."""

    def __init__(self, repository: TaskRepository, propagator: CompletionPropagator) -> None:
        self.repository = repository
        self.propagator = propagator

    def cancel_all(self, principal_id: str) -> list[str]:
        return self._cancel(principal_id, task_id=None)

    def cancel_one(self, principal_id: str, task_id: str) -> list[str]:
        """Cancel one task owned by the principal; others' tasks are left alone."""

        return self._cancel(principal_id, task_id=task_id)

    def handle(self, principal_id: str, request: CancelRequest) -> CancelReply:
        if request.action == STOP_ALL:
            return CancelReply(cancelled_ids=self.cancel_all(principal_id))
        if request.action == STOP_ONE:
            if not request.task_id:
                raise ValueError("stop_one requires a task_id.")
            return CancelReply(cancelled_ids=self.cancel_one(principal_id, request.task_id))
        raise ValueError(f"Unsupported cancellation action: {request.action!r}")

    def _cancel(self, principal_id: str, *, task_id: str | None) -> list[str]:
        cancelled = self.repository.cancel_tasks(
            principal_id=principal_id,
            reason=CANCELLED_BY_USER,
            task_id=task_id,
        )
        if cancelled:
            logger.info("Cancelled %d tasks for principal=%s", len(cancelled), principal_id)
            self.propagator.on_children_terminal(cancelled)
        return [task.task_id for task in cancelled]

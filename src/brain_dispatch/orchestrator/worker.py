"""Callback API used by worker collaborators to report on their own task."""

from __future__ import annotations

import logging
from typing import Any

from brain_dispatch.orchestrator.models import TaskUsage
from brain_dispatch.orchestrator.propagation import CompletionPropagator
from brain_dispatch.orchestrator.repository import TaskRepository

logger = logging.getLogger(__name__)


class WorkerReporter:
    """Conditional status writes on behalf of a worker.

    A worker whose task was cancelled meanwhile gets ``False`` back and its
    terminal write leaves the stored status untouched.
    """

    def __init__(self, repository: TaskRepository, propagator: CompletionPropagator) -> None:
        self.repository = repository
        self.propagator = propagator

    def start(self, task_id: str) -> bool:
        started = self.repository.start_task(task_id=task_id)
        if not started:
            logger.info("Start ignored for task %s: no longer queued", task_id)
        return started

    def complete(
        self,
        task_id: str,
        *,
        output: dict[str, Any] | None = None,
        usage: TaskUsage | None = None,
    ) -> bool:
        if usage is not None:
            self.repository.record_usage(task_id=task_id, usage=usage)
        completed = self.repository.complete_task(task_id=task_id, output=output)
        if not completed:
            logger.info("Completion ignored for task %s: no longer running", task_id)
            return False
        self.propagator.on_child_terminal(task_id)
        return True

    def fail(self, task_id: str, *, error: str, usage: TaskUsage | None = None) -> bool:
        if usage is not None:
            self.repository.record_usage(task_id=task_id, usage=usage)
        failed = self.repository.fail_task(task_id=task_id, error=error)
        if not failed:
            logger.info("Failure report ignored for task %s: no longer running", task_id)
            return False
        self.propagator.on_child_terminal(task_id)
        return True

    def record_usage(self, task_id: str, usage: TaskUsage) -> bool:
        """Cost accounting is accepted in any status, including terminal ones."""

        return self.repository.record_usage(task_id=task_id, usage=usage)

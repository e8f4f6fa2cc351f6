"""Persist one request batch and fire-and-forget its children to workers."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from functools import partial
from typing import Any, Protocol

from brain_dispatch.orchestrator.models import (
    ConversationTurnWrite,
    DispatchResult,
    IntentDescriptor,
    ReplyStatus,
    RouteResult,
    TaskCreate,
    TaskStatus,
    TaskType,
    TaskView,
)
from brain_dispatch.orchestrator.propagation import CompletionPropagator
from brain_dispatch.orchestrator.repository import ROOT_AGENT, TaskRepository
from brain_dispatch.orchestrator.worker_client import WorkerCallResult, WorkerInvoker

logger = logging.getLogger(__name__)

Launcher = Callable[[Callable[[], None]], None]

# Worker kinds whose replies are worth keeping as knowledge artifacts.
KNOWLEDGE_KINDS = frozenset({TaskType.RESEARCH, TaskType.REPORT})
ROOT_SUMMARY_SEPARATOR = "; "


class KnowledgeSink(Protocol):
    """External knowledge-store collaborator fed with worker replies."""

    def record(self, *, task: TaskView, reply: Any) -> None: ...


class ThreadLauncher:
    """Run each job on its own thread and return immediately.

    ``join`` lets a short-lived process (the CLI) wait for in-flight
    deliveries before exiting; long-running hosts never need to call it.
    """

    def __init__(self, *, daemon: bool = True) -> None:
        self.daemon = daemon
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def __call__(self, job: Callable[[], None]) -> None:
        thread = threading.Thread(target=job, name="brain-dispatch-delivery", daemon=self.daemon)
        with self._lock:
            self._threads = [item for item in self._threads if item.is_alive()]
            self._threads.append(thread)
        thread.start()

    def join(self, timeout: float | None = None) -> None:
        """Wait for launched jobs; ``timeout`` bounds the whole wait, not each thread."""

        with self._lock:
            threads = list(self._threads)
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            if deadline is None:
                thread.join()
            else:
                thread.join(max(0.0, deadline - time.monotonic()))


class Dispatcher:
    """Create the root/child rows, record the conversation and launch deliveries.

    The synchronous reply is ready as soon as rows are committed. Each
    delivery continuation owns its own failure handling: an unreachable or
    failing worker marks its child ``failed`` and re-checks the parent.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        worker: WorkerInvoker,
        propagator: CompletionPropagator,
        launcher: Launcher | None = None,
        knowledge_sink: KnowledgeSink | None = None,
    ) -> None:
        self.repository = repository
        self.worker = worker
        self.propagator = propagator
        self.launcher = launcher or ThreadLauncher()
        self.knowledge_sink = knowledge_sink

    def dispatch(
        self,
        *,
        principal_id: str,
        message: str,
        route: RouteResult,
        source: str = "cli",
    ) -> DispatchResult:
        dispatchable = [intent for intent in route.intents if intent.is_dispatchable]
        root = TaskCreate(
            task_type=route.primary_intent,
            agent=ROOT_AGENT,
            intent_summary=_root_summary(route.intents, message=message),
            input={
                "message": message,
                "source": source,
                "intents": [intent.kind.value for intent in route.intents],
                "routing": {
                    "tier": route.tier,
                    "model": route.model,
                    "source": route.tier_source,
                },
                "degraded": route.degraded,
            },
        )
        children = [
            TaskCreate(
                task_type=intent.kind,
                agent=intent.target_agent,
                intent_summary=intent.summary,
                input={
                    "query": intent.extracted_query,
                    "original_message": message,
                    "routing_hints": _routing_hints(route, intent),
                },
            )
            for intent in dispatchable
        ]
        batch = self.repository.create_task_batch(
            principal_id=principal_id,
            root=root,
            children=children,
            turns=[
                ConversationTurnWrite(role="user", content=message),
                ConversationTurnWrite(role="assistant", content=route.ack_message),
            ],
        )

        if not batch.children:
            self.repository.complete_task(
                task_id=batch.root.task_id,
                output={"reply": route.ack_message},
            )
            status = ReplyStatus.COMPLETED
        else:
            for child in batch.children:
                self.launcher(partial(self._deliver, child, build_worker_payload(child)))
            status = ReplyStatus.DISPATCHED

        logger.info(
            "Dispatched batch root=%s children=%d status=%s",
            batch.root.task_id,
            len(batch.children),
            status.value,
        )
        return DispatchResult(
            root_task_id=batch.root.task_id,
            child_task_ids=[child.task_id for child in batch.children],
            reply=route.ack_message,
            status=status,
            primary_intent=route.primary_intent,
        )

    def _deliver(self, child: TaskView, payload: dict[str, Any]) -> None:
        try:
            self._deliver_once(child, payload)
        except Exception:  # noqa: BLE001
            logger.exception("Delivery continuation failed for task %s", child.task_id)

    def _deliver_once(self, child: TaskView, payload: dict[str, Any]) -> None:
        try:
            result = self.worker.invoke(child.agent, payload)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Worker invoker raised for task %s", child.task_id)
            result = WorkerCallResult(
                agent=child.agent,
                url="",
                status_code=0,
                is_success=False,
                error=f"{type(exc).__name__}: {exc}",
            )
        if not result.is_success:
            self._fail_child(child, result)
            return

        self.repository.add_task_event(
            task_id=child.task_id,
            event_type="delivered",
            details={"agent": child.agent, "status_code": result.status_code},
        )
        if child.task_type in KNOWLEDGE_KINDS and self.knowledge_sink is not None:
            try:
                self.knowledge_sink.record(task=child, reply=result.body)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Knowledge sink failed for task %s: %s", child.task_id, exc)

    def _fail_child(self, child: TaskView, result: WorkerCallResult) -> None:
        error = f"Dispatch to {child.agent} failed: {result.error or 'unknown error'}"
        logger.warning("Task %s: %s", child.task_id, error)
        changed = self.repository.fail_task(
            task_id=child.task_id,
            error=error,
            expected=(TaskStatus.QUEUED, TaskStatus.RUNNING),
            event_type="dispatch_failed",
        )
        if changed:
            self.propagator.on_child_terminal(child.task_id)


def build_worker_payload(child: TaskView) -> dict[str, Any]:
    """Payload a worker receives: ids, owner, query and routing hints."""

    return {
        "task_id": child.task_id,
        "parent_task_id": child.parent_task_id,
        "principal_id": child.principal_id,
        "query": child.input.get("query", ""),
        "original_message": child.input.get("original_message", ""),
        "routing_hints": child.input.get("routing_hints", {}),
    }


def _routing_hints(route: RouteResult, intent: IntentDescriptor) -> dict[str, Any]:
    hints: dict[str, Any] = {
        "tier": route.tier,
        "model": route.model,
        "tier_source": route.tier_source,
    }
    if intent.project_id is not None:
        hints["project_id"] = intent.project_id
        hints["project_name"] = intent.project_name
    return hints


def _root_summary(intents: list[IntentDescriptor], *, message: str) -> str:
    if not intents:
        return message[:100]
    if len(intents) == 1:
        return intents[0].summary
    return ROOT_SUMMARY_SEPARATOR.join(intent.summary for intent in intents)

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import allure

from brain_dispatch.orchestrator.dispatcher import Dispatcher, ThreadLauncher, build_worker_payload
from brain_dispatch.orchestrator.models import (
    IntentDescriptor,
    ParentFinalization,
    ReplyStatus,
    RouteResult,
    TaskStatus,
    TaskType,
    TaskView,
)
from brain_dispatch.orchestrator.propagation import CompletionPropagator
from brain_dispatch.orchestrator.repository import ROOT_AGENT, TaskRepository

from doubles import PRINCIPAL, CrashingWorker, RecordingWorker, failed_call, inline_launcher

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Fire-and-Forget Dispatch"),
]


class _RecordingSink:
    def __init__(self) -> None:
        self.records: list[tuple[str, Any]] = []

    def record(self, *, task: TaskView, reply: Any) -> None:
        self.records.append((task.task_id, reply))


class _BrokenSink:
    def record(self, *, task: TaskView, reply: Any) -> None:
        raise RuntimeError("knowledge store offline")


def _intent(kind: TaskType, agent: str, query: str, **extra: str) -> IntentDescriptor:
    return IntentDescriptor(
        kind=kind,
        summary=f"{kind.value}: {query}",
        target_agent=agent,
        extracted_query=query,
        **extra,
    )


def _route(*intents: IntentDescriptor, ack: str = "On it.") -> RouteResult:
    return RouteResult(
        intents=list(intents),
        ack_message=ack,
        tier="fast",
        model="claude-haiku-4-5-20251001",
        tier_source="default",
    )


def _dispatcher(
    repository: TaskRepository,
    worker: RecordingWorker,
    *,
    launcher: Callable[[Callable[[], None]], None] = inline_launcher,
    propagator: CompletionPropagator | None = None,
    knowledge_sink: Any = None,
) -> Dispatcher:
    return Dispatcher(
        repository=repository,
        worker=worker,
        propagator=propagator or CompletionPropagator(repository),
        launcher=launcher,
        knowledge_sink=knowledge_sink,
    )


def test_dispatch_creates_one_child_per_intent_under_a_root(repository: TaskRepository) -> None:
    worker = RecordingWorker()
    jobs: list[Callable[[], None]] = []
    dispatcher = _dispatcher(repository, worker, launcher=jobs.append)
    message = "research tide pools and save a note: dentist on Tuesday"

    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message=message,
        route=_route(
            _intent(TaskType.RESEARCH, "research-agent", "tide pools"),
            _intent(TaskType.SAVE, "save-agent", "dentist on Tuesday"),
        ),
    )

    assert result.status is ReplyStatus.DISPATCHED
    assert result.reply == "On it."
    assert result.primary_intent is TaskType.RESEARCH
    assert len(result.child_task_ids) == 2
    assert worker.calls == []
    assert len(jobs) == 2

    root = repository.get_task(task_id=result.root_task_id)
    assert root is not None
    assert root.status is TaskStatus.RUNNING
    assert root.agent == ROOT_AGENT
    assert root.intent_summary == "research: tide pools; save: dentist on Tuesday"
    assert root.input["intents"] == ["research", "save"]
    assert root.input["routing"] == {
        "tier": "fast",
        "model": "claude-haiku-4-5-20251001",
        "source": "default",
    }
    children = repository.list_children(parent_task_id=result.root_task_id)
    assert {child.status for child in children} == {TaskStatus.QUEUED}

    turns = repository.list_conversation_turns(principal_id=PRINCIPAL)
    assert [(turn.role, turn.content) for turn in turns] == [
        ("user", message),
        ("assistant", "On it."),
    ]
    assert turns[0].task_ids == [result.root_task_id, *result.child_task_ids]

    for job in jobs:
        job()
    assert [agent for agent, _ in worker.calls] == ["research-agent", "save-agent"]
    payload = worker.calls[1][1]
    assert payload["parent_task_id"] == result.root_task_id
    assert payload["principal_id"] == PRINCIPAL
    assert payload["query"] == "dentist on Tuesday"
    assert payload["original_message"] == message
    assert payload["routing_hints"]["tier"] == "fast"


def test_general_only_request_completes_root_inline(repository: TaskRepository) -> None:
    worker = RecordingWorker()
    dispatcher = _dispatcher(repository, worker)

    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message="hello",
        route=_route(_intent(TaskType.GENERAL, "chat", "hello"), ack="Hi! How can I help?"),
    )

    assert result.status is ReplyStatus.COMPLETED
    assert result.child_task_ids == []
    assert worker.calls == []
    root = repository.get_task(task_id=result.root_task_id)
    assert root is not None
    assert root.status is TaskStatus.COMPLETED
    assert root.output == {"reply": "Hi! How can I help?"}


def test_general_intent_in_mixed_batch_creates_no_child(repository: TaskRepository) -> None:
    dispatcher = _dispatcher(repository, RecordingWorker(), launcher=lambda job: None)

    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message="thanks! also find my tax notes",
        route=_route(
            _intent(TaskType.GENERAL, "chat", "thanks"),
            _intent(TaskType.SEARCH, "search-agent", "tax notes"),
        ),
    )

    children = repository.list_children(parent_task_id=result.root_task_id)
    assert [child.task_type for child in children] == [TaskType.SEARCH]
    assert result.primary_intent is TaskType.GENERAL


def test_failed_delivery_fails_child_and_finalizes_parent(repository: TaskRepository) -> None:
    finalized: list[ParentFinalization] = []
    propagator = CompletionPropagator(repository, on_parent_finalized=finalized.append)
    worker = RecordingWorker(results={"save-agent": failed_call("save-agent")})
    dispatcher = _dispatcher(repository, worker, propagator=propagator)

    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message="save this",
        route=_route(_intent(TaskType.SAVE, "save-agent", "this")),
    )

    child = repository.get_task(task_id=result.child_task_ids[0])
    assert child is not None
    assert child.status is TaskStatus.FAILED
    assert child.error == "Dispatch to save-agent failed: HTTP 503"
    details = repository.get_task_details(task_id=child.task_id)
    assert details is not None
    assert details.events[-1].event_type == "dispatch_failed"

    root = repository.get_task(task_id=result.root_task_id)
    assert root is not None
    assert root.status is TaskStatus.COMPLETED
    assert root.output == {
        "outcome": "all_failed",
        "children": {"cancelled": 0, "completed": 0, "failed": 1},
    }
    assert len(finalized) == 1


def test_failed_delivery_does_not_override_cancellation(repository: TaskRepository) -> None:
    jobs: list[Callable[[], None]] = []
    worker = RecordingWorker(results={"save-agent": failed_call("save-agent")})
    dispatcher = _dispatcher(repository, worker, launcher=jobs.append)
    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message="save this",
        route=_route(_intent(TaskType.SAVE, "save-agent", "this")),
    )
    repository.cancel_tasks(principal_id=PRINCIPAL, reason="Cancelled by user")

    jobs[0]()

    child = repository.get_task(task_id=result.child_task_ids[0])
    assert child is not None
    assert child.status is TaskStatus.CANCELLED


def test_successful_delivery_records_event_and_feeds_knowledge_sink(
    repository: TaskRepository,
) -> None:
    sink = _RecordingSink()
    dispatcher = _dispatcher(repository, RecordingWorker(), knowledge_sink=sink)

    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message="research tides and save a note",
        route=_route(
            _intent(TaskType.RESEARCH, "research-agent", "tides"),
            _intent(TaskType.SAVE, "save-agent", "note"),
        ),
    )

    research_id, save_id = result.child_task_ids
    assert sink.records == [(research_id, {"accepted": True})]
    for task_id in (research_id, save_id):
        details = repository.get_task_details(task_id=task_id)
        assert details is not None
        assert details.task.status is TaskStatus.QUEUED
        assert details.events[-1].event_type == "delivered"


def test_knowledge_sink_failure_does_not_fail_the_child(repository: TaskRepository) -> None:
    dispatcher = _dispatcher(repository, RecordingWorker(), knowledge_sink=_BrokenSink())

    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message="research tides",
        route=_route(_intent(TaskType.RESEARCH, "research-agent", "tides")),
    )

    child = repository.get_task(task_id=result.child_task_ids[0])
    assert child is not None
    assert child.status is TaskStatus.QUEUED


def test_code_child_carries_project_in_routing_hints(repository: TaskRepository) -> None:
    dispatcher = _dispatcher(repository, RecordingWorker(), launcher=lambda job: None)

    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message="fix the website footer",
        route=_route(
            _intent(
                TaskType.CODE,
                "code-agent",
                "fix the footer",
                project_id="p-1",
                project_name="website",
            ),
        ),
    )

    child = repository.get_task(task_id=result.child_task_ids[0])
    assert child is not None
    payload = build_worker_payload(child)
    assert payload["routing_hints"] == {
        "tier": "fast",
        "model": "claude-haiku-4-5-20251001",
        "tier_source": "default",
        "project_id": "p-1",
        "project_name": "website",
    }


def test_thread_launcher_runs_jobs_off_the_calling_thread() -> None:
    launcher = ThreadLauncher()
    seen: list[str] = []

    launcher(lambda: seen.append("delivered"))
    launcher.join(timeout=5)

    assert seen == ["delivered"]


def test_raising_invoker_fails_child_and_finalizes_parent(repository: TaskRepository) -> None:
    worker = CrashingWorker(RuntimeError("Cannot send a request, as the client has been closed."))
    dispatcher = _dispatcher(repository, worker)

    result = dispatcher.dispatch(
        principal_id=PRINCIPAL,
        message="research tides",
        route=_route(_intent(TaskType.RESEARCH, "research-agent", "tides")),
    )

    child = repository.get_task(task_id=result.child_task_ids[0])
    assert child is not None
    assert child.status is TaskStatus.FAILED
    assert child.error == (
        "Dispatch to research-agent failed: "
        "RuntimeError: Cannot send a request, as the client has been closed."
    )
    assert repository.count_active(principal_id=PRINCIPAL) == 0
    root = repository.get_task(task_id=result.root_task_id)
    assert root is not None
    assert root.output["outcome"] == "all_failed"


def test_thread_launcher_join_timeout_bounds_the_whole_wait() -> None:
    release = threading.Event()
    launcher = ThreadLauncher()
    for _ in range(3):
        launcher(lambda: release.wait(5))

    started = time.monotonic()
    launcher.join(timeout=0.2)
    elapsed = time.monotonic() - started
    release.set()
    launcher.join(timeout=5)

    assert elapsed < 1.0

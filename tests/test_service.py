from __future__ import annotations

import allure
import pytest

from brain_dispatch.config import GovernorSettings
from brain_dispatch.orchestrator.cancellation import STOP_ALL, CancellationGate
from brain_dispatch.orchestrator.dispatcher import Dispatcher
from brain_dispatch.orchestrator.errors import ConcurrencyLimitError
from brain_dispatch.orchestrator.governor import AdmissionGovernor
from brain_dispatch.orchestrator.models import (
    CancelRequest,
    InboundRequest,
    ProjectWrite,
    ReplyStatus,
    TaskStatus,
    TaskType,
)
from brain_dispatch.orchestrator.propagation import CompletionPropagator
from brain_dispatch.orchestrator.repository import TaskRepository
from brain_dispatch.orchestrator.router import IntentRouter
from brain_dispatch.orchestrator.routing import RoutingDefaults
from brain_dispatch.orchestrator.services import OrchestratorService

from doubles import PRINCIPAL, FakeClock, RecordingWorker, StaticClassifier, inline_launcher

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Request Handling"),
]

COMPOUND_PAYLOAD = {
    "intents": [
        {"kind": "research", "summary": "Research tide pools", "extracted_query": "tide pools"},
        {"kind": "save", "summary": "Save dentist note", "extracted_query": "dentist Tuesday"},
    ],
    "response": "On it: researching tide pools and saving your note.",
}


def _service(
    repository: TaskRepository,
    clock: FakeClock,
    routing_defaults: RoutingDefaults,
    classifier: StaticClassifier,
    worker: RecordingWorker | None = None,
    governor_settings: GovernorSettings | None = None,
) -> OrchestratorService:
    propagator = CompletionPropagator(repository)
    return OrchestratorService(
        repository=repository,
        governor=AdmissionGovernor(
            repository=repository,
            settings=governor_settings or GovernorSettings(),
            propagator=propagator,
            clock=clock,
        ),
        router=IntentRouter(
            repository=repository,
            defaults=routing_defaults,
            classifier=classifier,
        ),
        dispatcher=Dispatcher(
            repository=repository,
            worker=worker or RecordingWorker(),
            propagator=propagator,
            launcher=inline_launcher,
        ),
        cancellation=CancellationGate(repository, propagator),
        history_turns=4,
    )


def test_compound_request_is_acknowledged_with_root_and_two_children(
    repository: TaskRepository,
    clock: FakeClock,
    routing_defaults: RoutingDefaults,
) -> None:
    worker = RecordingWorker()
    service = _service(
        repository,
        clock,
        routing_defaults,
        StaticClassifier(COMPOUND_PAYLOAD),
        worker=worker,
    )

    reply = service.handle_request(
        InboundRequest(
            message="research tide pools and save a note: dentist on Tuesday",
            principal_id=PRINCIPAL,
        ),
    )

    assert reply.status is ReplyStatus.DISPATCHED
    assert reply.primary_intent is TaskType.RESEARCH
    assert reply.ack_message == "On it: researching tide pools and saving your note."
    assert reply.root_task_id is not None
    assert len(reply.child_task_ids) == 2
    assert [agent for agent, _ in worker.calls] == ["research-agent", "save-agent"]

    root = repository.get_task(task_id=reply.root_task_id)
    assert root is not None
    assert root.status is TaskStatus.RUNNING
    assert (root.tokens_in, root.tokens_out) == (1_000, 200)
    assert root.cost_usd == pytest.approx(0.006)

    payload = reply.to_payload()
    assert payload["status"] == "dispatched"
    assert payload["primary_intent"] == "research"
    assert payload["child_task_ids"] == reply.child_task_ids


def test_ambiguous_code_request_creates_no_tasks(
    repository: TaskRepository,
    clock: FakeClock,
    routing_defaults: RoutingDefaults,
) -> None:
    for name in ("website", "infra"):
        repository.add_project(
            principal_id=PRINCIPAL,
            project=ProjectWrite(name=name, repo_full_name=f"alice/{name}"),
        )
    service = _service(
        repository,
        clock,
        routing_defaults,
        StaticClassifier(
            {"intents": [{"kind": "code", "summary": "Fix", "extracted_query": "fix the bug"}]},
        ),
    )

    reply = service.handle_request(InboundRequest(message="fix the bug", principal_id=PRINCIPAL))

    assert reply.status is ReplyStatus.NEEDS_CLARIFICATION
    assert reply.root_task_id is None
    assert reply.child_task_ids == []
    assert [project.name for project in reply.candidates] == ["infra", "website"]
    assert repository.list_tasks(principal_id=PRINCIPAL) == []
    turns = repository.list_conversation_turns(principal_id=PRINCIPAL)
    assert [turn.role for turn in turns] == ["user", "assistant"]
    assert turns[1].content.startswith("Which project should I work on?")


def test_recent_conversation_is_passed_to_the_classifier(
    repository: TaskRepository,
    clock: FakeClock,
    routing_defaults: RoutingDefaults,
) -> None:
    classifier = StaticClassifier({"kind": "general", "response": "Sure."})
    service = _service(repository, clock, routing_defaults, classifier)

    service.handle_request(InboundRequest(message="hi", principal_id=PRINCIPAL))
    clock.advance(seconds=1)
    service.handle_request(InboundRequest(message="and again", principal_id=PRINCIPAL))

    assert classifier.calls[0]["context"] == ""
    assert classifier.calls[1]["context"] == "user: hi\nassistant: Sure."


def test_rejected_admission_creates_nothing(
    repository: TaskRepository,
    clock: FakeClock,
    routing_defaults: RoutingDefaults,
) -> None:
    classifier = StaticClassifier(COMPOUND_PAYLOAD)
    service = _service(
        repository,
        clock,
        routing_defaults,
        classifier,
        governor_settings=GovernorSettings(max_concurrent_tasks=3),
    )
    service.handle_request(InboundRequest(message="first", principal_id=PRINCIPAL))

    with pytest.raises(ConcurrencyLimitError):
        service.handle_request(InboundRequest(message="second", principal_id=PRINCIPAL))

    assert len(classifier.calls) == 1
    assert len(repository.list_tasks(principal_id=PRINCIPAL)) == 3


def test_empty_message_is_rejected(
    repository: TaskRepository,
    clock: FakeClock,
    routing_defaults: RoutingDefaults,
) -> None:
    service = _service(repository, clock, routing_defaults, StaticClassifier(COMPOUND_PAYLOAD))

    with pytest.raises(ValueError, match="Message is required"):
        service.handle_request(InboundRequest(message="   ", principal_id=PRINCIPAL))


def test_cancel_stops_dispatched_batch(
    repository: TaskRepository,
    clock: FakeClock,
    routing_defaults: RoutingDefaults,
) -> None:
    service = _service(repository, clock, routing_defaults, StaticClassifier(COMPOUND_PAYLOAD))
    reply = service.handle_request(InboundRequest(message="do both", principal_id=PRINCIPAL))

    cancelled = service.cancel(PRINCIPAL, CancelRequest(action=STOP_ALL))

    assert reply.root_task_id is not None
    assert set(cancelled.cancelled_ids) == {reply.root_task_id, *reply.child_task_ids}
    assert repository.count_active(principal_id=PRINCIPAL) == 0

from __future__ import annotations

import json
import threading
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from brain_dispatch import main as main_module
from brain_dispatch.main import brain_dispatch
from brain_dispatch.orchestrator import controllers as controllers_module
from brain_dispatch.orchestrator.classifier import ClassificationResult
from brain_dispatch.orchestrator.models import TaskCreate, TaskStatus, TaskType
from brain_dispatch.orchestrator.repository import ROOT_AGENT, TaskRepository
from brain_dispatch.orchestrator.worker_client import WorkerCallResult

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("CLI Ops"),
]


@pytest.fixture(autouse=True)
def _offline_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BRAIN_DISPATCH_CLASSIFIER_ENABLED", "0")
    monkeypatch.delenv("BRAIN_DISPATCH_PRINCIPAL_ID", raising=False)
    monkeypatch.delenv("BRAIN_DISPATCH_LLM_PRICING", raising=False)


def _seed_batch(db_path: Path, principal_id: str = "default_principal", children: int = 1):
    repository = TaskRepository(db_path)
    repository.init_schema()
    repository.ensure_principal(principal_id)
    batch = repository.create_task_batch(
        principal_id=principal_id,
        root=TaskCreate(task_type=TaskType.RESEARCH, agent=ROOT_AGENT, intent_summary="root"),
        children=[
            TaskCreate(task_type=TaskType.RESEARCH, agent="research-agent", intent_summary="c")
            for _ in range(children)
        ],
    )
    repository.close()
    return batch


def _status(db_path: Path, task_id: str) -> TaskStatus:
    repository = TaskRepository(db_path)
    task = repository.get_task(task_id=task_id)
    repository.close()
    assert task is not None
    return task.status


def test_ask_without_classifier_answers_inline(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    result = runner.invoke(brain_dispatch, ["ask", "--db-path", str(db_path), "hello there"])

    assert result.exit_code == 0, result.output
    assert "Status: completed" in result.output
    assert "Intent: general" in result.output
    assert "Child tasks: 0" in result.output

    listed = runner.invoke(brain_dispatch, ["tasks", "list", "--db-path", str(db_path)])
    assert listed.exit_code == 0, listed.output
    assert "Tasks: 1" in listed.output
    assert "status=completed" in listed.output

    turns = runner.invoke(brain_dispatch, ["tasks", "conversation", "--db-path", str(db_path)])
    assert "Turns: 2" in turns.output
    assert "user: hello there" in turns.output


def test_ask_json_output(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    result = runner.invoke(
        brain_dispatch,
        ["ask", "--db-path", str(db_path), "--principal", "alice", "--json", "hi"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "completed"
    assert payload["primary_intent"] == "general"
    assert payload["child_task_ids"] == []

    inspected = runner.invoke(
        brain_dispatch,
        [
            "tasks",
            "inspect",
            "--db-path",
            str(db_path),
            "--principal",
            "alice",
            "--task-id",
            payload["root_task_id"],
        ],
    )
    assert "Status: completed" in inspected.output
    assert "Events: 2" in inspected.output


def test_ask_reports_admission_rejection(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    _seed_batch(db_path, children=1)
    runner = CliRunner()
    configured = runner.invoke(
        brain_dispatch,
        ["principal", "settings", "--db-path", str(db_path), "--max-concurrent", "2"],
    )
    assert "Max concurrent tasks: 2" in configured.output

    result = runner.invoke(brain_dispatch, ["ask", "--db-path", str(db_path), "one more"])

    assert result.exit_code == 1
    assert "too_many_concurrent_tasks" in result.output
    assert "(2/2)" in result.output


def test_worker_completion_is_ignored_after_stop(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    batch = _seed_batch(db_path, children=1)
    child_id = batch.children[0].task_id
    runner = CliRunner()

    started = runner.invoke(
        brain_dispatch,
        ["worker", "start", "--db-path", str(db_path), "--task-id", child_id],
    )
    assert f"Task running: {child_id}" in started.output

    stopped = runner.invoke(
        brain_dispatch,
        ["tasks", "stop", "--db-path", str(db_path), "--task-id", child_id],
    )
    assert "Cancelled: 1" in stopped.output

    completed = runner.invoke(
        brain_dispatch,
        [
            "worker",
            "complete",
            "--db-path",
            str(db_path),
            "--task-id",
            child_id,
            "--output-json",
            '{"answer": 42}',
        ],
    )
    assert completed.exit_code == 0, completed.output
    assert f"Completion ignored (task no longer running): {child_id}" in completed.output
    assert _status(db_path, child_id) is TaskStatus.CANCELLED
    assert _status(db_path, batch.root.task_id) is TaskStatus.COMPLETED


def test_worker_complete_finalizes_parent_and_records_cost(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    batch = _seed_batch(db_path, children=1)
    child_id = batch.children[0].task_id
    runner = CliRunner()
    runner.invoke(
        brain_dispatch,
        ["worker", "start", "--db-path", str(db_path), "--task-id", child_id],
    )

    completed = runner.invoke(
        brain_dispatch,
        [
            "worker",
            "complete",
            "--db-path",
            str(db_path),
            "--task-id",
            child_id,
            "--tokens-in",
            "1000000",
            "--tokens-out",
            "0",
            "--model",
            "claude-sonnet-4-20250514",
        ],
    )

    assert f"Task completed: {child_id}" in completed.output
    assert _status(db_path, batch.root.task_id) is TaskStatus.COMPLETED
    inspected = runner.invoke(
        brain_dispatch,
        ["tasks", "inspect", "--db-path", str(db_path), "--task-id", child_id],
    )
    assert "cost_usd=3.000000" in inspected.output


def test_worker_usage_requires_some_usage(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    batch = _seed_batch(db_path, children=0)
    runner = CliRunner()

    result = runner.invoke(
        brain_dispatch,
        ["worker", "usage", "--db-path", str(db_path), "--task-id", batch.root.task_id],
    )

    assert result.exit_code == 1
    assert "--tokens-in" in result.output


def test_invalid_output_json_is_reported(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    batch = _seed_batch(db_path, children=0)
    runner = CliRunner()

    result = runner.invoke(
        brain_dispatch,
        [
            "worker",
            "complete",
            "--db-path",
            str(db_path),
            "--task-id",
            batch.root.task_id,
            "--output-json",
            "{not json",
        ],
    )

    assert result.exit_code == 1
    assert "--output-json" in result.output


def test_stop_all_only_touches_the_selected_principal(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    mine = _seed_batch(db_path, principal_id="alice", children=2)
    theirs = _seed_batch(db_path, principal_id="bob", children=1)
    runner = CliRunner()

    result = runner.invoke(
        brain_dispatch,
        ["tasks", "stop-all", "--db-path", str(db_path), "--principal", "alice"],
    )

    assert "Cancelled: 3" in result.output
    assert all(_status(db_path, task_id) is TaskStatus.CANCELLED for task_id in mine.task_ids)
    assert _status(db_path, theirs.root.task_id) is TaskStatus.RUNNING


def test_project_registry_commands(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    added = runner.invoke(
        brain_dispatch,
        ["projects", "add", "--db-path", str(db_path), "--name", "website", "--repo", "me/site"],
    )
    assert added.exit_code == 0, added.output
    project_id = added.output.split("project_id=", 1)[1].split()[0]

    listed = runner.invoke(brain_dispatch, ["projects", "list", "--db-path", str(db_path)])
    assert "Projects: 1" in listed.output
    assert "name=website repo=me/site branch=main active=yes" in listed.output

    removed = runner.invoke(
        brain_dispatch,
        ["projects", "remove", "--db-path", str(db_path), "--project-id", project_id],
    )
    assert f"Project deactivated: {project_id}" in removed.output

    after = runner.invoke(brain_dispatch, ["projects", "list", "--db-path", str(db_path)])
    assert "Projects: 0" in after.output
    everything = runner.invoke(
        brain_dispatch,
        ["projects", "list", "--db-path", str(db_path), "--all"],
    )
    assert "active=no" in everything.output


def test_principal_settings_reset_and_validation(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    updated = runner.invoke(
        brain_dispatch,
        [
            "principal",
            "settings",
            "--db-path",
            str(db_path),
            "--daily-limit",
            "5",
            "--tier",
            "quality",
        ],
    )
    assert "Daily task limit: 5" in updated.output
    assert "Preferred tier: quality" in updated.output

    reset = runner.invoke(
        brain_dispatch,
        ["principal", "settings", "--db-path", str(db_path), "--reset"],
    )
    assert "Daily task limit: 200" in reset.output
    assert "Preferred tier: -" in reset.output

    rejected = runner.invoke(
        brain_dispatch,
        ["principal", "settings", "--db-path", str(db_path), "--max-concurrent", "0"],
    )
    assert rejected.exit_code == 1
    assert "--max-concurrent" in rejected.output


class _ResearchClassifier:
    def __init__(self, settings: object) -> None:
        self.settings = settings

    def __enter__(self) -> _ResearchClassifier:
        return self

    def __exit__(self, *_: object) -> None:
        return None

    def classify(self, **_: object) -> ClassificationResult:
        return ClassificationResult(
            payload={
                "intents": [
                    {"kind": "research", "summary": "Research tides", "extracted_query": "tides"},
                ],
                "response": "Researching tides.",
            },
            model="claude-sonnet-4-20250514",
            tokens_in=10,
            tokens_out=5,
        )


def test_ask_prints_reply_before_waiting_on_worker_deliveries(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    replied = threading.Event()
    reply_seen_by_worker: list[bool] = []

    class _SlowWorkerClient:
        def __init__(self, settings: object) -> None:
            self.settings = settings

        def __enter__(self) -> _SlowWorkerClient:
            return self

        def __exit__(self, *_: object) -> None:
            return None

        def invoke(self, agent: str, payload: dict[str, object]) -> WorkerCallResult:
            reply_seen_by_worker.append(replied.wait(timeout=5))
            return WorkerCallResult(
                agent=agent,
                url=f"http://workers.test/{agent}",
                status_code=202,
                is_success=True,
            )

    emit_lines = main_module._emit_lines

    def _emit_and_signal(lines: list[str]) -> None:
        emit_lines(lines)
        replied.set()

    monkeypatch.setenv("BRAIN_DISPATCH_CLASSIFIER_ENABLED", "1")
    monkeypatch.setenv("BRAIN_DISPATCH_CLASSIFIER_API_KEY", "test-key")
    monkeypatch.setattr(controllers_module, "AnthropicIntentClassifier", _ResearchClassifier)
    monkeypatch.setattr(controllers_module, "WorkerClient", _SlowWorkerClient)
    monkeypatch.setattr(main_module, "_emit_lines", _emit_and_signal)
    db_path = tmp_path / "cli.db"

    result = CliRunner().invoke(brain_dispatch, ["ask", "--db-path", str(db_path), "tides"])

    assert result.exit_code == 0, result.output
    assert "Status: dispatched" in result.output
    assert "Child tasks: 1" in result.output
    assert reply_seen_by_worker == [True]

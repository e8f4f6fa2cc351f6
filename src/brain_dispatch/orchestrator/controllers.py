"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from brain_dispatch.config import Settings
from brain_dispatch.orchestrator.cancellation import STOP_ALL, STOP_ONE, CancellationGate
from brain_dispatch.orchestrator.classifier import AnthropicIntentClassifier
from brain_dispatch.orchestrator.dispatcher import Dispatcher, ThreadLauncher
from brain_dispatch.orchestrator.governor import AdmissionGovernor
from brain_dispatch.orchestrator.models import (
    CancelRequest,
    InboundReply,
    InboundRequest,
    ProjectWrite,
    TaskStatus,
    TaskUsage,
)
from brain_dispatch.orchestrator.pricing import estimate_cost_usd
from brain_dispatch.orchestrator.propagation import CompletionPropagator
from brain_dispatch.orchestrator.repository import TaskRepository
from brain_dispatch.orchestrator.router import IntentRouter
from brain_dispatch.orchestrator.routing import RoutingDefaults, normalize_tier, validate_tier
from brain_dispatch.orchestrator.services import OrchestratorService
from brain_dispatch.orchestrator.worker import WorkerReporter
from brain_dispatch.orchestrator.worker_client import WorkerClient


@dataclass(slots=True)
class AskCommand:
    """CLI input for one natural-language request."""

    db_path: Path | None
    message: str
    principal_id: str | None = None
    project_id: str | None = None
    tier: str | None = None
    output_json: bool = False


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    principal_id: str | None
    status: str | None
    roots_only: bool
    limit: int


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for commands addressing one task."""

    db_path: Path | None
    task_id: str
    principal_id: str | None = None


@dataclass(slots=True)
class StopAllCommand:
    db_path: Path | None
    principal_id: str | None


@dataclass(slots=True)
class ConversationCommand:
    db_path: Path | None
    principal_id: str | None
    limit: int


@dataclass(slots=True)
class WorkerCompleteCommand:
    """CLI input for a worker reporting success."""

    db_path: Path | None
    task_id: str
    output_json: str | None
    tokens_in: int | None = None
    tokens_out: int | None = None
    model: str | None = None


@dataclass(slots=True)
class WorkerFailCommand:
    db_path: Path | None
    task_id: str
    error: str


@dataclass(slots=True)
class WorkerUsageCommand:
    """CLI input for post-hoc cost accounting."""

    db_path: Path | None
    task_id: str
    tokens_in: int | None
    tokens_out: int | None
    cost_usd: float | None
    model: str | None


@dataclass(slots=True)
class ProjectAddCommand:
    db_path: Path | None
    principal_id: str | None
    name: str
    repo_full_name: str
    default_branch: str


@dataclass(slots=True)
class ProjectListCommand:
    db_path: Path | None
    principal_id: str | None
    include_inactive: bool


@dataclass(slots=True)
class ProjectRemoveCommand:
    db_path: Path | None
    principal_id: str | None
    project_id: str


@dataclass(slots=True)
class PrincipalSettingsCommand:
    """CLI input for per-principal limit and tier overrides."""

    db_path: Path | None
    principal_id: str | None
    max_concurrent_tasks: int | None
    daily_task_limit: int | None
    preferred_tier: str | None
    reset: bool


@dataclass(slots=True)
class OrchestratorRuntime:
    """Wired collaborators for one CLI invocation."""

    service: OrchestratorService
    launcher: ThreadLauncher


class OrchestratorCliController:
    """Coordinates request, task inspection, worker callback and registry commands."""

    def ask(self, command: AskCommand, *, emit: Callable[[list[str]], None]) -> None:
        """Handle one request and emit its reply before waiting on deliveries.

        Admission errors propagate to the CLI layer.
        """

        settings = _settings(command.db_path)
        principal_id = command.principal_id or settings.principal.principal_id
        with _repository(settings) as repository, _runtime(settings, repository) as runtime:
            repository.ensure_principal(principal_id, settings.principal.display_name)
            reply = runtime.service.handle_request(
                InboundRequest(
                    message=command.message,
                    principal_id=principal_id,
                    source="cli",
                    project_id=command.project_id,
                    tier_override=command.tier,
                ),
            )
            if command.output_json:
                emit([json.dumps(reply.to_payload(), ensure_ascii=False, sort_keys=True)])
            else:
                emit(_reply_lines(reply))
            runtime.launcher.join(timeout=settings.worker.request_timeout_seconds)

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = _settings(command.db_path)
        principal_id = command.principal_id or settings.principal.principal_id
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(
                principal_id=principal_id,
                status=status_filter,
                roots_only=command.roots_only,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} type={task.task_type.value} status={task.status.value} "
                f"agent={task.agent} parent={task.parent_task_id or '-'} "
                f"created_at={task.created_at.isoformat()} summary={task.intent_summary}",
            )
        return lines

    def inspect_task(self, command: TaskRefCommand) -> list[str]:
        settings = _settings(command.db_path)
        principal_id = command.principal_id or settings.principal.principal_id
        with _repository(settings) as repository:
            details = repository.get_task_details(
                task_id=command.task_id,
                principal_id=principal_id,
            )
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Type: {task.task_type.value}",
            f"Status: {task.status.value}",
            f"Agent: {task.agent}",
            f"Parent: {task.parent_task_id or '-'}",
            f"Summary: {task.intent_summary}",
            f"Error: {task.error or '-'}",
            f"Output: {json.dumps(task.output, sort_keys=True) if task.output else '-'}",
            f"Tokens: in={_fmt_optional(task.tokens_in)} out={_fmt_optional(task.tokens_out)} "
            f"cost_usd={_fmt_cost(task.cost_usd)}",
            f"Children: {len(details.children)}",
        ]
        for child in details.children:
            lines.append(
                f"  child {child.task_id} type={child.task_type.value} "
                f"status={child.status.value} agent={child.agent}",
            )
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def stop(self, command: TaskRefCommand) -> list[str]:
        return self._cancel(
            command.db_path,
            command.principal_id,
            CancelRequest(action=STOP_ONE, task_id=command.task_id),
        )

    def stop_all(self, command: StopAllCommand) -> list[str]:
        return self._cancel(command.db_path, command.principal_id, CancelRequest(action=STOP_ALL))

    def conversation(self, command: ConversationCommand) -> list[str]:
        settings = _settings(command.db_path)
        principal_id = command.principal_id or settings.principal.principal_id
        with _repository(settings) as repository:
            turns = repository.list_conversation_turns(
                principal_id=principal_id,
                limit=command.limit,
            )

        lines = [f"Turns: {len(turns)}"]
        for turn in turns:
            task_ids = ",".join(turn.task_ids) or "-"
            lines.append(
                f"  {turn.created_at.isoformat()} {turn.role}: {turn.content} [tasks={task_ids}]",
            )
        return lines

    def worker_start(self, command: TaskRefCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            reporter = _reporter(repository)
            started = reporter.start(command.task_id)
        if not started:
            return [f"Task not started (no longer queued): {command.task_id}"]
        return [f"Task running: {command.task_id}"]

    def worker_complete(self, command: WorkerCompleteCommand) -> list[str]:
        settings = _settings(command.db_path)
        output = _parse_output_json(command.output_json)
        usage = _usage_from(
            tokens_in=command.tokens_in,
            tokens_out=command.tokens_out,
            cost_usd=None,
            model=command.model,
        )
        with _repository(settings) as repository:
            reporter = _reporter(repository)
            completed = reporter.complete(command.task_id, output=output, usage=usage)
        if not completed:
            return [f"Completion ignored (task no longer running): {command.task_id}"]
        return [f"Task completed: {command.task_id}"]

    def worker_fail(self, command: WorkerFailCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            reporter = _reporter(repository)
            failed = reporter.fail(command.task_id, error=command.error)
        if not failed:
            return [f"Failure ignored (task no longer running): {command.task_id}"]
        return [f"Task failed: {command.task_id}"]

    def worker_usage(self, command: WorkerUsageCommand) -> list[str]:
        settings = _settings(command.db_path)
        usage = _usage_from(
            tokens_in=command.tokens_in,
            tokens_out=command.tokens_out,
            cost_usd=command.cost_usd,
            model=command.model,
        )
        if usage is None:
            raise ValueError("Pass at least one of --tokens-in, --tokens-out or --cost-usd.")
        with _repository(settings) as repository:
            recorded = _reporter(repository).record_usage(command.task_id, usage)
        if not recorded:
            return [f"Task not found: {command.task_id}"]
        return [
            f"Usage recorded: {command.task_id} tokens_in={_fmt_optional(usage.tokens_in)} "
            f"tokens_out={_fmt_optional(usage.tokens_out)} cost_usd={_fmt_cost(usage.cost_usd)}",
        ]

    def add_project(self, command: ProjectAddCommand) -> list[str]:
        settings = _settings(command.db_path)
        principal_id = command.principal_id or settings.principal.principal_id
        with _repository(settings) as repository:
            repository.ensure_principal(principal_id, settings.principal.display_name)
            project = repository.add_project(
                principal_id=principal_id,
                project=ProjectWrite(
                    name=command.name,
                    repo_full_name=command.repo_full_name,
                    default_branch=command.default_branch,
                ),
            )
        return [
            f"Project added: project_id={project.project_id} name={project.name} "
            f"repo={project.repo_full_name} branch={project.default_branch}",
        ]

    def list_projects(self, command: ProjectListCommand) -> list[str]:
        settings = _settings(command.db_path)
        principal_id = command.principal_id or settings.principal.principal_id
        with _repository(settings) as repository:
            projects = repository.list_projects(
                principal_id=principal_id,
                active_only=not command.include_inactive,
            )
        lines = [f"Projects: {len(projects)}"]
        for project in projects:
            lines.append(
                f"  {project.project_id} name={project.name} repo={project.repo_full_name} "
                f"branch={project.default_branch} active={'yes' if project.active else 'no'}",
            )
        return lines

    def remove_project(self, command: ProjectRemoveCommand) -> list[str]:
        settings = _settings(command.db_path)
        principal_id = command.principal_id or settings.principal.principal_id
        with _repository(settings) as repository:
            removed = repository.deactivate_project(
                principal_id=principal_id,
                project_id=command.project_id,
            )
        if not removed:
            return [f"Project not found or already inactive: {command.project_id}"]
        return [f"Project deactivated: {command.project_id}"]

    def principal_settings(self, command: PrincipalSettingsCommand) -> list[str]:
        settings = _settings(command.db_path)
        principal_id = command.principal_id or settings.principal.principal_id
        preferred_tier = None
        if command.preferred_tier is not None:
            preferred_tier = normalize_tier(command.preferred_tier)
            validate_tier(preferred_tier)
        for name, value in (
            ("--max-concurrent", command.max_concurrent_tasks),
            ("--daily-limit", command.daily_task_limit),
        ):
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be > 0.")

        with _repository(settings) as repository:
            repository.ensure_principal(principal_id, settings.principal.display_name)
            changed = (
                command.reset
                or command.max_concurrent_tasks is not None
                or command.daily_task_limit is not None
                or preferred_tier is not None
            )
            view = (
                repository.upsert_principal_settings(
                    principal_id=principal_id,
                    max_concurrent_tasks=command.max_concurrent_tasks,
                    daily_task_limit=command.daily_task_limit,
                    preferred_tier=preferred_tier,
                    reset=command.reset,
                )
                if changed
                else repository.get_principal_settings(principal_id=principal_id)
            )

        governor = settings.governor
        max_concurrent = governor.max_concurrent_tasks
        daily_limit = governor.daily_task_limit
        tier = "-"
        if view is not None:
            max_concurrent = view.max_concurrent_tasks or max_concurrent
            daily_limit = view.daily_task_limit or daily_limit
            tier = view.preferred_tier or "-"
        return [
            f"Principal: {principal_id}",
            f"Max concurrent tasks: {max_concurrent}",
            f"Daily task limit: {daily_limit}",
            f"Preferred tier: {tier}",
        ]

    def _cancel(
        self,
        db_path: Path | None,
        principal_id: str | None,
        request: CancelRequest,
    ) -> list[str]:
        settings = _settings(db_path)
        owner = principal_id or settings.principal.principal_id
        with _repository(settings) as repository:
            propagator = CompletionPropagator(repository)
            reply = CancellationGate(repository, propagator).handle(owner, request)
        lines = [f"Cancelled: {len(reply.cancelled_ids)}"]
        lines.extend(f"  {task_id}" for task_id in reply.cancelled_ids)
        return lines


def _reply_lines(reply: InboundReply) -> list[str]:
    lines = [
        f"Status: {reply.status.value}",
        f"Intent: {reply.primary_intent.value}",
        f"Reply: {reply.ack_message}",
        f"Root task: {reply.root_task_id or '-'}",
        f"Child tasks: {len(reply.child_task_ids)}",
    ]
    lines.extend(f"  {task_id}" for task_id in reply.child_task_ids)
    for project in reply.candidates:
        lines.append(f"  candidate {project.project_id} name={project.name}")
    return lines


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _parse_output_json(raw: str | None) -> dict[str, Any] | None:
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid --output-json: {error.msg}") from error
    if not isinstance(parsed, dict):
        return {"result": parsed}
    return parsed


def _usage_from(
    *,
    tokens_in: int | None,
    tokens_out: int | None,
    cost_usd: float | None,
    model: str | None,
) -> TaskUsage | None:
    if cost_usd is None and model:
        cost_usd = estimate_cost_usd(model=model, tokens_in=tokens_in, tokens_out=tokens_out)
    if tokens_in is None and tokens_out is None and cost_usd is None:
        return None
    return TaskUsage(tokens_in=tokens_in, tokens_out=tokens_out, cost_usd=cost_usd)


def _fmt_optional(value: int | None) -> str:
    return "-" if value is None else str(value)


def _fmt_cost(value: float | None) -> str:
    return "-" if value is None else f"{value:.6f}"


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _reporter(repository: TaskRepository) -> WorkerReporter:
    return WorkerReporter(repository, CompletionPropagator(repository))


@contextmanager
def _runtime(settings: Settings, repository: TaskRepository) -> Iterator[OrchestratorRuntime]:
    with ExitStack() as stack:
        classifier = None
        if settings.classifier.enabled and settings.classifier.api_key:
            classifier = stack.enter_context(AnthropicIntentClassifier(settings.classifier))
        worker_client = stack.enter_context(WorkerClient(settings.worker))
        # Non-daemon threads so the CLI process outlives in-flight deliveries.
        launcher = ThreadLauncher(daemon=False)
        propagator = CompletionPropagator(repository)
        cancellation = CancellationGate(repository, propagator)
        service = OrchestratorService(
            repository=repository,
            governor=AdmissionGovernor(
                repository=repository,
                settings=settings.governor,
                propagator=propagator,
            ),
            router=IntentRouter(
                repository=repository,
                defaults=RoutingDefaults.from_settings(settings.routing),
                classifier=classifier,
            ),
            dispatcher=Dispatcher(
                repository=repository,
                worker=worker_client,
                propagator=propagator,
                launcher=launcher,
            ),
            cancellation=cancellation,
            history_turns=settings.classifier.history_turns,
        )
        yield OrchestratorRuntime(
            service=service,
            launcher=launcher,
        )


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        db_path=settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()

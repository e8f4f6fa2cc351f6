"""CLI entrypoint for brain-dispatch."""

import logging
from pathlib import Path

import rich_click as click

from brain_dispatch import __version__
from brain_dispatch.orchestrator.controllers import (
    AskCommand,
    ConversationCommand,
    ListTasksCommand,
    OrchestratorCliController,
    PrincipalSettingsCommand,
    ProjectAddCommand,
    ProjectListCommand,
    ProjectRemoveCommand,
    StopAllCommand,
    TaskRefCommand,
    WorkerCompleteCommand,
    WorkerFailCommand,
    WorkerUsageCommand,
)
from brain_dispatch.orchestrator.errors import AdmissionError, LoopDetectedError

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
PRINCIPAL_OPTION = click.option(
    "--principal",
    "principal_id",
    default=None,
    help="Principal id; defaults to BRAIN_DISPATCH_PRINCIPAL_ID.",
)


@click.group()
@click.version_option(version=__version__, prog_name="brain-dispatch")
@click.option("--verbose", is_flag=True, default=False, help="Log orchestration details.")
def brain_dispatch(verbose: bool) -> None:
    """Task orchestration and dispatch for a personal assistant."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@brain_dispatch.command("ask")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option("--project-id", default=None, help="Explicit code project for code requests.")
@click.option(
    "--tier",
    type=click.Choice(["fast", "quality"], case_sensitive=False),
    default=None,
    help="Force the model tier for dispatched workers.",
)
@click.option("--json", "output_json", is_flag=True, default=False, help="Print JSON reply.")
@click.argument("message")
def ask(  # noqa: PLR0913
    db_path: Path | None,
    principal_id: str | None,
    project_id: str | None,
    tier: str | None,
    output_json: bool,
    message: str,
) -> None:
    """Route one natural-language request and dispatch its tasks."""

    try:
        ORCHESTRATOR_CONTROLLER.ask(
            AskCommand(
                db_path=db_path,
                message=message,
                principal_id=principal_id,
                project_id=project_id,
                tier=tier.lower() if tier else None,
                output_json=output_json,
            ),
            emit=_emit_lines,
        )
    except AdmissionError as error:
        raise click.ClickException(_admission_message(error)) from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error


@brain_dispatch.group()
def tasks() -> None:
    """Task inspection and cancellation."""


@tasks.command("list")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option(
    "--status",
    type=click.Choice(
        ["queued", "running", "completed", "failed", "cancelled"],
        case_sensitive=False,
    ),
    default=None,
    help="Optional status filter.",
)
@click.option("--roots-only", is_flag=True, default=False, help="Only root (batch) tasks.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks_list(
    db_path: Path | None,
    principal_id: str | None,
    status: str | None,
    roots_only: bool,
    limit: int,
) -> None:
    """List the principal's tasks, newest first."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                principal_id=principal_id,
                status=status,
                roots_only=roots_only,
                limit=limit,
            ),
        ),
    )


@tasks.command("inspect")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option("--task-id", required=True, help="Task id.")
def tasks_inspect(db_path: Path | None, principal_id: str | None, task_id: str) -> None:
    """Inspect one task with children and event history."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.inspect_task(
            TaskRefCommand(db_path=db_path, task_id=task_id, principal_id=principal_id),
        ),
    )


@tasks.command("stop")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option("--task-id", required=True, help="Task id.")
def tasks_stop(db_path: Path | None, principal_id: str | None, task_id: str) -> None:
    """Cancel one queued or running task."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.stop(
            TaskRefCommand(db_path=db_path, task_id=task_id, principal_id=principal_id),
        ),
    )


@tasks.command("stop-all")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
def tasks_stop_all(db_path: Path | None, principal_id: str | None) -> None:
    """Cancel every queued or running task of the principal."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.stop_all(
            StopAllCommand(db_path=db_path, principal_id=principal_id),
        ),
    )


@tasks.command("conversation")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=200),
    default=20,
    show_default=True,
    help="Max turns to print.",
)
def tasks_conversation(db_path: Path | None, principal_id: str | None, limit: int) -> None:
    """Show recent conversation turns with their task ids."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.conversation(
            ConversationCommand(db_path=db_path, principal_id=principal_id, limit=limit),
        ),
    )


@brain_dispatch.group()
def worker() -> None:
    """Callbacks for out-of-process workers sharing the database."""


@worker.command("start")
@DB_PATH_OPTION
@click.option("--task-id", required=True, help="Task id.")
def worker_start(db_path: Path | None, task_id: str) -> None:
    """Move a queued task to running."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.worker_start(TaskRefCommand(db_path=db_path, task_id=task_id)),
    )


@worker.command("complete")
@DB_PATH_OPTION
@click.option("--task-id", required=True, help="Task id.")
@click.option("--output-json", default=None, help="JSON object stored as task output.")
@click.option("--tokens-in", type=click.IntRange(min=0), default=None, help="Input tokens.")
@click.option("--tokens-out", type=click.IntRange(min=0), default=None, help="Output tokens.")
@click.option("--model", default=None, help="Model id used to estimate cost.")
def worker_complete(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    output_json: str | None,
    tokens_in: int | None,
    tokens_out: int | None,
    model: str | None,
) -> None:
    """Mark a running task completed (ignored once cancelled)."""

    try:
        lines = ORCHESTRATOR_CONTROLLER.worker_complete(
            WorkerCompleteCommand(
                db_path=db_path,
                task_id=task_id,
                output_json=output_json,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                model=model,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@worker.command("fail")
@DB_PATH_OPTION
@click.option("--task-id", required=True, help="Task id.")
@click.option("--error", "error_message", required=True, help="Error message.")
def worker_fail(db_path: Path | None, task_id: str, error_message: str) -> None:
    """Mark a running task failed (ignored once cancelled)."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.worker_fail(
            WorkerFailCommand(db_path=db_path, task_id=task_id, error=error_message),
        ),
    )


@worker.command("usage")
@DB_PATH_OPTION
@click.option("--task-id", required=True, help="Task id.")
@click.option("--tokens-in", type=click.IntRange(min=0), default=None, help="Input tokens.")
@click.option("--tokens-out", type=click.IntRange(min=0), default=None, help="Output tokens.")
@click.option("--cost-usd", type=click.FloatRange(min=0), default=None, help="Explicit cost.")
@click.option("--model", default=None, help="Model id used to estimate cost.")
def worker_usage(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    tokens_in: int | None,
    tokens_out: int | None,
    cost_usd: float | None,
    model: str | None,
) -> None:
    """Add token and cost usage to a task in any status."""

    try:
        lines = ORCHESTRATOR_CONTROLLER.worker_usage(
            WorkerUsageCommand(
                db_path=db_path,
                task_id=task_id,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                cost_usd=cost_usd,
                model=model,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@brain_dispatch.group()
def projects() -> None:
    """Code project registry."""


@projects.command("add")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option("--name", required=True, help="Project name used in requests.")
@click.option("--repo", "repo_full_name", required=True, help="Repository, e.g. owner/name.")
@click.option("--branch", default="main", show_default=True, help="Default branch.")
def projects_add(
    db_path: Path | None,
    principal_id: str | None,
    name: str,
    repo_full_name: str,
    branch: str,
) -> None:
    """Register a code project."""

    try:
        lines = ORCHESTRATOR_CONTROLLER.add_project(
            ProjectAddCommand(
                db_path=db_path,
                principal_id=principal_id,
                name=name,
                repo_full_name=repo_full_name,
                default_branch=branch,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@projects.command("list")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option("--all", "include_inactive", is_flag=True, default=False, help="Include removed.")
def projects_list(db_path: Path | None, principal_id: str | None, include_inactive: bool) -> None:
    """List registered code projects."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.list_projects(
            ProjectListCommand(
                db_path=db_path,
                principal_id=principal_id,
                include_inactive=include_inactive,
            ),
        ),
    )


@projects.command("remove")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option("--project-id", required=True, help="Project id.")
def projects_remove(db_path: Path | None, principal_id: str | None, project_id: str) -> None:
    """Deactivate a code project."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.remove_project(
            ProjectRemoveCommand(
                db_path=db_path,
                principal_id=principal_id,
                project_id=project_id,
            ),
        ),
    )


@brain_dispatch.group()
def principal() -> None:
    """Per-principal overrides."""


@principal.command("settings")
@DB_PATH_OPTION
@PRINCIPAL_OPTION
@click.option("--max-concurrent", type=int, default=None, help="Concurrent task cap.")
@click.option("--daily-limit", type=int, default=None, help="Daily task cap (UTC day).")
@click.option(
    "--tier",
    type=click.Choice(["fast", "quality"], case_sensitive=False),
    default=None,
    help="Preferred model tier.",
)
@click.option("--reset", is_flag=True, default=False, help="Clear all overrides first.")
def principal_settings(  # noqa: PLR0913
    db_path: Path | None,
    principal_id: str | None,
    max_concurrent: int | None,
    daily_limit: int | None,
    tier: str | None,
    reset: bool,
) -> None:
    """Show or change per-principal limits and preferred tier."""

    try:
        lines = ORCHESTRATOR_CONTROLLER.principal_settings(
            PrincipalSettingsCommand(
                db_path=db_path,
                principal_id=principal_id,
                max_concurrent_tasks=max_concurrent,
                daily_task_limit=daily_limit,
                preferred_tier=tier,
                reset=reset,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _admission_message(error: AdmissionError) -> str:
    parts = [f"{error.code}: {error.message}"]
    if error.count is not None and error.limit is not None:
        parts.append(f"({error.count}/{error.limit})")
    if error.retry_after_seconds is not None:
        parts.append(f"Retry after {error.retry_after_seconds}s.")
    if isinstance(error, LoopDetectedError):
        parts.append(f"Cancelled {len(error.cancelled_ids)} tasks.")
    return " ".join(parts)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    brain_dispatch()

"""Task commands for the TaskManager CLI.

Provides commands for creating, querying, updating and expanding tasks.
"""

import asyncio
import dataclasses
from typing import Any, Dict, NoReturn, Optional, Tuple

import click

from taskmanager.cli.config import CLIContext
from taskmanager.cli.logging import cli_command
from taskmanager.cli.output import emit_error, emit_success
from taskmanager.cli.registry import get_context
from taskmanager.cli.resilience import (
    FAST_TIMEOUT,
    MEDIUM_TIMEOUT,
    SLOW_TIMEOUT,
    handle_keyboard_interrupt,
    handle_storage_errors,
    with_sync_timeout,
)
from taskmanager.core.generation import expand_task, generate_tasks
from taskmanager.core.llm_config import LLMConfig
from taskmanager.core.models import VALID_PRIORITIES, VALID_STATUSES, Task, TaskStatus
from taskmanager.core.storage import (
    add_subtasks,
    add_task,
    add_tasks,
    get_current_task,
    get_next_task,
    get_task,
    list_tasks,
    load_project_metadata,
    load_tasks,
    remove_task,
    update_task,
    update_task_status,
)


def _task_payload(cli_ctx: CLIContext, task: Task, compact: bool = False) -> Dict[str, Any]:
    """Serialize a task honouring the [display] settings."""
    display = cli_ctx.config.display
    data = task.to_dict()
    if compact:
        data = {key: data[key] for key in ("id", "title", "status", "priority", "dependencies")}
    if not display.show_dependencies:
        data.pop("dependencies", None)
    if not display.show_subtasks:
        data.pop("subtasks", None)
    return data


def _emit_task_not_found(task_id: int) -> NoReturn:
    emit_error(
        f"Task {task_id} not found",
        code="TASK_NOT_FOUND",
        error_type="not_found",
        remediation="List tasks with: taskmanager list",
        details={"task_id": task_id},
    )


def _effective_llm_config(cli_ctx: CLIContext, use_ai: Optional[bool]) -> LLMConfig:
    """Apply a --ai/--no-ai override to the configured AI settings."""
    config = cli_ctx.llm_config
    if use_ai is None:
        return config
    return dataclasses.replace(config, enabled=use_ai)


def _generation_description(cli_ctx: CLIContext, description: str) -> Tuple[str, str]:
    """Build the generation prompt input and project type from project metadata."""
    metadata = load_project_metadata(cli_ctx.project_dir) or {}
    lines = []
    if metadata.get("name"):
        lines.append(f"Project Name: {metadata['name']}")
    if metadata.get("technologies"):
        lines.append(f"Technologies: {', '.join(metadata['technologies'])}")
    text = description or metadata.get("description") or ""
    if text:
        lines.append(f"Description: {text}")
    project_type = metadata.get("type") or cli_ctx.config.project_type
    return "\n".join(lines), project_type


@click.command("create")
@click.option(
    "--ai/--no-ai",
    "use_ai",
    default=None,
    help="Force AI generation on or off (default: [ai] enabled setting)",
)
@click.option("--count", type=click.IntRange(min=1), default=5, show_default=True,
              help="Number of tasks to generate")
@click.option("--title", default=None, help="Create a single task with this title")
@click.option("--description", default="", help="Task description, or project description for generation")
@click.option("--priority", type=click.Choice(sorted(VALID_PRIORITIES)), default=None)
@click.option("--details", default="", help="Implementation notes")
@click.option("--test-strategy", default="", help="How completion is verified")
@click.option("--category", default="feature", show_default=True)
@click.option("--depends-on", "depends_on", type=int, multiple=True, help="Dependency task id (repeatable)")
@click.pass_context
@cli_command("create")
@handle_keyboard_interrupt()
@with_sync_timeout(SLOW_TIMEOUT, "Task creation timed out")
@handle_storage_errors()
def create_cmd(
    ctx: click.Context,
    use_ai: Optional[bool],
    count: int,
    title: Optional[str],
    description: str,
    priority: Optional[str],
    details: str,
    test_strategy: str,
    category: str,
    depends_on: Tuple[int, ...],
) -> None:
    """Create one task (--title) or generate a batch of tasks.

    Generated batches go through dependency validation: references to
    missing or later tasks are dropped and transitive prerequisites added.
    """
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    if title:
        task, error = add_task(
            project_dir,
            title=title,
            description=description,
            priority=priority or cli_ctx.config.tasks.default_priority,
            dependencies=list(depends_on),
            details=details,
            test_strategy=test_strategy,
            category=category,
        )
        if error:
            code = "DEPENDENCY_NOT_FOUND" if "not found" in error else "VALIDATION_ERROR"
            emit_error(
                error,
                code=code,
                error_type="not_found" if code == "DEPENDENCY_NOT_FOUND" else "validation",
                details={"depends_on": list(depends_on)},
            )
        emit_success({"task": _task_payload(cli_ctx, task), "source": "manual"})
        return

    prompt_input, project_type = _generation_description(cli_ctx, description)
    result = asyncio.run(
        generate_tasks(
            prompt_input,
            project_type=project_type,
            task_count=count,
            llm_config=_effective_llm_config(cli_ctx, use_ai),
        )
    )
    stored = add_tasks(project_dir, result.tasks)
    emit_success(
        {
            "tasks": [_task_payload(cli_ctx, task) for task in stored],
            "count": len(stored),
            "source": result.source,
        },
        warnings=result.warnings,
    )


@click.command("list")
@click.option("--status", type=click.Choice(sorted(VALID_STATUSES)), default=None,
              help="Only show tasks with this status")
@click.pass_context
@cli_command("list")
@handle_keyboard_interrupt()
@with_sync_timeout(FAST_TIMEOUT, "Listing tasks timed out")
@handle_storage_errors()
def list_cmd(ctx: click.Context, status: Optional[str]) -> None:
    """List tasks."""
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    tasks = list_tasks(project_dir, status=status)
    compact = cli_ctx.config.display.compact_mode
    emit_success(
        {
            "tasks": [_task_payload(cli_ctx, task, compact=compact) for task in tasks],
            "count": len(tasks),
            "status_filter": status,
            "metadata": load_tasks(project_dir).metadata,
        }
    )


@click.command("show")
@click.argument("task_id", type=int)
@click.pass_context
@cli_command("show")
@handle_keyboard_interrupt()
@with_sync_timeout(FAST_TIMEOUT, "Task lookup timed out")
@handle_storage_errors()
def show_cmd(ctx: click.Context, task_id: int) -> None:
    """Show one task with the status of its dependencies.

    TASK_ID is the numeric task id.
    """
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    document = load_tasks(project_dir)
    task = document.get(task_id)
    if task is None:
        _emit_task_not_found(task_id)

    dependencies = []
    for dep_id in task.dependencies:
        dep = document.get(dep_id)
        dependencies.append(
            {
                "id": dep_id,
                "title": dep.title if dep else None,
                "status": dep.status if dep else None,
                "found": dep is not None,
            }
        )

    emit_success({"task": _task_payload(cli_ctx, task), "dependency_status": dependencies})


@click.command("next")
@click.pass_context
@cli_command("next")
@handle_keyboard_interrupt()
@with_sync_timeout(FAST_TIMEOUT, "Task discovery timed out")
@handle_storage_errors()
def next_cmd(ctx: click.Context) -> None:
    """Find the next task whose dependencies are all done."""
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    task = get_next_task(project_dir)
    if task is not None:
        emit_success({"found": True, "task": _task_payload(cli_ctx, task)})
        return

    tasks = load_tasks(project_dir).tasks
    open_tasks = [
        t for t in tasks
        if t.status in (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)
    ]
    emit_success(
        {
            "found": False,
            "all_done": bool(tasks) and not open_tasks,
            "message": (
                "No tasks found" if not tasks
                else "All tasks completed" if not open_tasks
                else "No actionable tasks (remaining tasks are blocked by dependencies)"
            ),
        }
    )


@click.command("current")
@click.pass_context
@cli_command("current")
@handle_keyboard_interrupt()
@with_sync_timeout(FAST_TIMEOUT, "Task lookup timed out")
@handle_storage_errors()
def current_cmd(ctx: click.Context) -> None:
    """Show the task currently in progress."""
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    current = get_current_task(project_dir)
    if current is None:
        emit_success({"found": False, "message": "No task in progress"})
        return

    task, subtask = current
    emit_success(
        {
            "found": True,
            "task": _task_payload(cli_ctx, task),
            "subtask": subtask.to_dict() if subtask else None,
        }
    )


_STATUS_FLAGS = {
    "done": TaskStatus.DONE.value,
    "pending": TaskStatus.PENDING.value,
    "in_progress": TaskStatus.IN_PROGRESS.value,
    "deferred": TaskStatus.DEFERRED.value,
    "cancelled": TaskStatus.CANCELLED.value,
}


@click.command("status")
@click.argument("task_id", type=int)
@click.option("--done", is_flag=True, help="Mark as done (also completes subtasks)")
@click.option("--pending", is_flag=True, help="Mark as pending")
@click.option("--in-progress", "in_progress", is_flag=True, help="Mark as in progress")
@click.option("--deferred", is_flag=True, help="Mark as deferred")
@click.option("--cancelled", is_flag=True, help="Mark as cancelled")
@click.option("--subtask", "subtask_id", type=int, default=None, help="Update this subtask instead")
@click.pass_context
@cli_command("status")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Status update timed out")
@handle_storage_errors()
def status_cmd(ctx: click.Context, task_id: int, subtask_id: Optional[int], **flags: bool) -> None:
    """Set the status of a task or subtask.

    TASK_ID is the numeric task id. Exactly one status flag is required.
    """
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    chosen = [_STATUS_FLAGS[name] for name, value in flags.items() if value]
    if len(chosen) != 1:
        emit_error(
            "Exactly one status flag is required",
            code="INVALID_STATUS",
            error_type="validation",
            remediation="Use one of --done, --pending, --in-progress, --deferred, --cancelled",
            details={"given": chosen},
        )
    status = chosen[0]

    success, error = update_task_status(project_dir, task_id, status, subtask_id=subtask_id)
    if not success:
        if error and error.startswith("Subtask"):
            emit_error(
                error,
                code="SUBTASK_NOT_FOUND",
                error_type="not_found",
                remediation=f"Show the task with: taskmanager show {task_id}",
                details={"task_id": task_id, "subtask_id": subtask_id},
            )
        _emit_task_not_found(task_id)

    task = get_task(project_dir, task_id)
    emit_success(
        {
            "task_id": task_id,
            "subtask_id": subtask_id,
            "status": status,
            "task": _task_payload(cli_ctx, task),
        }
    )


@click.command("expand")
@click.argument("task_id", type=int)
@click.option("--num", "num_subtasks", type=click.IntRange(min=1), default=None,
              help="Number of subtasks (default: [tasks] default_subtasks)")
@click.option(
    "--ai/--no-ai",
    "use_ai",
    default=None,
    help="Force AI analysis on or off (default: [ai] enabled setting)",
)
@click.pass_context
@cli_command("expand")
@handle_keyboard_interrupt()
@with_sync_timeout(SLOW_TIMEOUT, "Task expansion timed out")
@handle_storage_errors()
def expand_cmd(
    ctx: click.Context,
    task_id: int,
    num_subtasks: Optional[int],
    use_ai: Optional[bool],
) -> None:
    """Split a task into subtasks.

    TASK_ID is the numeric task id. With AI the task may also receive an
    improved description, details and test strategy.
    """
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    task = get_task(project_dir, task_id)
    if task is None:
        _emit_task_not_found(task_id)

    llm_config = _effective_llm_config(cli_ctx, use_ai)
    result = asyncio.run(
        expand_task(
            task,
            num_subtasks=num_subtasks or cli_ctx.config.tasks.default_subtasks,
            llm_config=llm_config,
            use_ai=llm_config.enabled,
        )
    )

    created = add_subtasks(project_dir, task_id, result.subtasks) or []
    if result.improvements:
        update_task(project_dir, task_id, **result.improvements)

    updated = get_task(project_dir, task_id)
    emit_success(
        {
            "task": _task_payload(cli_ctx, updated),
            "created_subtasks": [s.to_dict() for s in created],
            "analysis": result.analysis,
            "improved_fields": sorted(result.improvements),
            "source": result.source,
        },
        warnings=result.warnings,
    )


@click.command("remove")
@click.argument("task_id", type=int)
@click.pass_context
@cli_command("remove")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Task removal timed out")
@handle_storage_errors()
def remove_cmd(ctx: click.Context, task_id: int) -> None:
    """Remove a task and every dependency on it.

    TASK_ID is the numeric task id.
    """
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    if not remove_task(project_dir, task_id):
        _emit_task_not_found(task_id)

    emit_success({"removed": True, "task_id": task_id})

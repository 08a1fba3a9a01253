"""Dependency commands: add, remove and validate task dependencies."""

import click

from taskmanager.cli.logging import cli_command
from taskmanager.cli.output import emit_error, emit_success
from taskmanager.cli.registry import get_context
from taskmanager.cli.resilience import (
    MEDIUM_TIMEOUT,
    handle_keyboard_interrupt,
    handle_storage_errors,
    with_sync_timeout,
)
from taskmanager.core.dependencies import find_dependency_issues
from taskmanager.core.storage import (
    add_dependency,
    get_task,
    load_tasks,
    remove_dependency,
    revalidate_dependencies,
)


@click.group("deps")
def deps_group() -> None:
    """Task dependency commands."""


def _classify_add_error(error: str, task_id: int, depends_on_id: int) -> None:
    if "itself" in error:
        code, error_type = "SELF_REFERENCE", "validation"
    elif "later task" in error:
        code, error_type = "FORWARD_REFERENCE", "validation"
    elif error.startswith("Dependency task"):
        code, error_type = "DEPENDENCY_NOT_FOUND", "not_found"
    else:
        code, error_type = "TASK_NOT_FOUND", "not_found"

    emit_error(
        error,
        code=code,
        error_type=error_type,
        remediation="Dependencies must point to an existing task with a lower id",
        details={"task_id": task_id, "depends_on": depends_on_id},
    )


@deps_group.command("add")
@click.argument("task_id", type=int)
@click.argument("depends_on_id", type=int)
@click.pass_context
@cli_command("deps-add")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Dependency update timed out")
@handle_storage_errors()
def add_dep_cmd(ctx: click.Context, task_id: int, depends_on_id: int) -> None:
    """Make TASK_ID depend on DEPENDS_ON_ID.

    Transitive prerequisites of DEPENDS_ON_ID are added as well.
    """
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    changed, error = add_dependency(project_dir, task_id, depends_on_id)
    if error:
        _classify_add_error(error, task_id, depends_on_id)

    task = get_task(project_dir, task_id)
    emit_success(
        {
            "task_id": task_id,
            "depends_on": depends_on_id,
            "changed": changed,
            "dependencies": task.dependencies if task else [],
        }
    )


@deps_group.command("remove")
@click.argument("task_id", type=int)
@click.argument("depends_on_id", type=int)
@click.pass_context
@cli_command("deps-remove")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Dependency update timed out")
@handle_storage_errors()
def remove_dep_cmd(ctx: click.Context, task_id: int, depends_on_id: int) -> None:
    """Remove the dependency of TASK_ID on DEPENDS_ON_ID."""
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    changed, error = remove_dependency(project_dir, task_id, depends_on_id)
    if error:
        emit_error(
            error,
            code="VALIDATION_ERROR",
            error_type="validation",
            remediation="Remove the implying dependency first; prerequisites are transitive",
            details={"task_id": task_id, "depends_on": depends_on_id},
        )
    if not changed:
        emit_error(
            f"Task {task_id} does not depend on task {depends_on_id}",
            code="DEPENDENCY_NOT_FOUND",
            error_type="not_found",
            remediation=f"Show current dependencies with: taskmanager show {task_id}",
            details={"task_id": task_id, "depends_on": depends_on_id},
        )

    task = get_task(project_dir, task_id)
    emit_success(
        {
            "task_id": task_id,
            "removed": depends_on_id,
            "dependencies": task.dependencies if task else [],
        }
    )


@deps_group.command("validate")
@click.option("--dry-run", is_flag=True, help="Report problems without rewriting tasks.json")
@click.pass_context
@cli_command("deps-validate")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Dependency validation timed out")
@handle_storage_errors()
def validate_deps_cmd(ctx: click.Context, dry_run: bool) -> None:
    """Repair dependencies of all stored tasks.

    Drops references to missing or later tasks and adds transitive
    prerequisites.
    """
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    if dry_run:
        changes = find_dependency_issues(load_tasks(project_dir).tasks)
    else:
        changes = revalidate_dependencies(project_dir)

    emit_success(
        {
            "valid": not changes,
            "changes": changes,
            "applied": bool(changes) and not dry_run,
        }
    )

"""Project setup commands: init and PRD export."""

from typing import Optional, Tuple

import click

from taskmanager.cli.logging import cli_command
from taskmanager.cli.output import emit_error, emit_success
from taskmanager.cli.registry import get_context
from taskmanager.cli.resilience import (
    FAST_TIMEOUT,
    MEDIUM_TIMEOUT,
    handle_keyboard_interrupt,
    handle_storage_errors,
    with_sync_timeout,
)
from taskmanager.config import ManagerConfig, set_config
from taskmanager.core.prd import export_prds
from taskmanager.core.storage import PROJECT_TYPES, initialize_project


@click.command("init")
@click.option(
    "--type",
    "project_type",
    type=click.Choice(PROJECT_TYPES),
    default="new",
    show_default=True,
    help="Start a new project or track work in an existing one",
)
@click.option("--name", default=None, help="Project name (default: directory name)")
@click.option("--description", default="", help="Short project description")
@click.option(
    "--tech",
    "technologies",
    multiple=True,
    help="Technology used by the project (repeatable, or comma separated)",
)
@click.option("--force", is_flag=True, help="Re-initialize; existing tasks are kept")
@click.pass_context
@cli_command("init")
@handle_keyboard_interrupt()
@with_sync_timeout(FAST_TIMEOUT, "Project initialization timed out")
@handle_storage_errors()
def init_cmd(
    ctx: click.Context,
    project_type: str,
    name: Optional[str],
    description: str,
    technologies: Tuple[str, ...],
    force: bool,
) -> None:
    """Create the .taskmanager directory in the project."""
    cli_ctx = get_context(ctx)
    techs = [t for value in technologies for t in value.split(",") if t.strip()]

    metadata, error = initialize_project(
        cli_ctx.project_dir,
        project_type=project_type,
        name=name,
        description=description,
        technologies=techs,
        force=force,
    )
    if error:
        code = "ALREADY_INITIALIZED" if "already" in error else "VALIDATION_ERROR"
        emit_error(
            error,
            code=code,
            error_type="conflict" if code == "ALREADY_INITIALIZED" else "validation",
            remediation="Pass --force to re-initialize" if code == "ALREADY_INITIALIZED" else None,
            details={"project_dir": str(cli_ctx.project_dir)},
        )

    # Pick up the freshly written config.toml for the rest of the process
    set_config(ManagerConfig.from_env(project_dir=cli_ctx.project_dir))

    emit_success(
        {
            "project_dir": str(cli_ctx.project_dir),
            "taskmanager_dir": str(cli_ctx.config.taskmanager_dir),
            "project": metadata,
        }
    )


@click.command("parse")
@click.pass_context
@cli_command("parse")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "PRD export timed out")
@handle_storage_errors()
def parse_cmd(ctx: click.Context) -> None:
    """Write a PRD file per task to .taskmanager/tasks/."""
    cli_ctx = get_context(ctx)
    project_dir = cli_ctx.require_initialized()

    written, error = export_prds(project_dir)
    if error:
        emit_error(
            error,
            code="NO_TASKS",
            error_type="not_found",
            remediation="Create tasks first with: taskmanager create",
        )

    emit_success({"files": written, "count": len(written)})

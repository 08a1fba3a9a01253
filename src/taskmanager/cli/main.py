"""TaskManager CLI entry point.

JSON-only output for scripts and AI coding assistants.
"""

from typing import Optional

import click

from taskmanager.cli.config import create_context
from taskmanager.cli.registry import register_all_commands


@click.group()
@click.option(
    "--project-dir",
    envvar="TASKMANAGER_PROJECT_DIR",
    type=click.Path(file_okay=False),
    help="Project root containing the .taskmanager directory (default: cwd)",
)
@click.pass_context
def cli(ctx: click.Context, project_dir: Optional[str]) -> None:
    """TaskManager - dependency-aware task tracking.

    All commands output JSON envelopes for reliable parsing.
    """
    ctx.ensure_object(dict)
    ctx.obj["cli_context"] = create_context(project_dir=project_dir)


register_all_commands(cli)


if __name__ == "__main__":
    cli()

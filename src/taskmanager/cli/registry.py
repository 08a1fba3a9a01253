"""Command registry for the TaskManager CLI.

Centralized registration of all command groups.
"""

from typing import Optional

import click

from taskmanager.cli.config import CLIContext

# Module-level storage for CLI context (for testing)
_cli_context: Optional[CLIContext] = None


def set_context(ctx: Optional[CLIContext]) -> None:
    """Set (or with None, clear) the module-level CLI context."""
    global _cli_context
    _cli_context = ctx


def get_context(ctx: Optional[click.Context] = None) -> CLIContext:
    """Get CLI context from Click context or module-level storage.

    Raises:
        RuntimeError: If no context is available.
    """
    if ctx is not None and ctx.obj and "cli_context" in ctx.obj:
        return ctx.obj["cli_context"]

    if _cli_context is not None:
        return _cli_context

    raise RuntimeError("No CLI context available. Call set_context() first.")


def register_all_commands(cli: click.Group) -> None:
    """Register all command groups with the CLI.

    Command modules are imported lazily to avoid circular imports.
    """
    from taskmanager.cli.commands import (
        create_cmd,
        current_cmd,
        deps_group,
        expand_cmd,
        init_cmd,
        list_cmd,
        next_cmd,
        parse_cmd,
        remove_cmd,
        show_cmd,
        status_cmd,
    )

    for command in (
        init_cmd,
        create_cmd,
        list_cmd,
        show_cmd,
        next_cmd,
        current_cmd,
        status_cmd,
        expand_cmd,
        remove_cmd,
        deps_group,
        parse_cmd,
    ):
        cli.add_command(command)

    @cli.command("version")
    @click.pass_context
    def version(ctx: click.Context) -> None:
        """Show CLI version information."""
        from taskmanager import __version__
        from taskmanager.cli.output import emit_success

        cli_ctx = get_context(ctx)
        emit_success(
            {
                "version": __version__,
                "name": "taskmanager",
                "json_only": True,
                "project_dir": str(cli_ctx.project_dir),
                "initialized": cli_ctx.initialized,
            }
        )

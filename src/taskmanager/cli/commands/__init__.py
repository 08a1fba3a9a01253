"""TaskManager CLI command modules."""

from taskmanager.cli.commands.deps import deps_group
from taskmanager.cli.commands.project import init_cmd, parse_cmd
from taskmanager.cli.commands.tasks import (
    create_cmd,
    current_cmd,
    expand_cmd,
    list_cmd,
    next_cmd,
    remove_cmd,
    show_cmd,
    status_cmd,
)

__all__ = [
    "create_cmd",
    "current_cmd",
    "deps_group",
    "expand_cmd",
    "init_cmd",
    "list_cmd",
    "next_cmd",
    "parse_cmd",
    "remove_cmd",
    "show_cmd",
    "status_cmd",
]

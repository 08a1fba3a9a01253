"""TaskManager CLI.

All commands emit a single JSON envelope on stdout (errors on stderr)
for reliable parsing by scripts and AI coding assistants.
"""

from taskmanager.cli.config import CLIContext, create_context
from taskmanager.cli.logging import CLILogContext, cli_command, get_request_id, set_request_id
from taskmanager.cli.main import cli
from taskmanager.cli.output import emit, emit_error, emit_success
from taskmanager.cli.registry import get_context, set_context
from taskmanager.cli.resilience import (
    FAST_TIMEOUT,
    MEDIUM_TIMEOUT,
    SLOW_TIMEOUT,
    handle_keyboard_interrupt,
    handle_storage_errors,
    with_sync_timeout,
)

__all__ = [
    # Entry point
    "cli",
    # Context
    "CLIContext",
    "create_context",
    "get_context",
    "set_context",
    # Output
    "emit",
    "emit_error",
    "emit_success",
    # Logging
    "CLILogContext",
    "cli_command",
    "get_request_id",
    "set_request_id",
    # Resilience
    "FAST_TIMEOUT",
    "MEDIUM_TIMEOUT",
    "SLOW_TIMEOUT",
    "handle_keyboard_interrupt",
    "handle_storage_errors",
    "with_sync_timeout",
]

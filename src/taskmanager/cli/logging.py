"""Request correlation and start/end logging for CLI commands.

Every command runs inside a ``CLILogContext`` so log records and the
JSON envelope share one ``cli_<hex>`` request id.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

__all__ = [
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    "get_command_name",
    "cli_command",
    "CLILogContext",
]

T = TypeVar("T")

logger = logging.getLogger("taskmanager.cli")

_request_id: ContextVar[str] = ContextVar("taskmanager_request_id", default="")
_command_name: ContextVar[str] = ContextVar("taskmanager_command", default="")


def generate_request_id() -> str:
    return f"cli_{uuid.uuid4().hex[:12]}"


def get_request_id() -> str:
    """Request id of the running command, or ``""`` outside a command."""
    return _request_id.get()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_command_name() -> str:
    return _command_name.get()


class CLILogContext:
    """Scope a request id (and optionally a command name) to a block.

    Both context variables are restored on exit, so nested contexts and
    repeated CliRunner invocations in one process stay independent.
    """

    def __init__(self, request_id: Optional[str] = None, command: str = ""):
        self.request_id = request_id or generate_request_id()
        self.command = command
        self._tokens: list = []

    def __enter__(self) -> "CLILogContext":
        self._tokens = [
            (_request_id, _request_id.set(self.request_id)),
            (_command_name, _command_name.set(self.command)),
        ]
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def _exit_status(exc: SystemExit) -> int:
    if exc.code is None:
        return 0
    if isinstance(exc.code, int):
        return exc.code
    return 1


def cli_command(
    command_name: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Wrap a command body with a fresh request id and timing logs.

    Start and finish are logged at DEBUG; a non-zero exit or an escaping
    exception is logged at WARNING with its duration. Exceptions (including
    the ``SystemExit`` raised by ``emit_error``) are re-raised unchanged.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = command_name or func.__name__.replace("_cmd", "").replace("_", "-")

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            with CLILogContext(command=name) as ctx:
                started = time.perf_counter()
                logger.debug(f"{name} [{ctx.request_id}] started")
                exit_code = 0
                failure: Optional[str] = None
                try:
                    return func(*args, **kwargs)
                except SystemExit as e:
                    exit_code = _exit_status(e)
                    raise
                except Exception as e:
                    exit_code = 1
                    failure = f"{type(e).__name__}: {e}"
                    raise
                finally:
                    elapsed_ms = (time.perf_counter() - started) * 1000
                    if exit_code == 0:
                        logger.debug(f"{name} [{ctx.request_id}] finished in {elapsed_ms:.1f}ms")
                    else:
                        logger.warning(
                            f"{name} [{ctx.request_id}] exited {exit_code} after {elapsed_ms:.1f}ms"
                            + (f" ({failure})" if failure else "")
                        )

        return wrapper

    return decorator

"""CLI resilience wrappers for timeout and cancellation."""

import signal
import sys
import threading
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

__all__ = [
    "FAST_TIMEOUT",
    "MEDIUM_TIMEOUT",
    "SLOW_TIMEOUT",
    "TimeoutException",
    "with_sync_timeout",
    "handle_keyboard_interrupt",
    "handle_storage_errors",
]

T = TypeVar("T")

# Local file operations
FAST_TIMEOUT: float = 5.0
# Multi-step storage updates
MEDIUM_TIMEOUT: float = 30.0
# Commands that may call an AI provider
SLOW_TIMEOUT: float = 180.0


class TimeoutException(Exception):
    """Operation timed out.

    Attributes:
        timeout_seconds: The timeout duration that was exceeded.
        operation: Name of the operation that timed out.
    """

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds
        self.operation = operation


class _TimeoutHandler:
    """Context manager for signal-based timeout on Unix systems."""

    def __init__(self, seconds: float, error_message: str):
        self.seconds = max(int(seconds), 1)  # signal.alarm requires int
        self.error_message = error_message
        self._old_handler = None

    def _timeout_handler(self, signum: int, frame: Any) -> None:
        raise TimeoutException(
            self.error_message,
            timeout_seconds=float(self.seconds),
            operation="cli_command",
        )

    def __enter__(self) -> "_TimeoutHandler":
        self._old_handler = signal.signal(signal.SIGALRM, self._timeout_handler)
        signal.alarm(self.seconds)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        signal.alarm(0)
        if self._old_handler is not None:
            signal.signal(signal.SIGALRM, self._old_handler)


def with_sync_timeout(
    seconds: float = MEDIUM_TIMEOUT,
    error_message: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to add a timeout to synchronous CLI commands.

    Uses signal.SIGALRM, so the timeout is only enforced on Unix and in
    the main thread; elsewhere the function runs without a timeout. A
    timeout is reported as a JSON error envelope.

    Example:
        >>> @with_sync_timeout(FAST_TIMEOUT, "Listing tasks timed out")
        ... def list_tasks():
        ...     ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            msg = error_message or f"{func.__name__} timed out after {seconds}s"

            if (
                sys.platform == "win32"
                or threading.current_thread() is not threading.main_thread()
            ):
                return func(*args, **kwargs)

            try:
                with _TimeoutHandler(seconds, msg):
                    return func(*args, **kwargs)
            except TimeoutException as e:
                from taskmanager.cli.output import emit_error

                emit_error(
                    str(e),
                    code="INTERNAL_ERROR",
                    error_type="internal",
                    details={"timeout_seconds": e.timeout_seconds},
                )

        return wrapper

    return decorator


def handle_keyboard_interrupt(
    cleanup: Optional[Callable[[], None]] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to handle Ctrl+C in CLI commands: run ``cleanup``, exit 130."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except KeyboardInterrupt:
                if cleanup:
                    cleanup()
                # 128 + SIGINT
                sys.exit(130)

        return wrapper

    return decorator


def handle_storage_errors() -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator reporting unreadable or unwritable tasks.json as STORAGE_ERROR."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            from taskmanager.cli.output import emit_error
            from taskmanager.core.storage import TasksFileError

            try:
                return func(*args, **kwargs)
            except TasksFileError as e:
                emit_error(
                    str(e),
                    code="STORAGE_ERROR",
                    error_type="internal",
                    remediation="Fix or restore .taskmanager/tasks.json",
                )

        return wrapper

    return decorator

"""JSON output helpers for the TaskManager CLI.

This module provides the sole output mechanism for the CLI: every command
emits one response envelope (see taskmanager.core.responses). Humans can
pipe through `jq` if needed.
"""

import json
import sys
from dataclasses import asdict
from typing import Any, Mapping, NoReturn, Optional, Sequence

from taskmanager.cli.logging import generate_request_id, get_request_id, set_request_id
from taskmanager.core.responses import error_response, success_response


def _ensure_request_id() -> str:
    request_id = get_request_id()
    if request_id:
        return request_id
    request_id = generate_request_id()
    set_request_id(request_id)
    return request_id


def emit(data: Any) -> None:
    """Emit JSON to stdout."""
    print(json.dumps(data, separators=(",", ":"), default=str, ensure_ascii=False))


def emit_error(
    message: str,
    code: str = "INTERNAL_ERROR",
    *,
    error_type: str = "internal",
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> NoReturn:
    """Emit error JSON to stderr and exit with code 1.

    Args:
        message: Human-readable error description.
        code: Error code in SCREAMING_SNAKE_CASE (e.g., TASK_NOT_FOUND).
        error_type: Error category (validation, not_found, conflict, ...).
        remediation: Actionable guidance for resolving the error.
        details: Optional additional error context.

    Raises:
        SystemExit: Always exits with code 1.
    """
    response = error_response(
        message,
        error_code=code,
        error_type=error_type,
        remediation=remediation,
        details=details,
        request_id=_ensure_request_id(),
    )
    print(
        json.dumps(asdict(response), separators=(",", ":"), default=str, ensure_ascii=False),
        file=sys.stderr,
    )
    sys.exit(1)


def emit_success(
    data: Any,
    *,
    warnings: Optional[Sequence[str]] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> None:
    """Emit a success envelope to stdout.

    Non-dict data is wrapped under a ``result`` key.
    """
    payload = data if isinstance(data, dict) else {"result": data}
    response = success_response(
        data=payload,
        warnings=warnings,
        meta=meta,
        request_id=_ensure_request_id(),
    )
    emit(asdict(response))

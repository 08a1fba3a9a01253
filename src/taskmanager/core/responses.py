"""
Standard response envelope for TaskManager operations.

Every CLI command emits exactly one envelope:

    {
        "success": bool,       # operation executed correctly
        "data": {...},         # payload (error details on failure)
        "error": str | null,   # human-readable message on failure
        "meta": {
            "version": "response-v1",
            "request_id": "cli_abc123"?,
            "warnings": ["..."]?
        }
    }

`success=True` with empty data means "nothing found", not an error.
Business data stays in `data`; operational context goes in `meta`.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)

RESPONSE_VERSION = "response-v1"


class ErrorCode(str, Enum):
    """Machine-readable error codes in SCREAMING_SNAKE_CASE."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_PRIORITY = "INVALID_PRIORITY"
    SELF_REFERENCE = "SELF_REFERENCE"
    FORWARD_REFERENCE = "FORWARD_REFERENCE"

    # Resource errors
    NOT_INITIALIZED = "NOT_INITIALIZED"
    ALREADY_INITIALIZED = "ALREADY_INITIALIZED"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    SUBTASK_NOT_FOUND = "SUBTASK_NOT_FOUND"
    DEPENDENCY_NOT_FOUND = "DEPENDENCY_NOT_FOUND"
    NO_TASKS = "NO_TASKS"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"

    # AI provider errors
    AI_PROVIDER_ERROR = "AI_PROVIDER_ERROR"


class ErrorType(str, Enum):
    """Error categories for routing and client-side handling."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"
    AI_PROVIDER = "ai_provider"


@dataclass
class ToolResponse:
    """
    Response structure shared by all commands.

    Attributes:
        success: False when the command failed
        data: The primary payload
        error: The failure message; None on success
        meta: Envelope version plus request id and warnings
    """

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=lambda: {"version": RESPONSE_VERSION})


def _build_meta(
    *,
    request_id: Optional[str] = None,
    warnings: Optional[Sequence[str]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Construct a metadata payload that always includes the response version."""
    meta: Dict[str, Any] = {"version": RESPONSE_VERSION}
    if request_id:
        meta["request_id"] = request_id
    if warnings:
        meta["warnings"] = list(warnings)
    if extra:
        meta.update(dict(extra))
    return meta


def success_response(
    data: Optional[Mapping[str, Any]] = None,
    *,
    warnings: Optional[Sequence[str]] = None,
    request_id: Optional[str] = None,
    meta: Optional[Mapping[str, Any]] = None,
    **fields: Any,
) -> ToolResponse:
    """Build the envelope for a command that succeeded.

    Args:
        data: Base payload.
        warnings: Repairs and other notes, copied to ``meta.warnings``.
        request_id: Correlation identifier propagated through logs.
        meta: Extra keys merged into ``meta``.
        **fields: Payload keys added on top of ``data``.
    """
    payload: Dict[str, Any] = {}
    if data:
        payload.update(dict(data))
    if fields:
        payload.update(fields)

    return ToolResponse(
        success=True,
        data=payload,
        error=None,
        meta=_build_meta(request_id=request_id, warnings=warnings, extra=meta),
    )


def error_response(
    message: str,
    *,
    data: Optional[Mapping[str, Any]] = None,
    error_code: Optional[Union[ErrorCode, str]] = None,
    error_type: Optional[Union[ErrorType, str]] = None,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Build the envelope for a failed command.

    Args:
        message: What went wrong, for people.
        data: Extra machine-readable keys.
        error_code: Canonical error code (``ErrorCode`` or string).
        error_type: Error category (``ErrorType`` or string).
        remediation: The command or edit that fixes it.
        details: Nested structure describing the failure.
        request_id: The CLI request id.

    Example:
        >>> error_response(
        ...     "Task 7 not found",
        ...     error_code=ErrorCode.TASK_NOT_FOUND,
        ...     error_type=ErrorType.NOT_FOUND,
        ...     remediation="List tasks with: taskmanager list",
        ... )
    """
    payload: Dict[str, Any] = {}
    if data:
        payload.update(dict(data))

    effective_code = error_code if error_code is not None else ErrorCode.INTERNAL_ERROR
    effective_type = error_type if error_type is not None else ErrorType.INTERNAL

    payload.setdefault(
        "error_code",
        effective_code.value if isinstance(effective_code, Enum) else effective_code,
    )
    payload.setdefault(
        "error_type",
        effective_type.value if isinstance(effective_type, Enum) else effective_type,
    )
    if remediation is not None:
        payload.setdefault("remediation", remediation)
    if details:
        payload.setdefault("details", dict(details))

    return ToolResponse(
        success=False,
        data=payload,
        error=message,
        meta=_build_meta(request_id=request_id),
    )

"""
Task and subtask records for TaskManager.

Tasks are persisted as camelCase JSON inside ``.taskmanager/tasks.json``.
The dataclasses here are the single boundary between that loosely-typed JSON
(hand edited, or produced by an LLM) and the rest of the codebase:
``dependencies`` is always a list of ints and never absent.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class TaskStatus(str, Enum):
    """Lifecycle states shared by tasks and subtasks."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority levels, highest first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Sort key for next-task selection
PRIORITY_ORDER: Dict[str, int] = {
    TaskPriority.HIGH.value: 1,
    TaskPriority.MEDIUM.value: 2,
    TaskPriority.LOW.value: 3,
}

VALID_STATUSES = frozenset(s.value for s in TaskStatus)
VALID_PRIORITIES = frozenset(p.value for p in TaskPriority)

# Keys owned by Task; anything else read from JSON is kept in Task.extra
_TASK_KEYS = frozenset(
    {
        "id",
        "title",
        "description",
        "status",
        "priority",
        "dependencies",
        "details",
        "testStrategy",
        "category",
        "createdAt",
        "updatedAt",
        "subtasks",
    }
)


def utc_now() -> str:
    """Current time as an ISO 8601 string with a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_status(value: Any, default: str = TaskStatus.PENDING.value) -> str:
    """Map loose status spellings (``in_progress``, ``Done``) to a valid status."""
    if not isinstance(value, str):
        return default
    normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
    if normalized == "completed":
        normalized = TaskStatus.DONE.value
    elif normalized == "canceled":
        normalized = TaskStatus.CANCELLED.value
    return normalized if normalized in VALID_STATUSES else default


def normalize_priority(value: Any, default: str = TaskPriority.MEDIUM.value) -> str:
    if not isinstance(value, str):
        return default
    normalized = value.strip().lower()
    return normalized if normalized in VALID_PRIORITIES else default


def coerce_dependency_ids(raw: Any) -> List[int]:
    """Coerce a raw ``dependencies`` value into a list of ints.

    Accepts ints and numeric strings; silently drops anything else
    (nested lists, floats with fractions, booleans, null). Order and
    duplicates are preserved; deduplication belongs to the validator.
    """
    if not isinstance(raw, (list, tuple)):
        return []

    ids: List[int] = []
    for item in raw:
        if isinstance(item, bool):
            continue
        if isinstance(item, int):
            ids.append(item)
        elif isinstance(item, float) and item.is_integer():
            ids.append(int(item))
        elif isinstance(item, str) and item.strip().lstrip("-").isdigit():
            ids.append(int(item.strip()))
    return ids


def coerce_id(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return fallback


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


@dataclass
class Subtask:
    """A step inside a task. Subtask ids are local to their parent task."""

    id: int
    title: str
    description: str = ""
    status: str = TaskStatus.PENDING.value
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], fallback_id: int = 1) -> "Subtask":
        return cls(
            id=coerce_id(data.get("id"), fallback_id),
            title=_text(data.get("title")) or f"Subtask {fallback_id}",
            description=_text(data.get("description")),
            status=normalize_status(data.get("status")),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Task:
    """A tracked unit of work.

    Attributes:
        id: Positive integer, unique within tasks.json
        title: Short human-readable title
        description: One-paragraph description
        status: One of TaskStatus values
        priority: One of TaskPriority values
        dependencies: Ids of tasks that must be done first
        details: Implementation notes
        test_strategy: How completion is verified
        category: Free-form grouping (setup, backend, bugfix, ...)
        created_at: ISO 8601 creation timestamp
        updated_at: ISO 8601 last-modified timestamp
        subtasks: Ordered subtasks
        extra: Unknown JSON keys, written back unchanged
    """

    id: int
    title: str
    description: str = ""
    status: str = TaskStatus.PENDING.value
    priority: str = TaskPriority.MEDIUM.value
    dependencies: List[int] = field(default_factory=list)
    details: str = ""
    test_strategy: str = ""
    category: str = "feature"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    subtasks: List[Subtask] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], fallback_id: int = 1) -> "Task":
        """Build a Task from tasks.json or LLM output, filling defaults."""
        raw_subtasks = data.get("subtasks")
        subtasks: List[Subtask] = []
        if isinstance(raw_subtasks, list):
            for index, raw in enumerate(raw_subtasks, start=1):
                if isinstance(raw, dict):
                    subtasks.append(Subtask.from_dict(raw, fallback_id=index))

        return cls(
            id=coerce_id(data.get("id"), fallback_id),
            title=_text(data.get("title")) or f"Task {fallback_id}",
            description=_text(data.get("description")),
            status=normalize_status(data.get("status")),
            priority=normalize_priority(data.get("priority")),
            dependencies=coerce_dependency_ids(data.get("dependencies")),
            details=_text(data.get("details")),
            test_strategy=_text(data.get("testStrategy")),
            category=_text(data.get("category")) or "feature",
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            subtasks=subtasks,
            extra={k: v for k, v in data.items() if k not in _TASK_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "details": self.details,
            "testStrategy": self.test_strategy,
            "category": self.category,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "subtasks": [s.to_dict() for s in self.subtasks],
        }
        payload.update(self.extra)
        return payload

    def next_subtask_id(self) -> int:
        return max((s.id for s in self.subtasks), default=0) + 1

    def get_subtask(self, subtask_id: int) -> Optional[Subtask]:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def touch(self, timestamp: Optional[str] = None) -> None:
        self.updated_at = timestamp or utc_now()

"""Core task tracking logic: models, storage, dependency validation and generation."""

from taskmanager.core.dependencies import find_dependency_issues, validate_dependencies
from taskmanager.core.models import Subtask, Task, TaskPriority, TaskStatus

__all__ = [
    "Subtask",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "find_dependency_issues",
    "validate_dependencies",
]

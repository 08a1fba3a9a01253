"""
Task storage for TaskManager projects.

Layout under the project root:

    .taskmanager/
        config.toml             project configuration (see taskmanager.config)
        project-metadata.json   name, type, description, technologies
        tasks.json              {"tasks": [...], "metadata": {...}}
        .env.example            provider key template
        tasks/                  PRD exports

All writes go through ``save_tasks``: counters are recomputed, the file is
written to a temp file and atomically replaced while holding a file lock.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from filelock import FileLock, Timeout

from taskmanager.config import CONFIG_FILENAME, TASKMANAGER_DIRNAME, render_default_config
from taskmanager.core.dependencies import find_dependency_issues, validate_dependencies
from taskmanager.core.llm_config import ENV_EXAMPLE_TEMPLATE
from taskmanager.core.models import (
    PRIORITY_ORDER,
    Subtask,
    Task,
    TaskStatus,
    VALID_STATUSES,
    utc_now,
)

logger = logging.getLogger(__name__)

TASKS_FILENAME = "tasks.json"
PROJECT_METADATA_FILENAME = "project-metadata.json"
PRD_DIRNAME = "tasks"
LOCK_TIMEOUT = 10

PROJECT_TYPES = ("new", "existing")

# Task statuses that are copied onto every subtask
_CASCADING_STATUSES = (TaskStatus.DONE.value, TaskStatus.CANCELLED.value)


class TasksFileError(Exception):
    """tasks.json exists but cannot be read, parsed or written."""


# =============================================================================
# Paths
# =============================================================================


def get_taskmanager_dir(project_dir: Path) -> Path:
    return Path(project_dir) / TASKMANAGER_DIRNAME


def get_tasks_file_path(project_dir: Path) -> Path:
    return get_taskmanager_dir(project_dir) / TASKS_FILENAME


def get_project_metadata_path(project_dir: Path) -> Path:
    return get_taskmanager_dir(project_dir) / PROJECT_METADATA_FILENAME


def is_initialized(project_dir: Path) -> bool:
    """Check whether ``taskmanager init`` has run in ``project_dir``."""
    return get_taskmanager_dir(project_dir).is_dir()


# =============================================================================
# Document
# =============================================================================


def _empty_metadata(project_type: str = "unknown") -> Dict[str, Any]:
    now = utc_now()
    return {
        "projectType": project_type,
        "createdAt": now,
        "lastUpdated": now,
        "taskCount": 0,
        "completedCount": 0,
        "pendingCount": 0,
        "inProgressCount": 0,
        "deferredCount": 0,
        "cancelledCount": 0,
        "highPriorityCount": 0,
        "mediumPriorityCount": 0,
        "lowPriorityCount": 0,
    }


@dataclass
class TasksDocument:
    """In-memory form of tasks.json."""

    tasks: List[Task] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=_empty_metadata)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TasksDocument":
        raw_tasks = data.get("tasks")
        tasks: List[Task] = []
        if isinstance(raw_tasks, list):
            for index, raw in enumerate(raw_tasks, start=1):
                if isinstance(raw, dict):
                    tasks.append(Task.from_dict(raw, fallback_id=index))

        metadata = _empty_metadata()
        if isinstance(data.get("metadata"), dict):
            metadata.update(data["metadata"])
        return cls(tasks=tasks, metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasks": [task.to_dict() for task in self.tasks],
            "metadata": dict(self.metadata),
        }

    def get(self, task_id: int) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def next_id(self) -> int:
        return max((task.id for task in self.tasks), default=0) + 1


_STATUS_COUNTERS = {
    TaskStatus.DONE.value: "completedCount",
    TaskStatus.PENDING.value: "pendingCount",
    TaskStatus.IN_PROGRESS.value: "inProgressCount",
    TaskStatus.DEFERRED.value: "deferredCount",
    TaskStatus.CANCELLED.value: "cancelledCount",
}

_PRIORITY_COUNTERS = {
    "high": "highPriorityCount",
    "medium": "mediumPriorityCount",
    "low": "lowPriorityCount",
}


def recalculate_metadata(document: TasksDocument) -> None:
    """Recompute status and priority counters.

    Subtasks count toward the status counters but not ``taskCount``
    or the priority counters.
    """
    counts = {name: 0 for name in _STATUS_COUNTERS.values()}
    counts.update({name: 0 for name in _PRIORITY_COUNTERS.values()})

    for task in document.tasks:
        if task.status in _STATUS_COUNTERS:
            counts[_STATUS_COUNTERS[task.status]] += 1
        if task.priority in _PRIORITY_COUNTERS:
            counts[_PRIORITY_COUNTERS[task.priority]] += 1
        for subtask in task.subtasks:
            if subtask.status in _STATUS_COUNTERS:
                counts[_STATUS_COUNTERS[subtask.status]] += 1

    document.metadata["taskCount"] = len(document.tasks)
    document.metadata.update(counts)


def load_tasks(project_dir: Path) -> TasksDocument:
    """Load tasks.json, returning an empty document if it does not exist.

    Raises:
        TasksFileError: If the file exists but is unreadable or malformed
    """
    tasks_path = get_tasks_file_path(project_dir)
    if not tasks_path.exists():
        return TasksDocument()

    try:
        with open(tasks_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error reading tasks file {tasks_path}: {e}")
        raise TasksFileError(f"Cannot read {tasks_path}: {e}") from e

    if not isinstance(data, dict):
        raise TasksFileError(f"{tasks_path} must contain a JSON object")

    return TasksDocument.from_dict(data)


def save_tasks(project_dir: Path, document: TasksDocument) -> None:
    """Write tasks.json atomically, refreshing ``lastUpdated`` and counters.

    Raises:
        TasksFileError: If the lock cannot be acquired or the write fails
    """
    tasks_path = get_tasks_file_path(project_dir)
    tasks_path.parent.mkdir(parents=True, exist_ok=True)

    document.metadata["lastUpdated"] = utc_now()
    recalculate_metadata(document)

    lock_path = tasks_path.with_suffix(".json.lock")
    temp_file = tasks_path.with_suffix(".tmp")
    try:
        with FileLock(lock_path, timeout=LOCK_TIMEOUT):
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(document.to_dict(), f, indent=2, ensure_ascii=False)
            temp_file.replace(tasks_path)
    except Timeout as e:
        raise TasksFileError(f"Timed out waiting for lock on {tasks_path}") from e
    except OSError as e:
        if temp_file.exists():
            temp_file.unlink()
        logger.error(f"Error saving tasks file {tasks_path}: {e}")
        raise TasksFileError(f"Cannot write {tasks_path}: {e}") from e


# =============================================================================
# Project
# =============================================================================


def load_project_metadata(project_dir: Path) -> Optional[Dict[str, Any]]:
    """Read project-metadata.json, or None if missing or unreadable."""
    path = get_project_metadata_path(project_dir)
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error reading project metadata {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def initialize_project(
    project_dir: Path,
    project_type: str = "new",
    name: Optional[str] = None,
    description: str = "",
    technologies: Optional[Sequence[str]] = None,
    force: bool = False,
) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    Create the .taskmanager directory structure.

    Args:
        project_dir: Project root
        project_type: "new" or "existing"
        name: Project name (defaults to the directory name)
        description: Free-text project description
        technologies: Technology identifiers (python, react, ...)
        force: Re-initialize an existing project; tasks.json is kept

    Returns:
        Tuple of (project_metadata, error_message).
    """
    if project_type not in PROJECT_TYPES:
        return None, f"Invalid project type '{project_type}'. Must be one of: {', '.join(PROJECT_TYPES)}"

    project_dir = Path(project_dir)
    tm_dir = get_taskmanager_dir(project_dir)
    if tm_dir.is_dir() and not force:
        return None, f"TaskManager is already initialized in {project_dir}"

    for sub in ("", PRD_DIRNAME):
        (tm_dir / sub).mkdir(parents=True, exist_ok=True)

    now = utc_now()
    metadata = {
        "name": name or project_dir.resolve().name,
        "type": project_type,
        "description": description,
        "technologies": [t.strip().lower() for t in (technologies or []) if t.strip()],
        "createdAt": now,
        "updatedAt": now,
    }

    existing = load_project_metadata(project_dir)
    if existing and "createdAt" in existing:
        metadata["createdAt"] = existing["createdAt"]

    with open(get_project_metadata_path(project_dir), "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=2, ensure_ascii=False)

    (tm_dir / CONFIG_FILENAME).write_text(render_default_config(project_type), encoding="utf-8")
    (tm_dir / ".env.example").write_text(ENV_EXAMPLE_TEMPLATE, encoding="utf-8")

    if not get_tasks_file_path(project_dir).exists():
        save_tasks(project_dir, TasksDocument(metadata=_empty_metadata(project_type)))

    logger.info(f"Initialized TaskManager in {tm_dir}")
    return metadata, None


# =============================================================================
# Tasks
# =============================================================================


def get_task(project_dir: Path, task_id: int) -> Optional[Task]:
    return load_tasks(project_dir).get(task_id)


def list_tasks(project_dir: Path, status: Optional[str] = None) -> List[Task]:
    """List all tasks, optionally filtered by status."""
    tasks = load_tasks(project_dir).tasks
    if status:
        return [task for task in tasks if task.status == status]
    return tasks


def add_task(
    project_dir: Path,
    title: str,
    description: str = "",
    priority: str = "medium",
    dependencies: Optional[Sequence[int]] = None,
    details: str = "",
    test_strategy: str = "",
    category: str = "feature",
    status: str = TaskStatus.PENDING.value,
) -> Tuple[Optional[Task], Optional[str]]:
    """
    Append a manually created task.

    Dependencies are checked strictly (they must name existing tasks);
    the stored batch is then re-validated so transitive edges are added.

    Returns:
        Tuple of (task, error_message).
    """
    if not title or not title.strip():
        return None, "Title is required"
    if status not in VALID_STATUSES:
        return None, f"Invalid status '{status}'"

    document = load_tasks(project_dir)
    new_id = document.next_id()

    deps = list(dependencies or [])
    missing = [d for d in deps if document.get(d) is None]
    if missing:
        return None, f"Dependency task(s) not found: {', '.join(str(d) for d in missing)}"

    now = utc_now()
    task = Task(
        id=new_id,
        title=title.strip(),
        description=description,
        status=status,
        priority=priority,
        dependencies=deps,
        details=details,
        test_strategy=test_strategy,
        category=category or "feature",
        created_at=now,
        updated_at=now,
    )
    document.tasks.append(task)
    document.tasks = validate_dependencies(document.tasks)
    save_tasks(project_dir, document)
    return document.get(new_id), None


def add_tasks(project_dir: Path, tasks: Sequence[Task]) -> List[Task]:
    """
    Append a generated batch after the existing tasks.

    Batch ids are renumbered to follow the current maximum id and
    intra-batch dependencies are remapped accordingly; references to ids
    outside the batch are dropped. The combined list is re-validated.

    Returns:
        The stored copies of the appended tasks.
    """
    document = load_tasks(project_dir)
    offset = document.next_id() - 1

    id_map = {task.id: task.id + offset for task in tasks}
    now = utc_now()
    appended: List[Task] = []
    for task in tasks:
        appended.append(
            Task(
                id=id_map[task.id],
                title=task.title,
                description=task.description,
                status=task.status,
                priority=task.priority,
                dependencies=[id_map[d] for d in task.dependencies if d in id_map],
                details=task.details,
                test_strategy=task.test_strategy,
                category=task.category,
                created_at=task.created_at or now,
                updated_at=task.updated_at or now,
                subtasks=list(task.subtasks),
                extra=dict(task.extra),
            )
        )

    document.tasks.extend(appended)
    document.tasks = validate_dependencies(document.tasks)
    save_tasks(project_dir, document)

    new_ids = {task.id for task in appended}
    return [task for task in document.tasks if task.id in new_ids]


_UPDATABLE_FIELDS = {
    "title",
    "description",
    "priority",
    "details",
    "test_strategy",
    "category",
}


def update_task(project_dir: Path, task_id: int, **changes: Any) -> Optional[Task]:
    """Update plain text fields of a task. Unknown keys are ignored.

    Returns:
        The updated task, or None if not found.
    """
    document = load_tasks(project_dir)
    task = document.get(task_id)
    if task is None:
        return None

    for key, value in changes.items():
        if key in _UPDATABLE_FIELDS and value is not None:
            setattr(task, key, value)
    task.touch()
    save_tasks(project_dir, document)
    return task


def remove_task(project_dir: Path, task_id: int) -> bool:
    """Remove a task and every dependency reference to it."""
    document = load_tasks(project_dir)
    task = document.get(task_id)
    if task is None:
        return False

    document.tasks = [t for t in document.tasks if t.id != task_id]
    now = utc_now()
    for other in document.tasks:
        if task_id in other.dependencies:
            other.dependencies = [d for d in other.dependencies if d != task_id]
            other.touch(now)

    save_tasks(project_dir, document)
    return True


def add_subtask(
    project_dir: Path,
    task_id: int,
    title: str,
    description: str = "",
    status: str = TaskStatus.PENDING.value,
) -> Optional[Subtask]:
    """Append a subtask to ``task_id``. Returns None if the task is missing."""
    document = load_tasks(project_dir)
    task = document.get(task_id)
    if task is None:
        return None

    now = utc_now()
    subtask = Subtask(
        id=task.next_subtask_id(),
        title=title or "New subtask",
        description=description,
        status=status if status in VALID_STATUSES else TaskStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    task.subtasks.append(subtask)
    task.touch(now)
    save_tasks(project_dir, document)
    return subtask


def add_subtasks(
    project_dir: Path,
    task_id: int,
    subtasks: Sequence[Dict[str, str]],
) -> Optional[List[Subtask]]:
    """Append several ``{"title", "description"}`` subtasks in one write."""
    document = load_tasks(project_dir)
    task = document.get(task_id)
    if task is None:
        return None

    now = utc_now()
    created: List[Subtask] = []
    for item in subtasks:
        subtask = Subtask(
            id=task.next_subtask_id(),
            title=item.get("title") or "New subtask",
            description=item.get("description", ""),
            created_at=now,
            updated_at=now,
        )
        task.subtasks.append(subtask)
        created.append(subtask)

    task.touch(now)
    save_tasks(project_dir, document)
    return created


def update_task_status(
    project_dir: Path,
    task_id: int,
    status: str,
    subtask_id: Optional[int] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Set the status of a task or one of its subtasks.

    Marking a task ``done`` or ``cancelled`` gives all of its subtasks the
    same status.

    Returns:
        Tuple of (success, error_message).
    """
    if status not in VALID_STATUSES:
        return False, f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"

    document = load_tasks(project_dir)
    task = document.get(task_id)
    if task is None:
        return False, f"Task {task_id} not found"

    now = utc_now()
    if subtask_id is not None:
        subtask = task.get_subtask(subtask_id)
        if subtask is None:
            return False, f"Subtask {task_id}.{subtask_id} not found"
        subtask.status = status
        subtask.updated_at = now
    else:
        task.status = status
        if status in _CASCADING_STATUSES:
            for subtask in task.subtasks:
                subtask.status = status
                subtask.updated_at = now
    task.touch(now)

    save_tasks(project_dir, document)
    return True, None


def add_dependency(
    project_dir: Path,
    task_id: int,
    depends_on_id: int,
) -> Tuple[bool, Optional[str]]:
    """
    Record that ``task_id`` depends on ``depends_on_id``.

    Dependencies must point to an existing task with a smaller id; this
    keeps the stored graph acyclic by construction.

    Returns:
        Tuple of (changed, error_message). Adding an existing edge
        succeeds without writing.
    """
    if task_id == depends_on_id:
        return False, "A task cannot depend on itself"

    document = load_tasks(project_dir)
    task = document.get(task_id)
    if task is None:
        return False, f"Task {task_id} not found"
    if document.get(depends_on_id) is None:
        return False, f"Dependency task {depends_on_id} not found"
    if depends_on_id > task_id:
        return False, (
            f"Task {task_id} cannot depend on later task {depends_on_id}; "
            "dependencies must point to lower ids"
        )

    if depends_on_id in task.dependencies:
        return False, None

    task.dependencies.append(depends_on_id)
    task.touch()
    document.tasks = validate_dependencies(document.tasks)
    save_tasks(project_dir, document)
    return True, None


def remove_dependency(
    project_dir: Path,
    task_id: int,
    depends_on_id: int,
) -> Tuple[bool, Optional[str]]:
    """
    Remove the dependency of ``task_id`` on ``depends_on_id``.

    An edge that another remaining dependency implies transitively cannot
    be removed on its own; that dependency has to go first.

    Returns:
        Tuple of (changed, error_message). A missing task or edge gives
        ``(False, None)``.
    """
    document = load_tasks(project_dir)
    task = document.get(task_id)
    if task is None or depends_on_id not in task.dependencies:
        return False, None

    task.dependencies = [d for d in task.dependencies if d != depends_on_id]
    validated = validate_dependencies(document.tasks)
    repaired = {t.id: t for t in validated}
    remaining = repaired[task_id].dependencies
    if depends_on_id in remaining:
        implied_by = [d for d in remaining if depends_on_id in repaired[d].dependencies]
        return False, (
            f"Dependency {task_id} -> {depends_on_id} is implied by "
            f"task {', '.join(str(d) for d in implied_by)}; remove that dependency first"
        )

    repaired[task_id].touch()
    document.tasks = validated
    save_tasks(project_dir, document)
    return True, None


def revalidate_dependencies(project_dir: Path) -> List[Dict[str, Any]]:
    """Run the dependency validator over tasks.json and persist the result.

    Returns:
        Per-task changes (``task_id``, ``removed``, ``added``); the file is
        only rewritten when something changed.
    """
    document = load_tasks(project_dir)
    changes = find_dependency_issues(document.tasks)

    if changes:
        document.tasks = validate_dependencies(document.tasks)
        save_tasks(project_dir, document)
    return changes


def has_pending_dependencies(task: Task, tasks: Sequence[Task]) -> bool:
    """True if any dependency is missing or not done."""
    by_id = {t.id: t for t in tasks}
    for dep_id in task.dependencies:
        dep = by_id.get(dep_id)
        if dep is None or dep.status != TaskStatus.DONE.value:
            return True
    return False


def get_next_task(project_dir: Path) -> Optional[Task]:
    """
    Find the next task to work on.

    Candidates are pending or in-progress tasks whose dependencies are all
    done. Ordered by priority (high first), then in-progress before
    pending, then lowest id.
    """
    tasks = load_tasks(project_dir).tasks
    available = [
        task
        for task in tasks
        if task.status in (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)
        and not has_pending_dependencies(task, tasks)
    ]
    if not available:
        return None

    available.sort(
        key=lambda t: (
            PRIORITY_ORDER.get(t.priority, len(PRIORITY_ORDER) + 1),
            t.status != TaskStatus.IN_PROGRESS.value,
            t.id,
        )
    )
    return available[0]


def get_current_task(project_dir: Path) -> Optional[Tuple[Task, Optional[Subtask]]]:
    """The first in-progress task and its first in-progress subtask, if any."""
    for task in load_tasks(project_dir).tasks:
        if task.status == TaskStatus.IN_PROGRESS.value:
            current_subtask = next(
                (s for s in task.subtasks if s.status == TaskStatus.IN_PROGRESS.value),
                None,
            )
            return task, current_subtask
    return None

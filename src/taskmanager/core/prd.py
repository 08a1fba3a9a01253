"""
Per-task PRD (product requirements document) export.

``taskmanager parse`` writes one ``.taskmanager/tasks/task-<id>.txt`` file
per task, suitable as context for an implementation session.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from taskmanager.core.models import Task
from taskmanager.core.storage import PRD_DIRNAME, get_taskmanager_dir, load_project_metadata, load_tasks

logger = logging.getLogger(__name__)


def _bullets(lines: Sequence[str], empty: str) -> str:
    return "\n".join(lines) if lines else empty


def render_prd(task: Task, tasks: Sequence[Task], metadata: Optional[Mapping[str, Any]] = None) -> str:
    """Render the PRD text for ``task``.

    Args:
        task: The task to document
        tasks: All tasks, used to resolve dependency titles and statuses
        metadata: Project metadata (name, technologies)
    """
    metadata = metadata or {}
    by_id = {t.id: t for t in tasks}

    dependency_lines = []
    for dep_id in task.dependencies:
        dep = by_id.get(dep_id)
        if dep is None:
            dependency_lines.append(f"- Task {dep_id}: not found")
        else:
            dependency_lines.append(f"- Task {dep_id}: {dep.title} (status: {dep.status})")

    subtask_lines = []
    for subtask in task.subtasks:
        subtask_lines.append(
            f"- Subtask {subtask.id}: {subtask.title}\n"
            f"  Description: {subtask.description}\n"
            f"  Status: {subtask.status}"
        )

    technologies = metadata.get("technologies") or []
    project_name = metadata.get("name") or "Project"

    return f"""<context>
# Overview
[{task.title}]
{task.description}

# Core Features
[{task.details}]

# Verification
[{task.test_strategy}]
</context>
<PRD>
# Technical Architecture
- Project: {project_name}
- Technologies: {", ".join(technologies) if technologies else "not specified"}
- Dependencies: {", ".join(str(d) for d in task.dependencies) if task.dependencies else "none"}
- Category: {task.category}
- Priority: {task.priority}

# Development Roadmap
1. Implement the core functionality
2. Test and validate
3. Integrate with the existing system

# Logical Dependency Chain
{_bullets(dependency_lines, "No dependencies")}

# Subtasks
{_bullets(subtask_lines, "No subtasks defined")}

# Appendix
- Task ID: {task.id}
- Status: {task.status}
- Created: {task.created_at}
- Updated: {task.updated_at}
</PRD>
"""


def export_prds(project_dir: Path) -> Tuple[Optional[List[Dict[str, Any]]], Optional[str]]:
    """
    Write a PRD file for every task.

    Returns:
        Tuple of (written files, error_message). Each entry has
        ``task_id`` and ``path``.
    """
    document = load_tasks(project_dir)
    if not document.tasks:
        return None, "No tasks found"

    metadata = load_project_metadata(project_dir) or {}
    prd_dir = get_taskmanager_dir(project_dir) / PRD_DIRNAME
    prd_dir.mkdir(parents=True, exist_ok=True)

    written: List[Dict[str, Any]] = []
    for task in document.tasks:
        path = prd_dir / f"task-{task.id}.txt"
        path.write_text(render_prd(task, document.tasks, metadata), encoding="utf-8")
        logger.debug(f"Wrote PRD for task {task.id} to {path}")
        written.append({"task_id": task.id, "path": str(path)})

    return written, None

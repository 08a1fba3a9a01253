"""
Root pytest configuration and shared fixtures.

Every test runs against a throwaway project directory with AI settings
scrubbed from the environment, so nothing reaches a real provider.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from click.testing import CliRunner

from taskmanager.cli.registry import set_context
from taskmanager.config import set_config
from taskmanager.core.models import Task
from taskmanager.core.storage import TasksDocument, initialize_project, save_tasks

_AI_ENV_VARS = (
    "AI_ENABLED",
    "AI_PROVIDER",
    "AI_MODEL",
    "AI_BASE_URL",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "HUGGINGFACE_API_KEY",
    "PERPLEXITY_API_KEY",
    "TASKMANAGER_PROJECT_DIR",
    "TASKMANAGER_CONFIG_FILE",
    "TASKMANAGER_LOG_LEVEL",
    "TASKMANAGER_DEFAULT_PRIORITY",
    "TASKMANAGER_DEFAULT_SUBTASKS",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Strip AI and TaskManager variables and reset global state."""
    for name in _AI_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    set_config(None)
    set_context(None)
    yield
    set_config(None)
    set_context(None)


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner for testing."""
    return CliRunner()


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """An initialized TaskManager project with no tasks."""
    metadata, error = initialize_project(
        tmp_path,
        project_type="new",
        name="demo",
        description="Demo project",
        technologies=["python", "react"],
    )
    assert error is None, error
    return tmp_path


def make_task(task_id: int, dependencies: Optional[List[int]] = None, **fields: Any) -> Task:
    """Build a Task with sensible defaults for tests."""
    return Task(
        id=task_id,
        title=fields.pop("title", f"Task {task_id}"),
        dependencies=list(dependencies or []),
        **fields,
    )


def write_tasks(project_dir: Path, tasks: List[Task]) -> None:
    """Store ``tasks`` directly, bypassing dependency validation."""
    save_tasks(project_dir, TasksDocument(tasks=list(tasks)))


def read_tasks_json(project_dir: Path) -> Dict[str, Any]:
    """Raw contents of .taskmanager/tasks.json."""
    path = project_dir / ".taskmanager" / "tasks.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def populated_project(project_dir) -> Path:
    """Project with a valid four-task chain.

    1 <- 2 <- 3, and 4 depends on 1 only.
    """
    write_tasks(
        project_dir,
        [
            make_task(1, priority="high"),
            make_task(2, [1]),
            make_task(3, [1, 2], priority="low"),
            make_task(4, [1]),
        ],
    )
    return project_dir

"""Tests for offline task generation."""

import pytest

from taskmanager.core.dependencies import find_dependency_issues
from taskmanager.core.models import Task
from taskmanager.core.simulation import (
    SUBTASK_OUTLINE,
    detect_context,
    parse_project_description,
    simulate_subtasks,
    simulate_tasks,
)


class TestParseProjectDescription:
    """Tests for parse_project_description."""

    def test_reads_name_and_technologies(self):
        """Project Name and Technologies lines are recognised."""
        name, techs = parse_project_description(
            "Project Name: Shop\nTechnologies: python, react\nDescription: an online shop"
        )
        assert name == "Shop"
        assert techs == ["python", "react"]

    def test_defaults(self):
        """Free text yields the default name and no technologies."""
        assert parse_project_description("just some text") == ("the project", [])


class TestDetectContext:
    """Tests for detect_context."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Fix the crash on login", "bugfix"),
            ("Add tests for billing", "testing"),
            ("Update the README", "documentation"),
            ("Refactor the parser", "refactoring"),
            ("Search is slow", "performance"),
            ("Patch a security hole", "security"),
            ("Upgrade outdated packages", "dependencies"),
            ("Add dark mode", "feature"),
        ],
    )
    def test_keywords(self, text, expected):
        """The first matching keyword group wins."""
        assert detect_context(text) == expected


class TestSimulateNewProject:
    """Tests for simulated new-project batches."""

    def test_python_react_project(self):
        """Frontend and backend tasks are added for matching technologies."""
        tasks = simulate_tasks(
            "Project Name: Shop\nTechnologies: python, react", project_type="new", task_count=10
        )
        categories = [t.category for t in tasks]
        assert categories == ["setup", "setup", "documentation", "frontend", "backend", "database"]
        assert [t.id for t in tasks] == [1, 2, 3, 4, 5, 6]
        assert "Shop" in tasks[0].title
        assert len(tasks[0].subtasks) == 2

    def test_truncated_to_count(self):
        """Batches never exceed task_count."""
        tasks = simulate_tasks("Project Name: X\nTechnologies: go", task_count=2)
        assert len(tasks) == 2

    def test_without_technologies(self):
        """Only the setup, documentation and database tasks remain."""
        tasks = simulate_tasks("A todo app", task_count=10)
        assert [t.category for t in tasks] == ["setup", "setup", "documentation", "database"]

    def test_dependencies_point_backwards(self):
        """Simulated edges are never dropped; the validator only adds closure."""
        tasks = simulate_tasks("Project Name: X\nTechnologies: react, django", task_count=10)
        issues = find_dependency_issues(tasks)
        assert all(issue["removed"] == [] for issue in issues)
        assert {issue["task_id"] for issue in issues} == {4, 5}


class TestSimulateExistingProject:
    """Tests for simulated existing-project batches."""

    def test_chain_with_context(self):
        """Existing projects get a chain of context-specific tasks."""
        tasks = simulate_tasks("Project Name: Shop\nFix the checkout bug", project_type="existing", task_count=4)
        assert len(tasks) == 4
        assert all(t.category == "bugfix" for t in tasks)
        assert [t.dependencies for t in tasks] == [[], [1], [2], [3]]
        assert [t.priority for t in tasks] == ["high", "medium", "low", "low"]
        assert [len(t.subtasks) for t in tasks] == [2, 2, 0, 0]
        assert tasks[0].title == "Fix bug #1 in Shop"

    def test_zero_count(self):
        """A zero count gives an empty batch."""
        assert simulate_tasks("anything", project_type="existing", task_count=0) == []


class TestSimulateSubtasks:
    """Tests for simulate_subtasks."""

    def test_outline(self):
        """Subtasks follow the generic outline and mention the task."""
        outline = simulate_subtasks(Task(id=1, title="Checkout"), count=3)
        assert [s["title"] for s in outline] == [title for title, _ in SUBTASK_OUTLINE[:3]]
        assert all("Checkout" in s["description"] for s in outline)

    def test_beyond_outline(self):
        """Counts past the outline continue with follow-up steps."""
        outline = simulate_subtasks(Task(id=1, title="Checkout"), count=7)
        assert len(outline) == 7
        assert outline[6]["title"] == "Follow-up step 7"

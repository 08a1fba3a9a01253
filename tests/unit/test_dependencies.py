"""Tests for the task dependency validator."""

import logging

import pytest

from taskmanager.core.dependencies import (
    _has_cycle,
    find_dependency_issues,
    validate_dependencies,
)
from taskmanager.core.models import Subtask, Task


def _batch(*pairs):
    """Build tasks from (id, dependencies) pairs."""
    return [Task(id=task_id, title=f"Task {task_id}", dependencies=list(deps)) for task_id, deps in pairs]


def _deps(tasks):
    return {task.id: task.dependencies for task in tasks}


# =============================================================================
# Documented scenarios
# =============================================================================


class TestValidateScenarios:
    """Regression tests for the reference scenarios."""

    def test_dangling_reference_dropped(self):
        """A dependency on a task outside the batch is removed."""
        result = validate_dependencies(_batch((1, []), (2, [1]), (3, [2, 5])))
        deps = _deps(result)
        assert 5 not in deps[3]
        assert 2 in deps[3]
        assert deps[2] == [1]

    def test_dangling_reference_task_still_closed(self):
        """After dropping the dangling id, transitive prerequisites are added."""
        result = validate_dependencies(_batch((1, []), (2, [1]), (3, [2, 5])))
        assert _deps(result)[3] == [1, 2]

    def test_single_task_forward_reference(self):
        """A lone task referencing a later id ends up with no dependencies."""
        result = validate_dependencies(_batch((1, [2])))
        assert _deps(result) == {1: []}

    def test_chain_gets_transitive_closure(self):
        """3 -> 2 -> 1 becomes 3 -> [1, 2]."""
        result = validate_dependencies(_batch((1, []), (2, [1]), (3, [2])))
        assert _deps(result) == {1: [], 2: [1], 3: [1, 2]}

    def test_mutual_reference_pruned_by_ordering(self):
        """1 <-> 2 keeps only the backward edge 2 -> 1."""
        result = validate_dependencies(_batch((1, [2]), (2, [1])))
        assert _deps(result) == {1: [], 2: [1]}


# =============================================================================
# Edge cases
# =============================================================================


class TestValidateEdgeCases:
    """Edge cases for malformed dependency lists."""

    def test_empty_batch(self):
        """An empty batch validates to an empty list."""
        assert validate_dependencies([]) == []

    def test_self_reference_removed(self):
        """A task cannot depend on itself."""
        result = validate_dependencies(_batch((1, []), (2, [2, 1])))
        assert _deps(result)[2] == [1]

    def test_duplicates_removed_and_sorted(self):
        """Duplicate ids collapse and lists come back ascending."""
        result = validate_dependencies(_batch((1, []), (2, []), (3, [2, 1, 2, 1])))
        assert _deps(result)[3] == [1, 2]

    def test_duplicate_invalid_id_dropped(self):
        """A repeated dangling id is dropped entirely."""
        result = validate_dependencies(_batch((1, []), (2, [9, 9, 1])))
        assert _deps(result)[2] == [1]

    def test_all_dependencies_filtered(self):
        """Filtering every edge leaves an empty list, not an error."""
        result = validate_dependencies(_batch((1, []), (2, [3, 7]), (3, [])))
        assert _deps(result)[2] == []

    def test_minimum_id_task_has_no_dependencies(self):
        """The smallest id in a batch that does not start at 1 has no dependencies."""
        result = validate_dependencies(_batch((5, [4, 6]), (6, [5]), (7, [6, 5])))
        deps = _deps(result)
        assert deps[5] == []
        assert deps[6] == [5]
        assert deps[7] == [5, 6]

    def test_arbitrary_input_order(self):
        """Closure follows chains regardless of the order tasks are listed."""
        result = validate_dependencies(_batch((4, [3]), (2, [1]), (3, [2]), (1, [])))
        assert [task.id for task in result] == [4, 2, 3, 1]
        assert _deps(result) == {4: [1, 2, 3], 2: [1], 3: [1, 2], 1: []}

    def test_closure_through_long_chain(self):
        """Every task in a chain depends on all earlier tasks."""
        size = 30
        tasks = _batch(*[(i, [i - 1] if i > 1 else []) for i in range(1, size + 1)])
        result = validate_dependencies(tasks)
        for task in result:
            assert task.dependencies == list(range(1, task.id))

    def test_diamond(self):
        """Diamond shaped graphs collapse the shared root once."""
        result = validate_dependencies(_batch((1, []), (2, [1]), (3, [1]), (4, [2, 3])))
        assert _deps(result)[4] == [1, 2, 3]


# =============================================================================
# Purity
# =============================================================================


class TestValidatePurity:
    """The validator must not mutate its input."""

    def test_input_not_mutated(self):
        """Original Task objects keep their raw dependency lists."""
        tasks = _batch((1, [2]), (2, [1, 1]), (3, [2, 9]))
        validate_dependencies(tasks)
        assert _deps(tasks) == {1: [2], 2: [1, 1], 3: [2, 9]}

    def test_other_fields_pass_through(self):
        """Only dependencies differ between input and output records."""
        task = Task(
            id=2,
            title="Build API",
            description="desc",
            status="in-progress",
            priority="high",
            dependencies=[1, 3],
            details="details",
            test_strategy="pytest",
            category="backend",
            extra={"owner": "sam"},
        )
        result = validate_dependencies([Task(id=1, title="Setup"), task])
        repaired = result[1]
        assert repaired is not task
        assert repaired.title == "Build API"
        assert repaired.status == "in-progress"
        assert repaired.priority == "high"
        assert repaired.category == "backend"
        assert repaired.extra == {"owner": "sam"}
        assert repaired.dependencies == [1]

    def test_containers_not_shared(self):
        """Editing a returned task's subtasks or extras leaves the input alone."""
        task = Task(
            id=1,
            title="Setup",
            subtasks=[Subtask(id=1, title="Install")],
            extra={"labels": ["infra"]},
        )
        repaired = validate_dependencies([task])[0]

        repaired.subtasks[0].status = "done"
        repaired.subtasks.append(Subtask(id=2, title="Configure"))
        repaired.extra["labels"].append("urgent")

        assert [(s.id, s.status) for s in task.subtasks] == [(1, "pending")]
        assert task.extra == {"labels": ["infra"]}

    def test_idempotent(self):
        """Validating twice gives the same dependency lists."""
        once = validate_dependencies(_batch((1, [3]), (2, [1, 2]), (3, [2, 8]), (4, [3, 1, 3])))
        twice = validate_dependencies(once)
        assert _deps(once) == _deps(twice)

    def test_logs_dropped_edges(self, caplog):
        """Dropped edges are reported at debug level."""
        with caplog.at_level(logging.DEBUG, logger="taskmanager.core.dependencies"):
            validate_dependencies(_batch((1, [2]), (2, [7])))
        messages = " ".join(record.getMessage() for record in caplog.records)
        assert "1 -> 2" in messages
        assert "2 -> 7" in messages


# =============================================================================
# Cycle detection
# =============================================================================


class TestCycleDetection:
    """Tests for the cycle check used as a safety net."""

    def test_detects_cycle(self):
        """A 1 -> 2 -> 1 loop is reported."""
        assert _has_cycle(1, {1: {2}, 2: {1}}) is True

    def test_detects_self_loop(self):
        """A node pointing at itself is a cycle."""
        assert _has_cycle(3, {3: {3}}) is True

    def test_acyclic_graph(self):
        """A diamond has no cycle."""
        graph = {4: {2, 3}, 3: {1}, 2: {1}, 1: set()}
        assert _has_cycle(4, graph) is False

    def test_cycle_not_reachable(self):
        """Cycles elsewhere in the graph do not affect an unrelated node."""
        graph = {1: set(), 2: {3}, 3: {2}}
        assert _has_cycle(1, graph) is False

    def test_deep_chain_no_recursion_error(self):
        """Very long chains are handled iteratively."""
        graph = {i: {i - 1} for i in range(2, 5000)}
        graph[1] = set()
        assert _has_cycle(4999, graph) is False


# =============================================================================
# Issue reporting
# =============================================================================


class TestFindDependencyIssues:
    """Tests for find_dependency_issues."""

    def test_valid_batch_has_no_issues(self):
        """An already valid batch reports nothing."""
        tasks = _batch((1, []), (2, [1]), (3, [1, 2]))
        assert find_dependency_issues(tasks) == []

    def test_reports_removed_and_added(self):
        """Each changed task lists removed and added ids."""
        tasks = _batch((1, [4]), (2, [1]), (3, [2, 9]))
        issues = {issue["task_id"]: issue for issue in find_dependency_issues(tasks)}
        assert issues[1] == {"task_id": 1, "removed": [4], "added": []}
        assert issues[3] == {"task_id": 3, "removed": [9], "added": [1]}
        assert 2 not in issues

    @pytest.mark.parametrize("raw", [[2, 1], [1, 1, 2]])
    def test_reports_unsorted_or_duplicated_lists(self, raw):
        """Lists that only need sorting or deduplication are still reported."""
        tasks = _batch((1, []), (2, [1]), (3, raw))
        issues = find_dependency_issues(tasks)
        assert issues == [{"task_id": 3, "removed": [], "added": []}]

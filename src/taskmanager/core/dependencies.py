"""
Dependency graph validation for task batches.

Generated task batches (AI or simulated) frequently reference tasks that do
not exist, point forward, or omit indirect prerequisites. The validator
repairs rather than rejects: it drops structurally invalid edges, adds the
transitive edges a task implicitly relies on, and guarantees the result is
acyclic.
"""

import copy
import logging
from dataclasses import replace
from typing import Dict, List, Sequence, Set

from taskmanager.core.models import Task

logger = logging.getLogger(__name__)


def _filter_dependencies(tasks: Sequence[Task]) -> Dict[int, Set[int]]:
    """Keep only backward references to ids present in the batch."""
    known_ids = {task.id for task in tasks}
    graph: Dict[int, Set[int]] = {task.id: set() for task in tasks}

    for task in tasks:
        for dep_id in task.dependencies:
            if dep_id >= task.id:
                logger.debug(
                    f"Dropping forward/self reference {task.id} -> {dep_id}"
                )
                continue
            if dep_id not in known_ids:
                logger.debug(f"Dropping dangling reference {task.id} -> {dep_id}")
                continue
            graph[task.id].add(dep_id)

    return graph


def _transitive_closure(graph: Dict[int, Set[int]]) -> Dict[int, Set[int]]:
    """Add every id reachable through dependency chains, restricted to smaller ids."""
    closed: Dict[int, Set[int]] = {}

    for task_id, direct in graph.items():
        reachable: Set[int] = set()
        stack = list(direct)
        while stack:
            dep_id = stack.pop()
            if dep_id in reachable or dep_id >= task_id:
                continue
            reachable.add(dep_id)
            stack.extend(graph.get(dep_id, ()))

        added = reachable - direct
        if added:
            logger.debug(f"Task {task_id}: adding transitive dependencies {sorted(added)}")
        closed[task_id] = reachable

    return closed


def _has_cycle(start_id: int, graph: Dict[int, Set[int]]) -> bool:
    """Depth-first search for a cycle reachable from ``start_id``.

    Iterative so that long chains cannot hit the recursion limit.
    """
    visited: Set[int] = set()
    rec_stack: Set[int] = set()
    # (node, iterator over its dependencies)
    stack = [(start_id, iter(sorted(graph.get(start_id, ()))))]
    rec_stack.add(start_id)

    while stack:
        node_id, children = stack[-1]
        advanced = False
        for child_id in children:
            if child_id in rec_stack:
                return True
            if child_id not in visited:
                rec_stack.add(child_id)
                stack.append((child_id, iter(sorted(graph.get(child_id, ())))))
                advanced = True
                break
        if not advanced:
            stack.pop()
            rec_stack.discard(node_id)
            visited.add(node_id)

    return False


def validate_dependencies(tasks: Sequence[Task]) -> List[Task]:
    """
    Repair the dependency lists of a task batch.

    The returned batch satisfies:
    - every dependency id exists in the batch
    - every dependency id is strictly smaller than the dependent task's id
    - dependencies are transitively closed (A -> B -> C implies A -> C)
    - the graph is acyclic
    - each dependency list is deduplicated and sorted ascending

    Cycles cannot survive the forward-reference filter, but the acyclicity
    pass still runs: any task from which a cycle is reachable loses all of
    its dependencies.

    Args:
        tasks: Task batch in any order; ids are expected to be unique

    Returns:
        New Task objects in the original order. Only ``dependencies``
        differs from the input records; subtasks and extra fields are
        copied, so the returned batch shares no mutable state with the input.
    """
    graph = _filter_dependencies(tasks)
    closed = _transitive_closure(graph)

    for task_id in list(closed):
        if _has_cycle(task_id, closed):
            logger.warning(
                f"Cycle reachable from task {task_id}; clearing its dependencies"
            )
            closed[task_id] = set()

    return [
        replace(
            task,
            dependencies=sorted(closed[task.id]),
            subtasks=[replace(subtask) for subtask in task.subtasks],
            extra=copy.deepcopy(task.extra),
        )
        for task in tasks
    ]


def find_dependency_issues(tasks: Sequence[Task]) -> List[Dict[str, object]]:
    """Describe how ``validate_dependencies`` would change each task.

    Returns:
        One entry per changed task with ``task_id``, ``removed`` and
        ``added`` dependency ids. Empty when the batch is already valid.
    """
    issues: List[Dict[str, object]] = []
    for before, after in zip(tasks, validate_dependencies(tasks)):
        original = set(before.dependencies)
        repaired = set(after.dependencies)
        if original == repaired and before.dependencies == after.dependencies:
            continue
        issues.append(
            {
                "task_id": before.id,
                "removed": sorted(original - repaired),
                "added": sorted(repaired - original),
            }
        )
    return issues

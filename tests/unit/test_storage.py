"""Tests for tasks.json storage and task operations."""

import json

import pytest

from taskmanager.core.dependencies import find_dependency_issues
from taskmanager.core.models import Subtask, Task
from taskmanager.core.storage import (
    TasksDocument,
    TasksFileError,
    add_dependency,
    add_subtask,
    add_subtasks,
    add_task,
    add_tasks,
    get_current_task,
    get_next_task,
    get_task,
    get_tasks_file_path,
    initialize_project,
    is_initialized,
    list_tasks,
    load_project_metadata,
    load_tasks,
    recalculate_metadata,
    remove_dependency,
    remove_task,
    revalidate_dependencies,
    save_tasks,
    update_task,
    update_task_status,
)


def _store(project_dir, *tasks):
    save_tasks(project_dir, TasksDocument(tasks=list(tasks)))


class TestInitializeProject:
    """Tests for initialize_project."""

    def test_creates_layout(self, tmp_path):
        """init writes metadata, config, env template, tasks file and PRD dir."""
        metadata, error = initialize_project(
            tmp_path, project_type="existing", name="shop", technologies=["Python", " react "]
        )
        assert error is None
        assert metadata["name"] == "shop"
        assert metadata["type"] == "existing"
        assert metadata["technologies"] == ["python", "react"]

        tm_dir = tmp_path / ".taskmanager"
        assert (tm_dir / "project-metadata.json").exists()
        assert (tm_dir / "config.toml").exists()
        assert (tm_dir / ".env.example").exists()
        assert (tm_dir / "tasks").is_dir()
        data = json.loads((tm_dir / "tasks.json").read_text())
        assert data["tasks"] == []
        assert data["metadata"]["projectType"] == "existing"
        assert is_initialized(tmp_path)

    def test_defaults_name_to_directory(self, tmp_path):
        """Without a name the directory name is used."""
        metadata, _ = initialize_project(tmp_path)
        assert metadata["name"] == tmp_path.name

    def test_refuses_reinit(self, project_dir):
        """A second init without force fails."""
        metadata, error = initialize_project(project_dir)
        assert metadata is None
        assert "already initialized" in error

    def test_force_keeps_tasks(self, populated_project):
        """Forced re-init keeps tasks.json and the original creation date."""
        created = load_project_metadata(populated_project)["createdAt"]
        metadata, error = initialize_project(populated_project, name="renamed", force=True)
        assert error is None
        assert metadata["createdAt"] == created
        assert len(load_tasks(populated_project).tasks) == 4

    def test_invalid_type(self, tmp_path):
        """Unknown project types are rejected before touching disk."""
        metadata, error = initialize_project(tmp_path, project_type="legacy")
        assert metadata is None
        assert "Invalid project type" in error
        assert not is_initialized(tmp_path)


class TestLoadSave:
    """Tests for load_tasks / save_tasks."""

    def test_missing_file_is_empty(self, tmp_path):
        """A missing tasks.json loads as an empty document."""
        assert load_tasks(tmp_path).tasks == []

    def test_malformed_json_raises(self, project_dir):
        """Corrupt files raise TasksFileError instead of being overwritten."""
        get_tasks_file_path(project_dir).write_text("{not json", encoding="utf-8")
        with pytest.raises(TasksFileError):
            load_tasks(project_dir)

    def test_non_object_raises(self, project_dir):
        """The top-level value must be an object."""
        get_tasks_file_path(project_dir).write_text("[]", encoding="utf-8")
        with pytest.raises(TasksFileError):
            load_tasks(project_dir)

    def test_save_is_atomic(self, project_dir):
        """No temp file is left behind after saving."""
        _store(project_dir, Task(id=1, title="a"))
        tm_dir = project_dir / ".taskmanager"
        assert not (tm_dir / "tasks.tmp").exists()
        assert load_tasks(project_dir).get(1).title == "a"

    def test_unknown_keys_survive(self, project_dir):
        """Hand-added keys are written back unchanged."""
        path = get_tasks_file_path(project_dir)
        path.write_text(
            json.dumps({"tasks": [{"id": 1, "title": "a", "estimate": 3}], "metadata": {}}),
            encoding="utf-8",
        )
        save_tasks(project_dir, load_tasks(project_dir))
        data = json.loads(path.read_text())
        assert data["tasks"][0]["estimate"] == 3

    def test_recalculate_metadata_counts(self):
        """Counters include subtask statuses but not subtask priorities."""
        document = TasksDocument(
            tasks=[
                Task(
                    id=1,
                    title="a",
                    status="done",
                    priority="high",
                    subtasks=[Subtask(id=1, title="s", status="done")],
                ),
                Task(id=2, title="b", status="pending", priority="low"),
                Task(id=3, title="c", status="in-progress"),
            ]
        )
        recalculate_metadata(document)
        meta = document.metadata
        assert meta["taskCount"] == 3
        assert meta["completedCount"] == 2
        assert meta["pendingCount"] == 1
        assert meta["inProgressCount"] == 1
        assert meta["highPriorityCount"] == 1
        assert meta["lowPriorityCount"] == 1
        assert meta["mediumPriorityCount"] == 1


class TestAddTask:
    """Tests for manual task creation."""

    def test_assigns_next_id(self, populated_project):
        """New tasks get max id + 1."""
        task, error = add_task(populated_project, title="Deploy")
        assert error is None
        assert task.id == 5

    def test_adds_transitive_dependencies(self, populated_project):
        """Depending on task 3 also pulls in its prerequisites."""
        task, _ = add_task(populated_project, title="Release", dependencies=[3])
        assert task.dependencies == [1, 2, 3]

    def test_missing_dependency(self, populated_project):
        """Unknown dependency ids are rejected."""
        task, error = add_task(populated_project, title="x", dependencies=[42])
        assert task is None
        assert "not found" in error
        assert len(load_tasks(populated_project).tasks) == 4

    def test_title_required(self, project_dir):
        """Blank titles are rejected."""
        task, error = add_task(project_dir, title="  ")
        assert task is None
        assert error == "Title is required"


class TestAddTasks:
    """Tests for appending generated batches."""

    def test_renumbers_after_existing(self, populated_project):
        """Batch ids are shifted and intra-batch dependencies remapped."""
        batch = [
            Task(id=1, title="gen 1"),
            Task(id=2, title="gen 2", dependencies=[1]),
            Task(id=3, title="gen 3", dependencies=[2, 7]),
        ]
        stored = add_tasks(populated_project, batch)
        assert [t.id for t in stored] == [5, 6, 7]
        deps = {t.id: t.dependencies for t in stored}
        assert deps[5] == []
        assert deps[6] == [5]
        assert deps[7] == [5, 6]

    def test_into_empty_project(self, project_dir):
        """Ids stay 1..N when there are no existing tasks."""
        stored = add_tasks(project_dir, [Task(id=1, title="a"), Task(id=2, title="b", dependencies=[1])])
        assert [t.id for t in stored] == [1, 2]
        assert stored[1].dependencies == [1]


class TestUpdateAndRemove:
    """Tests for update_task and remove_task."""

    def test_update_allowed_fields(self, populated_project):
        """Text fields update; protected fields are ignored."""
        task = update_task(populated_project, 2, description="new", id=99, dependencies=[])
        assert task.description == "new"
        assert task.id == 2
        assert get_task(populated_project, 2).dependencies == [1]

    def test_update_missing(self, populated_project):
        """Updating a missing task returns None."""
        assert update_task(populated_project, 99, title="x") is None

    def test_remove_strips_references(self, populated_project):
        """Removing a task removes it from every dependency list."""
        assert remove_task(populated_project, 1) is True
        tasks = {t.id: t for t in load_tasks(populated_project).tasks}
        assert 1 not in tasks
        assert tasks[2].dependencies == []
        assert tasks[3].dependencies == [2]

    def test_remove_missing(self, populated_project):
        """Removing an unknown id returns False."""
        assert remove_task(populated_project, 42) is False


class TestSubtasks:
    """Tests for subtask creation."""

    def test_add_subtask(self, populated_project):
        """Subtasks are numbered per parent task."""
        first = add_subtask(populated_project, 2, "Design")
        second = add_subtask(populated_project, 2, "Build")
        assert (first.id, second.id) == (1, 2)
        assert len(get_task(populated_project, 2).subtasks) == 2

    def test_add_subtask_missing_task(self, populated_project):
        """Adding to a missing task returns None."""
        assert add_subtask(populated_project, 42, "x") is None

    def test_add_subtasks_batch(self, populated_project):
        """Several subtasks are written in one call."""
        created = add_subtasks(
            populated_project,
            1,
            [{"title": "A", "description": "a"}, {"title": "", "description": "b"}],
        )
        assert [s.id for s in created] == [1, 2]
        assert created[1].title == "New subtask"

    def test_add_subtasks_missing_task(self, populated_project):
        """Missing parents give None."""
        assert add_subtasks(populated_project, 42, [{"title": "A"}]) is None


class TestStatus:
    """Tests for update_task_status."""

    def test_done_cascades_to_subtasks(self, populated_project):
        """Marking a task done completes its subtasks."""
        add_subtasks(populated_project, 1, [{"title": "A"}, {"title": "B"}])
        success, error = update_task_status(populated_project, 1, "done")
        assert success and error is None
        task = get_task(populated_project, 1)
        assert task.status == "done"
        assert all(s.status == "done" for s in task.subtasks)

    def test_cancelled_cascades_to_subtasks(self, populated_project):
        """Cancelling a task cancels its subtasks."""
        add_subtasks(populated_project, 2, [{"title": "A"}, {"title": "B"}])
        update_task_status(populated_project, 2, "in-progress", subtask_id=1)
        success, error = update_task_status(populated_project, 2, "cancelled")
        assert success and error is None
        task = get_task(populated_project, 2)
        assert task.status == "cancelled"
        assert [s.status for s in task.subtasks] == ["cancelled", "cancelled"]

    def test_other_statuses_leave_subtasks(self, populated_project):
        """Deferring a task keeps subtask statuses."""
        add_subtasks(populated_project, 1, [{"title": "A"}])
        update_task_status(populated_project, 1, "deferred")
        assert get_task(populated_project, 1).subtasks[0].status == "pending"

    def test_subtask_status(self, populated_project):
        """Subtask status changes leave the parent alone."""
        add_subtasks(populated_project, 1, [{"title": "A"}])
        success, _ = update_task_status(populated_project, 1, "in-progress", subtask_id=1)
        assert success
        task = get_task(populated_project, 1)
        assert task.subtasks[0].status == "in-progress"
        assert task.status == "pending"

    def test_invalid_status(self, populated_project):
        """Unknown statuses are rejected."""
        success, error = update_task_status(populated_project, 1, "finished")
        assert not success
        assert "Invalid status" in error

    def test_missing_task(self, populated_project):
        """Unknown tasks are reported."""
        assert update_task_status(populated_project, 42, "done") == (False, "Task 42 not found")

    def test_missing_subtask(self, populated_project):
        """Unknown subtasks are reported."""
        assert update_task_status(populated_project, 1, "done", subtask_id=3) == (
            False,
            "Subtask 1.3 not found",
        )


class TestDependencyOperations:
    """Tests for add/remove/revalidate dependency operations."""

    def test_add_dependency_closes_graph(self, populated_project):
        """4 -> 3 also adds 3's prerequisites."""
        changed, error = add_dependency(populated_project, 4, 3)
        assert changed is True and error is None
        assert get_task(populated_project, 4).dependencies == [1, 2, 3]

    def test_add_existing_edge(self, populated_project):
        """An existing edge succeeds without a change."""
        assert add_dependency(populated_project, 2, 1) == (False, None)

    @pytest.mark.parametrize(
        "task_id,depends_on,fragment",
        [
            (2, 2, "itself"),
            (42, 1, "Task 42 not found"),
            (2, 42, "Dependency task 42 not found"),
            (2, 3, "later task"),
        ],
    )
    def test_add_dependency_rejections(self, populated_project, task_id, depends_on, fragment):
        """Self, missing and forward edges are refused."""
        changed, error = add_dependency(populated_project, task_id, depends_on)
        assert changed is False
        assert fragment in error

    def test_remove_dependency(self, populated_project):
        """Removing an edge leaves the others."""
        assert remove_dependency(populated_project, 3, 2) == (True, None)
        assert get_task(populated_project, 3).dependencies == [1]
        assert remove_dependency(populated_project, 3, 2) == (False, None)

    def test_remove_implied_dependency_refused(self, project_dir):
        """An edge implied through another dependency stays, and the file stays closed."""
        _store(
            project_dir,
            Task(id=1, title="a"),
            Task(id=2, title="b", dependencies=[1]),
            Task(id=3, title="c", dependencies=[1, 2]),
        )
        changed, error = remove_dependency(project_dir, 3, 1)
        assert changed is False
        assert "implied by task 2" in error
        assert get_task(project_dir, 3).dependencies == [1, 2]
        assert find_dependency_issues(load_tasks(project_dir).tasks) == []

        add_task(project_dir, "four")
        assert get_task(project_dir, 3).dependencies == [1, 2]

    def test_remove_then_implied_edge(self, project_dir):
        """Once the implying edge is gone, the prerequisite can be removed."""
        _store(
            project_dir,
            Task(id=1, title="a"),
            Task(id=2, title="b", dependencies=[1]),
            Task(id=3, title="c", dependencies=[1, 2]),
        )
        assert remove_dependency(project_dir, 3, 2) == (True, None)
        assert remove_dependency(project_dir, 3, 1) == (True, None)
        assert get_task(project_dir, 3).dependencies == []

    def test_revalidate_repairs_hand_edited_file(self, project_dir):
        """Broken edges in tasks.json are repaired and reported."""
        _store(
            project_dir,
            Task(id=1, title="a", dependencies=[3]),
            Task(id=2, title="b", dependencies=[1]),
            Task(id=3, title="c", dependencies=[2, 8]),
        )
        changes = revalidate_dependencies(project_dir)
        assert {c["task_id"] for c in changes} == {1, 3}
        deps = {t.id: t.dependencies for t in load_tasks(project_dir).tasks}
        assert deps == {1: [], 2: [1], 3: [1, 2]}

    def test_revalidate_noop_does_not_write(self, populated_project):
        """A valid file is not rewritten."""
        path = get_tasks_file_path(populated_project)
        before = path.read_text()
        assert revalidate_dependencies(populated_project) == []
        assert path.read_text() == before


class TestNextAndCurrent:
    """Tests for get_next_task and get_current_task."""

    def test_next_requires_done_dependencies(self, populated_project):
        """Only task 1 is actionable at first."""
        assert get_next_task(populated_project).id == 1

    def test_next_prefers_priority(self, populated_project):
        """With 1 done, medium task 2 beats low task 3 and ties break by id."""
        update_task_status(populated_project, 1, "done")
        assert get_next_task(populated_project).id == 2

    def test_next_prefers_in_progress_on_tie(self, populated_project):
        """Equal priority: in-progress wins over pending."""
        update_task_status(populated_project, 1, "done")
        update_task_status(populated_project, 4, "in-progress")
        assert get_next_task(populated_project).id == 4

    def test_next_none_when_all_done(self, populated_project):
        """No candidate once everything is done."""
        for task_id in (1, 2, 3, 4):
            update_task_status(populated_project, task_id, "done")
        assert get_next_task(populated_project) is None

    def test_current_task(self, populated_project):
        """The first in-progress task and subtask are reported."""
        assert get_current_task(populated_project) is None
        add_subtasks(populated_project, 2, [{"title": "A"}, {"title": "B"}])
        update_task_status(populated_project, 2, "in-progress")
        update_task_status(populated_project, 2, "in-progress", subtask_id=2)
        task, subtask = get_current_task(populated_project)
        assert task.id == 2
        assert subtask.id == 2

    def test_list_tasks_filter(self, populated_project):
        """list_tasks filters by status."""
        update_task_status(populated_project, 3, "deferred")
        assert [t.id for t in list_tasks(populated_project, status="deferred")] == [3]
        assert len(list_tasks(populated_project)) == 4

"""
Offline task generation.

Used whenever AI generation is disabled, unconfigured or fails. The output
is deterministic for a given description so that simulated batches are
reproducible; the dependency validator still runs on the result.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from taskmanager.core.models import Subtask, Task, utc_now

logger = logging.getLogger(__name__)

FRONTEND_TECHNOLOGIES = frozenset({"javascript", "typescript", "react", "vue", "angular"})
BACKEND_TECHNOLOGIES = frozenset(
    {
        "nodejs",
        "express",
        "python",
        "django",
        "flask",
        "fastapi",
        "java",
        "spring",
        "csharp",
        "dotnet",
        "php",
        "laravel",
        "ruby",
        "rails",
        "go",
    }
)

# Ordered: the first matching context wins
CONTEXT_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("bugfix", ("bug", "error", "fix", "crash")),
    ("testing", ("test",)),
    ("documentation", ("document", "readme")),
    ("refactoring", ("refactor",)),
    ("performance", ("performance", "slow", "optimi")),
    ("security", ("security", "vulnerab")),
    ("dependencies", ("dependenc", "upgrade", "outdated")),
]

# title, description, details, test strategy
CONTEXT_TEMPLATES: Dict[str, Tuple[str, str, str, str]] = {
    "bugfix": (
        "Fix bug #{n} in {project}",
        "Investigate and fix the reported defect.",
        "Find the root cause of the problem and implement a fix.",
        "Write a test that reproduces the bug and confirm the fix resolves it.",
    ),
    "testing": (
        "Add tests for module {n} of {project}",
        "Write unit and integration tests for the module.",
        "Identify the critical cases and automate them.",
        "Check code coverage and review the quality of the tests.",
    ),
    "documentation": (
        "Document module {n} of {project}",
        "Write technical documentation for the module.",
        "Document the API, internals and usage examples.",
        "Review the documentation with the team for clarity and completeness.",
    ),
    "refactoring": (
        "Refactor module {n} of {project}",
        "Improve the code quality of the existing module.",
        "Identify design problems and replace them with cleaner solutions.",
        "Confirm the existing tests still pass after refactoring.",
    ),
    "performance": (
        "Optimize performance of module {n} of {project}",
        "Find and remove performance bottlenecks.",
        "Profile the module and implement targeted improvements.",
        "Measure performance before and after the change.",
    ),
    "security": (
        "Harden security of module {n} of {project}",
        "Find and resolve security vulnerabilities.",
        "Run a security review and fix the issues it finds.",
        "Re-run the security checks to confirm the vulnerabilities are closed.",
    ),
    "dependencies": (
        "Update dependencies of module {n} of {project}",
        "Upgrade libraries to their current releases.",
        "Identify outdated dependencies and apply compatible upgrades.",
        "Confirm the system still works after the upgrades.",
    ),
    "feature": (
        "Implement feature {n} for {project}",
        "Develop a new feature for the system.",
        "Create the components, services and endpoints the feature needs.",
        "Write unit and integration tests for the new behaviour.",
    ),
}


def parse_project_description(description: str) -> Tuple[str, List[str]]:
    """Extract ``Project Name:`` and ``Technologies:`` lines.

    Returns:
        Tuple of (project_name, technologies); name defaults to "the project".
    """
    name = "the project"
    technologies: List[str] = []
    for line in description.splitlines():
        stripped = line.strip()
        if stripped.lower().startswith("project name:"):
            name = stripped.split(":", 1)[1].strip() or name
        elif stripped.lower().startswith("technologies:"):
            raw = stripped.split(":", 1)[1]
            technologies = [t.strip() for t in raw.split(",") if t.strip()]
    return name, technologies


def detect_context(description: str) -> str:
    """Classify a change request by keyword; defaults to ``feature``."""
    text = description.lower()
    for context, keywords in CONTEXT_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return context
    return "feature"


def _task(
    task_id: int,
    title: str,
    description: str,
    priority: str,
    dependencies: List[int],
    details: str,
    test_strategy: str,
    category: str,
    timestamp: str,
    subtasks: Optional[List[Subtask]] = None,
) -> Task:
    return Task(
        id=task_id,
        title=title,
        description=description,
        priority=priority,
        dependencies=dependencies,
        details=details,
        test_strategy=test_strategy,
        category=category,
        created_at=timestamp,
        updated_at=timestamp,
        subtasks=subtasks or [],
    )


def _subtask(subtask_id: int, title: str, description: str, timestamp: str) -> Subtask:
    return Subtask(
        id=subtask_id,
        title=title,
        description=description,
        created_at=timestamp,
        updated_at=timestamp,
    )


def _frontend_details(techs: Sequence[str]) -> str:
    if "react" in techs:
        return "Set up React with a component structure."
    if "vue" in techs:
        return "Set up Vue.js with a component structure."
    if "angular" in techs:
        return "Set up Angular with modules and components."
    return "Set up a basic frontend structure."


def _backend_details(techs: Sequence[str]) -> str:
    if "nodejs" in techs or "express" in techs:
        return "Set up Node.js with routes and controllers."
    if any(t in techs for t in ("python", "django", "flask", "fastapi")):
        return "Set up a Python application layout and virtual environment."
    if "java" in techs or "spring" in techs:
        return "Set up Java with services and controllers."
    return "Set up a basic backend structure."


def _new_project_tasks(project: str, technologies: Sequence[str], task_count: int, now: str) -> List[Task]:
    techs = [t.lower() for t in technologies]
    tasks = [
        _task(
            1,
            f"Set up the initial structure of {project}",
            "Create the base directories and files of the project.",
            "high",
            [],
            "Create the main directories and configure the build system.",
            "Check that every directory was created.",
            "setup",
            now,
            [
                _subtask(1, "Create directory structure", "Define and create the base directories.", now),
                _subtask(2, "Configure the build system", "Set up the build process.", now),
            ],
        ),
        _task(
            2,
            "Configure the development environment",
            "Prepare the development environment with the required tools.",
            "high",
            [1],
            "Configure linters, formatters and debugging tools.",
            "Check that the development environment works end to end.",
            "setup",
            now,
        ),
        _task(
            3,
            "Write initial documentation",
            "Create the basic project documentation, including a README.",
            "medium",
            [1],
            "Document the structure, requirements and installation steps.",
            "Check that the documentation is clear and complete.",
            "documentation",
            now,
        ),
    ]

    if any(t in FRONTEND_TECHNOLOGIES for t in techs):
        tasks.append(
            _task(
                len(tasks) + 1,
                "Configure the frontend environment",
                "Set up the frontend development environment.",
                "high",
                [2],
                _frontend_details(techs),
                "Check that the frontend builds and runs.",
                "frontend",
                now,
            )
        )

    if any(t in BACKEND_TECHNOLOGIES for t in techs):
        tasks.append(
            _task(
                len(tasks) + 1,
                "Configure the backend environment",
                "Set up the backend development environment.",
                "high",
                [2],
                _backend_details(techs),
                "Check that the backend starts and serves requests.",
                "backend",
                now,
            )
        )

    tasks.append(
        _task(
            len(tasks) + 1,
            "Configure the database",
            "Set up the database connection and schema.",
            "high",
            [1],
            "Define the schema, create migrations and configure the connection.",
            "Check that the application can connect to the database.",
            "database",
            now,
        )
    )

    return tasks[:task_count]


def _existing_project_tasks(description: str, project: str, task_count: int, now: str) -> List[Task]:
    context = detect_context(description)
    title_tpl, task_description, details, test_strategy = CONTEXT_TEMPLATES[context]

    tasks: List[Task] = []
    for index in range(task_count):
        task_id = index + 1
        title = title_tpl.format(n=task_id, project=project)
        if index == 0:
            priority = "high"
        elif index < 2:
            priority = "medium"
        else:
            priority = "low"

        subtasks: List[Subtask] = []
        if index < 2:
            subtasks = [
                _subtask(1, f"Step 1 for {title}", "First step towards the task.", now),
                _subtask(2, f"Step 2 for {title}", "Second step towards the task.", now),
            ]

        tasks.append(
            _task(
                task_id,
                title,
                task_description,
                priority,
                [index] if index > 0 else [],
                details,
                test_strategy,
                context,
                now,
                subtasks,
            )
        )
    return tasks


def simulate_tasks(description: str, project_type: str = "new", task_count: int = 5) -> List[Task]:
    """
    Generate a plausible task batch without an AI provider.

    Args:
        description: Project or change description; ``Project Name:`` and
            ``Technologies:`` lines are recognised
        project_type: "new" yields setup tasks, anything else yields a
            chain of tasks for the detected change context
        task_count: Upper bound for new projects, exact count otherwise

    Returns:
        Tasks with ids 1..N
    """
    project, technologies = parse_project_description(description)
    now = utc_now()
    task_count = max(task_count, 0)

    logger.debug(f"Simulating {task_count} tasks for {project_type} project '{project}'")
    if not project_type or project_type == "new":
        return _new_project_tasks(project, technologies, task_count, now)
    return _existing_project_tasks(description, project, task_count, now)


SUBTASK_OUTLINE = [
    ("Analyze requirements", "Review the scope of '{title}' and list acceptance criteria."),
    ("Design the approach", "Decide how '{title}' will be implemented and note trade-offs."),
    ("Implement the core changes", "Write the main code for '{title}'."),
    ("Write tests", "Cover '{title}' with unit and integration tests."),
    ("Review and document", "Review the changes for '{title}' and update the documentation."),
]


def simulate_subtasks(task: Task, count: int = 3) -> List[Dict[str, str]]:
    """Generic subtask outline for ``expand`` without AI.

    Returns ``count`` ``{"title", "description"}`` dicts; outlines longer
    than the template continue with numbered follow-up steps.
    """
    outline: List[Dict[str, str]] = []
    for index in range(max(count, 0)):
        if index < len(SUBTASK_OUTLINE):
            title, description = SUBTASK_OUTLINE[index]
        else:
            title, description = f"Follow-up step {index + 1}", "Additional work for '{title}'."
        outline.append({"title": title, "description": description.format(title=task.title)})
    return outline

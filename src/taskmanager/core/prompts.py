"""
Prompt templates for AI task generation and task analysis.

Templates:
    - TASK_GENERATION_V1: produce a JSON array of tasks for a project
      description (used by ``taskmanager create --ai``)
    - TASK_ANALYSIS_V1: analyse one task and split it into subtasks
      (used by ``taskmanager expand --ai``)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Set

from taskmanager.core.models import Subtask, Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptTemplate:
    """
    System and user prompt pair with ``{variable}`` placeholders.

    Attributes:
        id: Unique identifier for the template
        version: Template version for tracking changes
        system_prompt: Sent as the system message
        user_template: User message template with {variable} placeholders
        required_context: Keys that must be present when rendering
    """

    id: str
    version: str
    system_prompt: str
    user_template: str
    required_context: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Template id cannot be empty")
        if not self.user_template:
            raise ValueError("Template user_template cannot be empty")

    def get_variables(self) -> Set[str]:
        """Variable names used in ``{variable}`` placeholders, excluding ``{{``."""
        pattern = r"(?<!\{)\{([a-zA-Z_][a-zA-Z0-9_]*)\}(?!\})"
        return set(re.findall(pattern, self.user_template))

    def render(self, context: Dict[str, Any]) -> str:
        """
        Render the user template.

        Raises:
            ValueError: If required keys are missing
        """
        missing = [key for key in self.required_context if key not in context]
        if missing:
            raise ValueError(
                f"Missing required context keys for template '{self.id}': {missing}"
            )
        try:
            return self.user_template.format(**context)
        except KeyError as exc:
            raise ValueError(
                f"Missing context key for template '{self.id}': {exc}"
            ) from exc


# =============================================================================
# Task generation
# =============================================================================

TASK_GENERATION_V1 = PromptTemplate(
    id="TASK_GENERATION_V1",
    version="1.0",
    system_prompt=(
        "You are a project management assistant with deep experience in "
        "software development and agile planning."
    ),
    user_template="""Generate {task_count} tasks for {project_kind} project with the following description:

{description}

Return the tasks as JSON using exactly this structure:
[
  {{
    "id": 1,
    "title": "Task title",
    "description": "Detailed task description",
    "status": "pending",
    "priority": "high|medium|low",
    "dependencies": [ids of tasks that must be completed first],
    "details": "Implementation details",
    "testStrategy": "How to verify the task",
    "category": "setup|frontend|backend|database|...",
    "subtasks": [
      {{
        "id": 1,
        "title": "Subtask title",
        "description": "Subtask description",
        "status": "pending"
      }}
    ]
  }}
]

{project_guidance}

Make sure that:
1. Tasks are specific and measurable
2. Dependencies only reference tasks with a lower id
3. Priorities reflect the real importance of each task
4. Subtasks break complex tasks into concrete steps
5. Test strategies are practical

Return ONLY the JSON array, with no text before or after it.""",
    required_context=["task_count", "project_kind", "description", "project_guidance"],
)

_NEW_PROJECT_GUIDANCE = "This is a new project: start with setup and initial configuration tasks."
_EXISTING_PROJECT_GUIDANCE = (
    "This is an existing project: focus on development, improvement or fix tasks."
)


def build_generation_prompt(description: str, project_type: str, task_count: int) -> str:
    """User prompt asking for ``task_count`` tasks as a JSON array."""
    is_new = project_type == "new"
    return TASK_GENERATION_V1.render(
        {
            "task_count": task_count,
            "project_kind": "a new" if is_new else "an existing",
            "description": description.strip(),
            "project_guidance": _NEW_PROJECT_GUIDANCE if is_new else _EXISTING_PROJECT_GUIDANCE,
        }
    )


# =============================================================================
# Task analysis
# =============================================================================

TASK_ANALYSIS_V1 = PromptTemplate(
    id="TASK_ANALYSIS_V1",
    version="1.0",
    system_prompt=(
        "You are an expert in project management and task analysis. Analyse a "
        "task in depth and split it into logical, well-structured subtasks."
    ),
    user_template="""# Task Analysis and Subtask Breakdown

## Task
- Title: {title}
- Description: {description}
- Category: {category}
- Implementation details: {details}
- Test strategy: {test_strategy}
{existing_subtasks}

## Instructions
1. Analyse the task: scope, main technical challenges, prerequisites,
   required skills and effort.
2. Split it into exactly {num_subtasks} subtasks that follow a logical order,
   each with a clear title and a detailed description. Cover the whole scope
   and do not repeat existing subtasks.
3. Where useful, suggest improvements to the task description, details or
   test strategy.

## Response format
{{
  "analysis": "Detailed analysis (markdown)",
  "subtasks": [
    {{"title": "Subtask 1", "description": "Description of subtask 1"}}
  ],
  "taskImprovements": {{
    "description": "optional",
    "details": "optional",
    "testStrategy": "optional"
  }}
}}

Return ONLY the JSON object, with no text before or after it.""",
    required_context=["title", "num_subtasks"],
)


def _format_existing_subtasks(subtasks: Sequence[Subtask]) -> str:
    if not subtasks:
        return ""
    lines = [f"- {s.title}: {s.description or 'No description'}" for s in subtasks]
    return "\nExisting subtasks:\n" + "\n".join(lines)


def build_analysis_prompt(task: Task, num_subtasks: int) -> str:
    """User prompt asking for an analysis of ``task`` and ``num_subtasks`` subtasks."""
    return TASK_ANALYSIS_V1.render(
        {
            "title": task.title,
            "description": task.description or "Not provided",
            "category": task.category or "Not specified",
            "details": task.details or "Not provided",
            "test_strategy": task.test_strategy or "Not provided",
            "existing_subtasks": _format_existing_subtasks(task.subtasks),
            "num_subtasks": num_subtasks,
        }
    )

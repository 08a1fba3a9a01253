"""
Task generation and task expansion.

``generate_tasks`` asks the configured LLM for a task batch and falls back
to the offline simulator when AI is disabled, no key is configured, or the
provider fails. Either way the batch passes through the dependency
validator before it is returned, so callers always receive a graph that is
closed, backward-only and acyclic.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from taskmanager.core.dependencies import find_dependency_issues, validate_dependencies
from taskmanager.core.llm_config import LLMConfig
from taskmanager.core.llm_provider import (
    ChatMessage,
    ChatRequest,
    ChatRole,
    LLMError,
    LLMProvider,
    ResponseParseError,
    create_provider,
)
from taskmanager.core.models import Subtask, Task, coerce_id, coerce_dependency_ids, utc_now
from taskmanager.core.prompts import (
    TASK_ANALYSIS_V1,
    TASK_GENERATION_V1,
    build_analysis_prompt,
    build_generation_prompt,
)
from taskmanager.core.simulation import simulate_subtasks, simulate_tasks

logger = logging.getLogger(__name__)

SOURCE_AI = "ai"
SOURCE_SIMULATION = "simulation"


@dataclass
class GenerationResult:
    """Outcome of ``generate_tasks``.

    Attributes:
        tasks: Validated task batch with ids 1..N
        source: "ai" or "simulation"
        warnings: Why AI was skipped or what the validator repaired
    """

    tasks: List[Task]
    source: str
    warnings: List[str] = field(default_factory=list)


@dataclass
class ExpansionResult:
    """Outcome of ``expand_task``.

    Attributes:
        subtasks: ``{"title", "description"}`` dicts to append
        analysis: Markdown analysis from the model (empty when simulated)
        improvements: Suggested replacements for description, details
            and test_strategy
        source: "ai" or "simulation"
        warnings: Why AI was skipped
    """

    subtasks: List[Dict[str, str]]
    analysis: str = ""
    improvements: Dict[str, str] = field(default_factory=dict)
    source: str = SOURCE_SIMULATION
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Response parsing
# =============================================================================


def _extract_json(text: str, opener: str, closer: str) -> Any:
    """Decode the first JSON value starting with ``opener`` in ``text``.

    Falls back to the widest ``opener``...``closer`` span when the first
    candidate does not decode on its own (e.g. prose containing brackets
    precedes the payload).
    """
    start = text.find(opener)
    if start == -1:
        raise ResponseParseError(f"No JSON {'array' if opener == '[' else 'object'} found in response")

    decoder = json.JSONDecoder()
    try:
        value, _ = decoder.raw_decode(text, start)
        return value
    except json.JSONDecodeError:
        pass

    end = text.rfind(closer)
    if end <= start:
        raise ResponseParseError("Unterminated JSON in response")
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Invalid JSON in response: {e}") from e


def parse_tasks_response(text: str) -> List[Task]:
    """
    Turn an LLM answer into a task batch.

    Records are renumbered 1..N in order of appearance; dependencies that
    named the model's own ids are remapped, others are dropped. Missing
    fields get defaults and fresh timestamps.

    Raises:
        ResponseParseError: If no JSON array of objects can be found
    """
    data = _extract_json(text, "[", "]")
    if not isinstance(data, list):
        raise ResponseParseError("Expected a JSON array of tasks")

    records = [item for item in data if isinstance(item, dict)]
    if not records:
        raise ResponseParseError("Response contains no task objects")

    id_map: Dict[int, int] = {}
    for index, record in enumerate(records, start=1):
        raw_id = coerce_id(record.get("id"), index)
        id_map.setdefault(raw_id, index)

    now = utc_now()
    tasks: List[Task] = []
    for index, record in enumerate(records, start=1):
        task = Task.from_dict(record, fallback_id=index)
        task.id = index
        task.dependencies = [
            id_map[dep] for dep in coerce_dependency_ids(record.get("dependencies")) if dep in id_map
        ]
        task.created_at = now
        task.updated_at = now
        task.subtasks = [
            Subtask(
                id=sub_index,
                title=subtask.title,
                description=subtask.description,
                status=subtask.status,
                created_at=now,
                updated_at=now,
            )
            for sub_index, subtask in enumerate(task.subtasks, start=1)
        ]
        tasks.append(task)

    return tasks


def parse_analysis_response(text: str) -> Dict[str, Any]:
    """
    Validate an expansion answer.

    Returns:
        Dict with ``analysis`` (str), ``subtasks`` (list of title and
        description dicts) and ``improvements`` (snake_case keys)

    Raises:
        ResponseParseError: If required fields are missing or malformed
    """
    data = _extract_json(text, "{", "}")
    if not isinstance(data, dict):
        raise ResponseParseError("Expected a JSON object")

    analysis = data.get("analysis")
    subtasks = data.get("subtasks")
    if not analysis or not isinstance(subtasks, list):
        raise ResponseParseError("Response is missing 'analysis' or 'subtasks'")
    if not subtasks:
        raise ResponseParseError("Response contains no subtasks")

    cleaned: List[Dict[str, str]] = []
    for item in subtasks:
        if not isinstance(item, dict) or not item.get("title") or not item.get("description"):
            raise ResponseParseError("Every subtask needs a title and a description")
        cleaned.append({"title": str(item["title"]), "description": str(item["description"])})

    improvements: Dict[str, str] = {}
    raw_improvements = data.get("taskImprovements")
    if isinstance(raw_improvements, dict):
        for source_key, target_key in (
            ("description", "description"),
            ("details", "details"),
            ("testStrategy", "test_strategy"),
        ):
            value = raw_improvements.get(source_key)
            if isinstance(value, str) and value.strip():
                improvements[target_key] = value

    return {"analysis": str(analysis), "subtasks": cleaned, "improvements": improvements}


# =============================================================================
# Provider access
# =============================================================================


def _ai_unavailable_reason(llm_config: Optional[LLMConfig]) -> Optional[str]:
    if llm_config is None or not llm_config.enabled:
        return "AI is disabled; set AI_ENABLED=true in .taskmanager/.env to enable it"
    if not llm_config.has_api_key():
        return (
            f"No API key configured for {llm_config.provider.value}; "
            "using simulated generation"
        )
    return None


async def _ask(provider: LLMProvider, system_prompt: str, user_prompt: str, llm_config: LLMConfig) -> str:
    response = await provider.chat(
        ChatRequest(
            messages=[
                ChatMessage(role=ChatRole.SYSTEM, content=system_prompt),
                ChatMessage(role=ChatRole.USER, content=user_prompt),
            ],
            max_tokens=llm_config.max_tokens,
            temperature=llm_config.temperature,
        )
    )
    return response.content


def _validator_warnings(tasks: List[Task]) -> List[str]:
    warnings = []
    for issue in find_dependency_issues(tasks):
        parts = []
        if issue["removed"]:
            parts.append(f"removed {issue['removed']}")
        if issue["added"]:
            parts.append(f"added {issue['added']}")
        if not parts:
            # Same ids; only order or duplicates changed
            parts.append("sorted and deduplicated")
        warnings.append(f"Task {issue['task_id']}: dependencies {' and '.join(parts)}")
    return warnings


# =============================================================================
# Operations
# =============================================================================


async def generate_tasks(
    description: str,
    project_type: str = "new",
    task_count: int = 5,
    llm_config: Optional[LLMConfig] = None,
    provider: Optional[LLMProvider] = None,
) -> GenerationResult:
    """
    Generate a task batch for a project description.

    Args:
        description: Project or change description
        project_type: "new" or "existing"
        task_count: Number of tasks to request
        llm_config: AI settings; None means simulation only
        provider: Pre-built provider (skips ``create_provider``)

    Returns:
        GenerationResult with validated tasks
    """
    warnings: List[str] = []
    tasks: Optional[List[Task]] = None
    source = SOURCE_SIMULATION

    reason = None if provider is not None else _ai_unavailable_reason(llm_config)
    if reason:
        logger.info(reason)
        warnings.append(reason)
    else:
        config = llm_config or LLMConfig(enabled=True)
        try:
            active = provider or create_provider(config)
            prompt = build_generation_prompt(description, project_type, task_count)
            logger.debug(f"Requesting {task_count} tasks from {active.name}")
            text = await _ask(active, TASK_GENERATION_V1.system_prompt, prompt, config)
            tasks = parse_tasks_response(text)
            source = SOURCE_AI
        except LLMError as e:
            logger.warning(f"AI generation failed ({type(e).__name__}: {e}); using simulation")
            warnings.append(f"AI generation failed: {e}; using simulated tasks")

    if tasks is None:
        tasks = simulate_tasks(description, project_type, task_count)

    warnings.extend(_validator_warnings(tasks))
    return GenerationResult(tasks=validate_dependencies(tasks), source=source, warnings=warnings)


async def expand_task(
    task: Task,
    num_subtasks: int = 3,
    llm_config: Optional[LLMConfig] = None,
    use_ai: bool = True,
    provider: Optional[LLMProvider] = None,
) -> ExpansionResult:
    """
    Propose subtasks for ``task``.

    With AI the model also returns an analysis and optional improvements
    to the parent task. Any provider or parse failure falls back to the
    simulated outline.
    """
    warnings: List[str] = []

    if use_ai:
        reason = None if provider is not None else _ai_unavailable_reason(llm_config)
        if reason:
            logger.info(reason)
            warnings.append(reason)
        else:
            config = llm_config or LLMConfig(enabled=True)
            try:
                active = provider or create_provider(config)
                prompt = build_analysis_prompt(task, num_subtasks)
                text = await _ask(active, TASK_ANALYSIS_V1.system_prompt, prompt, config)
                parsed = parse_analysis_response(text)
                return ExpansionResult(
                    subtasks=parsed["subtasks"],
                    analysis=parsed["analysis"],
                    improvements=parsed["improvements"],
                    source=SOURCE_AI,
                    warnings=warnings,
                )
            except LLMError as e:
                logger.warning(f"AI expansion failed ({type(e).__name__}: {e}); using outline")
                warnings.append(f"AI expansion failed: {e}; using simulated subtasks")

    return ExpansionResult(
        subtasks=simulate_subtasks(task, num_subtasks),
        source=SOURCE_SIMULATION,
        warnings=warnings,
    )

"""Tests for prompt templates."""

import pytest

from taskmanager.core.models import Subtask, Task
from taskmanager.core.prompts import (
    TASK_ANALYSIS_V1,
    TASK_GENERATION_V1,
    PromptTemplate,
    build_analysis_prompt,
    build_generation_prompt,
)


class TestPromptTemplate:
    """Tests for the PromptTemplate dataclass."""

    def test_get_variables_ignores_escaped_braces(self):
        """Doubled braces are literal JSON, not variables."""
        assert TASK_GENERATION_V1.get_variables() == {
            "task_count",
            "project_kind",
            "description",
            "project_guidance",
        }

    def test_render_missing_required(self):
        """Missing required keys raise ValueError."""
        with pytest.raises(ValueError, match="Missing required context"):
            TASK_ANALYSIS_V1.render({"title": "x"})

    def test_render_missing_optional(self):
        """Keys used by the template but not declared required still fail cleanly."""
        template = PromptTemplate(
            id="T", version="1", system_prompt="", user_template="{a} {b}", required_context=["a"]
        )
        with pytest.raises(ValueError, match="Missing context key"):
            template.render({"a": 1})

    def test_empty_id_rejected(self):
        """Templates need an id."""
        with pytest.raises(ValueError):
            PromptTemplate(id="", version="1", system_prompt="", user_template="x")


class TestBuilders:
    """Tests for the prompt builder functions."""

    def test_generation_new_project(self):
        """New projects are asked for setup tasks."""
        prompt = build_generation_prompt("  A shop  ", "new", 5)
        assert prompt.startswith("Generate 5 tasks for a new project")
        assert "A shop" in prompt
        assert "setup and initial configuration" in prompt
        assert '"testStrategy"' in prompt

    def test_generation_existing_project(self):
        """Existing projects are asked for improvement tasks."""
        prompt = build_generation_prompt("A shop", "existing", 2)
        assert "an existing project" in prompt
        assert "development, improvement or fix" in prompt

    def test_analysis_prompt(self):
        """Task fields and existing subtasks appear in the analysis prompt."""
        task = Task(
            id=4,
            title="Checkout",
            category="backend",
            subtasks=[Subtask(id=1, title="Cart", description="")],
        )
        prompt = build_analysis_prompt(task, 3)
        assert "- Title: Checkout" in prompt
        assert "- Description: Not provided" in prompt
        assert "exactly 3 subtasks" in prompt
        assert "- Cart: No description" in prompt
        assert '"taskImprovements"' in prompt

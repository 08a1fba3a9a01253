"""CLI configuration and project directory resolution.

Builds the effective ManagerConfig for a command from the --project-dir
option, environment variables and the project's config.toml.
"""

from pathlib import Path
from typing import Optional

from taskmanager.config import ManagerConfig, set_config
from taskmanager.core.llm_config import LLMConfig, load_llm_config
from taskmanager.core.storage import is_initialized


class CLIContext:
    """CLI execution context with resolved configuration.

    Holds the effective configuration for a CLI command, including
    any overrides from command-line options.
    """

    def __init__(
        self,
        project_dir: Optional[str] = None,
        config: Optional[ManagerConfig] = None,
    ):
        """Initialize CLI context.

        Args:
            project_dir: Explicit project directory from --project-dir.
            config: Optional config (built from the environment if not provided).
        """
        if config is None:
            config = ManagerConfig.from_env(
                project_dir=Path(project_dir) if project_dir else None
            )
            set_config(config)
        self._config = config
        self._llm_config: Optional[LLMConfig] = None

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def project_dir(self) -> Path:
        return self._config.project_dir

    @property
    def initialized(self) -> bool:
        return is_initialized(self.project_dir)

    def require_initialized(self) -> Path:
        """Return the project directory, or emit NOT_INITIALIZED and exit."""
        if not self.initialized:
            from taskmanager.cli.output import emit_error

            emit_error(
                f"TaskManager is not initialized in {self.project_dir}",
                code="NOT_INITIALIZED",
                error_type="validation",
                remediation="Run: taskmanager init",
                details={"project_dir": str(self.project_dir)},
            )
        return self.project_dir

    @property
    def llm_config(self) -> LLMConfig:
        """AI settings from config.toml [ai], .taskmanager/.env and the environment."""
        if self._llm_config is None:
            self._llm_config = load_llm_config(
                self._config.taskmanager_dir, ai_section=self._config.ai
            )
        return self._llm_config


def create_context(project_dir: Optional[str] = None) -> CLIContext:
    """Create a CLI context and configure logging for the command."""
    context = CLIContext(project_dir=project_dir)
    context.config.setup_logging()
    return context

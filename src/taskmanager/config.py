"""
Project configuration for TaskManager.

Supports configuration via:
1. Environment variables (highest priority)
2. TOML config file (.taskmanager/config.toml, written by ``taskmanager init``)
3. Default values (lowest priority)

Environment variables:
- TASKMANAGER_PROJECT_DIR: Project root containing the .taskmanager directory
- TASKMANAGER_CONFIG_FILE: Explicit path to a TOML config file
- TASKMANAGER_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
- TASKMANAGER_DEFAULT_PRIORITY: Priority for tasks created without one
- TASKMANAGER_DEFAULT_SUBTASKS: Subtask count used by ``expand``

AI provider settings live in the [ai] section and are parsed by
taskmanager.core.llm_config.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback


logger = logging.getLogger(__name__)

TASKMANAGER_DIRNAME = ".taskmanager"
CONFIG_FILENAME = "config.toml"

DEFAULT_STATUS_OPTIONS = ["pending", "in-progress", "done", "cancelled", "deferred"]
DEFAULT_PRIORITY_OPTIONS = ["high", "medium", "low"]


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


@dataclass
class TaskSettings:
    """Defaults applied when creating and expanding tasks."""

    default_priority: str = "medium"
    default_subtasks: int = 3
    status_options: List[str] = field(default_factory=lambda: list(DEFAULT_STATUS_OPTIONS))
    priority_options: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITY_OPTIONS))

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "TaskSettings":
        """Create settings from the [tasks] TOML section."""
        settings = cls()
        if "default_priority" in data:
            settings.default_priority = str(data["default_priority"]).lower()
        if "default_subtasks" in data:
            settings.default_subtasks = int(data["default_subtasks"])
        if "status_options" in data:
            settings.status_options = [str(s) for s in data["status_options"]]
        if "priority_options" in data:
            settings.priority_options = [str(p) for p in data["priority_options"]]
        return settings


@dataclass
class DisplaySettings:
    """Output shaping preferences honoured by list/show commands."""

    compact_mode: bool = False
    show_dependencies: bool = True
    show_subtasks: bool = True

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "DisplaySettings":
        return cls(
            compact_mode=_parse_bool(data.get("compact_mode", False)),
            show_dependencies=_parse_bool(data.get("show_dependencies", True)),
            show_subtasks=_parse_bool(data.get("show_subtasks", True)),
        )


@dataclass
class ManagerConfig:
    """Effective configuration for one project directory."""

    project_dir: Path = field(default_factory=Path.cwd)
    project_type: str = "new"

    # Logging configuration
    log_level: str = "WARNING"
    structured_logging: bool = False

    tasks: TaskSettings = field(default_factory=TaskSettings)
    display: DisplaySettings = field(default_factory=DisplaySettings)

    # Raw [ai] section, interpreted by core.llm_config
    ai: Dict[str, Any] = field(default_factory=dict)

    @property
    def taskmanager_dir(self) -> Path:
        return self.project_dir / TASKMANAGER_DIRNAME

    @classmethod
    def from_env(
        cls,
        project_dir: Optional[Path] = None,
        config_file: Optional[str] = None,
    ) -> "ManagerConfig":
        """
        Create configuration from environment variables and the project TOML.

        Priority (highest to lowest):
        1. Environment variables
        2. TOML config file
        3. Default values
        """
        env_project = os.environ.get("TASKMANAGER_PROJECT_DIR")
        resolved = project_dir or (Path(env_project) if env_project else Path.cwd())
        config = cls(project_dir=Path(resolved).resolve())

        toml_path = config_file or os.environ.get("TASKMANAGER_CONFIG_FILE")
        if toml_path:
            config._load_toml(Path(toml_path))
        else:
            default_path = config.taskmanager_dir / CONFIG_FILENAME
            if default_path.exists():
                config._load_toml(default_path)

        config._load_env()
        return config

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
            return

        if "project" in data:
            project = data["project"]
            if "type" in project:
                self.project_type = str(project["type"])

        if "logging" in data:
            log = data["logging"]
            if "level" in log:
                self.log_level = str(log["level"]).upper()
            if "structured" in log:
                self.structured_logging = _parse_bool(log["structured"])

        if "tasks" in data:
            self.tasks = TaskSettings.from_toml_dict(data["tasks"])

        if "display" in data:
            self.display = DisplaySettings.from_toml_dict(data["display"])

        if "ai" in data:
            self.ai = dict(data["ai"])

    def _load_env(self) -> None:
        """Load configuration from environment variables."""
        if level := os.environ.get("TASKMANAGER_LOG_LEVEL"):
            self.log_level = level.upper()

        if priority := os.environ.get("TASKMANAGER_DEFAULT_PRIORITY"):
            self.tasks.default_priority = priority.lower()

        if subtasks := os.environ.get("TASKMANAGER_DEFAULT_SUBTASKS"):
            try:
                self.tasks.default_subtasks = int(subtasks)
            except ValueError:
                logger.warning(
                    f"Invalid TASKMANAGER_DEFAULT_SUBTASKS: {subtasks}, using default"
                )

    def setup_logging(self) -> None:
        """Configure the ``taskmanager`` logger on stderr."""
        level = getattr(logging, self.log_level, logging.WARNING)

        if self.structured_logging:
            formatter = logging.Formatter(
                '{"timestamp":"%(asctime)s","level":"%(levelname)s",'
                '"logger":"%(name)s","message":"%(message)s"}'
            )
        else:
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )

        root_logger = logging.getLogger("taskmanager")
        root_logger.setLevel(level)
        if not any(getattr(h, "_taskmanager", False) for h in root_logger.handlers):
            handler = logging.StreamHandler()
            handler._taskmanager = True  # type: ignore[attr-defined]
            root_logger.addHandler(handler)
        for handler in root_logger.handlers:
            if getattr(handler, "_taskmanager", False):
                handler.setFormatter(formatter)


DEFAULT_CONFIG_TEMPLATE = """\
# TaskManager project configuration
[project]
type = "{project_type}"

[tasks]
default_priority = "medium"
default_subtasks = 3
status_options = ["pending", "in-progress", "done", "cancelled", "deferred"]
priority_options = ["high", "medium", "low"]

[display]
compact_mode = false
show_dependencies = true
show_subtasks = true

[logging]
level = "WARNING"
structured = false

[ai]
# Provider keys belong in .taskmanager/.env (see .env.example)
enabled = false
provider = "openai"
"""


def render_default_config(project_type: str) -> str:
    """Text of the config.toml written by ``taskmanager init``."""
    return DEFAULT_CONFIG_TEMPLATE.format(project_type=project_type)


# Global configuration instance
_config: Optional[ManagerConfig] = None


def get_config() -> ManagerConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ManagerConfig.from_env()
    return _config


def set_config(config: Optional[ManagerConfig]) -> None:
    """Set (or with None, reset) the global configuration instance."""
    global _config
    _config = config

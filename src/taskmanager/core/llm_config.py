"""
AI provider configuration for TaskManager.

Parses the [ai] section of .taskmanager/config.toml, the project's
.taskmanager/.env file and the process environment.

TOML Configuration Example:
    [ai]
    enabled = true
    provider = "anthropic"        # "openai", "anthropic", "huggingface" or "perplexity"
    model = "claude-sonnet-4-5"   # Optional: provider-specific default
    timeout = 60                  # Optional: request timeout in seconds

Environment Variables (override TOML; .env values apply below real env vars):
    - AI_ENABLED: "true" to enable AI generation
    - AI_PROVIDER: Provider type
    - AI_MODEL: Model identifier
    - AI_BASE_URL: Custom API base URL
    - OPENAI_API_KEY / ANTHROPIC_API_KEY / HUGGINGFACE_API_KEY / PERPLEXITY_API_KEY
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


class LLMProviderType(str, Enum):
    """Supported LLM provider types."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    HUGGINGFACE = "huggingface"
    PERPLEXITY = "perplexity"


# Default models per provider
DEFAULT_MODELS: Dict[LLMProviderType, str] = {
    LLMProviderType.OPENAI: "gpt-4.1",
    LLMProviderType.ANTHROPIC: "claude-sonnet-4-5",
    LLMProviderType.HUGGINGFACE: "mistralai/Mistral-7B-Instruct-v0.3",
    LLMProviderType.PERPLEXITY: "sonar",
}

# Environment variable names for API keys
API_KEY_ENV_VARS: Dict[LLMProviderType, str] = {
    LLMProviderType.OPENAI: "OPENAI_API_KEY",
    LLMProviderType.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProviderType.HUGGINGFACE: "HUGGINGFACE_API_KEY",
    LLMProviderType.PERPLEXITY: "PERPLEXITY_API_KEY",
}

ENV_FILENAME = ".env"

ENV_EXAMPLE_TEMPLATE = """\
# Copy to .env and fill in the provider you use
AI_ENABLED=false
AI_PROVIDER=openai
AI_MODEL=
OPENAI_API_KEY=
ANTHROPIC_API_KEY=
HUGGINGFACE_API_KEY=
PERPLEXITY_API_KEY=
"""


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


@dataclass
class LLMConfig:
    """Effective AI settings.

    Attributes:
        enabled: Master switch; when False generation is simulated
        provider: The LLM provider type
        model: Model identifier (optional, uses provider default)
        api_key: Explicit API key (optional, falls back to ``env``)
        timeout: Request timeout in seconds
        max_tokens: Max tokens for responses
        temperature: Sampling temperature
        base_url: Custom API base URL (proxies, self-hosted endpoints)
        env: Merged .env + process environment used for key lookup
    """

    enabled: bool = False
    provider: LLMProviderType = LLMProviderType.OPENAI
    model: Optional[str] = None
    api_key: Optional[str] = None
    timeout: int = 60
    max_tokens: int = 4096
    temperature: float = 0.7
    base_url: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict, repr=False)

    def get_api_key(self, provider: Optional[LLMProviderType] = None) -> Optional[str]:
        """Get the API key for ``provider`` (defaults to the configured one).

        Priority:
        1. Explicit api_key set in config (configured provider only)
        2. Provider-specific variable from the merged environment
        """
        target = provider or self.provider
        if self.api_key and target == self.provider:
            return self.api_key

        env_var = API_KEY_ENV_VARS.get(target, "")
        value = self.env.get(env_var) if env_var else None
        return value or None

    def has_api_key(self, provider: Optional[LLMProviderType] = None) -> bool:
        return bool(self.get_api_key(provider))

    def get_model(self) -> str:
        """Get model, falling back to provider default if not set."""
        if self.model:
            return self.model
        return DEFAULT_MODELS[self.provider]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LLMConfig":
        """Create LLMConfig from the [ai] TOML section.

        Raises:
            ValueError: If provider type is invalid
        """
        config = cls()

        if "enabled" in data:
            config.enabled = _parse_bool(data["enabled"])

        if data.get("provider"):
            provider_str = str(data["provider"]).lower()
            try:
                config.provider = LLMProviderType(provider_str)
            except ValueError:
                valid = [p.value for p in LLMProviderType]
                raise ValueError(
                    f"Invalid provider '{provider_str}'. Must be one of: {valid}"
                )

        if data.get("model"):
            config.model = str(data["model"])
        if data.get("api_key"):
            config.api_key = str(data["api_key"])
        if "timeout" in data:
            config.timeout = int(data["timeout"])
        if "max_tokens" in data:
            config.max_tokens = int(data["max_tokens"])
        if "temperature" in data:
            config.temperature = float(data["temperature"])
        if data.get("base_url"):
            config.base_url = str(data["base_url"])

        return config

    def apply_env(self, env: Mapping[str, Optional[str]]) -> None:
        """Override settings from environment-style variables."""
        self.env = {k: v for k, v in env.items() if v is not None}

        if enabled := self.env.get("AI_ENABLED"):
            self.enabled = _parse_bool(enabled)

        if provider := self.env.get("AI_PROVIDER"):
            try:
                self.provider = LLMProviderType(provider.strip().lower())
            except ValueError:
                logger.warning(f"Invalid AI_PROVIDER: {provider}, using {self.provider.value}")

        if model := self.env.get("AI_MODEL"):
            self.model = model

        if base_url := self.env.get("AI_BASE_URL"):
            self.base_url = base_url

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, Optional[str]]] = None) -> "LLMConfig":
        """Create LLMConfig from environment variables only."""
        config = cls()
        config.apply_env(os.environ if env is None else env)
        return config


def load_llm_config(
    taskmanager_dir: Optional[Path] = None,
    ai_section: Optional[Mapping[str, Any]] = None,
) -> LLMConfig:
    """Load AI settings with .env and environment overrides.

    Args:
        taskmanager_dir: The project's .taskmanager directory; its .env file
            is read without modifying the process environment
        ai_section: Parsed [ai] TOML section, if any

    Returns:
        LLMConfig instance
    """
    try:
        config = LLMConfig.from_dict(ai_section or {})
    except ValueError as e:
        logger.warning(f"{e}; falling back to defaults")
        config = LLMConfig()

    merged: Dict[str, Optional[str]] = {}
    if taskmanager_dir is not None:
        env_path = taskmanager_dir / ENV_FILENAME
        if env_path.exists():
            merged.update(dotenv_values(env_path))
        else:
            logger.debug(f"No .env file at {env_path}")
    merged.update(os.environ)

    config.apply_env(merged)
    return config

"""Tests for AI provider configuration."""

import os

import pytest

from taskmanager.core.llm_config import (
    API_KEY_ENV_VARS,
    DEFAULT_MODELS,
    LLMConfig,
    LLMProviderType,
    load_llm_config,
)


class TestLLMProviderType:
    """Tests for LLMProviderType enum."""

    def test_every_provider_has_defaults(self):
        """Each provider has a default model and key variable."""
        for provider in LLMProviderType:
            assert provider in DEFAULT_MODELS
            assert provider in API_KEY_ENV_VARS


class TestLLMConfig:
    """Tests for LLMConfig."""

    def test_defaults(self):
        """AI is off by default."""
        config = LLMConfig()
        assert config.enabled is False
        assert config.provider == LLMProviderType.OPENAI
        assert config.get_model() == DEFAULT_MODELS[LLMProviderType.OPENAI]
        assert config.has_api_key() is False

    def test_from_dict(self):
        """The [ai] TOML section is parsed."""
        config = LLMConfig.from_dict(
            {
                "enabled": "true",
                "provider": "Anthropic",
                "model": "claude-test",
                "timeout": 30,
                "temperature": 0.1,
            }
        )
        assert config.enabled is True
        assert config.provider == LLMProviderType.ANTHROPIC
        assert config.get_model() == "claude-test"
        assert config.timeout == 30
        assert config.temperature == 0.1

    def test_from_dict_invalid_provider(self):
        """Unknown providers are rejected."""
        with pytest.raises(ValueError, match="Invalid provider"):
            LLMConfig.from_dict({"provider": "watson"})

    def test_explicit_key_wins(self):
        """An explicit api_key beats the environment for its provider only."""
        config = LLMConfig(api_key="explicit", env={"OPENAI_API_KEY": "env", "PERPLEXITY_API_KEY": "p"})
        assert config.get_api_key() == "explicit"
        assert config.get_api_key(LLMProviderType.PERPLEXITY) == "p"

    def test_apply_env(self):
        """Environment variables override settings."""
        config = LLMConfig()
        config.apply_env(
            {
                "AI_ENABLED": "1",
                "AI_PROVIDER": "huggingface",
                "AI_MODEL": "org/model",
                "AI_BASE_URL": "http://localhost:8080",
                "HUGGINGFACE_API_KEY": "hf",
                "UNSET": None,
            }
        )
        assert config.enabled is True
        assert config.provider == LLMProviderType.HUGGINGFACE
        assert config.model == "org/model"
        assert config.base_url == "http://localhost:8080"
        assert config.get_api_key() == "hf"
        assert "UNSET" not in config.env

    def test_apply_env_invalid_provider_kept(self):
        """An invalid AI_PROVIDER leaves the configured provider in place."""
        config = LLMConfig(provider=LLMProviderType.ANTHROPIC)
        config.apply_env({"AI_PROVIDER": "nope"})
        assert config.provider == LLMProviderType.ANTHROPIC

    def test_from_env(self):
        """from_env reads only the given mapping."""
        config = LLMConfig.from_env({"AI_ENABLED": "false", "OPENAI_API_KEY": "sk"})
        assert config.enabled is False
        assert config.has_api_key()


class TestLoadLLMConfig:
    """Tests for load_llm_config."""

    def test_reads_dotenv(self, tmp_path):
        """Values from .taskmanager/.env apply."""
        (tmp_path / ".env").write_text("AI_ENABLED=true\nAI_PROVIDER=perplexity\nPERPLEXITY_API_KEY=pk\n")
        config = load_llm_config(tmp_path)
        assert config.enabled is True
        assert config.provider == LLMProviderType.PERPLEXITY
        assert config.get_api_key() == "pk"

    def test_process_env_beats_dotenv(self, tmp_path, monkeypatch):
        """Real environment variables override .env values."""
        (tmp_path / ".env").write_text("AI_PROVIDER=perplexity\n")
        monkeypatch.setenv("AI_PROVIDER", "anthropic")
        assert load_llm_config(tmp_path).provider == LLMProviderType.ANTHROPIC

    def test_env_beats_toml_section(self, tmp_path, monkeypatch):
        """Environment overrides the [ai] section."""
        monkeypatch.setenv("AI_MODEL", "env-model")
        config = load_llm_config(tmp_path, ai_section={"enabled": True, "model": "toml-model"})
        assert config.enabled is True
        assert config.model == "env-model"

    def test_dotenv_does_not_touch_process_env(self, tmp_path):
        """Reading .env leaves os.environ unchanged."""
        (tmp_path / ".env").write_text("OPENAI_API_KEY=secret\n")
        load_llm_config(tmp_path)
        assert "OPENAI_API_KEY" not in os.environ

    def test_invalid_toml_provider_falls_back(self, tmp_path):
        """A bad provider in TOML falls back to defaults."""
        config = load_llm_config(tmp_path, ai_section={"provider": "watson", "enabled": True})
        assert config.provider == LLMProviderType.OPENAI
        assert config.enabled is False

    def test_missing_directory(self):
        """No directory means environment only."""
        assert load_llm_config(None).enabled is False

"""
Tests for configuration snapshots, environment loading and providers.
"""

import pytest

from ai_auditor.config import AuditorConfig, load_credentials_from_env
from ai_auditor.errors import ConfigurationError
from ai_auditor.providers import DEFAULT_RATE_LIMITS, Provider, SchedulingClass, resolve_provider, select_default_model


class TestAuditorConfig:
    """Tests for AuditorConfig."""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("AI_AUDITOR_TOKEN_BUDGET", "2048")
        monkeypatch.setenv("AI_AUDITOR_MAX_RETRIES", "5")
        monkeypatch.setenv("AI_AUDITOR_BATCH_SIZE", "12")

        config = AuditorConfig()

        assert config.token_budget == 2048
        assert config.max_retries == 5
        assert config.batch_size == 12

    def test_defaults_are_valid(self, fast_config):
        assert fast_config.validate() == []
        assert fast_config.rate_limit_for(Provider.CLAUDE) == DEFAULT_RATE_LIMITS[Provider.CLAUDE]

    def test_with_helpers_return_new_snapshots(self, fast_config):
        smaller = fast_config.with_token_budget(100)
        limited = fast_config.with_rate_limits(Provider.GEMINI, 10, 30.0)

        assert smaller.token_budget == 100
        assert fast_config.token_budget == 8192
        assert limited.rate_limit_for(Provider.GEMINI) == (10, 30.0)
        assert fast_config.rate_limit_for(Provider.GEMINI) == DEFAULT_RATE_LIMITS[Provider.GEMINI]

    def test_validate_reports_every_problem(self, fast_config):
        broken = fast_config.with_token_budget(0).with_batch_size(31)

        errors = broken.validate()

        assert len(errors) == 2
        assert any("token_budget" in e for e in errors)
        assert any("batch_size" in e for e in errors)


class TestCredentialsFromEnv:
    """Tests for load_credentials_from_env()."""

    def test_reads_all_providers(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "")
        monkeypatch.setenv("GEMINI_API_KEYS", "gem-1, gem-2,,")
        monkeypatch.delenv("LOCAL_LLM_API_KEY", raising=False)

        credentials = load_credentials_from_env()

        assert credentials[Provider.OPENAI] == ["sk-openai"]
        assert credentials[Provider.GEMINI] == ["gem-1", "gem-2"]
        assert Provider.CLAUDE not in credentials
        assert Provider.LOCAL not in credentials

    def test_single_gemini_key_fallback(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
        monkeypatch.setenv("GEMINI_API_KEY", "gem-only")

        assert load_credentials_from_env()[Provider.GEMINI] == ["gem-only"]


class TestProviders:
    """Tests for provider resolution."""

    def test_resolve_provider(self):
        assert resolve_provider("gpt-4o") is Provider.OPENAI
        assert resolve_provider("claude-3-opus-latest") is Provider.CLAUDE
        assert resolve_provider("gemini-1.5-flash") is Provider.GEMINI
        assert resolve_provider("local-llm") is Provider.LOCAL
        with pytest.raises(ConfigurationError):
            resolve_provider("Default")

    def test_scheduling_and_rotation(self):
        assert Provider.LOCAL.scheduling is SchedulingClass.SERIAL
        assert Provider.OPENAI.scheduling is SchedulingClass.PARALLEL
        assert Provider.GEMINI.supports_rotation
        assert not Provider.CLAUDE.supports_rotation

    def test_select_default_model(self):
        assert select_default_model({Provider.CLAUDE: ["sk-ant"], Provider.OPENAI: ["sk"]}) == "claude-3-5-haiku-latest"
        assert select_default_model({Provider.GEMINI: ["gem"]}) == "gemini-1.5-flash"
        with pytest.raises(ConfigurationError):
            select_default_model({Provider.OPENAI: ["  "]})

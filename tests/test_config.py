"""Tests for settings loading and backend configuration."""

import pytest
from pydantic import ValidationError

from app.config import Settings
from layerforge.contracts import BackendFamily


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the host environment out of these tests."""
    for name in Settings.model_fields:
        monkeypatch.delenv(name, raising=False)


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults():
    s = _settings()
    assert s.LOG_LEVEL == "INFO"
    assert s.API_MAX_RETRIES == 2
    assert s.API_RETRY_DELAY == 0.5
    assert s.API_ROUTING_STRATEGY == "failover"
    assert s.TOKEN_WARNING_THRESHOLD == 0.8
    assert s.OPENAI_MODEL == "gpt-4o-mini"
    assert s.GEMINI_MODEL == "gemini-2.5-flash"


def test_env_vars_are_read(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("API_MAX_RETRIES", "5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = _settings()
    assert s.OPENAI_API_KEY == "sk-env"
    assert s.API_MAX_RETRIES == 5
    assert s.LOG_LEVEL == "DEBUG"


def test_strategy_normalised():
    assert _settings(API_ROUTING_STRATEGY="Round-Robin").API_ROUTING_STRATEGY == "round_robin"


def test_unknown_strategy_rejected():
    with pytest.raises(ValidationError, match="API_ROUTING_STRATEGY"):
        _settings(API_ROUTING_STRATEGY="fastest")


def test_negative_retries_rejected():
    with pytest.raises(ValidationError):
        _settings(API_MAX_RETRIES=-1)


class TestBackendConfigs:
    def test_priority_order(self):
        s = _settings(OPENAI_API_KEY="sk", GEMINI_API_KEY="g", API_MAX_RETRIES=3)
        configs = s.backend_configs()
        assert [c.name for c in configs] == ["openai", "gemini"]
        assert configs[0].family is BackendFamily.CHAT_COMPLETIONS
        assert configs[1].family is BackendFamily.GENERATE_CONTENT
        assert all(c.max_retries == 3 for c in configs)

    def test_backend_without_key_skipped(self):
        configs = _settings(GEMINI_API_KEY="g").backend_configs()
        assert [c.name for c in configs] == ["gemini"]

    def test_base_url_trailing_slash_stripped(self):
        s = _settings(OPENAI_API_KEY="sk", OPENAI_BASE_URL="https://proxy.test/v1/")
        assert s.backend_configs()[0].base_url == "https://proxy.test/v1"

    def test_credential_not_in_repr(self):
        config = _settings(OPENAI_API_KEY="sk-secret").backend_configs()[0]
        assert "sk-secret" not in repr(config)


class TestValidateBackends:
    def test_no_keys_is_an_error(self):
        result = _settings().validate_backends()
        assert result["valid"] is False
        assert result["errors"]

    def test_single_key_warns(self):
        result = _settings(OPENAI_API_KEY="sk").validate_backends()
        assert result["valid"] is True
        assert "GEMINI_API_KEY" in result["warnings"][0]

    def test_both_keys_clean(self):
        result = _settings(OPENAI_API_KEY="sk", GEMINI_API_KEY="g").validate_backends()
        assert result == {"valid": True, "errors": [], "warnings": []}

    def test_bad_base_url(self):
        result = _settings(OPENAI_API_KEY="sk", OPENAI_BASE_URL="ftp://x").validate_backends()
        assert result["valid"] is False
        assert "OPENAI_BASE_URL" in result["errors"][0]

"""
Unit tests for environment-driven settings.
"""
import pytest

from sales_assistant.core.config import Settings, get_settings, reset_settings, settings_from_env


def test_defaults(monkeypatch):
    for name in ("LLM_API_KEY", "LLM_TIMEOUT_SECONDS", "ENTITY_REGISTRY_PATH", "LOW_CONFIDENCE_THRESHOLD"):
        monkeypatch.delenv(name, raising=False)

    settings = settings_from_env()

    assert settings.llm_enabled is False
    assert settings.llm_timeout_seconds == 5.0
    assert settings.interpretation_confidence_threshold == 0.6
    assert settings.low_confidence_threshold == 0.8
    assert settings.entity_registry_path is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("LLM_API_KEY", "sk-test")
    monkeypatch.setenv("LLM_DECISION_MODEL", "small-router")
    monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("ENTITY_REGISTRY_PATH", "/data/entities.json")
    monkeypatch.setenv("LOG_JSON", "false")

    settings = settings_from_env()

    assert settings.llm_enabled is True
    assert settings.llm_decision_model == "small-router"
    assert settings.llm_timeout_seconds == 2.5
    assert settings.entity_registry_path == "/data/entities.json"
    assert settings.log_json is False


def test_invalid_number_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "soon")
    assert settings_from_env().llm_timeout_seconds == 5.0


def test_out_of_range_threshold_is_rejected():
    with pytest.raises(ValueError):
        Settings(low_confidence_threshold=1.5)


def test_settings_are_cached_until_reset(monkeypatch):
    monkeypatch.setenv("LLM_DECISION_MODEL", "first")
    assert get_settings().llm_decision_model == "first"

    monkeypatch.setenv("LLM_DECISION_MODEL", "second")
    assert get_settings().llm_decision_model == "first"

    reset_settings()
    assert get_settings().llm_decision_model == "second"

"""
Environment-driven configuration.

Values are read from the process environment, optionally seeded from a ``.env``
file at the repository root. Settings are resolved once and cached; tests call
``reset_settings()`` after patching the environment.
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .logging import get_logger

logger = get_logger(__name__)

# backend/sales_assistant/core/config.py -> repository root
env_path = Path(__file__).parent.parent.parent.parent / ".env"


def load_environment() -> bool:
    """Load the repository ``.env`` file if present. Existing variables win."""
    if env_path.exists():
        load_dotenv(env_path, override=False)
        logger.info("env_loaded", env_path=str(env_path))
        return True
    logger.debug("env_file_not_found", expected_path=str(env_path))
    return False


class Settings(BaseModel):
    """Resolved service configuration."""

    log_level: str = "INFO"
    log_json: bool = True

    llm_api_base: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_decision_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = Field(5.0, gt=0.0)
    llm_cost_per_1k_tokens: float = Field(0.0, ge=0.0)

    interpretation_confidence_threshold: float = Field(0.6, ge=0.0, le=1.0)
    low_confidence_threshold: float = Field(0.8, ge=0.0, le=1.0)

    entity_registry_path: Optional[str] = None
    entity_registry_ttl_seconds: float = Field(300.0, gt=0.0)

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_api_key)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config_invalid_float", name=name, value=raw, default=default)
        return default


def settings_from_env() -> Settings:
    """Build Settings from the current process environment."""
    return Settings(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "true").lower() == "true",
        llm_api_base=os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
        llm_api_key=os.getenv("LLM_API_KEY") or None,
        llm_decision_model=os.getenv("LLM_DECISION_MODEL", "gpt-4o-mini"),
        llm_timeout_seconds=_float_env("LLM_TIMEOUT_SECONDS", 5.0),
        llm_cost_per_1k_tokens=_float_env("LLM_COST_PER_1K_TOKENS", 0.0),
        interpretation_confidence_threshold=_float_env(
            "INTERPRETATION_CONFIDENCE_THRESHOLD", 0.6
        ),
        low_confidence_threshold=_float_env("LOW_CONFIDENCE_THRESHOLD", 0.8),
        entity_registry_path=os.getenv("ENTITY_REGISTRY_PATH") or None,
        entity_registry_ttl_seconds=_float_env("ENTITY_REGISTRY_TTL_SECONDS", 300.0),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Global settings accessor."""
    global _settings
    if _settings is None:
        _settings = settings_from_env()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None

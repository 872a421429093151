"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    # Per-model keys for the built-in defaults; each falls back to OPENROUTER_API_KEY.
    gpt52_api_key: str = Field(default="", alias="GPT52_API_KEY")
    minimax_api_key: str = Field(default="", alias="MINIMAX_API_KEY")
    kimi_api_key: str = Field(default="", alias="KIMI_API_KEY")
    claude_api_key: str = Field(default="", alias="CLAUDE_API_KEY")

    database_path: Path = Field(default=Path("persona.db"), alias="DATABASE_PATH")
    request_timeout_seconds: float = Field(default=25.0, alias="REQUEST_TIMEOUT_SECONDS")
    geo_lookup_timeout_seconds: float = Field(default=1.2, alias="GEO_LOOKUP_TIMEOUT_SECONDS")
    geo_lookup_base_url: str = Field(default="https://ipapi.co", alias="GEO_LOOKUP_BASE_URL")
    automation_confirm_timeout_seconds: int = Field(default=10, alias="AUTOMATION_CONFIRM_TIMEOUT_SECONDS")
    app_referer: str = Field(default="https://aipersona.web", alias="APP_REFERER")
    app_title: str = Field(default="AIPersona", alias="APP_TITLE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8000, alias="PORT")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def model_api_keys(settings: Settings) -> dict[str, str]:
    """Return the environment key name -> value map used by built-in model configs.

    Blank per-model keys are returned as-is; the candidate resolver applies
    the shared OpenRouter key as the fallback.
    """
    return {
        "OPENROUTER_API_KEY": settings.openrouter_api_key.strip(),
        "GPT52_API_KEY": settings.gpt52_api_key.strip(),
        "MINIMAX_API_KEY": settings.minimax_api_key.strip(),
        "KIMI_API_KEY": settings.kimi_api_key.strip(),
        "CLAUDE_API_KEY": settings.claude_api_key.strip(),
    }

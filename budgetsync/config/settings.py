"""
Configuration Management for Budget Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunables live here, including the retry policy.
The retry bound and backoff base are part of the sync contract, so they are
validated at startup rather than scattered as constants.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Retry policy for the group and budget fetch paths."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGETSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first failed fetch attempt"
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Attempt n waits n x this many seconds before retrying"
    )


class GeminiSettings(BaseSettings):
    """Gemini configuration for the expense extraction service."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key (extraction is disabled without it)"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Model temperature"
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for the structured log"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Sub-settings are built on access so a missing Gemini key does not
    stop the sync core from starting.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate every settings section.

    Returns a dict of {section_name: is_valid} plus an "<name>_error"
    entry for each section that failed to load.
    """
    results = {}
    settings = get_settings()

    for name in ("sync", "gemini", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

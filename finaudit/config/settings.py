"""
Configuration Management for the audit pipeline

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every upstream the pipeline can talk to (the managed relay and the three
bring-your-own-key providers) gets its own settings group, so it is easy to
see what external dependencies exist. Pipeline policy (history window sizes,
minimum entity length, streaming preference) lives in AppSettings and is
never hard-coded in the modules that use it.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendSettings(BaseSettings):
    """Managed relay (first-party backend) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BACKEND_",
        extra="ignore"
    )

    url: str = Field(
        default="https://api.catalystcash.app",
        description="Base URL of the managed relay"
    )
    audit_path: str = Field(
        default="/audit",
        description="Path of the audit endpoint on the relay"
    )
    daily_audit_limit: int = Field(
        default=10,
        ge=1,
        description="Audits per device per day enforced by the relay (used in messages)"
    )
    default_model: str = Field(
        default="gemini-2.5-flash",
        description="Model used when none is selected"
    )

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def audit_url(self) -> str:
        return f"{self.url}{self.audit_path}"


class OpenAISettings(BaseSettings):
    """OpenAI (BYOK) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OPENAI_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key (only needed for direct BYOK calls)"
    )
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI API base URL"
    )
    default_model: str = Field(
        default="o1",
        description="Model used when none is selected"
    )
    max_tokens: int = Field(
        default=12000,
        ge=100,
        description="Token budget (max_tokens or max_completion_tokens)"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for standard chat models"
    )
    top_p: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
    )


class GeminiSettings(BaseSettings):
    """Gemini (BYOK) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key"
    )
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generative Language API base URL"
    )
    default_model: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model to use"
    )
    max_output_tokens: int = Field(
        default=12000,
        ge=100,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Model temperature (lower = more deterministic)"
    )
    top_p: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
    )


class ClaudeSettings(BaseSettings):
    """Anthropic Claude (BYOK) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ANTHROPIC_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Anthropic API key"
    )
    base_url: str = Field(
        default="https://api.anthropic.com/v1",
        description="Anthropic API base URL"
    )
    api_version: str = Field(
        default="2023-06-01",
        description="Value of the anthropic-version header"
    )
    default_model: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Claude model to use"
    )
    max_tokens: int = Field(
        default=12000,
        ge=100,
    )
    temperature: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
    )


class AppSettings(BaseSettings):
    """
    Pipeline policy settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug logging"
    )

    # Conversation window
    history_send_limit: int = Field(
        default=6,
        ge=0,
        description="Most recent turns sent with each request"
    )
    history_store_limit: int = Field(
        default=8,
        ge=0,
        description="Most recent turns kept in the stored window"
    )

    # Scrubbing
    min_entity_name_length: int = Field(
        default=3,
        ge=1,
        description="Names shorter than this are never scrubbed"
    )

    # Transport
    use_streaming: bool = Field(
        default=True,
        description="Prefer streaming calls when the provider supports them"
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
    )
    read_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Maximum wait between two chunks of a response"
    )

    # Persistence
    state_file: str = Field(
        default=".finaudit/state.json",
        description="JSON file backing the key-value store"
    )
    audit_history_limit: int = Field(
        default=52,
        ge=1,
        description="Audit records kept by the in-memory record store"
    )

    @property
    def state_path(self) -> Path:
        return Path(self.state_file).expanduser()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def backend(self) -> BackendSettings:
        return BackendSettings()

    @property
    def openai(self) -> OpenAISettings:
        return OpenAISettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def claude(self) -> ClaudeSettings:
        return ClaudeSettings()

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
    Validate all settings groups load.

    Returns a dict of {setting_name: is_valid}, plus {name}_error entries
    for the groups that failed. Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("backend", "openai", "gemini", "claude", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

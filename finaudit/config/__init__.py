"""Configuration package."""

from finaudit.config.settings import (
    AppSettings,
    BackendSettings,
    ClaudeSettings,
    GeminiSettings,
    OpenAISettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BackendSettings",
    "ClaudeSettings",
    "GeminiSettings",
    "OpenAISettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]

"""Provider adapters and registry."""

from finaudit.providers.backend import ManagedBackendAdapter
from finaudit.providers.base import (
    DailyLimitReachedError,
    ProviderAdapter,
    ProviderError,
    ProviderHTTPError,
    ProviderRateLimitError,
    ProviderRequest,
    QuotaError,
    iter_sse_events,
)
from finaudit.providers.claude import ClaudeAdapter
from finaudit.providers.gemini import GeminiAdapter
from finaudit.providers.openai import OpenAIAdapter
from finaudit.providers.registry import (
    DEFAULT_PROVIDER_ID,
    ModelSpec,
    ProviderRegistry,
    ProviderSpec,
    ResolvedProvider,
    create_default_registry,
)

__all__ = [
    # Adapters
    "ClaudeAdapter",
    "GeminiAdapter",
    "ManagedBackendAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderRequest",
    "iter_sse_events",
    # Errors
    "DailyLimitReachedError",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderRateLimitError",
    "QuotaError",
    # Registry
    "DEFAULT_PROVIDER_ID",
    "ModelSpec",
    "ProviderRegistry",
    "ProviderSpec",
    "ResolvedProvider",
    "create_default_registry",
]

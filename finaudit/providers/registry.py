"""
Provider Registry

Static catalog of logical providers and their models, plus the adapter that
serves each provider. `resolve()` turns a (provider id, model id) selection
into everything the orchestrator needs for one call.

Unknown provider ids fall back to the managed relay so a stale stored
selection never breaks an audit. On the relay, unknown model ids fall back
to the default model; BYOK model ids are passed through unchanged, since
the user may name any model their key has access to.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from finaudit.config import Settings, get_settings
from finaudit.providers.backend import DEFAULT_BACKEND_PROVIDER, ManagedBackendAdapter
from finaudit.providers.base import ProviderAdapter
from finaudit.providers.claude import ClaudeAdapter
from finaudit.providers.gemini import GeminiAdapter
from finaudit.providers.openai import OpenAIAdapter

logger = structlog.get_logger(__name__)

DEFAULT_PROVIDER_ID = "backend"


class ModelSpec(BaseModel):
    """One selectable model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    note: str = ""
    tier: str = "free"
    backend_provider: Optional[str] = Field(
        default=None,
        description="Upstream the relay routes this model to (relay models only)"
    )


class ProviderSpec(BaseModel):
    """One logical provider and its capability flags."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    models: tuple[ModelSpec, ...] = ()
    default_model: str
    supports_streaming: bool = True
    is_backend: bool = False

    @property
    def requires_credential(self) -> bool:
        return not self.is_backend

    def find_model(self, model_id: Optional[str]) -> Optional[ModelSpec]:
        for model in self.models:
            if model.id == model_id:
                return model
        return None


@dataclass
class ResolvedProvider:
    """A provider selection ready to be called."""

    spec: ProviderSpec
    model_id: str
    adapter: ProviderAdapter
    backend_provider: Optional[str] = None

    @property
    def provider_id(self) -> str:
        return self.spec.id

    @property
    def supports_streaming(self) -> bool:
        return self.spec.supports_streaming

    @property
    def is_backend(self) -> bool:
        return self.spec.is_backend


BACKEND_PROVIDER = ProviderSpec(
    id="backend",
    name="Catalyst AI",
    models=(
        ModelSpec(id="gemini-2.5-flash", name="Gemini 2.5 Flash",
                  note="Fast reasoning", backend_provider="gemini"),
        ModelSpec(id="gemini-2.5-pro", name="Gemini 2.5 Pro",
                  note="Advanced deep reasoning", tier="pro", backend_provider="gemini"),
        ModelSpec(id="o3-mini", name="OpenAI o3-mini",
                  note="OpenAI reasoning engine", tier="pro", backend_provider="openai"),
        ModelSpec(id="claude-sonnet-4-20250514", name="Claude Sonnet 4",
                  note="Anthropic reasoning model", tier="pro", backend_provider="claude"),
    ),
    default_model="gemini-2.5-flash",
    is_backend=True,
)

OPENAI_PROVIDER = ProviderSpec(
    id="openai",
    name="OpenAI",
    models=(
        ModelSpec(id="o1", name="o1"),
        ModelSpec(id="o3-mini", name="o3-mini"),
        ModelSpec(id="gpt-4o", name="GPT-4o"),
    ),
    default_model="o1",
)

GEMINI_PROVIDER = ProviderSpec(
    id="gemini",
    name="Google Gemini",
    models=(
        ModelSpec(id="gemini-2.5-flash", name="Gemini 2.5 Flash"),
        ModelSpec(id="gemini-2.5-pro", name="Gemini 2.5 Pro"),
    ),
    default_model="gemini-2.5-flash",
)

CLAUDE_PROVIDER = ProviderSpec(
    id="claude",
    name="Anthropic Claude",
    models=(
        ModelSpec(id="claude-sonnet-4-5-20250929", name="Claude Sonnet 4.5"),
        ModelSpec(id="claude-sonnet-4-20250514", name="Claude Sonnet 4"),
    ),
    default_model="claude-sonnet-4-5-20250929",
)


class ProviderRegistry:
    """Maps provider ids to their spec and adapter."""

    def __init__(self, default_provider_id: str = DEFAULT_PROVIDER_ID):
        self.default_provider_id = default_provider_id
        self._specs: dict[str, ProviderSpec] = {}
        self._adapters: dict[str, ProviderAdapter] = {}

    def register(self, spec: ProviderSpec, adapter: ProviderAdapter) -> None:
        self._specs[spec.id] = spec
        self._adapters[spec.id] = adapter

    @property
    def provider_ids(self) -> list[str]:
        return list(self._specs)

    def get(self, provider_id: Optional[str]) -> ProviderSpec:
        """Spec for provider_id, or the default provider's spec."""
        spec = self._specs.get(provider_id or "")
        if spec is not None:
            return spec
        if self.default_provider_id not in self._specs:
            raise KeyError(f"Default provider '{self.default_provider_id}' is not registered")
        return self._specs[self.default_provider_id]

    def adapter(self, provider_id: str) -> ProviderAdapter:
        return self._adapters[provider_id]

    def backend_provider_for(self, model_id: Optional[str]) -> str:
        """Upstream the relay routes model_id to."""
        for spec in self._specs.values():
            if spec.is_backend:
                model = spec.find_model(model_id)
                if model is not None and model.backend_provider:
                    return model.backend_provider
        return DEFAULT_BACKEND_PROVIDER

    def resolve(self, provider_id: Optional[str], model_id: Optional[str] = None) -> ResolvedProvider:
        spec = self.get(provider_id)
        if provider_id is not None and spec.id != provider_id:
            logger.warning(
                "unknown_provider_fallback",
                requested=provider_id,
                resolved=spec.id,
            )

        resolved_model = model_id or spec.default_model
        if spec.is_backend and spec.models and spec.find_model(resolved_model) is None:
            logger.warning(
                "unknown_model_fallback",
                provider=spec.id,
                requested=resolved_model,
                resolved=spec.default_model,
            )
            resolved_model = spec.default_model

        return ResolvedProvider(
            spec=spec,
            model_id=resolved_model,
            adapter=self._adapters[spec.id],
            backend_provider=self.backend_provider_for(resolved_model) if spec.is_backend else None,
        )


def create_default_registry(
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ProviderRegistry:
    """
    Registry with the managed relay and the three BYOK providers.

    Adapters share `client` when one is given.
    """
    settings = settings or get_settings()
    app = settings.app
    timeout = httpx.Timeout(app.read_timeout_seconds, connect=app.connect_timeout_seconds)

    backend = settings.backend
    openai = settings.openai
    gemini = settings.gemini
    claude = settings.claude

    registry = ProviderRegistry()
    registry.register(
        BACKEND_PROVIDER.model_copy(update={"default_model": backend.default_model}),
        ManagedBackendAdapter(backend, timeout=timeout, client=client),
    )
    registry.register(
        OPENAI_PROVIDER.model_copy(update={"default_model": openai.default_model}),
        OpenAIAdapter(openai, timeout=timeout, client=client),
    )
    registry.register(
        GEMINI_PROVIDER.model_copy(update={"default_model": gemini.default_model}),
        GeminiAdapter(gemini, timeout=timeout, client=client),
    )
    registry.register(
        CLAUDE_PROVIDER.model_copy(update={"default_model": claude.default_model}),
        ClaudeAdapter(claude, timeout=timeout, client=client),
    )
    return registry

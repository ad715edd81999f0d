"""
Managed relay adapter.

The relay holds the provider keys and enforces a per-device daily quota.
It forwards the stream of whichever upstream serves the selected model
unchanged, so a streamed event may be in any of the three dialects.
"""

from typing import Any, Optional

import httpx

from finaudit.config import BackendSettings
from finaudit.providers.base import (
    DailyLimitReachedError,
    ProviderAdapter,
    ProviderError,
    ProviderHTTPError,
    ProviderRequest,
    dig,
    text_or_empty,
)
from finaudit.providers.claude import claude_delta
from finaudit.providers.gemini import gemini_delta
from finaudit.providers.openai import openai_delta

DEFAULT_BACKEND_PROVIDER = "gemini"
UNKNOWN_DEVICE = "unknown"


class ManagedBackendAdapter(ProviderAdapter):

    provider_id = "backend"
    display_name = "Backend"

    def __init__(
        self,
        settings: Optional[BackendSettings] = None,
        timeout: Optional[httpx.Timeout] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self.settings = settings or BackendSettings()

    def endpoint(self, request: ProviderRequest, stream: bool) -> str:
        return self.settings.audit_url

    def build_headers(self, request: ProviderRequest) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Device-ID": request.device_id or UNKNOWN_DEVICE,
        }

    def build_body(self, request: ProviderRequest, stream: bool) -> dict[str, Any]:
        return {
            "snapshot": request.snapshot,
            "systemPrompt": request.system_prompt,
            "history": self.format_history(request.history),
            "model": request.model,
            "stream": stream,
            "provider": request.backend_provider or DEFAULT_BACKEND_PROVIDER,
        }

    def extract_delta(self, event: Any) -> str:
        return claude_delta(event) or openai_delta(event) or gemini_delta(event)

    def extract_text(self, payload: Any) -> str:
        return text_or_empty(dig(payload, "result"))

    def map_error(self, status_code: int, payload: Any) -> ProviderError:
        server_message = text_or_empty(dig(payload, "error")) or None
        if status_code == 429:
            return DailyLimitReachedError(
                self.provider_id,
                f"Daily audit limit reached ({self.settings.daily_audit_limit}/day). "
                "Try again tomorrow!",
                status_code=status_code,
                server_message=server_message,
            )
        return ProviderHTTPError(
            self.provider_id,
            server_message or f"Backend error: HTTP {status_code}",
            status_code=status_code,
            server_message=server_message,
        )

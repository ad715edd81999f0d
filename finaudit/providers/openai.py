"""OpenAI chat-completions adapter (bring your own key)."""

from typing import Any, Optional

import httpx

from finaudit.config import OpenAISettings
from finaudit.providers.base import ProviderAdapter, ProviderRequest, dig, text_or_empty


def openai_delta(event: Any) -> str:
    """Text of one chat-completions stream chunk."""
    return text_or_empty(dig(event, "choices", 0, "delta", "content"))


def is_reasoning_model(model: str) -> bool:
    """Reasoning models (o1, o3-mini, ...) take a different token-budget field and no sampling knobs."""
    return model.startswith("o")


class OpenAIAdapter(ProviderAdapter):

    provider_id = "openai"
    display_name = "OpenAI"

    def __init__(
        self,
        settings: Optional[OpenAISettings] = None,
        timeout: Optional[httpx.Timeout] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self.settings = settings or OpenAISettings()

    def endpoint(self, request: ProviderRequest, stream: bool) -> str:
        return f"{self.settings.base_url.rstrip('/')}/chat/completions"

    def build_headers(self, request: ProviderRequest) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {request.credential}",
        }

    def build_body(self, request: ProviderRequest, stream: bool) -> dict[str, Any]:
        messages = [{"role": "system", "content": request.system_prompt}]
        messages.extend(self.format_history(request.history))
        messages.append({"role": "user", "content": request.snapshot})

        body: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": stream,
        }
        if is_reasoning_model(request.model):
            body["max_completion_tokens"] = self.settings.max_tokens
        else:
            body["max_tokens"] = self.settings.max_tokens
            body["temperature"] = self.settings.temperature
            body["top_p"] = self.settings.top_p
            body["response_format"] = {"type": "json_object"}
        return body

    def extract_delta(self, event: Any) -> str:
        return openai_delta(event)

    def extract_text(self, payload: Any) -> str:
        return text_or_empty(dig(payload, "choices", 0, "message", "content"))

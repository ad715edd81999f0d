"""Anthropic Messages API adapter (bring your own key)."""

from typing import Any, Optional

import httpx

from finaudit.config import ClaudeSettings
from finaudit.providers.base import ProviderAdapter, ProviderRequest, dig, text_or_empty


def claude_delta(event: Any) -> str:
    """
    Text of one Messages stream event.

    Only content_block_delta events carrying a text_delta count. Message
    start/stop, ping and input_json_delta events yield nothing.
    """
    if dig(event, "type") != "content_block_delta":
        return ""
    if dig(event, "delta", "type") != "text_delta":
        return ""
    return text_or_empty(dig(event, "delta", "text"))


class ClaudeAdapter(ProviderAdapter):

    provider_id = "claude"
    display_name = "Claude"

    def __init__(
        self,
        settings: Optional[ClaudeSettings] = None,
        timeout: Optional[httpx.Timeout] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self.settings = settings or ClaudeSettings()

    def endpoint(self, request: ProviderRequest, stream: bool) -> str:
        return f"{self.settings.base_url.rstrip('/')}/messages"

    def build_headers(self, request: ProviderRequest) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": request.credential or "",
            "anthropic-version": self.settings.api_version,
        }

    def build_body(self, request: ProviderRequest, stream: bool) -> dict[str, Any]:
        messages = self.format_history(request.history)
        messages.append({"role": "user", "content": request.snapshot})
        return {
            "model": request.model,
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
            "stream": stream,
            "system": request.system_prompt,
            "messages": messages,
        }

    def extract_delta(self, event: Any) -> str:
        return claude_delta(event)

    def extract_text(self, payload: Any) -> str:
        blocks = dig(payload, "content")
        if not isinstance(blocks, list):
            return ""
        return "".join(
            block["text"]
            for block in blocks
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        )

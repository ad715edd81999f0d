"""
Gemini generateContent adapter (bring your own key).

Gemini differs from the chat-style dialects in three ways:
- history turns use "user"/"model" roles and a list of text parts
- the system prompt travels as a separate systemInstruction
- throttling is reported in the error message as often as in the status
"""

from typing import Any, Optional

import httpx

from finaudit.config import GeminiSettings
from finaudit.models.session import ConversationTurn, TurnRole
from finaudit.providers.base import (
    ProviderAdapter,
    ProviderError,
    ProviderHTTPError,
    ProviderRateLimitError,
    ProviderRequest,
    dig,
)


def gemini_delta(event: Any) -> str:
    """Concatenated text parts of the first candidate."""
    parts = dig(event, "candidates", 0, "content", "parts")
    if not isinstance(parts, list):
        return ""
    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )


class GeminiAdapter(ProviderAdapter):

    provider_id = "gemini"
    display_name = "Gemini"

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        timeout: Optional[httpx.Timeout] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self.settings = settings or GeminiSettings()

    def endpoint(self, request: ProviderRequest, stream: bool) -> str:
        base = f"{self.settings.base_url.rstrip('/')}/models/{request.model}"
        if stream:
            return f"{base}:streamGenerateContent?alt=sse"
        return f"{base}:generateContent"

    def build_headers(self, request: ProviderRequest) -> dict[str, str]:
        # Key goes in a header, never in the URL, so it stays out of access logs
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": request.credential or "",
        }

    def format_history(self, history: list[ConversationTurn]) -> list[dict[str, Any]]:
        return [
            {
                "role": "model" if turn.role == TurnRole.MODEL else "user",
                "parts": [{"text": turn.content}],
            }
            for turn in history
        ]

    def build_body(self, request: ProviderRequest, stream: bool) -> dict[str, Any]:
        contents = self.format_history(request.history)
        contents.append({"role": "user", "parts": [{"text": request.snapshot}]})
        return {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": request.system_prompt}]},
            "generationConfig": {
                "maxOutputTokens": self.settings.max_output_tokens,
                "temperature": self.settings.temperature,
                "topP": self.settings.top_p,
                "responseMimeType": "application/json",
            },
        }

    def extract_delta(self, event: Any) -> str:
        return gemini_delta(event)

    def extract_text(self, payload: Any) -> str:
        return gemini_delta(payload)

    def error_message(self, payload: Any) -> Optional[str]:
        # Errors sometimes arrive wrapped in a one-element list
        if isinstance(payload, list) and payload:
            payload = payload[0]
        return super().error_message(payload)

    def map_error(self, status_code: int, payload: Any) -> ProviderError:
        server_message = self.error_message(payload)
        message = server_message or f"HTTP {status_code}"
        lowered = message.lower()

        if status_code == 429 or "retry in" in lowered:
            return ProviderRateLimitError(
                self.provider_id,
                f"Gemini rate limit exceeded: {message}. Please wait a moment and try again.",
                status_code=status_code,
                server_message=server_message,
            )
        if "exhausted" in lowered or "quota" in lowered:
            return ProviderRateLimitError(
                self.provider_id,
                f"Gemini quota exhausted: {message}.",
                status_code=status_code,
                server_message=server_message,
                quota_exhausted=True,
            )
        return ProviderHTTPError(
            self.provider_id,
            f"Gemini error: {message}",
            status_code=status_code,
            server_message=server_message,
        )

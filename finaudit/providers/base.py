"""
Provider Adapter Base

DESIGN DECISION: One adapter per backend dialect, all behind the same
capability interface (stream_call, call, extract_delta). The orchestrator
never knows which dialect it is talking to; adding a provider means adding
one subclass and registering it, nothing else.

What differs between dialects:
- endpoint and authentication header shape
- request-body shape (history format, token-budget field names)
- where the text delta lives inside each streamed event

What is shared (implemented here):
- the HTTP exchange over httpx
- event-stream framing: only `data:` lines count, a `[DONE]` sentinel ends
  the stream early, undecodable frames are skipped rather than killing an
  otherwise good response
- translation of non-success statuses into ProviderError subclasses
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import httpx
import structlog

from finaudit.models.session import ConversationTurn, TurnRole

logger = structlog.get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


# =============================================================================
# Errors
# =============================================================================

class ProviderError(Exception):
    """
    Base exception for provider calls.

    Attributes:
        provider_id: Logical provider that failed ("backend", "openai", ...)
        status_code: HTTP status, if the failure was an HTTP response
        server_message: Best-effort message extracted from the response body
    """

    def __init__(
        self,
        provider_id: str,
        message: str,
        status_code: Optional[int] = None,
        server_message: Optional[str] = None,
    ):
        self.provider_id = provider_id
        self.status_code = status_code
        self.server_message = server_message
        super().__init__(message)


class QuotaError(ProviderError):
    """Request refused because a quota or rate limit was hit (HTTP 429)."""
    pass


class DailyLimitReachedError(QuotaError):
    """The managed relay's per-device daily audit limit is used up."""
    pass


class ProviderRateLimitError(QuotaError):
    """
    A BYOK provider throttled the request.

    quota_exhausted is True when the provider reports the key's quota as
    used up rather than a short-term throttle.
    """

    def __init__(self, *args, quota_exhausted: bool = False, **kwargs):
        self.quota_exhausted = quota_exhausted
        super().__init__(*args, **kwargs)


class ProviderHTTPError(ProviderError):
    """Any other non-success response from a provider or the relay."""
    pass


# =============================================================================
# Canonical request
# =============================================================================

@dataclass
class ProviderRequest:
    """
    Canonical request every adapter accepts.

    All text fields are already scrubbed by the time they get here.
    """

    snapshot: str
    model: str
    system_prompt: str
    history: list[ConversationTurn] = field(default_factory=list)
    credential: Optional[str] = None
    device_id: Optional[str] = None
    backend_provider: Optional[str] = None


# =============================================================================
# Helpers
# =============================================================================

def dig(obj: Any, *path: Any) -> Any:
    """
    Follow a path of dict keys / list indexes, returning None on any miss.

    dig(event, "choices", 0, "delta", "content")
    """
    current = obj
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or not -len(current) <= step < len(current):
                return None
        elif not isinstance(current, dict):
            return None
        try:
            current = current[step]
        except (KeyError, IndexError):
            return None
    return current


def text_or_empty(value: Any) -> str:
    return value if isinstance(value, str) else ""


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[Any]:
    """
    Decode an event stream into JSON payloads.

    Non-data lines (comments, event names, blank separators) are ignored.
    The sentinel ends iteration early. A frame that fails to decode is
    skipped so one corrupt frame does not abort the whole response.
    """
    async for line in lines:
        if not line.startswith(DATA_PREFIX):
            continue
        data = line[len(DATA_PREFIX):].strip()
        if not data:
            continue
        if data == DONE_SENTINEL:
            return
        try:
            yield json.loads(data)
        except json.JSONDecodeError:
            logger.debug("sse_frame_skipped", frame_length=len(data))
            continue


# =============================================================================
# Adapter interface
# =============================================================================

class ProviderAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses describe their dialect; this class runs the exchange.
    An httpx.AsyncClient can be injected for connection reuse (and for
    tests, via httpx.MockTransport). Without one, each call opens and
    closes its own client.
    """

    provider_id: str = ""
    display_name: str = ""

    def __init__(
        self,
        timeout: Optional[httpx.Timeout] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._timeout = timeout or httpx.Timeout(120.0, connect=10.0)
        self._client = client

    # ------------------------------------------------------------------
    # Dialect description
    # ------------------------------------------------------------------

    @abstractmethod
    def endpoint(self, request: ProviderRequest, stream: bool) -> str:
        """URL to POST the request to."""

    @abstractmethod
    def build_headers(self, request: ProviderRequest) -> dict[str, str]:
        """HTTP headers, including authentication."""

    @abstractmethod
    def build_body(self, request: ProviderRequest, stream: bool) -> dict[str, Any]:
        """JSON request body."""

    @abstractmethod
    def extract_delta(self, event: Any) -> str:
        """
        Text carried by one streamed event.

        Must return "" (never raise) when the event has no text.
        """

    @abstractmethod
    def extract_text(self, payload: Any) -> str:
        """Full text of a non-streaming response body."""

    def format_history(self, history: list[ConversationTurn]) -> list[dict[str, Any]]:
        """Chat-style history: user/assistant roles with string content."""
        return [
            {
                "role": "assistant" if turn.role == TurnRole.MODEL else "user",
                "content": turn.content,
            }
            for turn in history
        ]

    def error_message(self, payload: Any) -> Optional[str]:
        """Best-effort server message from an error body."""
        message = dig(payload, "error", "message")
        if isinstance(message, str) and message:
            return message
        error = dig(payload, "error")
        if isinstance(error, str) and error:
            return error
        return None

    def map_error(self, status_code: int, payload: Any) -> ProviderError:
        """Translate a non-success response into a domain error."""
        server_message = self.error_message(payload)
        message = server_message or f"HTTP {status_code}"
        if status_code == 429:
            return ProviderRateLimitError(
                self.provider_id,
                f"{self.display_name} rate limit exceeded: {message}. "
                "Please wait a moment and try again.",
                status_code=status_code,
                server_message=server_message,
            )
        return ProviderHTTPError(
            self.provider_id,
            f"{self.display_name} error: {message}",
            status_code=status_code,
            server_message=server_message,
        )

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client_session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                yield client

    async def _error_for(self, response: httpx.Response) -> ProviderError:
        await response.aread()
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        error = self.map_error(response.status_code, payload)
        logger.warning(
            "provider_request_failed",
            provider=self.provider_id,
            status=response.status_code,
            error_type=type(error).__name__,
        )
        return error

    async def stream_call(self, request: ProviderRequest) -> AsyncIterator[str]:
        """
        Stream text fragments as they arrive.

        The returned iterator is lazy, finite and cannot be restarted.
        Cancelling the task that consumes it closes the connection.
        """
        url = self.endpoint(request, stream=True)
        logger.info(
            "provider_request_started",
            provider=self.provider_id,
            model=request.model,
            streaming=True,
        )
        fragments = 0
        async with self._client_session() as client:
            async with client.stream(
                "POST",
                url,
                json=self.build_body(request, stream=True),
                headers=self.build_headers(request),
            ) as response:
                if response.is_error:
                    raise await self._error_for(response)

                async for event in iter_sse_events(response.aiter_lines()):
                    text = self.extract_delta(event)
                    if text:
                        fragments += 1
                        yield text

        logger.info(
            "provider_request_finished",
            provider=self.provider_id,
            model=request.model,
            fragments=fragments,
        )

    async def call(self, request: ProviderRequest) -> str:
        """Perform the request with streaming disabled and return the full text."""
        url = self.endpoint(request, stream=False)
        logger.info(
            "provider_request_started",
            provider=self.provider_id,
            model=request.model,
            streaming=False,
        )
        async with self._client_session() as client:
            response = await client.post(
                url,
                json=self.build_body(request, stream=False),
                headers=self.build_headers(request),
            )
            if response.is_error:
                raise await self._error_for(response)
            try:
                payload = response.json()
            except ValueError:
                raise ProviderHTTPError(
                    self.provider_id,
                    f"{self.display_name} returned a response that is not JSON",
                    status_code=response.status_code,
                )

        logger.info("provider_request_finished", provider=self.provider_id, model=request.model)
        return self.extract_text(payload)

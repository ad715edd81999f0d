"""
Tests for the provider adapters.

Providers are simulated at the HTTP layer with httpx.MockTransport, so the
real request bodies, headers and event-stream framing are exercised.
"""

import json
from typing import Callable

import httpx
import pytest

from finaudit.config import BackendSettings, ClaudeSettings, GeminiSettings, OpenAISettings
from finaudit.models.session import ConversationTurn, TurnRole
from finaudit.providers import (
    ClaudeAdapter,
    DailyLimitReachedError,
    GeminiAdapter,
    ManagedBackendAdapter,
    OpenAIAdapter,
    ProviderHTTPError,
    ProviderRateLimitError,
    ProviderRequest,
    QuotaError,
    iter_sse_events,
)


def sse(*frames) -> bytes:
    """Encode frames as an event stream. Strings are sent as raw lines."""
    lines = []
    for frame in frames:
        lines.append(frame if isinstance(frame, str) else "data: " + json.dumps(frame))
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_request(**overrides) -> ProviderRequest:
    fields = dict(
        snapshot="Checking: $2500.00",
        model="gpt-4o",
        system_prompt="You are an auditor.",
        history=[
            ConversationTurn(role=TurnRole.USER, content="last week"),
            ConversationTurn(role=TurnRole.MODEL, content="{\"headerCard\": {}}"),
        ],
        credential="sk-test",
        device_id="device-123",
        backend_provider="openai",
    )
    fields.update(overrides)
    return ProviderRequest(**fields)


async def collect(adapter, request) -> list[str]:
    return [fragment async for fragment in adapter.stream_call(request)]


class TestEventStream:
    """Tests for event-stream decoding shared by every adapter."""

    @pytest.mark.asyncio
    async def test_ignores_non_data_lines_and_bad_frames(self):
        """Comments, blanks and undecodable frames are skipped."""
        async def lines():
            for line in [": keep-alive", "", "event: message", "data: {\"a\": 1}",
                         "data: {broken", "data:", "data:{\"b\": 2}"]:
                yield line

        events = [event async for event in iter_sse_events(lines())]

        assert events == [{"a": 1}, {"b": 2}]

    @pytest.mark.asyncio
    async def test_done_sentinel_ends_stream(self):
        """Frames after [DONE] are never delivered."""
        async def lines():
            for line in ["data: {\"a\": 1}", "data: [DONE]", "data: {\"b\": 2}"]:
                yield line

        events = [event async for event in iter_sse_events(lines())]

        assert events == [{"a": 1}]


class TestOpenAIAdapter:
    """Tests for the OpenAI chat-completions dialect."""

    @pytest.mark.asyncio
    async def test_stream_yields_choice_deltas(self):
        """Deltas are read from choices[0].delta.content; corrupt frames are skipped."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse(
                {"choices": [{"delta": {"role": "assistant"}}]},
                {"choices": [{"delta": {"content": "{\"header"}}]},
                "data: {not json",
                {"choices": [{"delta": {"content": "Card\": 1}"}}]},
                {"choices": []},
                "data: [DONE]",
                {"choices": [{"delta": {"content": "after done"}}]},
            ))

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(OpenAISettings(), client=client)
            fragments = await collect(adapter, make_request())

        assert fragments == ["{\"header", "Card\": 1}"]
        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["stream"] is True

    def test_standard_model_body(self):
        """Standard chat models get sampling knobs and JSON mode."""
        adapter = OpenAIAdapter(OpenAISettings())
        body = adapter.build_body(make_request(model="gpt-4o"), stream=False)

        assert body["max_tokens"] == 12000
        assert body["temperature"] == 0.1
        assert body["top_p"] == 0.95
        assert body["response_format"] == {"type": "json_object"}
        assert "max_completion_tokens" not in body
        assert body["messages"] == [
            {"role": "system", "content": "You are an auditor."},
            {"role": "user", "content": "last week"},
            {"role": "assistant", "content": "{\"headerCard\": {}}"},
            {"role": "user", "content": "Checking: $2500.00"},
        ]

    def test_reasoning_model_body(self):
        """Reasoning models use max_completion_tokens and no sampling knobs."""
        adapter = OpenAIAdapter(OpenAISettings())
        body = adapter.build_body(make_request(model="o3-mini"), stream=True)

        assert body["max_completion_tokens"] == 12000
        assert "max_tokens" not in body
        assert "temperature" not in body
        assert "response_format" not in body

    @pytest.mark.asyncio
    async def test_call_returns_message_content(self):
        """Non-streaming call reads choices[0].message.content."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is False
            return httpx.Response(200, json={"choices": [{"message": {"content": "full text"}}]})

        async with mock_client(handler) as client:
            text = await OpenAIAdapter(OpenAISettings(), client=client).call(make_request())

        assert text == "full text"

    @pytest.mark.asyncio
    async def test_429_is_provider_throttle(self):
        """A BYOK 429 is a rate limit, not a daily limit."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"message": "Rate limit reached"}})

        async with mock_client(handler) as client:
            with pytest.raises(ProviderRateLimitError) as exc_info:
                await collect(OpenAIAdapter(OpenAISettings(), client=client), make_request())

        assert "rate limit exceeded" in str(exc_info.value)
        assert exc_info.value.status_code == 429
        assert exc_info.value.server_message == "Rate limit reached"


class TestGeminiAdapter:
    """Tests for the Gemini generateContent dialect."""

    @pytest.mark.asyncio
    async def test_stream_request_and_deltas(self):
        """Key travels in a header; history uses user/model roles with parts."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse(
                {"candidates": [{"content": {"parts": [{"text": "Hel"}, {"text": "lo"}]}}]},
                {"candidates": [{"finishReason": "STOP"}]},
                {"usageMetadata": {}},
                {"candidates": [{"content": {"parts": [{"text": " world"}]}}]},
            ))

        async with mock_client(handler) as client:
            adapter = GeminiAdapter(GeminiSettings(), client=client)
            fragments = await collect(adapter, make_request(model="gemini-2.5-flash"))

        assert fragments == ["Hello", " world"]
        assert seen["url"] == (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            "gemini-2.5-flash:streamGenerateContent?alt=sse"
        )
        assert "key=" not in seen["url"]
        assert seen["key"] == "sk-test"

        body = seen["body"]
        assert body["contents"] == [
            {"role": "user", "parts": [{"text": "last week"}]},
            {"role": "model", "parts": [{"text": "{\"headerCard\": {}}"}]},
            {"role": "user", "parts": [{"text": "Checking: $2500.00"}]},
        ]
        assert body["systemInstruction"] == {"parts": [{"text": "You are an auditor."}]}
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert body["generationConfig"]["maxOutputTokens"] == 12000

    def test_non_streaming_endpoint(self):
        """Non-streaming calls use :generateContent."""
        adapter = GeminiAdapter(GeminiSettings())
        url = adapter.endpoint(make_request(model="gemini-2.5-pro"), stream=False)
        assert url.endswith("/models/gemini-2.5-pro:generateContent")

    @pytest.mark.asyncio
    async def test_retry_in_message_is_throttle(self):
        """'retry in' in the message is a throttle even without a 429."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "Please retry in 30s."}})

        async with mock_client(handler) as client:
            with pytest.raises(ProviderRateLimitError) as exc_info:
                await GeminiAdapter(GeminiSettings(), client=client).call(make_request())

        assert exc_info.value.quota_exhausted is False

    @pytest.mark.asyncio
    async def test_quota_message_is_quota_exhausted(self):
        """'quota' / 'exhausted' messages mark the key's quota as used up."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json=[{"error": {"message": "Resource has been exhausted"}}])

        async with mock_client(handler) as client:
            with pytest.raises(ProviderRateLimitError) as exc_info:
                await GeminiAdapter(GeminiSettings(), client=client).call(make_request())

        assert exc_info.value.quota_exhausted is True

    @pytest.mark.asyncio
    async def test_other_errors_are_http_errors(self):
        """Any other failure carries the status and server message."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "API key not valid"}})

        async with mock_client(handler) as client:
            with pytest.raises(ProviderHTTPError) as exc_info:
                await GeminiAdapter(GeminiSettings(), client=client).call(make_request())

        assert exc_info.value.status_code == 400
        assert "API key not valid" in str(exc_info.value)


class TestClaudeAdapter:
    """Tests for the Anthropic Messages dialect."""

    @pytest.mark.asyncio
    async def test_only_text_deltas_are_yielded(self):
        """Start, stop, ping and JSON deltas carry no text."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse(
                "event: message_start",
                {"type": "message_start", "message": {"id": "msg_1"}},
                {"type": "ping"},
                {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "A"}},
                {"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "{"}},
                {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "B"}},
                {"type": "message_stop"},
            ))

        async with mock_client(handler) as client:
            adapter = ClaudeAdapter(ClaudeSettings(), client=client)
            fragments = await collect(adapter, make_request(model="claude-sonnet-4-5-20250929"))

        assert fragments == ["A", "B"]
        assert seen["headers"]["x-api-key"] == "sk-test"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"]["system"] == "You are an auditor."
        assert seen["body"]["max_tokens"] == 12000
        assert seen["body"]["messages"][-1] == {"role": "user", "content": "Checking: $2500.00"}
        assert seen["body"]["messages"][1]["role"] == "assistant"

    @pytest.mark.asyncio
    async def test_call_joins_text_blocks(self):
        """Non-streaming text is the concatenation of text blocks."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"content": [
                {"type": "text", "text": "one "},
                {"type": "tool_use", "id": "x"},
                {"type": "text", "text": "two"},
            ]})

        async with mock_client(handler) as client:
            text = await ClaudeAdapter(ClaudeSettings(), client=client).call(make_request())

        assert text == "one two"


class TestManagedBackendAdapter:
    """Tests for the managed relay."""

    @pytest.mark.asyncio
    async def test_request_shape_and_mixed_dialects(self):
        """Relay gets device id and provider hint; any upstream dialect is read."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["device"] = request.headers["X-Device-ID"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse(
                {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "1"}},
                {"choices": [{"delta": {"content": "2"}}]},
                {"candidates": [{"content": {"parts": [{"text": "3"}]}}]},
                "data: [DONE]",
            ))

        async with mock_client(handler) as client:
            adapter = ManagedBackendAdapter(BackendSettings(), client=client)
            fragments = await collect(adapter, make_request(model="o3-mini", credential=None))

        assert fragments == ["1", "2", "3"]
        assert seen["url"] == "https://api.catalystcash.app/audit"
        assert seen["device"] == "device-123"
        body = seen["body"]
        assert body["provider"] == "openai"
        assert body["systemPrompt"] == "You are an auditor."
        assert body["stream"] is True
        assert body["history"][1] == {"role": "assistant", "content": "{\"headerCard\": {}}"}

    def test_defaults_for_missing_device_and_hint(self):
        """Missing device id and provider hint fall back to fixed values."""
        adapter = ManagedBackendAdapter(BackendSettings())
        request = make_request(device_id=None, backend_provider=None)

        assert adapter.build_headers(request)["X-Device-ID"] == "unknown"
        assert adapter.build_body(request, stream=False)["provider"] == "gemini"

    @pytest.mark.asyncio
    async def test_call_returns_result_field(self):
        """Non-streaming relay responses carry the text in `result`."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"result": "relay text"})

        async with mock_client(handler) as client:
            text = await ManagedBackendAdapter(BackendSettings(), client=client).call(make_request())

        assert text == "relay text"

    @pytest.mark.asyncio
    async def test_429_is_daily_limit(self):
        """A relay 429 is the daily limit, distinct from a BYOK throttle."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": "limit"})

        async with mock_client(handler) as client:
            with pytest.raises(DailyLimitReachedError) as exc_info:
                await collect(ManagedBackendAdapter(BackendSettings(), client=client), make_request())

        error = exc_info.value
        assert str(error) == "Daily audit limit reached (10/day). Try again tomorrow!"
        assert isinstance(error, QuotaError)
        assert not isinstance(error, ProviderRateLimitError)

    @pytest.mark.asyncio
    async def test_error_body_message(self):
        """Other failures surface the relay's `error` field."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "Upstream timed out"})

        async with mock_client(handler) as client:
            with pytest.raises(ProviderHTTPError) as exc_info:
                await ManagedBackendAdapter(BackendSettings(), client=client).call(make_request())

        assert str(exc_info.value) == "Upstream timed out"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_error_without_body(self):
        """Without a JSON body the message names the status."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, content=b"<html>Bad Gateway</html>")

        async with mock_client(handler) as client:
            with pytest.raises(ProviderHTTPError) as exc_info:
                await collect(ManagedBackendAdapter(BackendSettings(), client=client), make_request())

        assert str(exc_info.value) == "Backend error: HTTP 502"


class TestQuotaClassification:
    """Daily limit and BYOK throttle are different kinds of QuotaError."""

    @pytest.mark.asyncio
    async def test_kinds_differ(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={})

        errors = []
        async with mock_client(handler) as client:
            for adapter in (
                ManagedBackendAdapter(BackendSettings(), client=client),
                OpenAIAdapter(OpenAISettings(), client=client),
            ):
                with pytest.raises(QuotaError) as exc_info:
                    await adapter.call(make_request())
                errors.append(exc_info.value)

        backend_error, byok_error = errors
        assert type(backend_error) is DailyLimitReachedError
        assert type(byok_error) is ProviderRateLimitError

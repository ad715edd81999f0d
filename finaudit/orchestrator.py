"""
Main Orchestrator for the audit pipeline

This module ties together all the components and defines the
end-to-end flow of one audit:

    submit → scrub → sync instruction hash → call provider (stream)
           → unscrub → parse → record turn → hand off AuditRecord

DESIGN DECISION: The orchestrator enforces the boundaries:
- Only scrubbed text ever reaches a provider
- Only one audit session is active at a time
- A conversation window never outlives the instructions it was built under
- A successful HTTP exchange with unparseable content is a failure
- Every lifecycle step is published as a SessionEvent

Sessions are explicit objects. The caller holds the AuditSession returned
by submit(), observes it through the event logger, cancels it through
session.cancel() and awaits its outcome with session.wait().
"""

import asyncio
import time
from typing import Optional
from uuid import UUID, uuid4

import httpx
import structlog

from finaudit.cache import InstructionCache, compute_instruction_hash
from finaudit.config import Settings, get_settings
from finaudit.events import EventSubscriber, SessionEventLogger
from finaudit.models.events import SessionEventBuilder
from finaudit.models.finance import FormSnapshot, Portfolio
from finaudit.models.session import (
    AuditRecord,
    ConversationTurn,
    FailureKind,
    ParsedAudit,
    SessionStatus,
    TurnRole,
)
from finaudit.prompts import DefaultPromptBuilder, PromptBuilder
from finaudit.providers import (
    DailyLimitReachedError,
    ProviderError,
    ProviderRateLimitError,
    ProviderRegistry,
    ProviderRequest,
    ResolvedProvider,
    create_default_registry,
)
from finaudit.scrubbing import TokenScrubber
from finaudit.services.host import (
    SuspensionMonitor,
    classify_background_interruption,
    get_or_create_device_id,
    is_transport_failure,
)
from finaudit.services.storage import (
    AuditRecordSink,
    InMemoryAuditRecordStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    StorageError,
)
from finaudit.validation import parse_audit

logger = structlog.get_logger(__name__)

CANCELLED_MARKER = "[Audit Cancelled by User]"
MANUAL_PROVIDER_ID = "manual"


# =============================================================================
# Errors
# =============================================================================

class AuditError(Exception):
    """Base exception for audit sessions."""

    failure_kind: Optional[FailureKind] = FailureKind.PROVIDER_ERROR


class AuditInProgressError(AuditError):
    """Another audit session is still active."""

    failure_kind = None


class MissingCredentialError(AuditError):
    """A bring-your-own-key provider was selected without a key."""

    failure_kind = FailureKind.CONFIGURATION


class MalformedAuditError(AuditError):
    """The exchange succeeded but the output is not a usable audit."""

    failure_kind = FailureKind.MALFORMED_RESPONSE

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


class BackgroundInterruptionError(AuditError):
    """
    The connection was torn down because the host app was suspended.

    Recoverable: the caller should offer a retry once the app is back in
    the foreground. `heuristic` is True when the decision came from
    matching the error message rather than from the host signal.
    """

    failure_kind = FailureKind.BACKGROUND_INTERRUPTED

    def __init__(self, message: str, heuristic: bool = False):
        self.heuristic = heuristic
        super().__init__(message)


class NetworkError(AuditError):
    """The connection failed for a reason other than host suspension."""

    failure_kind = FailureKind.NETWORK


# =============================================================================
# Session
# =============================================================================

class AuditSession:
    """
    One audit attempt.

    `accumulated_text` is what came over the wire (tokens, not names).
    `display_text` is its unscrubbed view, recomputed from the whole buffer
    on every fragment so a token split across fragments is still restored
    once complete.
    """

    def __init__(
        self,
        provider_id: str,
        model_id: Optional[str],
        form: FormSnapshot,
        is_test_run: bool = False,
        session_id: Optional[UUID] = None,
    ):
        self.session_id = session_id or uuid4()
        self.provider_id = provider_id
        self.model_id = model_id
        self.form = form
        self.is_test_run = is_test_run

        self.status = SessionStatus.IDLE
        self.accumulated_text = ""
        self.fragment_count = 0
        self.instruction_hash: Optional[str] = None
        self.history_invalidated = False

        self.error: Optional[Exception] = None
        self.failure_kind: Optional[FailureKind] = None
        self.parsed: Optional[ParsedAudit] = None
        self.record: Optional[AuditRecord] = None

        self._scrubber: Optional[TokenScrubber] = None
        self._display_text = ""
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._running = False
        self._started_at = time.monotonic()
        self._finished_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def display_text(self) -> str:
        if self.status == SessionStatus.CANCELLED:
            return f"{self._display_text}\n\n{CANCELLED_MARKER}"
        return self._display_text

    @property
    def elapsed_seconds(self) -> float:
        end = self._finished_at if self._finished_at is not None else time.monotonic()
        return end - self._started_at

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self) -> bool:
        """
        Abort the network call.

        Only possible while submitting or streaming. Partial text is kept.

        Returns:
            True if cancellation was requested
        """
        if self.status not in (SessionStatus.SUBMITTING, SessionStatus.STREAMING):
            return False
        if self._task is None or self._task.done():
            return False
        self._cancel_requested = True
        if self._running:
            self._task.cancel()
        return True

    async def wait(self) -> "AuditSession":
        """Wait for the session to reach a terminal state."""
        if self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        return self

    # ------------------------------------------------------------------
    # Orchestrator-side mutation
    # ------------------------------------------------------------------

    def _unscrub(self, text: str) -> str:
        return self._scrubber.unscrub(text) if self._scrubber else text

    def _append(self, fragment: str) -> None:
        self.accumulated_text += fragment
        self.fragment_count += 1
        self._display_text = self._unscrub(self.accumulated_text)

    def _set_display(self, text: str) -> None:
        self._display_text = text

    def _finish(self, status: SessionStatus) -> None:
        self.status = status
        self._finished_at = time.monotonic()


# =============================================================================
# Orchestrator
# =============================================================================

class AuditOrchestrator:
    """
    Runs audit sessions.

    Flow:
    1. Submit → resolve provider, check credential
    2. Prepare → build scrubber, render + scrub prompt, sync instruction hash,
       record user turn, take the send window
    3. Stream → append fragments, publish unscrubbed view
    4. Parse → unscrub, parse; unparseable output fails the session
    5. Hand off → record model turn, build AuditRecord, give it to the sink

    Nothing is retried automatically. Retrying is the caller's decision;
    resubmitting the same message does not duplicate it in the window.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: InstructionCache,
        store: KeyValueStore,
        record_sink: Optional[AuditRecordSink] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        event_logger: Optional[SessionEventLogger] = None,
        suspension_monitor: Optional[SuspensionMonitor] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._settings = settings.app
        # Keys from the environment, used when the caller passes none
        self._stored_credentials = {
            "openai": settings.openai.api_key,
            "gemini": settings.gemini.api_key,
            "claude": settings.claude.api_key,
        }
        self._registry = registry
        self._cache = cache
        self._store = store
        self._record_sink = record_sink
        self._prompts = prompt_builder or DefaultPromptBuilder()
        self._events = event_logger or SessionEventLogger()
        self._monitor = suspension_monitor
        self._active: Optional[AuditSession] = None

    @property
    def active_session(self) -> Optional[AuditSession]:
        if self._active is not None and self._active.is_active:
            return self._active
        return None

    @property
    def events(self) -> SessionEventLogger:
        return self._events

    def _claim(self) -> None:
        if self.active_session is not None:
            raise AuditInProgressError(
                f"Audit {self.active_session.session_id} is still running"
            )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def submit(
        self,
        portfolio: Portfolio,
        form: FormSnapshot,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
        credential: Optional[str] = None,
        message: Optional[str] = None,
        test_mode: bool = False,
    ) -> AuditSession:
        """
        Start an audit and return its session immediately.

        Args:
            portfolio: Records that feed the prompt and the entity catalog
            form: This week's snapshot
            provider_id: Logical provider; unknown ids fall back to the relay
            model_id: Model; None means the provider default
            credential: API key for bring-your-own-key providers; None uses
                the key from the provider settings, if any
            message: User message; None renders one from the form
            test_mode: Flag the resulting record as a test run

        Raises:
            AuditInProgressError: If another session is still active
        """
        self._claim()

        resolved = self._registry.resolve(provider_id, model_id)
        session = AuditSession(
            provider_id=resolved.provider_id,
            model_id=resolved.model_id,
            form=form,
            is_test_run=test_mode,
        )
        session.status = SessionStatus.SUBMITTING
        self._active = session

        task = asyncio.get_running_loop().create_task(
            self._execute(session, resolved, portfolio, form, credential, message)
        )
        session._task = task
        return session

    async def run(
        self,
        portfolio: Portfolio,
        form: FormSnapshot,
        **kwargs,
    ) -> AuditSession:
        """Submit and wait for the outcome."""
        session = await self.submit(portfolio, form, **kwargs)
        return await session.wait()

    async def import_result(
        self,
        text: str,
        form: Optional[FormSnapshot] = None,
        test_mode: bool = False,
    ) -> AuditSession:
        """
        Import a model response obtained outside the pipeline.

        The text is parsed and handed off like a live audit. No network
        call is made and no conversation window is touched.
        """
        self._claim()

        session = AuditSession(
            provider_id=MANUAL_PROVIDER_ID,
            model_id=None,
            form=form or FormSnapshot(),
            is_test_run=test_mode,
        )
        session.status = SessionStatus.PARSING
        self._active = session
        session.accumulated_text = text or ""
        session._set_display(session.accumulated_text)

        parsed = parse_audit(text)
        if parsed is None:
            await self._fail(
                session,
                MalformedAuditError("Imported text is not valid audit JSON.", raw=text or ""),
                FailureKind.MALFORMED_RESPONSE,
            )
            return session

        await self._complete(session, parsed)
        return session

    # ------------------------------------------------------------------
    # Session execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        session: AuditSession,
        resolved: ResolvedProvider,
        portfolio: Portfolio,
        form: FormSnapshot,
        credential: Optional[str],
        message: Optional[str],
    ) -> None:
        session._running = True
        if session.cancel_requested:
            # Cancelled before the task got to run
            await self._cancelled(session)
            return

        epoch = self._monitor.epoch if self._monitor else 0
        try:
            raw = await self._exchange(session, resolved, portfolio, form, credential, message)

            session.status = SessionStatus.PARSING
            await self._events.log(
                SessionEventBuilder.parsing_started(session.session_id, len(raw))
            )
            final_text = session._unscrub(raw)
            session._set_display(final_text)

            parsed = parse_audit(final_text)
            if parsed is None:
                raise MalformedAuditError(
                    "Model output was not valid audit JSON. Please retry.",
                    raw=final_text,
                )

            await self._cache.record_turn(
                resolved.provider_id,
                ConversationTurn(role=TurnRole.MODEL, content=final_text),
            )
        except asyncio.CancelledError:
            if not session.cancel_requested:
                raise
            await self._cancelled(session)
            return
        except Exception as e:
            error, kind = self._classify(e, epoch)
            await self._fail(session, error, kind)
            return

        await self._complete(session, parsed)

    async def _exchange(
        self,
        session: AuditSession,
        resolved: ResolvedProvider,
        portfolio: Portfolio,
        form: FormSnapshot,
        credential: Optional[str],
        message: Optional[str],
    ) -> str:
        """Prepare the scrubbed request and run it. Returns the wire text."""
        provider_id = resolved.provider_id
        if credential is None:
            credential = self._stored_credentials.get(provider_id)
        credential = credential.strip() if isinstance(credential, str) else None
        if resolved.spec.requires_credential and not credential:
            raise MissingCredentialError(f"Set your {resolved.spec.name} API key first.")

        # Fresh for every attempt: the records may have changed since the last one
        scrubber = TokenScrubber.for_portfolio(
            portfolio,
            form,
            min_length=self._settings.min_entity_name_length,
        )
        session._scrubber = scrubber

        system_prompt = scrubber.scrub(self._prompts.system_prompt(provider_id, portfolio))
        session.instruction_hash = compute_instruction_hash(system_prompt, scrubber.scrub_map)
        if await self._cache.sync_hash(provider_id, session.instruction_hash):
            session.history_invalidated = True
            await self._events.log(
                SessionEventBuilder.history_invalidated(
                    session.session_id, provider_id, session.instruction_hash
                )
            )

        user_message = message if message is not None else self._prompts.snapshot_message(form, portfolio)
        await self._cache.record_turn(
            provider_id,
            ConversationTurn(role=TurnRole.USER, content=user_message),
        )
        window = await self._cache.window(provider_id)
        history = [
            ConversationTurn(role=turn.role, content=scrubber.scrub(turn.content), timestamp=turn.timestamp)
            for turn in window
        ]

        device_id = await get_or_create_device_id(self._store) if resolved.is_backend else None
        request = ProviderRequest(
            snapshot=scrubber.scrub(user_message),
            model=resolved.model_id,
            system_prompt=system_prompt,
            history=history,
            credential=credential,
            device_id=device_id,
            backend_provider=resolved.backend_provider,
        )

        use_stream = self._settings.use_streaming and resolved.supports_streaming
        await self._events.log(
            SessionEventBuilder.submitted(
                session.session_id,
                provider_id,
                resolved.model_id,
                streaming=use_stream,
                is_test_run=session.is_test_run,
            )
        )

        session.status = SessionStatus.STREAMING
        if use_stream:
            await self._events.log(
                SessionEventBuilder.streaming_started(session.session_id, provider_id)
            )
            async for fragment in resolved.adapter.stream_call(request):
                session._append(fragment)
                await self._events.log(
                    SessionEventBuilder.fragment(
                        session.session_id, session.display_text, session.fragment_count
                    )
                )
        else:
            text = await resolved.adapter.call(request)
            if text:
                session._append(text)

        return session.accumulated_text

    def _classify(self, error: Exception, epoch: int) -> tuple[Exception, FailureKind]:
        """Map a failure to the error surfaced on the session and its kind."""
        if isinstance(error, AuditError) and error.failure_kind is not None:
            return error, error.failure_kind
        if isinstance(error, DailyLimitReachedError):
            return error, FailureKind.DAILY_LIMIT
        if isinstance(error, ProviderRateLimitError):
            return error, FailureKind.RATE_LIMITED
        if isinstance(error, ProviderError):
            return error, FailureKind.PROVIDER_ERROR

        heuristic = classify_background_interruption(error, self._monitor, epoch)
        if heuristic is not None:
            interrupted = BackgroundInterruptionError(
                "The audit was interrupted because the app went to the background. "
                "Please try again.",
                heuristic=heuristic,
            )
            interrupted.__cause__ = error
            return interrupted, FailureKind.BACKGROUND_INTERRUPTED

        if is_transport_failure(error) or isinstance(error, httpx.HTTPError):
            network = NetworkError(f"Network error: {error or type(error).__name__}")
            network.__cause__ = error
            return network, FailureKind.NETWORK

        if isinstance(error, StorageError):
            return error, FailureKind.CONFIGURATION

        logger.exception("audit_unexpected_error", error_type=type(error).__name__)
        return error, FailureKind.PROVIDER_ERROR

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    async def _complete(self, session: AuditSession, parsed: ParsedAudit) -> None:
        session.parsed = parsed
        session.record = AuditRecord(
            form_snapshot=session.form,
            parsed_result=parsed,
            is_test_run=session.is_test_run,
            provider_id=session.provider_id,
            model_id=session.model_id,
        )
        session._finish(SessionStatus.SUCCESS)

        await self._events.log(
            SessionEventBuilder.succeeded(
                session.session_id,
                session.provider_id,
                session.model_id or "",
                session.display_text,
                session.elapsed_seconds,
                parsed.status,
            )
        )
        await self._hand_off(session, session.record)

    async def _hand_off(self, session: AuditSession, record: AuditRecord) -> None:
        if self._record_sink is None:
            return
        try:
            await self._record_sink.save_audit(record)
        except StorageError as e:
            # The audit itself succeeded; the caller still holds session.record
            await self._events.log(
                SessionEventBuilder.record_save_failed(session.session_id, str(e))
            )
            return
        await self._events.log(
            SessionEventBuilder.record_saved(session.session_id, record.is_test_run)
        )

    async def _fail(self, session: AuditSession, error: Exception, kind: FailureKind) -> None:
        session.error = error
        session.failure_kind = kind
        session._finish(SessionStatus.ERROR)
        await self._events.log(
            SessionEventBuilder.failed(
                session.session_id,
                session.provider_id,
                kind.value,
                str(error),
                session.elapsed_seconds,
            )
        )

    async def _cancelled(self, session: AuditSession) -> None:
        session._finish(SessionStatus.CANCELLED)
        await self._events.log(
            SessionEventBuilder.cancelled(
                session.session_id,
                session.provider_id,
                session.display_text,
                session.elapsed_seconds,
            )
        )


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    record_sink: Optional[AuditRecordSink] = None,
    client: Optional[httpx.AsyncClient] = None,
    suspension_monitor: Optional[SuspensionMonitor] = None,
    subscribers: Optional[list[EventSubscriber]] = None,
    prompt_builder: Optional[PromptBuilder] = None,
) -> AuditOrchestrator:
    """
    Factory function to create a fully wired orchestrator.

    Args:
        settings: Defaults to get_settings()
        store: Key-value store; defaults to the JSON state file from settings
        record_sink: Where successful audits go; defaults to an in-memory store
        client: Shared httpx client for all adapters
        suspension_monitor: Host suspension signal, if the host provides one
        subscribers: Initial session event observers
        prompt_builder: Defaults to DefaultPromptBuilder

    Returns:
        AuditOrchestrator
    """
    settings = settings or get_settings()
    app = settings.app

    store = store or JsonFileKeyValueStore(app.state_path)
    record_sink = record_sink or InMemoryAuditRecordStore(limit=app.audit_history_limit)

    return AuditOrchestrator(
        registry=create_default_registry(settings, client=client),
        cache=InstructionCache(
            store,
            send_limit=app.history_send_limit,
            store_limit=app.history_store_limit,
        ),
        store=store,
        record_sink=record_sink,
        prompt_builder=prompt_builder,
        event_logger=SessionEventLogger(subscribers),
        suspension_monitor=suspension_monitor,
        settings=settings,
    )

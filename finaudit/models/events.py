"""
Session Event Models

Every lifecycle step of an audit session produces an event.
This provides:
1. An explicit notification surface for callers (submitted, fragment,
   success, error, cancelled) instead of ambient UI state
2. A structured local log for debugging
3. Correlation of everything that happened within one session

DESIGN DECISION: Events carry only non-sensitive details. Model text is
attached to fragment events for subscribers, but it is never written to the
log (see SessionEvent.to_log_dict).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


# Keys that MUST NEVER reach the log, matched as substrings of the key name
REDACTED_KEYS = (
    "key", "secret", "token", "password", "passphrase", "pin",
    "prompt", "snapshot", "payload", "content", "text",
    "balance", "amount", "income", "salary", "debt", "apr",
    "history", "messages", "rules", "personal",
)

MAX_LOGGED_STRING = 120


class SessionEventType(str, Enum):
    """Types of lifecycle events."""
    SUBMITTED = "submitted"
    HISTORY_INVALIDATED = "history_invalidated"
    STREAMING_STARTED = "streaming_started"
    FRAGMENT = "fragment"
    PARSING_STARTED = "parsing_started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RECORD_SAVED = "record_saved"
    RECORD_SAVE_FAILED = "record_save_failed"


class EventSeverity(str, Enum):
    """Severity level for session events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class SessionEvent(BaseModel):
    """
    A single lifecycle event.

    `text` is the unscrubbed view of the accumulated model output at the
    moment of the event. It is populated for fragment, success and
    cancellation events so observers can render real names.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    event_type: SessionEventType
    severity: EventSeverity = EventSeverity.INFO

    session_id: Optional[UUID] = None
    provider_id: Optional[str] = None
    model_id: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    text: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.

        Sensitive detail keys are dropped and long strings truncated.
        The event text is reduced to its length.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "session_id": str(self.session_id) if self.session_id else None,
            "provider_id": self.provider_id,
            "model_id": self.model_id,
            "description": self.description,
            "details": redact_details(self.details),
            "text_length": len(self.text) if self.text is not None else None,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }


def redact_details(details: dict[str, Any]) -> dict[str, Any]:
    """Drop sensitive keys and truncate long strings."""
    safe = {}
    for key, value in details.items():
        lowered = key.lower()
        if any(r in lowered for r in REDACTED_KEYS):
            continue
        if isinstance(value, str) and len(value) > MAX_LOGGED_STRING:
            value = value[:MAX_LOGGED_STRING] + "…"
        safe[key] = value
    return safe


class SessionEventBuilder:
    """
    Helper class to build session events with common patterns.

    Usage:
        event = SessionEventBuilder.submitted(session_id, "backend", "gemini-2.5-flash", True)
        event = SessionEventBuilder.fragment(session_id, text, fragment_count)
    """

    @staticmethod
    def submitted(
        session_id: UUID,
        provider_id: str,
        model_id: str,
        streaming: bool,
        is_test_run: bool = False,
    ) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.SUBMITTED,
            session_id=session_id,
            provider_id=provider_id,
            model_id=model_id,
            description=f"Audit submitted to {provider_id}",
            details={
                "streaming": streaming,
                "is_test_run": is_test_run,
            },
        )

    @staticmethod
    def history_invalidated(
        session_id: UUID,
        provider_id: str,
        instruction_hash: str,
    ) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.HISTORY_INVALIDATED,
            session_id=session_id,
            provider_id=provider_id,
            description="Instructions changed; conversation window cleared",
            details={"instruction_hash": instruction_hash},
        )

    @staticmethod
    def streaming_started(session_id: UUID, provider_id: str) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.STREAMING_STARTED,
            severity=EventSeverity.DEBUG,
            session_id=session_id,
            provider_id=provider_id,
            description="Response stream opened",
        )

    @staticmethod
    def fragment(
        session_id: UUID,
        text: str,
        fragment_count: int,
    ) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.FRAGMENT,
            severity=EventSeverity.DEBUG,
            session_id=session_id,
            description=f"Fragment {fragment_count} received",
            details={"fragment_count": fragment_count},
            text=text,
        )

    @staticmethod
    def parsing_started(session_id: UUID, raw_length: int) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.PARSING_STARTED,
            severity=EventSeverity.DEBUG,
            session_id=session_id,
            description="Parsing model output",
            details={"raw_length": raw_length},
        )

    @staticmethod
    def succeeded(
        session_id: UUID,
        provider_id: str,
        model_id: str,
        text: str,
        elapsed_seconds: float,
        audit_status: str,
    ) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.SUCCEEDED,
            session_id=session_id,
            provider_id=provider_id,
            model_id=model_id,
            description=f"Audit completed in {elapsed_seconds:.1f}s",
            details={
                "elapsed_seconds": round(elapsed_seconds, 2),
                "audit_status": audit_status,
            },
            text=text,
        )

    @staticmethod
    def failed(
        session_id: UUID,
        provider_id: Optional[str],
        error_kind: str,
        error_message: str,
        elapsed_seconds: float,
    ) -> SessionEvent:
        severity = (
            EventSeverity.WARNING
            if error_kind in ("background_interrupted", "daily_limit", "rate_limited")
            else EventSeverity.ERROR
        )
        return SessionEvent(
            event_type=SessionEventType.FAILED,
            severity=severity,
            session_id=session_id,
            provider_id=provider_id,
            description=f"Audit failed: {error_kind}",
            details={"elapsed_seconds": round(elapsed_seconds, 2)},
            error_kind=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def cancelled(
        session_id: UUID,
        provider_id: Optional[str],
        text: str,
        elapsed_seconds: float,
    ) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.CANCELLED,
            session_id=session_id,
            provider_id=provider_id,
            description="Audit cancelled by user",
            details={
                "elapsed_seconds": round(elapsed_seconds, 2),
                "partial_length": len(text),
            },
            text=text,
        )

    @staticmethod
    def record_saved(session_id: Optional[UUID], is_test_run: bool) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.RECORD_SAVED,
            session_id=session_id,
            description="Audit record handed to storage",
            details={"is_test_run": is_test_run},
        )

    @staticmethod
    def record_save_failed(session_id: Optional[UUID], error_message: str) -> SessionEvent:
        return SessionEvent(
            event_type=SessionEventType.RECORD_SAVE_FAILED,
            severity=EventSeverity.ERROR,
            session_id=session_id,
            description="Audit record could not be stored",
            error_message=error_message,
        )

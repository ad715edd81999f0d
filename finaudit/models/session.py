"""
Audit Session Models

Schemas for the data that flows through one audit attempt:
sensitive entities, conversation turns, session status and the durable
audit record handed to persistence.

CRITICAL: Tokens on a SensitiveEntity are only meaningful for the scrubber
that produced them. They are never persisted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from finaudit.models.finance import FormSnapshot


# =============================================================================
# ENUMS
# =============================================================================

class EntityCategory(str, Enum):
    """Kinds of real-world names the scrubber hides."""
    CARD = "card"
    INSTITUTION = "institution"
    SUBSCRIPTION = "subscription"
    LOAN = "loan"
    INCOME_SOURCE = "income_source"
    BUDGET_CATEGORY = "budget_category"


class TurnRole(str, Enum):
    """Who authored a conversation turn."""
    USER = "user"
    MODEL = "model"


class SessionStatus(str, Enum):
    """
    Audit session lifecycle.

    idle -> submitting -> streaming -> parsing -> success
    submitting | streaming | parsing -> error
    submitting | streaming -> cancelled
    """
    IDLE = "idle"
    SUBMITTING = "submitting"
    STREAMING = "streaming"
    PARSING = "parsing"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.SUCCESS, SessionStatus.ERROR, SessionStatus.CANCELLED)


class FailureKind(str, Enum):
    """
    Why a session ended in the error state.

    Callers use this to pick the message they show: a daily limit is
    actionable tomorrow, a throttle is actionable in a minute, a background
    interruption should be retried on resume.
    """
    DAILY_LIMIT = "daily_limit"
    RATE_LIMITED = "rate_limited"
    PROVIDER_ERROR = "provider_error"
    NETWORK = "network"
    BACKGROUND_INTERRUPTED = "background_interrupted"
    MALFORMED_RESPONSE = "malformed_response"
    CONFIGURATION = "configuration"


# =============================================================================
# SCRUBBING
# =============================================================================

class SensitiveEntity(BaseModel):
    """A real-world name plus the synthetic token that replaces it."""
    model_config = ConfigDict(frozen=True)

    real_name: str = Field(..., min_length=1)
    category: EntityCategory
    token: str = Field(..., min_length=1)


# =============================================================================
# CONVERSATION
# =============================================================================

class ConversationTurn(BaseModel):
    """One message in the trailing conversation window."""

    role: TurnRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("role", mode="before")
    @classmethod
    def accept_assistant_alias(cls, v: Any) -> Any:
        """Stored windows written by older clients use 'assistant'."""
        if v == "assistant":
            return TurnRole.MODEL
        return v


# =============================================================================
# RESULTS
# =============================================================================

class ParsedAudit(BaseModel):
    """
    Structured audit extracted from the model output.

    `structured` is the decoded JSON object with keys normalized to
    camelCase; `raw` is the full unscrubbed text it came from.
    """

    raw: str
    status: str = "UNKNOWN"
    health_score: Optional[Any] = None
    structured: dict[str, Any] = Field(default_factory=dict)


class AuditRecord(BaseModel):
    """
    The durable artifact of a successful audit.

    Built by the orchestrator and handed to the record sink. The sink owns
    storage; the orchestrator never reads records back.
    """

    timestamp: datetime = Field(default_factory=datetime.utcnow)
    form_snapshot: FormSnapshot
    parsed_result: ParsedAudit
    is_test_run: bool = False
    provider_id: Optional[str] = None
    model_id: Optional[str] = None

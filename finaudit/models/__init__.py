"""
Data Models Package

This package contains all Pydantic models used by the audit pipeline.
All data flowing through the pipeline must conform to these schemas.
"""

from finaudit.models.finance import (
    BudgetCategory,
    Card,
    FinancialConfig,
    FormDebt,
    FormSnapshot,
    IncomeSource,
    NonCardDebt,
    PayFrequency,
    Portfolio,
    Renewal,
    RenewalInterval,
)
from finaudit.models.session import (
    AuditRecord,
    ConversationTurn,
    EntityCategory,
    FailureKind,
    ParsedAudit,
    SensitiveEntity,
    SessionStatus,
    TurnRole,
)
from finaudit.models.events import (
    EventSeverity,
    SessionEvent,
    SessionEventBuilder,
    SessionEventType,
)

__all__ = [
    # Financial inputs
    "BudgetCategory",
    "Card",
    "FinancialConfig",
    "FormDebt",
    "FormSnapshot",
    "IncomeSource",
    "NonCardDebt",
    "PayFrequency",
    "Portfolio",
    "Renewal",
    "RenewalInterval",
    # Session models
    "AuditRecord",
    "ConversationTurn",
    "EntityCategory",
    "FailureKind",
    "ParsedAudit",
    "SensitiveEntity",
    "SessionStatus",
    "TurnRole",
    # Event models
    "EventSeverity",
    "SessionEvent",
    "SessionEventBuilder",
    "SessionEventType",
]

"""
Financial Input Models

These models describe the user's financial records as they reach the audit
pipeline. They are produced by collaborators outside this package (settings
forms, the portfolio screens, the strategy calculator) and are consumed here
for two things only:

1. Building the catalog of sensitive names that must never leave the device
2. Rendering the system prompt and the snapshot sent to the model

DESIGN DECISION: Names are the sensitive part. Amounts are not scrubbed,
so they are modelled as Decimals and validated, while names are free text
that the entity catalog decides how to treat.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class PayFrequency(str, Enum):
    """How often the user is paid."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    SEMIMONTHLY = "semimonthly"
    MONTHLY = "monthly"


class RenewalInterval(str, Enum):
    """Billing interval for a recurring charge."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


# =============================================================================
# PORTFOLIO RECORDS
# =============================================================================

class Card(BaseModel):
    """A credit card in the user's portfolio."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., description="Card product name, e.g. 'Chase Sapphire Preferred'")
    institution: Optional[str] = Field(default=None, description="Issuing bank")
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    limit: Optional[Decimal] = Field(default=None, ge=0)
    apr: Optional[Decimal] = Field(default=None, ge=0)
    annual_fee: Optional[Decimal] = Field(default=None, ge=0)


class Renewal(BaseModel):
    """A subscription or other recurring charge."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    interval: RenewalInterval = RenewalInterval.MONTHLY
    charged_to: Optional[str] = Field(
        default=None,
        description="Card or account paying this charge ('checking' for the main account)"
    )


class NonCardDebt(BaseModel):
    """A loan that is not a credit card (auto, student, personal...)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    apr: Optional[Decimal] = Field(default=None, ge=0)
    min_payment: Optional[Decimal] = Field(default=None, ge=0)


class IncomeSource(BaseModel):
    """A source of income (employer, side business...)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    frequency: PayFrequency = PayFrequency.BIWEEKLY


class BudgetCategory(BaseModel):
    """A user-defined budget bucket."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str
    monthly_target: Decimal = Field(default=Decimal("0"), ge=0)


# FinancialConfig fields the prompt builder must not render
UI_ONLY_FIELDS = frozenset({"haptics_enabled", "theme"})


class FinancialConfig(BaseModel):
    """
    The user's long-lived financial configuration.

    Everything except the UI-only toggles feeds the system prompt.
    A change to a prompt-feeding field therefore changes the instruction
    hash and resets the conversation window.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    pay_frequency: PayFrequency = PayFrequency.BIWEEKLY
    emergency_floor: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Checking balance the user never wants to drop below"
    )
    weekly_spend_allowance: Optional[Decimal] = Field(default=None, ge=0)
    non_card_debts: list[NonCardDebt] = Field(default_factory=list)
    income_sources: list[IncomeSource] = Field(default_factory=list)
    budget_categories: list[BudgetCategory] = Field(default_factory=list)

    # UI-only toggles (never rendered into the prompt, see UI_ONLY_FIELDS)
    haptics_enabled: bool = True
    theme: str = "system"


class Portfolio(BaseModel):
    """
    Everything the prompt builder and the entity catalog need.

    `computed_strategy` is produced by the external strategy calculator and
    passed through untouched.
    """

    cards: list[Card] = Field(default_factory=list)
    renewals: list[Renewal] = Field(default_factory=list)
    card_annual_fees: list[Renewal] = Field(default_factory=list)
    config: FinancialConfig = Field(default_factory=FinancialConfig)
    personal_rules: str = ""
    persona: Optional[str] = None
    computed_strategy: Optional[dict[str, Any]] = None

    @property
    def all_renewals(self) -> list[Renewal]:
        """Renewals plus card annual fees, in prompt order."""
        return [*self.renewals, *self.card_annual_fees]


# =============================================================================
# WEEKLY SNAPSHOT FORM
# =============================================================================

class FormDebt(BaseModel):
    """A debt line entered on the weekly snapshot form."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = ""
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    apr: Optional[Decimal] = Field(default=None, ge=0)
    min_payment: Optional[Decimal] = Field(default=None, ge=0)
    limit: Optional[Decimal] = Field(default=None, ge=0)


class FormSnapshot(BaseModel):
    """
    The weekly snapshot the user fills in before an audit.

    Stored verbatim on the AuditRecord so a past audit can be reviewed
    against the numbers it was based on.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    snapshot_date: date = Field(default_factory=date.today)
    checking: Decimal = Field(default=Decimal("0"))
    savings: Decimal = Field(default=Decimal("0"))
    debts: list[FormDebt] = Field(default_factory=list)
    notes: Optional[str] = None

    @property
    def total_debt(self) -> Decimal:
        return sum((d.balance for d in self.debts), Decimal("0"))

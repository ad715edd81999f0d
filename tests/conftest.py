"""
Shared fixtures for finaudit tests.

No real API calls in tests: providers are either simulated at the HTTP
layer with httpx.MockTransport or replaced by a scripted adapter.
"""

import asyncio
import json
from decimal import Decimal
from typing import Any, AsyncIterator, Optional

import pytest

from finaudit.models.finance import (
    BudgetCategory,
    Card,
    FinancialConfig,
    FormDebt,
    FormSnapshot,
    IncomeSource,
    NonCardDebt,
    Portfolio,
    Renewal,
)
from finaudit.providers.base import ProviderAdapter, ProviderRequest


AUDIT_JSON = json.dumps({
    "headerCard": {"status": "GREEN", "title": "On track"},
    "healthScore": {"score": 82, "grade": "B"},
    "weeklyMoves": ["Pay Credit Card 1 from Bank 1"],
    "nextAction": "Pay Credit Card 1",
})


class ScriptedAdapter(ProviderAdapter):
    """
    Adapter that replays a fixed list of fragments.

    pause_after=N stops after the Nth fragment until `release` is set,
    which lets a test act while the session is mid-stream. `error` is
    raised after the last fragment.
    """

    provider_id = "scripted"
    display_name = "Scripted"

    def __init__(
        self,
        fragments: Optional[list[str]] = None,
        error: Optional[Exception] = None,
        pause_after: Optional[int] = None,
    ):
        super().__init__()
        self.fragments = list(fragments or [])
        self.error = error
        self.pause_after = pause_after
        self.paused = asyncio.Event()
        self.release = asyncio.Event()
        self.requests: list[ProviderRequest] = []
        self.streamed = 0

    def endpoint(self, request: ProviderRequest, stream: bool) -> str:
        return "https://scripted.invalid/audit"

    def build_headers(self, request: ProviderRequest) -> dict[str, str]:
        return {}

    def build_body(self, request: ProviderRequest, stream: bool) -> dict[str, Any]:
        return {}

    def extract_delta(self, event: Any) -> str:
        return ""

    def extract_text(self, payload: Any) -> str:
        return ""

    async def stream_call(self, request: ProviderRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        for i, fragment in enumerate(self.fragments):
            self.streamed += 1
            yield fragment
            if self.pause_after is not None and i + 1 == self.pause_after:
                self.paused.set()
                await self.release.wait()
        if self.error is not None:
            raise self.error

    async def call(self, request: ProviderRequest) -> str:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return "".join(self.fragments)


@pytest.fixture
def audit_json() -> str:
    return AUDIT_JSON


@pytest.fixture
def scripted():
    """Factory for ScriptedAdapter instances."""
    return ScriptedAdapter


@pytest.fixture
def portfolio() -> Portfolio:
    return Portfolio(
        cards=[
            Card(
                name="Chase Sapphire Preferred",
                institution="Ally",
                balance=Decimal("1200.50"),
                limit=Decimal("10000"),
                apr=Decimal("24.99"),
            ),
        ],
        renewals=[
            Renewal(name="Netflix", amount=Decimal("15.49"), charged_to="Chase Sapphire Preferred"),
        ],
        config=FinancialConfig(
            emergency_floor=Decimal("500"),
            non_card_debts=[NonCardDebt(name="Navient Student Loan", balance=Decimal("8000"))],
            income_sources=[IncomeSource(name="Acme Corp", amount=Decimal("2400"))],
            budget_categories=[BudgetCategory(name="Groceries", monthly_target=Decimal("400"))],
        ),
    )


@pytest.fixture
def form() -> FormSnapshot:
    return FormSnapshot(
        checking=Decimal("2500"),
        savings=Decimal("10000"),
        debts=[FormDebt(name="Chase Sapphire Preferred", balance=Decimal("1200.50"))],
    )

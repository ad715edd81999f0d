"""
Prompt Builder

The system prompt and the weekly snapshot message are written by a
collaborator that knows the user's strategy (floors, payoff order, pacing).
The pipeline only needs the rendered text, so that collaborator sits behind
the PromptBuilder interface.

DefaultPromptBuilder renders a plain, deterministic prompt from the
portfolio. It is deterministic on purpose: the instruction hash is taken
over its output, and identical inputs must hash identically.

IMPORTANT: Real names appear in the rendered text. The orchestrator scrubs
the output before anything leaves the device.
"""

import json
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from finaudit.models.finance import FormSnapshot, Portfolio

RESPONSE_FORMAT = """Respond with a single JSON object and nothing else, with these keys:
- headerCard: {status, title, subtitle}
- healthScore: {score, grade, trend, summary}
- alertsCard: list of strings
- dashboardCard: list of {category, amount, status}
- weeklyMoves: list of strings
- radar: list of {date, item, amount}
- longRangeRadar: list of {date, item, amount}
- milestones: list of strings
- nextAction: string"""


def _money(value: Optional[Decimal]) -> str:
    return f"${(value or Decimal('0')):.2f}"


class PromptBuilder(ABC):
    """Renders the text sent to the model. Output contains real names."""

    @abstractmethod
    def system_prompt(self, provider_id: str, portfolio: Portfolio) -> str:
        """Full system instructions for one audit."""
        pass

    @abstractmethod
    def snapshot_message(self, form: FormSnapshot, portfolio: Portfolio) -> str:
        """The user message carrying this week's numbers."""
        pass


class DefaultPromptBuilder(PromptBuilder):

    def system_prompt(self, provider_id: str, portfolio: Portfolio) -> str:
        config = portfolio.config
        lines = [
            "You are a meticulous personal-finance auditor.",
            "Review the user's weekly snapshot against their configuration and portfolio.",
            "",
            "## Configuration",
            f"- Pay frequency: {config.pay_frequency.value}",
            f"- Emergency floor: {_money(config.emergency_floor)}",
        ]
        if config.weekly_spend_allowance is not None:
            lines.append(f"- Weekly spend allowance: {_money(config.weekly_spend_allowance)}")

        if portfolio.cards:
            lines += ["", "## Credit cards"]
            for card in portfolio.cards:
                parts = [f"- {card.name} ({card.institution or 'Unknown issuer'})"]
                if card.limit is not None:
                    parts.append(f"Limit {_money(card.limit)}")
                if card.apr is not None:
                    parts.append(f"APR {card.apr}%")
                if card.annual_fee:
                    parts.append(f"Annual fee {_money(card.annual_fee)}")
                lines.append(", ".join(parts))

        renewals = portfolio.all_renewals
        if renewals:
            lines += ["", "## Renewals"]
            for renewal in renewals:
                charged = f" via {renewal.charged_to}" if renewal.charged_to else ""
                lines.append(
                    f"- {renewal.name}: {_money(renewal.amount)} {renewal.interval.value}{charged}"
                )

        if config.non_card_debts:
            lines += ["", "## Non-card debts"]
            for debt in config.non_card_debts:
                lines.append(
                    f"- {debt.name}: Balance {_money(debt.balance)}, "
                    f"Min {_money(debt.min_payment)}/mo, APR {debt.apr or 0}%"
                )

        if config.income_sources:
            lines += ["", "## Income sources"]
            for source in config.income_sources:
                lines.append(f"- {source.name}: {_money(source.amount)} ({source.frequency.value})")

        if config.budget_categories:
            lines += ["", "## Budget categories"]
            for category in config.budget_categories:
                lines.append(f"- {category.name}: {_money(category.monthly_target)}/month")

        if portfolio.persona:
            lines += ["", "## Persona", portfolio.persona]

        if portfolio.personal_rules.strip():
            lines += ["", "## Personal rules", portfolio.personal_rules.strip()]

        if portfolio.computed_strategy:
            lines += [
                "",
                "## Computed strategy (authoritative numbers, do not recompute)",
                json.dumps(portfolio.computed_strategy, sort_keys=True, default=str),
            ]

        lines += ["", "## Output format", RESPONSE_FORMAT]
        return "\n".join(lines)

    def snapshot_message(self, form: FormSnapshot, portfolio: Portfolio) -> str:
        lines = [
            f"Weekly snapshot for {form.snapshot_date.isoformat()}",
            f"- Checking: {_money(form.checking)}",
            f"- Savings: {_money(form.savings)}",
        ]
        debts = [d for d in form.debts if d.balance > 0]
        if debts:
            lines.append("- Debts:")
            for debt in debts:
                detail = [f"  - {debt.name or 'Debt'}: {_money(debt.balance)}"]
                if debt.apr is not None:
                    detail.append(f"APR {debt.apr}%")
                if debt.min_payment is not None:
                    detail.append(f"Min {_money(debt.min_payment)}")
                lines.append(", ".join(detail))
        if form.notes:
            lines += ["", f"Notes: {form.notes}"]
        return "\n".join(lines)

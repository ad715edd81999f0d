"""Entity catalog: collects the real-world names that must be scrubbed.

Every name gets a synthetic token such as "Credit Card 1" or "Bank 2".
Tokens are numbered in the order the records are visited, so the same
portfolio always yields the same tokens, which keeps the scrubbed system
prompt (and therefore its instruction hash) stable across app launches.
"""

from __future__ import annotations

from typing import Iterable, Optional

from finaudit.models.finance import FormSnapshot, Portfolio
from finaudit.models.session import EntityCategory, SensitiveEntity

DEFAULT_MIN_NAME_LENGTH = 3

# Token prefix per category. Some records use a different prefix while
# sharing a category's counter (see EntityCatalogBuilder.build_from).
TOKEN_PREFIXES: dict[EntityCategory, str] = {
    EntityCategory.CARD: "Credit Card",
    EntityCategory.INSTITUTION: "Bank",
    EntityCategory.SUBSCRIPTION: "Subscription",
    EntityCategory.LOAN: "Loan",
    EntityCategory.INCOME_SOURCE: "Income Source",
    EntityCategory.BUDGET_CATEGORY: "Category",
}

ACCOUNT_PREFIX = "Account"
FORM_DEBT_PREFIX = "Debt"
MAIN_ACCOUNT = "checking"


class EntityCatalogBuilder:
    """Accumulates sensitive names and assigns each a unique token.

    Names are trimmed; names shorter than `min_length` are ignored so short
    acronyms are not scrubbed out of unrelated words. A name seen twice
    (compared case-insensitively) keeps the token it was first given.
    """

    def __init__(self, min_length: int = DEFAULT_MIN_NAME_LENGTH) -> None:
        self._min_length = min_length
        self._entities: list[SensitiveEntity] = []
        self._seen: set[str] = set()
        self._counters: dict[EntityCategory, int] = {}

    def add(
        self,
        real_name: object,
        category: EntityCategory,
        prefix: Optional[str] = None,
    ) -> Optional[SensitiveEntity]:
        """Register a name. Returns the new entity, or None if it was skipped."""
        if not real_name or not isinstance(real_name, str):
            return None
        name = real_name.strip()
        if len(name) < self._min_length:
            return None
        key = name.lower()
        if key in self._seen:
            return None

        index = self._counters.get(category, 0) + 1
        self._counters[category] = index
        token = f"{prefix or TOKEN_PREFIXES[category]} {index}"

        entity = SensitiveEntity(real_name=name, category=category, token=token)
        self._seen.add(key)
        self._entities.append(entity)
        return entity

    def add_all(self, names: Iterable[tuple[str, EntityCategory]]) -> "EntityCatalogBuilder":
        for name, category in names:
            self.add(name, category)
        return self

    def build_from(
        self,
        portfolio: Portfolio,
        form: Optional[FormSnapshot] = None,
    ) -> "EntityCatalogBuilder":
        """Visit every record that can carry a real name, in a fixed order."""
        for card in portfolio.cards:
            self.add(card.name, EntityCategory.CARD)
            self.add(card.institution, EntityCategory.INSTITUTION)

        for renewal in portfolio.all_renewals:
            self.add(renewal.name, EntityCategory.SUBSCRIPTION)
            if renewal.charged_to and renewal.charged_to.strip().lower() != MAIN_ACCOUNT:
                self.add(renewal.charged_to, EntityCategory.INSTITUTION, prefix=ACCOUNT_PREFIX)

        config = portfolio.config
        for debt in config.non_card_debts:
            self.add(debt.name, EntityCategory.LOAN)
        for income in config.income_sources:
            self.add(income.name, EntityCategory.INCOME_SOURCE)
        for category in config.budget_categories:
            self.add(category.name, EntityCategory.BUDGET_CATEGORY)

        if form is not None:
            for debt in form.debts:
                self.add(debt.name, EntityCategory.LOAN, prefix=FORM_DEBT_PREFIX)

        return self

    @property
    def entities(self) -> list[SensitiveEntity]:
        return list(self._entities)


def build_catalog(
    portfolio: Portfolio,
    form: Optional[FormSnapshot] = None,
    min_length: int = DEFAULT_MIN_NAME_LENGTH,
) -> list[SensitiveEntity]:
    """Build the sensitive-entity catalog for one audit attempt."""
    return EntityCatalogBuilder(min_length=min_length).build_from(portfolio, form).entities

"""TokenScrubber: reversible substitution of sensitive names.

scrub() replaces real names with catalog tokens before text leaves the
device; unscrub() puts the real names back into model output.

This is obfuscation against a trusted-but-external processor, not
encryption. A scrubber is built fresh for every audit attempt and its
tokens are never persisted.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from finaudit.models.finance import FormSnapshot, Portfolio
from finaudit.models.session import SensitiveEntity
from finaudit.scrubbing.catalog import DEFAULT_MIN_NAME_LENGTH, build_catalog


class TokenScrubber:
    """Bidirectional rewrite table built from a sensitive-entity catalog.

    Scrubbing is whole-word and case-insensitive; unscrubbing is exact and
    case-sensitive, because tokens are generated here with fixed casing and
    user-typed text that happens to look like a token should be left alone.

    Both directions run as a single regex pass over an alternation sorted
    longest-first, which gives longest-match priority and guarantees that a
    token inserted for one name is never rewritten by a shorter name.

    Neither direction raises: no match is a no-op.
    """

    def __init__(self, entities: Iterable[SensitiveEntity]) -> None:
        self._entities = list(entities)

        # Longest real name first ("Chase Sapphire Reserve" before "Chase")
        self._scrub_pairs = sorted(
            ((e.real_name, e.token) for e in self._entities),
            key=lambda pair: len(pair[0]),
            reverse=True,
        )
        # Longest token first ("Credit Card 10" before "Credit Card 1")
        self._unscrub_pairs = sorted(
            ((token, real) for real, token in self._scrub_pairs),
            key=lambda pair: len(pair[0]),
            reverse=True,
        )

        self._token_by_name = {real.lower(): token for real, token in self._scrub_pairs}
        self._name_by_token = dict(self._unscrub_pairs)

        self._scrub_re: Optional[re.Pattern[str]] = None
        self._unscrub_re: Optional[re.Pattern[str]] = None
        if self._scrub_pairs:
            names = "|".join(re.escape(real) for real, _ in self._scrub_pairs)
            self._scrub_re = re.compile(rf"(?<!\w)(?:{names})(?!\w)", re.IGNORECASE)
            tokens = "|".join(re.escape(token) for token, _ in self._unscrub_pairs)
            # A token never continues into another digit ("Bank 1" is not in "Bank 12")
            self._unscrub_re = re.compile(rf"(?:{tokens})(?!\d)")

    @classmethod
    def for_portfolio(
        cls,
        portfolio: Portfolio,
        form: Optional[FormSnapshot] = None,
        min_length: int = DEFAULT_MIN_NAME_LENGTH,
    ) -> "TokenScrubber":
        """Build a scrubber from the user's records for one audit attempt."""
        return cls(build_catalog(portfolio, form, min_length=min_length))

    def scrub(self, text: str) -> str:
        """Replace every whole-word real name with its token."""
        if not text or self._scrub_re is None:
            return text
        return self._scrub_re.sub(self._replace_name, text)

    def unscrub(self, text: str) -> str:
        """Replace every exact token with the real name it stands for."""
        if not text or self._unscrub_re is None:
            return text
        return self._unscrub_re.sub(self._replace_token, text)

    def _replace_name(self, match: re.Match[str]) -> str:
        found = match.group(0)
        return self._token_by_name.get(found.lower(), found)

    def _replace_token(self, match: re.Match[str]) -> str:
        found = match.group(0)
        return self._name_by_token.get(found, found)

    @property
    def has_mappings(self) -> bool:
        return bool(self._scrub_pairs)

    @property
    def entities(self) -> list[SensitiveEntity]:
        return list(self._entities)

    @property
    def scrub_map(self) -> list[tuple[str, str]]:
        """(real_name, token) pairs, longest name first."""
        return list(self._scrub_pairs)

    @property
    def unscrub_map(self) -> list[tuple[str, str]]:
        """(token, real_name) pairs, longest token first."""
        return list(self._unscrub_pairs)

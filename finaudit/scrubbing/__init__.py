"""PII scrubbing package.

Builds the catalog of sensitive names in a user's financial records and the
reversible TokenScrubber that hides them from model providers.
"""

from finaudit.scrubbing.catalog import (
    DEFAULT_MIN_NAME_LENGTH,
    EntityCatalogBuilder,
    build_catalog,
)
from finaudit.scrubbing.scrubber import TokenScrubber

__all__ = [
    "DEFAULT_MIN_NAME_LENGTH",
    "EntityCatalogBuilder",
    "TokenScrubber",
    "build_catalog",
]

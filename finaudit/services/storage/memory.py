"""In-memory storage implementations, used in tests and short-lived runs."""

import copy
from typing import Any, Optional

from finaudit.models.session import AuditRecord
from finaudit.services.storage.interface import AuditRecordSink, KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        """Copy of everything stored, for inspection."""
        return copy.deepcopy(self._data)


class InMemoryAuditRecordStore(AuditRecordSink):
    """
    Keeps the most recent audit records, newest first.

    Test runs are kept alongside real ones; they carry is_test_run=True.
    """

    def __init__(self, limit: int = 52):
        self._limit = limit
        self._records: list[AuditRecord] = []

    async def save_audit(self, record: AuditRecord) -> None:
        self._records = [record, *self._records][: self._limit]

    @property
    def records(self) -> list[AuditRecord]:
        return list(self._records)

    @property
    def latest(self) -> Optional[AuditRecord]:
        """Most recent non-test audit."""
        for record in self._records:
            if not record.is_test_run:
                return record
        return None

"""
Abstract Storage Interface

DESIGN DECISION: We define abstract interfaces for the two kinds of state
the pipeline touches. This allows us to:
1. Keep the instruction cache and device identity independent of where
   the host app keeps its preferences
2. Use in-memory storage for testing
3. Hand successful audits to whatever persistence the host owns

The interfaces are intentionally small - just the operations the pipeline
needs.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from finaudit.models.session import AuditRecord


class KeyValueStore(ABC):
    """
    Abstract async key-value store for small JSON-compatible values.

    Used for the conversation window, the instruction hash and the
    device identifier.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Read a value.

        Returns:
            The stored value, or None if the key is absent
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """
        Write a value. The value must be JSON-serializable.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Removing a missing key is not an error."""
        pass


class AuditRecordSink(ABC):
    """
    Abstract hand-off point for completed audits.

    The orchestrator only writes; reading history back is the host's job.
    """

    @abstractmethod
    async def save_audit(self, record: AuditRecord) -> None:
        """
        Persist a completed audit.

        Raises:
            StorageError: If the record could not be stored
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class SerializationError(StorageError):
    """A value could not be encoded or decoded."""
    pass

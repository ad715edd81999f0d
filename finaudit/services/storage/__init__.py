"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the small
amount of state the audit pipeline keeps.
"""

from finaudit.services.storage.interface import (
    AuditRecordSink,
    KeyValueStore,
    SerializationError,
    StorageError,
)
from finaudit.services.storage.json_file import JsonFileKeyValueStore
from finaudit.services.storage.memory import (
    InMemoryAuditRecordStore,
    InMemoryKeyValueStore,
)

__all__ = [
    # Interfaces
    "AuditRecordSink",
    "KeyValueStore",
    # Exceptions
    "SerializationError",
    "StorageError",
    # Implementations
    "InMemoryAuditRecordStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
]

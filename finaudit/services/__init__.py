"""Services package."""

from finaudit.services.host import (
    SuspensionMonitor,
    get_or_create_device_id,
)
from finaudit.services.storage import (
    AuditRecordSink,
    InMemoryAuditRecordStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    SerializationError,
    StorageError,
)

__all__ = [
    # Host integration
    "SuspensionMonitor",
    "get_or_create_device_id",
    # Storage services
    "AuditRecordSink",
    "InMemoryAuditRecordStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "SerializationError",
    "StorageError",
]

"""Host integration: suspension signal and device identity."""

from finaudit.services.host.device import DEVICE_ID_KEY, get_or_create_device_id
from finaudit.services.host.suspension import (
    BACKGROUND_ABORT_PHRASES,
    SuspensionMonitor,
    classify_background_interruption,
    is_transport_failure,
    looks_like_background_abort,
)

__all__ = [
    "BACKGROUND_ABORT_PHRASES",
    "DEVICE_ID_KEY",
    "SuspensionMonitor",
    "classify_background_interruption",
    "get_or_create_device_id",
    "is_transport_failure",
    "looks_like_background_abort",
]

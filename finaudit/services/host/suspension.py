"""
Host Suspension Monitor

Mobile hosts suspend the app when it goes to the background, and the
operating system tears down open connections. A stream cut that way is a
recoverable interruption, not an API failure, and should be reported as
"retry when you're back" rather than as an error.

DESIGN DECISION: The host tells us explicitly when it is suspended and
resumed. The monitor counts suspensions, so a session can ask "was the
host suspended at any point since I started?" even if the host has already
resumed by the time the failure surfaces.

When no host signal is wired up, classification falls back to matching
well-known transport-failure phrases in the error message. That fallback is
a heuristic and is flagged as such on the resulting error.
"""

from typing import Optional

import httpx

# Phrases that show up in messages of connections torn down by suspension
BACKGROUND_ABORT_PHRASES = (
    "aborted",
    "Failed to fetch",
    "network",
    "Load failed",
)


class SuspensionMonitor:
    """
    Tracks host suspended/resumed transitions.

    The host calls mark_suspended() / mark_resumed() from its lifecycle
    hooks. `signal_available` is False until the host reports its first
    transition, or can be set at construction by hosts that wire the
    signal up front.
    """

    def __init__(self, signal_available: bool = False):
        self._signal_available = signal_available
        self._suspended = False
        self._suspension_count = 0

    @property
    def signal_available(self) -> bool:
        return self._signal_available

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    @property
    def epoch(self) -> int:
        """Number of suspensions seen so far."""
        return self._suspension_count

    def mark_suspended(self) -> None:
        self._signal_available = True
        if not self._suspended:
            self._suspended = True
            self._suspension_count += 1

    def mark_resumed(self) -> None:
        self._signal_available = True
        self._suspended = False

    def suspended_since(self, epoch: int) -> bool:
        """True if the host is suspended now or was suspended after `epoch`."""
        return self._suspended or self._suspension_count > epoch


def is_transport_failure(error: BaseException) -> bool:
    """Connection-level failures (as opposed to HTTP status errors)."""
    return isinstance(error, (httpx.TransportError, OSError))


def looks_like_background_abort(error: BaseException) -> bool:
    """
    Heuristic: does the error message look like a torn-down connection?

    Only used when the host provides no suspension signal.
    Not guaranteed correct.
    """
    message = str(error)
    return any(phrase in message for phrase in BACKGROUND_ABORT_PHRASES)


def classify_background_interruption(
    error: BaseException,
    monitor: Optional[SuspensionMonitor],
    epoch: int,
) -> Optional[bool]:
    """
    Decide whether a failure was caused by host suspension.

    Returns:
        None if it was not, otherwise whether the decision was heuristic
        (True) or based on the explicit host signal (False).
    """
    if monitor is not None and monitor.signal_available:
        if is_transport_failure(error) and monitor.suspended_since(epoch):
            return False
        return None

    if is_transport_failure(error) and looks_like_background_abort(error):
        return True
    return None

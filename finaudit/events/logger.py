"""
Session Event Logger

DESIGN DECISION: Every lifecycle step of an audit session goes through
one place. This provides:
1. A structured local log of what happened to each session
2. An explicit notification surface for observers (a UI, a CLI, tests)
3. Correlation of events by session id

The event logger:
- Is async so subscribers may await their own I/O
- Gracefully handles subscriber failures (a broken observer never breaks
  an audit)
- Never writes model text or other sensitive details to the log
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from finaudit.models.events import EventSeverity, SessionEvent


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

EventSubscriber = Callable[[SessionEvent], Union[None, Awaitable[None]]]


class SessionEventLogger:
    """
    Central session event service.

    Events go to:
    1. Structured local log (redacted)
    2. Every registered subscriber (full event, including text)
    """

    def __init__(self, subscribers: Optional[list[EventSubscriber]] = None):
        self._subscribers: list[EventSubscriber] = list(subscribers or [])
        self._logger = structlog.get_logger("finaudit.events")

    def subscribe(self, subscriber: EventSubscriber) -> Callable[[], None]:
        """
        Register an observer. Sync and async callables are both accepted.

        Returns a function that removes the subscriber again.
        """
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    async def log(self, event: SessionEvent) -> bool:
        """
        Record an event.

        Always logs locally, then notifies subscribers in registration order.

        Returns True if every subscriber handled the event.
        """
        log_dict = event.to_log_dict()

        if event.severity == EventSeverity.ERROR:
            self._logger.error("session_event", **log_dict)
        elif event.severity == EventSeverity.WARNING:
            self._logger.warning("session_event", **log_dict)
        elif event.severity == EventSeverity.DEBUG:
            self._logger.debug("session_event", **log_dict)
        else:
            self._logger.info("session_event", **log_dict)

        delivered = True
        for subscriber in list(self._subscribers):
            try:
                result: Any = subscriber(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "session_subscriber_failed",
                    error=str(e)[:120],
                    error_type=type(e).__name__,
                    event_id=str(event.event_id),
                )
                delivered = False

        return delivered

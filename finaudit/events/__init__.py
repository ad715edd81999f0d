"""Session lifecycle events."""

from finaudit.events.logger import EventSubscriber, SessionEventLogger

__all__ = ["EventSubscriber", "SessionEventLogger"]

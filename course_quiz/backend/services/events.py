"""
Course Quiz Attempt Service
Domain events published after attempt state changes are committed
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, List

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class AttemptCompletedEvent(BaseModel):
    """Published once a submitted attempt has been scored and committed"""
    event_type: str = "quiz.attempt.completed"
    attempt_id: str
    quiz_id: str
    user_id: str
    attempt_number: int
    score: float
    total_points: float
    percentage: float
    passed: bool
    pending_manual_grading: int = 0
    completed_at: datetime


EventHandler = Callable[[AttemptCompletedEvent], Awaitable[None]]


class EventDispatcher:
    """In-process fan-out of completion events to subscribed handlers"""

    def __init__(self):
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def handlers(self) -> List[EventHandler]:
        return list(self._handlers)

    async def publish(self, event: AttemptCompletedEvent) -> None:
        """Deliver an event to every handler.

        The attempt is already committed when this runs, so a failing
        handler is logged and the remaining handlers still receive it.
        """
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)!r} "
                    f"failed for {event.event_type}: {e}",
                    exc_info=True
                )


async def log_attempt_completed(event: AttemptCompletedEvent) -> None:
    logger.info(
        f"Attempt {event.attempt_id} completed by user {event.user_id}: "
        f"{event.percentage}% ({'passed' if event.passed else 'failed'})"
    )


_dispatcher = None


def get_event_dispatcher() -> EventDispatcher:
    """Process-wide dispatcher with the logging handler registered"""
    global _dispatcher

    if _dispatcher is None:
        _dispatcher = EventDispatcher()
        _dispatcher.subscribe(log_attempt_completed)

    return _dispatcher


__all__ = [
    "AttemptCompletedEvent",
    "EventDispatcher",
    "EventHandler",
    "log_attempt_completed",
    "get_event_dispatcher",
]

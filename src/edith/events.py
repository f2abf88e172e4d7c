"""
Change events for dashboard fan-out.
Created: 2026-02-14

The resource manager publishes an event after every successful change
(``booking.created``, ``quota.warning``, ...). Transports such as a
WebSocket hub or webhook dispatcher subscribe here; the manager never
knows who is listening.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from edith import lifecycle

logger = logging.getLogger(__name__)

Subscriber = Callable[["ResourceEvent"], Awaitable[None] | None]


@dataclass
class ResourceEvent:
    """A change notification."""

    type: str
    data: dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp}


class EventBroadcaster:
    """Process-scoped subscriber registry.

    Created at startup, cleared at shutdown. Subscribers may be sync or
    async callables; a failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event_type: str, data: dict[str, Any]) -> ResourceEvent:
        """Deliver an event to every subscriber."""
        event = ResourceEvent(type=event_type, data=data)
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning(f"Subscriber failed on {event_type}", exc_info=True)
        return event

    def clear(self) -> None:
        """Drop all subscribers."""
        self._subscribers.clear()


# =========================================================================
# Factory Function
# =========================================================================

_broadcaster_instance: EventBroadcaster | None = None


def get_event_broadcaster() -> EventBroadcaster:
    """Get or create the event broadcaster singleton."""
    global _broadcaster_instance
    if _broadcaster_instance is None:
        _broadcaster_instance = EventBroadcaster()
        lifecycle.register(
            "event_broadcaster",
            shutdown=_broadcaster_instance.clear,
            reset=reset_event_broadcaster,
        )
    return _broadcaster_instance


def reset_event_broadcaster() -> None:
    """Reset the broadcaster singleton (for testing)."""
    global _broadcaster_instance
    _broadcaster_instance = None

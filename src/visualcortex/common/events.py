"""In-process event bus.

Voice connection state changes arrive from a background reader task; they
are published here and consumed by the application, which turns them into
log entries and status updates.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from visualcortex.common.logging import get_logger

# Voice session topics
VOICE_CONNECTING = "voice.connecting"
VOICE_CONNECTED = "voice.connected"
VOICE_DISCONNECTED = "voice.disconnected"
VOICE_ERROR = "voice.error"
VOICE_AGENT_RESPONSE = "voice.agent_response"


@dataclass
class Event:
    """Event message."""

    topic: str
    data: dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """Pub/sub dispatch on the running event loop.

    Topics are dot-separated. Subscriptions may use ``*`` to match exactly
    one segment and a trailing ``**`` to match any remainder.
    """

    def __init__(self, history_limit: int = 200) -> None:
        self._subscribers: list[tuple[str, EventHandler]] = []
        self._history: list[Event] = []
        self._history_limit = history_limit
        self.logger = get_logger("event_bus")

    async def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers.

        Handlers run concurrently; a failing handler is logged and does not
        affect the others or the publisher.
        """
        self.logger.debug(
            "publishing_event",
            topic=event.topic,
            event_id=event.event_id,
            source=event.source,
        )

        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: -self._history_limit]

        handlers = [
            handler
            for pattern, handler in list(self._subscribers)
            if topic_matches(event.topic, pattern)
        ]
        if handlers:
            await asyncio.gather(*[self._safe_dispatch(h, event) for h in handlers])

    async def _safe_dispatch(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            self.logger.exception(
                "event_handler_error",
                topic=event.topic,
                event_id=event.event_id,
                error=str(e),
            )

    def subscribe(self, pattern: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe a handler to a topic pattern.

        Returns:
            Function that removes the subscription.
        """
        entry = (pattern, handler)
        self._subscribers.append(entry)
        self.logger.debug("subscribed", pattern=pattern)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def get_history(self, topic: str | None = None, limit: int = 100) -> list[Event]:
        """Get recent events, newest first, optionally filtered by pattern."""
        events = self._history
        if topic:
            events = [e for e in events if topic_matches(e.topic, topic)]
        return list(reversed(events[-limit:]))

    def clear_history(self) -> None:
        """Clear event history."""
        self._history.clear()


def topic_matches(topic: str, pattern: str) -> bool:
    """Check whether a topic matches a subscription pattern."""
    topic_parts = topic.split(".")
    pattern_parts = pattern.split(".")

    for i, part in enumerate(pattern_parts):
        if part == "**":
            return i == len(pattern_parts) - 1 and len(topic_parts) >= i
        if i >= len(topic_parts):
            return False
        if part != "*" and part != topic_parts[i]:
            return False

    return len(topic_parts) == len(pattern_parts)

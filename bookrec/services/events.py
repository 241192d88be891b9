"""
Engine Event Publishing

Lets other parts of the process (and other instances, through Redis
pub/sub) react when background work changes a book.

Features:
- Event types for covers and persisted books
- In-process subscribers, called synchronously on the publishing thread
- Optional Redis pub/sub for horizontal scaling

Usage:
    from bookrec.services.events import EventPublisher, EventType

    publisher = EventPublisher(redis_cache)
    publisher.subscribe(EventType.COVER_UPDATED, lambda event: ...)
    publisher.publish_cover_updated(book_id, {"url": "...", "source": "OPEN_LIBRARY"})
"""

import json
import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bookrec.services.cache import RedisCache

logger = logging.getLogger(__name__)


# =============================================================================
# Event Types
# =============================================================================


class EventType(StrEnum):
    """Types of events that can be published."""

    COVER_UPDATED = "cover.updated"
    BOOK_UPSERTED = "book.upserted"


@dataclass
class Event:
    """
    Represents an event to be published.

    Attributes:
        type: The event type
        data: Event payload data
        timestamp: When the event occurred
    """

    type: EventType
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


EventHandler = Callable[[Event], None]


# =============================================================================
# Event Publisher
# =============================================================================


class EventPublisher:
    """
    Publishes events to in-process subscribers and optionally to Redis.

    A failing subscriber is logged and does not stop delivery to the rest.
    """

    def __init__(self, redis_cache: "RedisCache | None" = None, channel: str = "bookrec_events"):
        self._redis_cache = redis_cache
        self._redis_channel = channel
        self._subscribers: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._subscribers[event_type]:
                self._subscribers[event_type].remove(handler)

    def publish(self, event: Event) -> int:
        """
        Publish an event.

        Returns:
            Number of in-process subscribers that handled the event
        """
        with self._lock:
            handlers = list(self._subscribers[event.type])

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(f"Subscriber failed handling {event.type.value}")

        logger.debug(f"Published {event.type.value} to {delivered} subscriber(s)")
        self._publish_to_redis(event)
        return delivered

    def _publish_to_redis(self, event: Event) -> bool:
        """Forward the event to other engine instances."""
        if self._redis_cache is None:
            return False
        return self._redis_cache.publish(self._redis_channel, event.to_json())

    def publish_cover_updated(self, book_id: str, data: dict[str, Any]) -> int:
        return self.publish(Event(type=EventType.COVER_UPDATED, data={"book_id": book_id, **data}))

    def publish_book_upserted(self, book_id: str, data: dict[str, Any]) -> int:
        return self.publish(Event(type=EventType.BOOK_UPSERTED, data={"book_id": book_id, **data}))

"""
In-process event bus between the marketplace and the notifier.

The business-logic layer publishes domain events (a request was created, an
offer was accepted ...) and never learns who consumes them. The notification
service subscribes to the kinds it understands. A message broker could take
this place in a multi-process deployment.

Design decisions:
- Handlers may be plain functions or coroutines; coroutines are awaited
- Subscriptions are by event kind, "*" receives every kind
- Delivery follows subscription order, one handler at a time
- A raising handler is logged and skipped, so the publisher (e.g. the offer
  acceptance flow) never sees a notification failure
- Only the most recent events are kept, for debugging
"""

import inspect
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, Union
from uuid import uuid4

from shared.models import utcnow

logger = logging.getLogger("event_bus")

ALL_KINDS = "*"


@dataclass
class Event:
    """
    A domain event published by the marketplace.

    Attributes:
        event_type: Event kind used for routing, e.g. "OfferAccepted"
        payload: Recipient id and the domain records involved
        source: Publishing component
        event_id: Unique id of this occurrence
        timestamp: When it happened
    """
    event_type: str
    payload: dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def recipient_id(self) -> Optional[int]:
        return self.payload.get("recipient_id")

    def __str__(self) -> str:
        return f"Event({self.event_type}, id={self.event_id[:8]}, source={self.source})"


EventHandler = Callable[[Event], Union[None, Awaitable[Any]]]


class EventBus:
    """
    Async pub/sub bus.

    Example:
        bus = EventBus()
        bus.subscribe_many(EventKinds.all(), service.handle_event)
        await bus.publish(offer_accepted(7, offer, request))

    Args:
        history_size: How many published events recent_events() keeps
                      (0 disables the history)
    """

    def __init__(self, history_size: int = 200):
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._history: deque[Event] = deque(maxlen=history_size)
        self.history_size = history_size

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)} to '{event_type}'")

    def subscribe_many(self, event_types: Iterable[str], handler: EventHandler) -> None:
        for event_type in event_types:
            self.subscribe(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Receive every event, whatever its kind (audit, debugging)."""
        self.subscribe(ALL_KINDS, handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """
        Remove one subscription.

        Returns:
            False if the handler was not subscribed to that kind
        """
        handlers = self._subscribers.get(event_type, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        """Handlers an event of this kind would reach, in call order."""
        return self._subscribers.get(event_type, []) + self._subscribers.get(ALL_KINDS, [])

    async def publish(self, event: Event) -> int:
        """
        Deliver an event to its subscribers.

        Returns:
            Number of handlers the event was delivered to, including handlers
            that raised
        """
        if self.history_size:
            self._history.append(event)

        handlers = self.handlers_for(event.event_type)
        if not handlers:
            logger.warning(f"No handlers for event type '{event.event_type}'")
            return 0

        logger.info(f"Publishing: {event} to {len(handlers)} handler(s)")
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler raised exception for {event}: {e}")
        return len(handlers)

    def recent_events(self, event_type: Optional[str] = None) -> list[Event]:
        """Most recent published events, oldest first, optionally of one kind."""
        return [e for e in self._history if event_type is None or e.event_type == event_type]

    def clear_history(self) -> None:
        self._history.clear()

"""
Event classifier: domain event -> NotificationEvent.

| domain event     | event type       | priority |
|------------------|------------------|----------|
| RequestCreated   | request-created  | digest   |
| MessageReceived  | message-received | digest   |
| ReviewCreated    | review-created   | digest   |
| OfferAccepted    | offer-accepted   | instant  |

Offer acceptance is time-sensitive and rare, so it is always sent at once.
The other kinds are batched into digests unless the publisher set the
event's `instant` flag.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dispatch.event_bus import Event
from dispatch.events import EventKinds
from shared.channels import build_dedup_key
from shared.exceptions import UnknownEventKind
from shared.models import EventType


class Priority(str, Enum):
    INSTANT = "instant"
    DIGEST = "digest"


@dataclass
class NotificationEvent:
    """A classified notification, consumed once by the dispatcher."""
    recipient_id: int
    event_type: EventType
    priority: Priority
    domain_id: Any
    render_context: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        return build_dedup_key(self.event_type, self.domain_id)


# kind -> (event type, default priority, payload key of the domain entity)
_MAPPING: dict[str, tuple[EventType, Priority, str]] = {
    EventKinds.REQUEST_CREATED: (EventType.REQUEST_CREATED, Priority.DIGEST, "request"),
    EventKinds.OFFER_ACCEPTED: (EventType.OFFER_ACCEPTED, Priority.INSTANT, "offer"),
    EventKinds.MESSAGE_RECEIVED: (EventType.MESSAGE_RECEIVED, Priority.DIGEST, "message"),
    EventKinds.REVIEW_CREATED: (EventType.REVIEW_CREATED, Priority.DIGEST, "review"),
}


def classify(event: Event) -> NotificationEvent:
    """
    Map a domain event to a NotificationEvent. Pure; no side effects.

    Raises:
        UnknownEventKind: If the event kind has no notification mapping.
        ValueError: If the payload lacks the recipient or the domain entity.
    """
    mapping = _MAPPING.get(event.event_type)
    if mapping is None:
        raise UnknownEventKind(event.event_type)
    event_type, priority, entity_key = mapping

    context = dict(event.payload)
    recipient_id = context.pop("recipient_id", None)
    instant = context.pop("instant", False)
    entity = context.get(entity_key)
    if recipient_id is None or entity is None:
        raise ValueError(f"{event} is missing 'recipient_id' or '{entity_key}'")

    if instant:
        priority = Priority.INSTANT

    return NotificationEvent(
        recipient_id=recipient_id,
        event_type=event_type,
        priority=priority,
        domain_id=entity.id,
        render_context=context,
    )

"""
Domain event definitions consumed by the notifier.

The marketplace publishes these when something happens that a service
provider should hear about. Each event names its recipient and carries the
records needed to render the notification, so the notifier never has to query
back.

Design decisions:
- Events are named in past tense (OfferAccepted, not AcceptOffer)
- Payloads hold the pydantic domain records themselves
- The `instant` flag lets a publisher ask for immediate delivery of an event
  kind that is normally digested; offer acceptance is always instant
"""

from typing import Optional

from dispatch.event_bus import Event
from shared.models import Message, Offer, Review, ServiceRequest


# =============================================================================
# Event Kind Constants
# =============================================================================

class EventKinds:
    """Constants for domain event kinds."""
    REQUEST_CREATED = "RequestCreated"
    OFFER_ACCEPTED = "OfferAccepted"
    MESSAGE_RECEIVED = "MessageReceived"
    REVIEW_CREATED = "ReviewCreated"

    @classmethod
    def all(cls) -> list[str]:
        return [cls.REQUEST_CREATED, cls.OFFER_ACCEPTED, cls.MESSAGE_RECEIVED, cls.REVIEW_CREATED]


# =============================================================================
# Event Constructors
# =============================================================================

def request_created(
    recipient_id: int,
    request: ServiceRequest,
    instant: bool = False,
    source: str = "requests",
) -> Event:
    """A new request matching the provider's area was posted."""
    return Event(
        event_type=EventKinds.REQUEST_CREATED,
        source=source,
        payload={
            "recipient_id": recipient_id,
            "request": request,
            "instant": instant,
        },
    )


def offer_accepted(
    recipient_id: int,
    offer: Offer,
    request: ServiceRequest,
    client_name: Optional[str] = None,
    source: str = "offers",
) -> Event:
    """
    A client accepted the provider's offer.

    client_name may be left out; the notifier then looks the client up through
    offer.request_user_id.
    """
    return Event(
        event_type=EventKinds.OFFER_ACCEPTED,
        source=source,
        payload={
            "recipient_id": recipient_id,
            "offer": offer,
            "request": request,
            "client_name": client_name,
        },
    )


def message_received(
    recipient_id: int,
    message: Message,
    request: ServiceRequest,
    sender_name: str,
    instant: bool = False,
    source: str = "messages",
) -> Event:
    """A client sent the provider a message about a request."""
    return Event(
        event_type=EventKinds.MESSAGE_RECEIVED,
        source=source,
        payload={
            "recipient_id": recipient_id,
            "message": message,
            "request": request,
            "sender_name": sender_name,
            "instant": instant,
        },
    )


def review_created(
    recipient_id: int,
    review: Review,
    client_name: str,
    instant: bool = False,
    source: str = "reviews",
) -> Event:
    """A client reviewed the provider."""
    return Event(
        event_type=EventKinds.REVIEW_CREATED,
        source=source,
        payload={
            "recipient_id": recipient_id,
            "review": review,
            "client_name": client_name,
            "instant": instant,
        },
    )

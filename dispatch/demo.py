"""
Demonstration scripts for the notification dispatcher.

These functions show the dispatcher in action against the JSON fixtures.
Emails go to an in-memory Elastic Email stand-in (httpx.MockTransport), so
nothing leaves the machine. Run them to see events being classified, queued,
flushed and sent.
"""

import asyncio
import logging
from datetime import datetime

import httpx

from dispatch.events import offer_accepted
from dispatch.notification_service import NotificationService, build_notification_service
from shared.config import Settings
from shared.data_store import DataStore
from shared.models import Message, Offer, Review, ServiceRequest

logger = logging.getLogger("demo")

DEMO_SETTINGS = dict(
    elastic_email_api_key="demo-key",
    dashboard_url="https://carvizio.ro/dashboard/service",
)


def demo_email_client() -> httpx.AsyncClient:
    """HTTP client whose transport accepts every email like Elastic Email does."""
    counter = {"sent": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        counter["sent"] += 1
        return httpx.Response(200, json={"success": True, "data": {"messageid": f"demo-{counter['sent']}"}})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _build_service() -> NotificationService:
    service = build_notification_service(
        settings=Settings(**DEMO_SETTINGS),
        data_store=DataStore(),
        client=demo_email_client(),
    )
    service.start(run_scheduler=False)
    return service


def _print_sent(service: NotificationService):
    print("\nNotifications sent:")
    for msg in service.channels.get_all_sent_messages():
        print(f"  {msg}")


def _sample_request(request_id: int = 101, title: str = "Brake pads replacement") -> ServiceRequest:
    return ServiceRequest(
        id=request_id,
        title=title,
        description="Front brake pads squeal when braking, car is a 2016 Dacia Logan.",
        county="Cluj",
        cities=["Cluj-Napoca"],
        preferred_date=datetime(2026, 11, 3),
    )


async def run_offer_accepted_demo():
    """
    Offer acceptance is sent at once on every active channel.

    The publisher leaves out the client name; the notifier finds it through
    the offer's requesting user.
    """
    print("\n" + "=" * 70)
    print("DEMO: Offer accepted (instant)")
    print("=" * 70 + "\n")

    service = _build_service()
    request = _sample_request()
    offer = Offer(id=42, request_id=request.id, request_user_id=501, title="Brake pads + labour", price=850.0)

    outcome = await service.event_bus.publish(offer_accepted(1, offer, request))
    logger.info(f"Event delivered to {outcome} handler(s)")

    _print_sent(service)
    sent = service.channels.get_all_sent_messages()
    await service.aclose()
    return sent


async def run_digest_demo():
    """
    Two requests and one message are batched into one digest email.

    The email has a Requests section and a Messages section and a
    "3 new notifications" subject.
    """
    print("\n" + "=" * 70)
    print("DEMO: Digest batching")
    print("=" * 70 + "\n")

    service = _build_service()
    first = _sample_request(101)
    second = _sample_request(102, "Oil change")
    message = Message(id=7, request_id=first.id, content="Can you do it on Saturday morning?")

    for outcome in [
        await service.notify_new_request(1, first),
        await service.notify_new_request(1, second),
        await service.notify_new_message(1, message, first, sender_name="Ana Pop"),
    ]:
        print(f"  dispatch outcome: {outcome.value}")

    print(f"\nPending entries before flush: {service.digest_queue.pending_count()}")
    summary = await service.force_flush()
    print(f"Flush summary: {summary.to_dict()}")

    _print_sent(service)
    sent = service.channels.get_all_sent_messages()
    await service.aclose()
    return sent


async def run_preferences_demo():
    """
    Preferences decide the route.

    Provider 2 has turned off message emails and the browser channel, so a
    message is suppressed. Turning email off globally and back on restores
    the earlier per-type choices.
    """
    print("\n" + "=" * 70)
    print("DEMO: Preference suppression")
    print("=" * 70 + "\n")

    service = _build_service()
    request = _sample_request()
    message = Message(id=8, request_id=request.id, content="Is the price final?")

    outcome = await service.notify_new_message(2, message, request, sender_name="Ana Pop")
    print(f"  message for provider 2: {outcome.value}")

    off = await service.preference_store.update(2, {"email_enabled": False})
    print(f"  email off -> review flag reads {off.email.review_created}")
    outcome = await service.notify_new_review(2, Review(id=3, rating=5, comment="Great job"), "Ana Pop")
    print(f"  review for provider 2: {outcome.value}")

    on = await service.preference_store.update(2, {"email_enabled": True})
    print(f"  email on  -> review flag reads {on.email.review_created}, "
          f"message flag reads {on.email.message_received}")

    _print_sent(service)
    sent = service.channels.get_all_sent_messages()
    await service.aclose()
    return sent


DEMOS = {
    "offer": run_offer_accepted_demo,
    "digest": run_digest_demo,
    "preferences": run_preferences_demo,
}


async def run_all():
    for demo in DEMOS.values():
        await demo()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
        datefmt="%H:%M:%S",
    )
    asyncio.run(run_all())

"""
Notification service: the entry point the marketplace talks to.

The business-logic layer either calls the notify_* methods directly or
publishes domain events on the event bus; both paths end in handle_event,
which classifies the event and hands it to the dispatcher. A digest scheduler
flushes the queue every 15 minutes, and force_flush() does the same on demand.

Design decisions:
- Collaborators (preference store, channel senders, bus) are constructor
  arguments; build_notification_service() wires the production set
- Nothing raised while notifying reaches the caller: accepting an offer must
  succeed even if the notification fails
"""

import logging
from typing import Any, Optional

import httpx

from dispatch.classifier import classify
from dispatch.digest_queue import DigestQueue, FlushSummary
from dispatch.dispatcher import DispatchOutcome, Dispatcher
from dispatch.event_bus import Event, EventBus
from dispatch.events import (
    EventKinds,
    message_received,
    offer_accepted,
    request_created,
    review_created,
)
from dispatch.scheduler import DigestScheduler
from dispatch.senders import BrowserSender, EmailSender
from shared.channels import NotificationChannels, PushGateway
from shared.config import Settings, get_settings
from shared.data_store import DataStore
from shared.exceptions import UnknownEventKind
from shared.models import ChannelType, Message, Offer, Review, ServiceRequest
from shared.preferences import PreferenceStore

logger = logging.getLogger("notification_service")


class NotificationService:
    """
    Event-driven notification service.

    Example:
        service = build_notification_service()
        service.start()

        # Either call it directly...
        await service.notify_offer_accepted(7, offer, request)
        # ...or publish on the bus
        await service.event_bus.publish(request_created(7, request))
    """

    def __init__(
        self,
        preference_store: PreferenceStore,
        senders: dict[ChannelType, Any],
        event_bus: Optional[EventBus] = None,
        digest_interval_minutes: int = 15,
        channels: Optional[NotificationChannels] = None,
        data_store: Optional[DataStore] = None,
    ):
        """
        Args:
            preference_store: Recipient preferences
            senders: Channel senders keyed by channel
            event_bus: Bus to subscribe to on start() (a private bus by default)
            digest_interval_minutes: Period of the automatic digest flush
            channels: Underlying channels, closed by aclose()
            data_store: Recipient directory, exposed for the API and demo
        """
        self.preference_store = preference_store
        self.senders = senders
        self.event_bus = event_bus or EventBus()
        self.channels = channels
        self.data_store = data_store
        self.digest_queue = DigestQueue(preference_store, senders)
        self.dispatcher = Dispatcher(preference_store, self.digest_queue, senders)
        self.scheduler = DigestScheduler(self.force_flush, digest_interval_minutes)
        self._started = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, run_scheduler: bool = True) -> None:
        """
        Subscribe to domain events and start the digest timer.

        Must be called with a running event loop when run_scheduler is True.
        """
        if self._started:
            logger.warning("NotificationService already started")
            return
        self.event_bus.subscribe_many(EventKinds.all(), self.handle_event)
        if run_scheduler:
            self.scheduler.start()
        self._started = True
        logger.info("NotificationService started - subscribed to events")

    def stop(self) -> None:
        if not self._started:
            return
        for kind in EventKinds.all():
            self.event_bus.unsubscribe(kind, self.handle_event)
        self.scheduler.shutdown()
        self._started = False
        logger.info("NotificationService stopped")

    async def aclose(self) -> None:
        self.stop()
        if self.channels is not None:
            await self.channels.aclose()

    # =========================================================================
    # Inbound triggers
    # =========================================================================

    async def notify_new_request(
        self, recipient_id: int, request: ServiceRequest, instant: bool = False
    ) -> Optional[DispatchOutcome]:
        return await self.handle_event(request_created(recipient_id, request, instant=instant))

    async def notify_offer_accepted(
        self,
        recipient_id: int,
        offer: Offer,
        request: ServiceRequest,
        client_name: Optional[str] = None,
    ) -> Optional[DispatchOutcome]:
        """Always instant."""
        return await self.handle_event(offer_accepted(recipient_id, offer, request, client_name))

    async def notify_new_message(
        self,
        recipient_id: int,
        message: Message,
        request: ServiceRequest,
        sender_name: str,
        instant: bool = False,
    ) -> Optional[DispatchOutcome]:
        return await self.handle_event(
            message_received(recipient_id, message, request, sender_name, instant=instant)
        )

    async def notify_new_review(
        self, recipient_id: int, review: Review, client_name: str, instant: bool = False
    ) -> Optional[DispatchOutcome]:
        return await self.handle_event(review_created(recipient_id, review, client_name, instant=instant))

    async def handle_event(self, event: Event) -> Optional[DispatchOutcome]:
        """
        Classify and dispatch one domain event.

        Returns:
            The dispatch outcome, or None if the event was discarded.
        """
        try:
            notification = classify(event)
        except UnknownEventKind as e:
            logger.error(f"Discarding {event}: {e}")
            return None
        except ValueError as e:
            logger.error(f"Discarding malformed {event}: {e}")
            return None

        try:
            return await self.dispatcher.handle(notification)
        except Exception:
            logger.exception(f"Dispatch of {notification.dedup_key} failed")
            return None

    # =========================================================================
    # Administrative
    # =========================================================================

    async def force_flush(self) -> FlushSummary:
        """Flush every pending digest now, outside the timer."""
        return await self.digest_queue.flush_all()


def build_notification_service(
    settings: Optional[Settings] = None,
    data_store: Optional[DataStore] = None,
    client: Optional[httpx.AsyncClient] = None,
    gateway: Optional[PushGateway] = None,
    event_bus: Optional[EventBus] = None,
) -> NotificationService:
    """Wire a NotificationService from settings."""
    settings = settings or get_settings()
    store = data_store or DataStore(settings.data_dir, persist_preferences=settings.persist_preferences)
    channels = NotificationChannels.from_settings(settings, client=client, gateway=gateway)
    senders = {
        ChannelType.EMAIL: EmailSender(channels.email, store, settings.dashboard_url),
        ChannelType.BROWSER: BrowserSender(channels.browser, settings.dashboard_url, store),
    }
    return NotificationService(
        preference_store=PreferenceStore(store),
        senders=senders,
        event_bus=event_bus,
        digest_interval_minutes=settings.digest_interval_minutes,
        channels=channels,
        data_store=store,
    )

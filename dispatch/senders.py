"""
Channel senders: render a notification for one channel and hand it off.

EmailSender looks the recipient up in the directory, renders the email and
passes it to the EmailChannel. BrowserSender renders a browser notification
and passes it to the BrowserPushChannel. Both return the channel's boolean
result and never raise for transport problems.
"""

import hashlib
import logging
from typing import Any, Optional, Protocol

from dispatch.classifier import NotificationEvent
from dispatch.digest_queue import PendingNotification
from shared.channels import BrowserPushChannel, EmailChannel
from shared.data_store import DataStore
from shared.models import ChannelType, EventType
from shared.templates import (
    render_browser_digest,
    render_browser_notification,
    render_digest_email,
    render_instant_email,
)

logger = logging.getLogger("senders")

DigestGroups = dict[EventType, list[PendingNotification]]


class ChannelSender(Protocol):
    channel: ChannelType

    async def send_instant(self, event: NotificationEvent) -> bool:
        ...

    async def send_digest(self, recipient_id: int, groups: DigestGroups) -> bool:
        ...


def digest_dedup_key(recipient_id: int, groups: DigestGroups) -> str:
    """Key for one digest, derived from the keys of the entries it carries."""
    keys = sorted(entry.dedup_key for entries in groups.values() for entry in entries)
    digest = hashlib.sha1("|".join(keys).encode("utf-8")).hexdigest()[:16]
    return f"digest_{recipient_id}_{digest}"


def resolve_render_context(event: NotificationEvent, directory: Optional[DataStore]) -> dict[str, Any]:
    """
    Fill in details the publisher may have left out.

    For an accepted offer without a client name, the client is looked up via
    the offer's requesting user and "Client" is used if that fails.
    """
    context = dict(event.render_context)
    if event.event_type == EventType.OFFER_ACCEPTED and not context.get("client_name"):
        offer = context["offer"]
        client = None
        if directory is not None and offer.request_user_id is not None:
            client = directory.get_client(offer.request_user_id)
        context["client_name"] = client.name if client else "Client"
    return context


class EmailSender:
    """Renders and sends notification emails."""

    channel = ChannelType.EMAIL

    def __init__(self, email: EmailChannel, directory: DataStore, dashboard_url: str):
        self.email = email
        self.directory = directory
        self.dashboard_url = dashboard_url

    def _recipient(self, recipient_id: int):
        provider = self.directory.get_service_provider(recipient_id)
        if provider is None:
            logger.error(f"Cannot find service provider {recipient_id}; email not sent")
        return provider

    async def send_instant(self, event: NotificationEvent) -> bool:
        provider = self._recipient(event.recipient_id)
        if provider is None:
            return False
        subject, html_body, text_body = render_instant_email(
            event.event_type,
            provider,
            self.dashboard_url,
            **resolve_render_context(event, self.directory),
        )
        return await self.email.send(
            provider.email,
            subject,
            html_body,
            text_body,
            event_type=event.event_type,
            domain_id=event.domain_id,
        )

    async def send_digest(self, recipient_id: int, groups: DigestGroups) -> bool:
        provider = self._recipient(recipient_id)
        if provider is None:
            return False
        subject, html_body, text_body = render_digest_email(
            provider,
            {event_type: [entry.payload for entry in entries] for event_type, entries in groups.items()},
            self.dashboard_url,
        )
        return await self.email.send(
            provider.email,
            subject,
            html_body,
            text_body,
            dedup_key=digest_dedup_key(recipient_id, groups),
        )


class BrowserSender:
    """Renders browser notifications and stores them for the recipient's browser."""

    channel = ChannelType.BROWSER

    def __init__(self, browser: BrowserPushChannel, dashboard_url: str, directory: Optional[DataStore] = None):
        self.browser = browser
        self.dashboard_url = dashboard_url
        self.directory = directory

    async def send_instant(self, event: NotificationEvent) -> bool:
        notification = render_browser_notification(
            event.event_type,
            event.dedup_key,
            self.dashboard_url,
            **resolve_render_context(event, self.directory),
        )
        return await self.browser.send(event.recipient_id, notification)

    async def send_digest(self, recipient_id: int, groups: DigestGroups) -> bool:
        notification = render_browser_digest(
            digest_dedup_key(recipient_id, groups),
            {event_type: [entry.payload for entry in entries] for event_type, entries in groups.items()},
            self.dashboard_url,
        )
        return await self.browser.send(recipient_id, notification)

"""
Notification channels: email via Elastic Email, browser via an inbox.

Email goes out through the Elastic Email v2 HTTP API. Browser notifications
are stored in a per-recipient inbox that the client-side watchdog polls and
acknowledges; an optional push gateway is tried as well.

Design decisions:
- Channels never raise to their callers; every failure becomes False plus
  an ERROR log line
- Channels track sent messages for test assertions and the demo
- The email dedup key defaults to "{event_type}_{domain_id}" and a key that
  was sent successfully within the dedup window is not sent again
- Email sends sharing a dedup key are serialized, so concurrent duplicates
  reach the transport at most once
- The HTTP client is injectable so tests can use httpx.MockTransport
"""

import asyncio
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, Union

import httpx

from shared.config import Settings
from shared.exceptions import TransportFailure
from shared.models import BrowserNotification, ChannelType, EventType, utcnow

logger = logging.getLogger("notifications")

SERVICE_ROLE = "service"


def build_dedup_key(event_type: Union[EventType, str], domain_id: Any) -> str:
    """Derive the idempotency key for one logical notification."""
    return f"{EventType(event_type).value}_{domain_id}"


@dataclass
class NotificationResult:
    """
    Result of a notification send attempt.

    Captures success/failure and metadata for debugging and testing.
    """
    success: bool
    channel: ChannelType
    recipient: str
    subject: Optional[str]
    body: str
    dedup_key: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    error: Optional[str] = None
    duplicate: bool = False

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        if self.channel == ChannelType.EMAIL:
            return f"{status} EMAIL to {self.recipient}: {self.subject}"
        return f"{status} BROWSER to {self.recipient}: {self.subject}"


class DeliveryLedger:
    """
    Dedup keys of recent successful sends, each kept for a fixed window.

    A window of zero disables deduplication.
    """

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def _purge(self, now: float):
        expired = [key for key, until in self._expiry.items() if until <= now]
        for key in expired:
            del self._expiry[key]

    def seen(self, key: str) -> bool:
        now = self._clock()
        self._purge(now)
        return key in self._expiry

    def record(self, key: str):
        if self.window_seconds <= 0:
            return
        self._expiry[key] = self._clock() + self.window_seconds

    def __len__(self) -> int:
        self._purge(self._clock())
        return len(self._expiry)


class EmailChannel:
    """
    Email channel backed by the Elastic Email v2 API.

    send() builds a form-encoded POST to {base_url}/email/send. A send counts
    as successful only if the HTTP status is 2xx and the JSON body reports
    success.
    """

    def __init__(
        self,
        api_key: Optional[str],
        from_address: str = "notificari@carvizio.ro",
        from_name: str = "Carvizio.ro",
        base_url: str = "https://api.elasticemail.com/v2",
        timeout: float = 10.0,
        dedup_window_minutes: int = 30,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.ledger = DeliveryLedger(dedup_window_minutes * 60)
        self._key_locks: dict[str, list] = {}
        self._client = client
        self._owns_client = client is None
        self.sent_messages: list[NotificationResult] = []

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "EmailChannel":
        return cls(
            api_key=settings.elastic_email_api_key,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
            base_url=settings.elastic_email_base_url,
            timeout=settings.email_timeout_seconds,
            dedup_window_minutes=settings.dedup_window_minutes,
            client=client,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self):
        """Close the HTTP client if this channel created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        dedup_key: Optional[str] = None,
        *,
        event_type: Optional[EventType] = None,
        domain_id: Any = None,
    ) -> bool:
        """
        Send an email.

        Args:
            to: Recipient email address
            subject: Email subject line
            html_body: Rendered HTML body
            text_body: Plain-text fallback
            dedup_key: Idempotency key; derived from event_type and domain_id
                       when omitted and both are given

        Returns:
            True if the transport accepted the message (or it was already sent
            within the dedup window), False otherwise. Never raises.
        """
        if dedup_key is None and event_type is not None and domain_id is not None:
            dedup_key = build_dedup_key(event_type, domain_id)

        if not dedup_key:
            return await self._deliver(to, subject, html_body, text_body, None)

        # Sends sharing a key run one at a time.
        async with self._key_lock(dedup_key):
            if self.ledger.seen(dedup_key):
                logger.info(f"[EMAIL DUPLICATE] To: {to} | Key: {dedup_key} | skipped")
                self.sent_messages.append(NotificationResult(
                    success=True,
                    channel=ChannelType.EMAIL,
                    recipient=to,
                    subject=subject,
                    body=text_body or html_body,
                    dedup_key=dedup_key,
                    duplicate=True,
                ))
                return True
            return await self._deliver(to, subject, html_body, text_body, dedup_key)

    @asynccontextmanager
    async def _key_lock(self, dedup_key: str):
        entry = self._key_locks.setdefault(dedup_key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._key_locks[dedup_key]

    async def _deliver(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: Optional[str],
        dedup_key: Optional[str],
    ) -> bool:
        result = NotificationResult(
            success=False,
            channel=ChannelType.EMAIL,
            recipient=to,
            subject=subject,
            body=text_body or html_body,
            dedup_key=dedup_key,
        )
        try:
            await self._post(to, subject, html_body, text_body)
            result.success = True
        except TransportFailure as e:
            result.error = str(e)

        self.sent_messages.append(result)
        if result.success:
            if dedup_key:
                self.ledger.record(dedup_key)
            logger.info(f"[EMAIL] To: {to} | Subject: {subject}")
        else:
            logger.error(f"[EMAIL FAILED] To: {to} | Subject: {subject} | Error: {result.error}")
        return result.success

    async def _post(self, to: str, subject: str, html_body: str, text_body: Optional[str]):
        """Hand the message to Elastic Email, raising TransportFailure on any error."""
        if not self.api_key:
            raise TransportFailure("Elastic Email API key is not configured")

        params = {
            "apikey": self.api_key,
            "from": self.from_address,
            "fromName": self.from_name,
            "to": to,
            "subject": subject,
            "bodyHtml": html_body,
            "bodyText": text_body or "",
        }
        try:
            response = await self._get_client().post(
                f"{self.base_url}/email/send",
                data=params,
                headers={"X-ElasticEmail-ApiKey": self.api_key},
            )
        except httpx.HTTPError as e:
            raise TransportFailure(f"HTTP error: {e}") from e

        if not response.is_success:
            raise TransportFailure(f"Elastic Email answered HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as e:
            raise TransportFailure("Elastic Email answered with a non-JSON body") from e
        if not payload.get("success"):
            raise TransportFailure(f"Elastic Email rejected the message: {payload.get('error')}")

    def get_sent_count(self) -> int:
        """Get the number of messages sent (for testing)."""
        return len(self.sent_messages)

    def get_successful_sends(self) -> list[NotificationResult]:
        """Get all successful sends, excluding suppressed duplicates."""
        return [m for m in self.sent_messages if m.success and not m.duplicate]

    def clear_history(self):
        """Clear sent message history (useful between tests)."""
        self.sent_messages.clear()

    def find_message_to(self, recipient: str) -> Optional[NotificationResult]:
        """Find a message sent to a specific recipient."""
        for msg in self.sent_messages:
            if msg.recipient == recipient:
                return msg
        return None


class BrowserInbox:
    """
    Unacknowledged browser notifications per recipient.

    A recipient is a (role, user id) pair: service provider 2 and client 2
    are different people with separate inboxes. The dispatcher only addresses
    service providers, so role defaults to "service".

    Items are keyed by dedup key. A key that is pending, or was acknowledged
    recently, is not added again. At most `max_pending` items are kept per
    recipient; beyond that the oldest pending item is dropped.
    """

    def __init__(self, remembered_acks: int = 500, max_pending: int = 200):
        self.remembered_acks = remembered_acks
        self.max_pending = max_pending
        self._pending: dict[tuple[str, int], OrderedDict[str, BrowserNotification]] = {}
        self._acknowledged: dict[tuple[str, int], OrderedDict[str, None]] = {}

    def add(self, recipient_id: int, notification: BrowserNotification, role: str = SERVICE_ROLE) -> bool:
        """Store a notification; returns False if the key is already known."""
        owner = (role, recipient_id)
        pending = self._pending.setdefault(owner, OrderedDict())
        acked = self._acknowledged.get(owner, {})
        if notification.key in pending or notification.key in acked:
            return False
        pending[notification.key] = notification
        while len(pending) > self.max_pending:
            dropped, _ = pending.popitem(last=False)
            logger.warning(f"Browser inbox full for {role} {recipient_id}; dropped oldest item {dropped}")
        return True

    def get_pending(self, recipient_id: int, role: str = SERVICE_ROLE) -> list[BrowserNotification]:
        return list(self._pending.get((role, recipient_id), {}).values())

    def acknowledge(self, recipient_id: int, keys: list[str], role: str = SERVICE_ROLE) -> int:
        """Remove acknowledged items; returns how many were pending."""
        owner = (role, recipient_id)
        pending = self._pending.get(owner, OrderedDict())
        acked = self._acknowledged.setdefault(owner, OrderedDict())
        removed = 0
        for key in keys:
            if pending.pop(key, None) is not None:
                removed += 1
            acked[key] = None
            acked.move_to_end(key)
        while len(acked) > self.remembered_acks:
            acked.popitem(last=False)
        return removed

    def pending_count(self, recipient_id: Optional[int] = None, role: str = SERVICE_ROLE) -> int:
        """Pending items for one recipient, or across every inbox when recipient_id is None."""
        if recipient_id is not None:
            return len(self._pending.get((role, recipient_id), {}))
        return sum(len(items) for items in self._pending.values())


class PushGateway(Protocol):
    """Server-initiated push transport (web push, FCM and the like)."""

    async def push(self, recipient_id: int, notification: BrowserNotification) -> bool:
        ...


class BrowserPushChannel:
    """
    Browser channel.

    Every notification is stored in the inbox, which is the delivery path the
    client watchdog relies on. If a push gateway is configured it is tried
    too; a gateway failure is logged and does not fail the send.
    """

    def __init__(self, inbox: Optional[BrowserInbox] = None, gateway: Optional[PushGateway] = None):
        self.inbox = inbox or BrowserInbox()
        self.gateway = gateway
        self.sent_messages: list[NotificationResult] = []

    async def send(self, recipient_id: int, notification: BrowserNotification) -> bool:
        """Deliver a notification to the recipient's browser. Never raises."""
        added = self.inbox.add(recipient_id, notification)
        result = NotificationResult(
            success=True,
            channel=ChannelType.BROWSER,
            recipient=str(recipient_id),
            subject=notification.title,
            body=notification.body,
            dedup_key=notification.key,
            duplicate=not added,
        )
        self.sent_messages.append(result)
        if not added:
            logger.info(f"[BROWSER DUPLICATE] To: {recipient_id} | Key: {notification.key} | skipped")
            return True

        logger.info(f"[BROWSER] To: {recipient_id} | Title: {notification.title}")
        if self.gateway is not None:
            try:
                pushed = await self.gateway.push(recipient_id, notification)
            except Exception as e:
                logger.error(f"[PUSH FAILED] To: {recipient_id} | Key: {notification.key} | Error: {e}")
            else:
                if not pushed:
                    logger.warning(f"[PUSH] Gateway declined {notification.key} for {recipient_id}")
        return True

    def get_sent_count(self) -> int:
        return len(self.sent_messages)

    def get_successful_sends(self) -> list[NotificationResult]:
        return [m for m in self.sent_messages if m.success and not m.duplicate]

    def clear_history(self):
        self.sent_messages.clear()


class NotificationChannels:
    """
    Facade for all notification channels.

    Provides a unified interface for sending notifications and manages
    channel instances.
    """

    def __init__(self, email: EmailChannel, browser: Optional[BrowserPushChannel] = None):
        self.email = email
        self.browser = browser or BrowserPushChannel()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        gateway: Optional[PushGateway] = None,
    ) -> "NotificationChannels":
        return cls(
            email=EmailChannel.from_settings(settings, client=client),
            browser=BrowserPushChannel(gateway=gateway),
        )

    def get_all_sent_messages(self) -> list[NotificationResult]:
        """Get all sent messages across all channels."""
        return self.email.sent_messages + self.browser.sent_messages

    def get_total_sent_count(self) -> int:
        """Get total number of messages sent across all channels."""
        return self.email.get_sent_count() + self.browser.get_sent_count()

    def clear_all_history(self):
        """Clear history for all channels."""
        self.email.clear_history()
        self.browser.clear_history()

    async def aclose(self):
        await self.email.aclose()

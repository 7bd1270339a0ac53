"""
Dispatcher: routes a classified notification to its channels.

1. Load the recipient's preferences
2. A channel is active when its global flag and its flag for this event type
   are both on
3. No active channel -> suppressed
4. Instant priority -> send on every active channel now, concurrently
5. Digest priority -> queue one entry per active channel

A failed send is logged and never raised; the dispatcher only reports which
route the notification took.
"""

import asyncio
import logging
from enum import Enum
from typing import Any

from dispatch.classifier import NotificationEvent, Priority
from dispatch.digest_queue import DigestQueue, PendingNotification
from shared.models import ChannelType
from shared.preferences import PreferenceStore

logger = logging.getLogger("dispatcher")


class DispatchOutcome(str, Enum):
    SENT = "sent"
    QUEUED = "queued"
    SUPPRESSED = "suppressed"


class Dispatcher:
    """
    Orchestrates preference checks, instant sends and digest queueing.

    Args:
        preference_store: Source of recipient preferences
        digest_queue: Where digest-priority notifications wait
        senders: Channel senders keyed by channel; each must provide
                 `async send_instant(event) -> bool`
    """

    def __init__(self, preference_store: PreferenceStore, digest_queue: DigestQueue, senders: dict[ChannelType, Any]):
        self.preference_store = preference_store
        self.digest_queue = digest_queue
        self.senders = senders

    async def handle(self, event: NotificationEvent) -> DispatchOutcome:
        preferences = await self.preference_store.get(event.recipient_id)
        channels = preferences.active_channels(event.event_type)

        if not channels:
            logger.info(
                f"Suppressed {event.dedup_key} for recipient {event.recipient_id}: no active channel"
            )
            return DispatchOutcome.SUPPRESSED

        if event.priority == Priority.INSTANT:
            results = await asyncio.gather(*(self._send_instant(channel, event) for channel in channels))
            delivered = [c.value for c, ok in zip(channels, results) if ok]
            logger.info(
                f"Sent {event.dedup_key} to recipient {event.recipient_id} "
                f"via {delivered or 'no channel'} (attempted {[c.value for c in channels]})"
            )
            return DispatchOutcome.SENT

        for channel in channels:
            self.digest_queue.enqueue(event.recipient_id, PendingNotification(
                recipient_id=event.recipient_id,
                channel=channel,
                event_type=event.event_type,
                payload=event.render_context,
                dedup_key=event.dedup_key,
            ))
        logger.info(
            f"Queued {event.dedup_key} for recipient {event.recipient_id} "
            f"on {[c.value for c in channels]}"
        )
        return DispatchOutcome.QUEUED

    async def _send_instant(self, channel: ChannelType, event: NotificationEvent) -> bool:
        sender = self.senders.get(channel)
        if sender is None:
            logger.warning(f"No {channel.value} sender configured; {event.dedup_key} not sent")
            return False
        try:
            return await sender.send_instant(event)
        except Exception:
            logger.exception(f"{channel.value} send of {event.dedup_key} failed")
            return False

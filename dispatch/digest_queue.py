"""
Digest queue: buffers digest-priority notifications until the next flush.

The queue is a single in-memory map of recipient id -> pending entries. It
is never persisted; a restart loses whatever was waiting, which is acceptable
for a best-effort channel.

Flush algorithm, for each recipient with pending entries:
1. Split the entries by channel, then by event type
2. Re-read the recipient's preferences and drop every group whose channel is
   no longer active for its event type
3. Skip a channel whose groups are all empty (no empty digests)
4. Otherwise hand one combined digest per channel to the channel sender

The whole map is swapped out before the first await, so anything enqueued
while a flush is running lands in a fresh queue for the next cycle. Entries
are gone once taken, whatever the sender reports (at most one attempt per
cycle).

A recipient whose flush fails is logged and counted; the others are still
flushed.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from shared.models import ChannelType, EventType, utcnow
from shared.preferences import PreferenceStore

logger = logging.getLogger("digest_queue")


@dataclass
class PendingNotification:
    """One queued notification for one channel."""
    recipient_id: int
    channel: ChannelType
    event_type: EventType
    payload: dict[str, Any]
    dedup_key: str
    enqueued_at: datetime = field(default_factory=utcnow)


@dataclass
class FlushSummary:
    """What one flush did; returned to the scheduler and the admin API."""
    recipients: int = 0
    digests_sent: int = 0
    digests_failed: int = 0
    entries_flushed: int = 0
    entries_dropped: int = 0
    recipients_skipped: int = 0
    recipients_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class DigestQueue:
    """
    Multi-recipient buffer of pending digest notifications.

    Args:
        preference_store: Consulted again at flush time
        senders: Channel senders keyed by channel; each must provide
                 `async send_digest(recipient_id, groups) -> bool`
    """

    def __init__(self, preference_store: PreferenceStore, senders: dict[ChannelType, Any]):
        self.preference_store = preference_store
        self.senders = senders
        self._queues: dict[int, list[PendingNotification]] = {}

    def enqueue(self, recipient_id: int, entry: PendingNotification) -> bool:
        """
        Add an entry to the recipient's queue.

        Returns:
            False if an entry with the same channel and dedup key is already
            waiting (the duplicate is ignored), True otherwise.
        """
        queue = self._queues.setdefault(recipient_id, [])
        for pending in queue:
            if pending.channel == entry.channel and pending.dedup_key == entry.dedup_key:
                logger.debug(f"Ignoring duplicate {entry.dedup_key} ({entry.channel.value}) for {recipient_id}")
                return False
        queue.append(entry)
        logger.debug(f"Queued {entry.dedup_key} ({entry.channel.value}) for recipient {recipient_id}")
        return True

    def pending_count(self, recipient_id: Optional[int] = None) -> int:
        if recipient_id is not None:
            return len(self._queues.get(recipient_id, []))
        return sum(len(entries) for entries in self._queues.values())

    def pending_for(self, recipient_id: int) -> list[PendingNotification]:
        return list(self._queues.get(recipient_id, []))

    async def flush_all(self) -> FlushSummary:
        """Flush every recipient's queue; see the module docstring."""
        batch, self._queues = self._queues, {}
        summary = FlushSummary()
        batch = {recipient_id: entries for recipient_id, entries in batch.items() if entries}
        if not batch:
            logger.debug("Digest flush: nothing queued")
            return summary

        logger.info(f"Digest flush: {len(batch)} recipient(s), {sum(map(len, batch.values()))} entries")
        for recipient_id, entries in batch.items():
            summary.recipients += 1
            try:
                await self._flush_recipient(recipient_id, entries, summary)
            except Exception:
                summary.recipients_failed += 1
                summary.entries_dropped += len(entries)
                logger.exception(f"Digest flush for recipient {recipient_id} failed; {len(entries)} entries dropped")

        logger.info(
            f"Digest flush done: {summary.digests_sent} sent, {summary.digests_failed} failed, "
            f"{summary.entries_dropped} dropped, {summary.recipients_failed} recipient(s) failed"
        )
        return summary

    async def _flush_recipient(self, recipient_id: int, entries: list[PendingNotification], summary: FlushSummary):
        preferences = await self.preference_store.get(recipient_id)

        by_channel: dict[ChannelType, dict[EventType, list[PendingNotification]]] = defaultdict(lambda: defaultdict(list))
        for entry in entries:
            by_channel[entry.channel][entry.event_type].append(entry)

        jobs = []
        for channel in (ChannelType.EMAIL, ChannelType.BROWSER):
            groups = {}
            for event_type, group in by_channel.get(channel, {}).items():
                if preferences.is_channel_active(channel, event_type):
                    groups[event_type] = group
                else:
                    summary.entries_dropped += len(group)
                    logger.info(
                        f"Dropping {len(group)} {event_type.value} entries for {recipient_id} "
                        f"({channel.value} disabled since enqueue)"
                    )
            if groups:
                jobs.append((channel, groups))

        if not jobs:
            summary.recipients_skipped += 1
            return

        results = await asyncio.gather(*(self._send(recipient_id, channel, groups) for channel, groups in jobs))
        for (channel, groups), ok in zip(jobs, results):
            summary.entries_flushed += sum(len(group) for group in groups.values())
            if ok:
                summary.digests_sent += 1
            else:
                summary.digests_failed += 1

    async def _send(self, recipient_id: int, channel: ChannelType, groups: dict[EventType, list[PendingNotification]]) -> bool:
        sender = self.senders.get(channel)
        if sender is None:
            logger.warning(f"No {channel.value} sender configured; digest for {recipient_id} discarded")
            return False
        try:
            return await sender.send_digest(recipient_id, groups)
        except Exception:
            logger.exception(f"{channel.value} digest for recipient {recipient_id} failed")
            return False

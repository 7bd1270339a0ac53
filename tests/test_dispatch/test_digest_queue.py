"""
Tests for the digest queue and its flush algorithm.
"""

import asyncio

from dispatch.digest_queue import DigestQueue, FlushSummary, PendingNotification
from shared.models import ChannelType, EventType
from shared.preferences import PreferenceStore


def entry(recipient_id, event_type, domain_id, channel=ChannelType.EMAIL):
    return PendingNotification(
        recipient_id=recipient_id,
        channel=channel,
        event_type=event_type,
        payload={"id": domain_id},
        dedup_key=f"{event_type.value}_{domain_id}",
    )


class TestEnqueue:
    def test_enqueue_and_count(self, digest_queue: DigestQueue):
        digest_queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))
        digest_queue.enqueue(2, entry(2, EventType.REQUEST_CREATED, 1))

        assert digest_queue.pending_count() == 2
        assert digest_queue.pending_count(1) == 1

    def test_duplicate_key_ignored_per_channel(self, digest_queue: DigestQueue):
        assert digest_queue.enqueue(1, entry(1, EventType.MESSAGE_RECEIVED, 5)) is True
        assert digest_queue.enqueue(1, entry(1, EventType.MESSAGE_RECEIVED, 5)) is False
        assert digest_queue.enqueue(1, entry(1, EventType.MESSAGE_RECEIVED, 5, ChannelType.BROWSER)) is True

        assert digest_queue.pending_count(1) == 2


class TestFlush:
    async def test_empty_queue_sends_nothing(self, digest_queue: DigestQueue, email_sender):
        summary = await digest_queue.flush_all()

        assert summary == FlushSummary()
        assert email_sender.digest_calls == []

    async def test_groups_by_type_in_one_digest(self, digest_queue: DigestQueue, email_sender):
        """Two requests and one message become one digest with two groups."""
        digest_queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))
        digest_queue.enqueue(1, entry(1, EventType.MESSAGE_RECEIVED, 2))
        digest_queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 3))

        summary = await digest_queue.flush_all()

        assert len(email_sender.digest_calls) == 1
        recipient_id, groups = email_sender.digest_calls[0]
        assert recipient_id == 1
        assert set(groups) == {EventType.REQUEST_CREATED, EventType.MESSAGE_RECEIVED}
        assert [e.payload["id"] for e in groups[EventType.REQUEST_CREATED]] == [1, 3]
        assert summary.digests_sent == 1
        assert summary.entries_flushed == 3

    async def test_one_digest_per_channel(self, digest_queue: DigestQueue, email_sender, browser_sender):
        digest_queue.enqueue(1, entry(1, EventType.REVIEW_CREATED, 1))
        digest_queue.enqueue(1, entry(1, EventType.REVIEW_CREATED, 1, ChannelType.BROWSER))

        summary = await digest_queue.flush_all()

        assert len(email_sender.digest_calls) == 1
        assert len(browser_sender.digest_calls) == 1
        assert summary.digests_sent == 2

    async def test_queue_is_cleared(self, digest_queue: DigestQueue, email_sender):
        digest_queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))

        await digest_queue.flush_all()
        await digest_queue.flush_all()

        assert digest_queue.pending_count() == 0
        assert len(email_sender.digest_calls) == 1

    async def test_cleared_even_when_send_fails(self, digest_queue: DigestQueue, email_sender):
        """At most one attempt per cycle."""
        email_sender.result = False
        digest_queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))

        summary = await digest_queue.flush_all()

        assert summary.digests_failed == 1
        assert digest_queue.pending_count() == 0

    async def test_sender_exception_does_not_abort_flush(self, digest_queue: DigestQueue, email_sender):
        email_sender.error = RuntimeError("boom")
        digest_queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))
        digest_queue.enqueue(2, entry(2, EventType.REQUEST_CREATED, 1))

        summary = await digest_queue.flush_all()

        assert summary.recipients == 2
        assert summary.digests_failed == 2
        assert len(email_sender.digest_calls) == 2

    async def test_group_disabled_since_enqueue_is_dropped(self, digest_queue: DigestQueue, preference_store, email_sender):
        digest_queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))
        digest_queue.enqueue(1, entry(1, EventType.MESSAGE_RECEIVED, 2))
        await preference_store.update(1, {"email": {"message_received": False}})

        summary = await digest_queue.flush_all()

        _, groups = email_sender.digest_calls[0]
        assert list(groups) == [EventType.REQUEST_CREATED]
        assert summary.entries_dropped == 1

    async def test_fully_filtered_recipient_gets_nothing(self, digest_queue: DigestQueue, preference_store, email_sender):
        digest_queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))
        await preference_store.update(1, {"email_enabled": False})

        summary = await digest_queue.flush_all()

        assert email_sender.digest_calls == []
        assert summary.recipients_skipped == 1
        assert summary.entries_dropped == 1

    async def test_enqueue_during_flush_lands_in_next_cycle(self, preference_store):
        """Entries added while a flush is in progress are neither lost nor merged."""
        calls = []
        queue = None

        class SlowSender:
            async def send_digest(self, recipient_id, groups):
                calls.append([e.payload["id"] for entries in groups.values() for e in entries])
                if len(calls) == 1:
                    queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 2))
                    await asyncio.sleep(0)
                return True

        queue = DigestQueue(preference_store, {ChannelType.EMAIL: SlowSender()})
        queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))

        await queue.flush_all()
        assert queue.pending_count(1) == 1
        await queue.flush_all()

        assert calls == [[1], [2]]

    async def test_summary_to_dict(self):
        assert FlushSummary(digests_sent=2).to_dict()["digests_sent"] == 2


class TestFlushIsolation:
    """One recipient's failure must not cost other recipients their digest."""

    async def test_preference_backend_error_uses_defaults(self, email_sender):
        class FlakyBackend:
            def load_preferences(self, recipient_id):
                if recipient_id == 1:
                    raise RuntimeError("connection reset")
                return None

            def save_preferences(self, recipient_id, record):
                pass

        queue = DigestQueue(PreferenceStore(FlakyBackend()), {ChannelType.EMAIL: email_sender})
        queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))
        queue.enqueue(2, entry(2, EventType.REQUEST_CREATED, 1))

        summary = await queue.flush_all()

        assert [recipient_id for recipient_id, _ in email_sender.digest_calls] == [1, 2]
        assert summary.digests_sent == 2
        assert summary.recipients_failed == 0

    async def test_failing_recipient_does_not_abort_flush(self, preference_store, email_sender):
        class PartlyBrokenStore:
            async def get(self, recipient_id):
                if recipient_id == 1:
                    raise RuntimeError("unexpected")
                return await preference_store.get(recipient_id)

        queue = DigestQueue(PartlyBrokenStore(), {ChannelType.EMAIL: email_sender})
        queue.enqueue(1, entry(1, EventType.REQUEST_CREATED, 1))
        queue.enqueue(1, entry(1, EventType.MESSAGE_RECEIVED, 2))
        queue.enqueue(2, entry(2, EventType.REQUEST_CREATED, 1))

        summary = await queue.flush_all()

        assert [recipient_id for recipient_id, _ in email_sender.digest_calls] == [2]
        assert summary.recipients == 2
        assert summary.recipients_failed == 1
        assert summary.entries_dropped == 2
        assert summary.digests_sent == 1
        assert queue.pending_count() == 0

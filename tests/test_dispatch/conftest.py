"""Fixtures for the dispatch tests: recording senders and a wired dispatcher."""

import pytest

from dispatch.digest_queue import DigestQueue
from dispatch.dispatcher import Dispatcher
from shared.models import ChannelType
from shared.preferences import PreferenceStore


class RecordingSender:
    """Channel sender that records calls and returns a fixed result."""

    def __init__(self, channel: ChannelType, result: bool = True, error: Exception = None):
        self.channel = channel
        self.result = result
        self.error = error
        self.instant_calls = []
        self.digest_calls = []

    async def send_instant(self, event) -> bool:
        self.instant_calls.append(event)
        if self.error:
            raise self.error
        return self.result

    async def send_digest(self, recipient_id, groups) -> bool:
        self.digest_calls.append((recipient_id, groups))
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def email_sender() -> RecordingSender:
    return RecordingSender(ChannelType.EMAIL)


@pytest.fixture
def browser_sender() -> RecordingSender:
    return RecordingSender(ChannelType.BROWSER)


@pytest.fixture
def senders(email_sender, browser_sender) -> dict:
    return {ChannelType.EMAIL: email_sender, ChannelType.BROWSER: browser_sender}


@pytest.fixture
def digest_queue(preference_store: PreferenceStore, senders) -> DigestQueue:
    return DigestQueue(preference_store, senders)


@pytest.fixture
def dispatcher(preference_store: PreferenceStore, digest_queue: DigestQueue, senders) -> Dispatcher:
    return Dispatcher(preference_store, digest_queue, senders)

"""Fixtures for the browser delivery tests: a fake inbox server and a watchdog bound to it."""

import json

import httpx
import pytest

from browser_delivery.token_provider import StoredTokenProvider
from browser_delivery.watchdog import BackgroundDeliveryWatchdog
from shared.models import BrowserNotification

BASE_URL = "https://carvizio.test"


class FakeInboxServer:
    """
    Serves /api/{role}/notifications/pending and /ack like the API does.

    Only tokens in `valid_tokens` are accepted. With `forget_acks` set, acked
    items keep being served, as happens when two polls overlap.
    Responses queued in `replies` are served to /pending calls first, in order.
    """

    def __init__(self):
        self.valid_tokens = {"good"}
        self.items: list[BrowserNotification] = []
        self.forget_acks = False
        self.fail_with = None
        self.replies: list[httpx.Response] = []
        self.polls: list[str] = []
        self.acked: list[list[str]] = []

    def add(self, key: str, title: str = "New message") -> BrowserNotification:
        item = BrowserNotification(key=key, title=title, body="body")
        self.items.append(item)
        return item

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail_with is not None:
            raise self.fail_with
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if request.url.path.endswith("/pending"):
            self.polls.append(token)
            if self.replies:
                return self.replies.pop(0)
        if token not in self.valid_tokens:
            return httpx.Response(401, json={"detail": "Invalid token"})

        if request.url.path.endswith("/pending"):
            return httpx.Response(
                200,
                json={"notifications": [item.model_dump(mode="json") for item in self.items]},
            )

        keys = json.loads(request.content)["keys"]
        self.acked.append(keys)
        if not self.forget_acks:
            self.items = [item for item in self.items if item.key not in keys]
        return httpx.Response(200, json={"acknowledged": len(keys)})


@pytest.fixture
def server() -> FakeInboxServer:
    return FakeInboxServer()


@pytest.fixture
def shown() -> list:
    return []


@pytest.fixture
def token_provider() -> StoredTokenProvider:
    return StoredTokenProvider()


@pytest.fixture
async def watchdog(server, shown, token_provider):
    """Watchdog with a long poll interval; tests that need ticks shorten it."""
    wd = BackgroundDeliveryWatchdog(
        BASE_URL,
        display=shown.append,
        token_provider=token_provider,
        poll_interval=60,
        client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
    )
    yield wd
    await wd.aclose()

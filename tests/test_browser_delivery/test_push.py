"""
Tests for choosing between the push agent and the polling fallback.
"""

import asyncio

import pytest

from browser_delivery.push import (
    START_BACKGROUND_CHECK,
    STOP_BACKGROUND_CHECK,
    BrowserDeliveryClient,
    DeliveryMode,
)
from browser_delivery.watchdog import WatchdogState


class FakeAgent:
    """Delivery agent that replies, stalls or fails on request."""

    def __init__(self, reply=None, delay: float = 0, error: Exception = None):
        self.reply = {"success": True} if reply is None else reply
        self.delay = delay
        self.error = error
        self.messages = []

    async def request(self, message):
        self.messages.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


class TestActivate:
    async def test_agent_ack_selects_push(self, watchdog):
        agent = FakeAgent()
        client = BrowserDeliveryClient(watchdog, agent)

        mode = await client.activate(1, "service", "good")

        assert mode == DeliveryMode.PUSH
        assert watchdog.state == WatchdogState.INACTIVE
        assert agent.messages[0]["type"] == START_BACKGROUND_CHECK
        assert agent.messages[0]["token"] == "good"

    async def test_no_agent_falls_back_to_polling(self, watchdog):
        client = BrowserDeliveryClient(watchdog)

        assert await client.activate(1, "service", "good") == DeliveryMode.POLLING
        assert watchdog.state == WatchdogState.ACTIVE

    async def test_agent_timeout_falls_back(self, watchdog):
        client = BrowserDeliveryClient(watchdog, FakeAgent(delay=1), ack_timeout=0.05)

        assert await client.activate(1, "service", "good") == DeliveryMode.POLLING
        assert watchdog.is_active

    @pytest.mark.parametrize("agent", [
        FakeAgent(error=RuntimeError("no service worker")),
        FakeAgent(reply={"success": False}),
        FakeAgent(reply={}),
    ])
    async def test_agent_failure_falls_back(self, watchdog, agent):
        client = BrowserDeliveryClient(watchdog, agent)

        assert await client.activate(1, "service", "good") == DeliveryMode.POLLING

    async def test_polling_uses_given_token(self, watchdog, server):
        client = BrowserDeliveryClient(watchdog)

        await client.activate(1, "client", "good")
        await asyncio.sleep(0.05)

        assert server.polls == ["good"]


class TestDeactivate:
    async def test_stops_polling(self, watchdog):
        client = BrowserDeliveryClient(watchdog)
        await client.activate(1, "service", "good")

        await client.deactivate()

        assert client.mode == DeliveryMode.INACTIVE
        assert watchdog.state == WatchdogState.INACTIVE

    async def test_tells_agent_to_stop(self, watchdog):
        agent = FakeAgent()
        client = BrowserDeliveryClient(watchdog, agent)
        await client.activate(1, "service", "good")

        await client.deactivate()

        assert agent.messages[-1] == {"type": STOP_BACKGROUND_CHECK}


class TestVisibility:
    async def test_rearms_stopped_watchdog(self, watchdog, server):
        client = BrowserDeliveryClient(watchdog)
        await client.activate(1, "service", "good")
        await asyncio.sleep(0.02)
        watchdog.stop()

        mode = client.handle_visibility_change(True)
        await asyncio.sleep(0.02)

        assert mode == DeliveryMode.POLLING
        assert watchdog.is_active
        assert server.polls == ["good", "good"]

    async def test_hidden_page_changes_nothing(self, watchdog):
        client = BrowserDeliveryClient(watchdog)
        await client.activate(1, "service", "good")
        watchdog.stop()

        client.handle_visibility_change(False)

        assert watchdog.state == WatchdogState.INACTIVE

    async def test_push_mode_is_left_alone(self, watchdog):
        client = BrowserDeliveryClient(watchdog, FakeAgent())
        await client.activate(1, "service", "good")

        assert client.handle_visibility_change(True) == DeliveryMode.PUSH
        assert watchdog.state == WatchdogState.INACTIVE

    async def test_without_session_nothing_starts(self, watchdog):
        client = BrowserDeliveryClient(watchdog)

        assert client.handle_visibility_change(True) == DeliveryMode.INACTIVE
        assert watchdog.state == WatchdogState.INACTIVE

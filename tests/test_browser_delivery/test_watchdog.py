"""
Tests for the background delivery watchdog.

The watchdog talks to FakeInboxServer through httpx.MockTransport. Ticks are
driven by calling poll_once() directly, except in the lifecycle tests which
run the real loop with a short interval.
"""

import asyncio

import httpx
import pytest

from browser_delivery.token_provider import StoredTokenProvider
from browser_delivery.watchdog import BackgroundDeliveryWatchdog, TokenUnavailable, WatchdogState


class TestPollOnce:
    async def test_displays_and_acknowledges(self, watchdog, server, shown, token_provider):
        server.add("message-received_17")
        server.add("request-created_101")
        token_provider.prime("good")

        displayed = await watchdog.poll_once(1, "service")

        assert [n.key for n in displayed] == ["message-received_17", "request-created_101"]
        assert shown == displayed
        assert server.acked == [["message-received_17", "request-created_101"]]
        assert server.items == []

    async def test_nothing_pending(self, watchdog, server, shown, token_provider):
        token_provider.prime("good")

        assert await watchdog.poll_once(1, "service") == []
        assert server.acked == []

    async def test_same_key_never_shown_twice(self, watchdog, server, shown, token_provider):
        """Overlapping polls can see an item again before its ack lands."""
        server.forget_acks = True
        server.add("message-received_17")
        token_provider.prime("good")

        await watchdog.poll_once(1, "service")
        second = await watchdog.poll_once(1, "service")

        assert second == []
        assert len(shown) == 1
        assert server.acked == [["message-received_17"], ["message-received_17"]]

    async def test_rejected_token_is_invalidated(self, server, shown):
        provider = StoredTokenProvider(sources=[lambda: "good"])
        provider.prime("stale")
        server.add("offer-accepted_42")
        watchdog = BackgroundDeliveryWatchdog(
            "https://carvizio.test",
            display=shown.append,
            token_provider=provider,
            client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
        )

        assert await watchdog.poll_once(1, "service") == []
        displayed = await watchdog.poll_once(1, "service")

        assert [n.key for n in displayed] == ["offer-accepted_42"]
        assert server.polls == ["stale", "good"]
        await watchdog.aclose()

    async def test_no_token_raises(self, watchdog):
        with pytest.raises(TokenUnavailable):
            await watchdog.poll_once(1, "service")

    async def test_network_error_is_not_fatal(self, watchdog, server, token_provider):
        server.fail_with = httpx.ConnectError("offline")
        token_provider.prime("good")

        assert await watchdog.poll_once(1, "service") == []

    @pytest.mark.parametrize("reply", [
        httpx.Response(200, text="<html>Sign in to the hotel Wi-Fi</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"notifications": "none"}),
        httpx.Response(200, json={"notifications": [{"title": "no key or body"}]}),
    ])
    async def test_malformed_response_is_not_fatal(self, watchdog, server, shown, token_provider, reply):
        server.replies.append(reply)
        token_provider.prime("good")

        assert await watchdog.poll_once(1, "service") == []
        assert shown == []
        assert server.acked == []

    async def test_display_failure_skips_item(self, server, token_provider):
        server.add("a")
        server.add("b")
        token_provider.prime("good")
        shown = []

        def display(item):
            if item.key == "a":
                raise RuntimeError("notification permission revoked")
            shown.append(item.key)

        watchdog = BackgroundDeliveryWatchdog(
            "https://carvizio.test",
            display=display,
            token_provider=token_provider,
            client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
        )

        await watchdog.poll_once(1, "service")

        assert shown == ["b"]
        assert server.acked == [["b"]]
        assert [item.key for item in server.items] == ["a"]
        await watchdog.aclose()

    async def test_async_display(self, server, token_provider):
        server.add("a")
        token_provider.prime("good")
        shown = []

        async def display(item):
            shown.append(item.key)

        watchdog = BackgroundDeliveryWatchdog(
            "https://carvizio.test",
            display=display,
            token_provider=token_provider,
            client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
        )

        await watchdog.poll_once(1, "client")

        assert shown == ["a"]
        await watchdog.aclose()


class TestLifecycle:
    async def test_start_polls_immediately(self, watchdog, server, shown):
        server.add("review-created_5")

        watchdog.start(1, "service", "good")
        await asyncio.sleep(0.05)

        assert watchdog.state == WatchdogState.ACTIVE
        assert [n.key for n in shown] == ["review-created_5"]

    async def test_restart_leaves_one_loop_with_new_token(self, watchdog, server):
        server.valid_tokens = {"t1", "t2"}

        watchdog.start(1, "service", "t1")
        watchdog.start(1, "service", "t2")
        await asyncio.sleep(0.05)

        assert watchdog.running_loops == 1
        assert server.polls == ["t2"]

    async def test_stop_prevents_further_ticks(self, watchdog, server):
        watchdog.poll_interval = 0.01
        watchdog.start(1, "service", "good")
        await asyncio.sleep(0.05)

        watchdog.stop()
        await asyncio.sleep(0.02)
        polls = len(server.polls)
        await asyncio.sleep(0.05)

        assert polls > 0
        assert len(server.polls) == polls
        assert watchdog.state == WatchdogState.INACTIVE
        assert watchdog.running_loops == 0

    async def test_keeps_polling_after_rejection(self, watchdog, server, token_provider):
        """A 401 tick is followed by a tick with a freshly resolved token."""
        token_provider.sources.append(lambda: "good")
        watchdog.poll_interval = 0.01

        watchdog.start(1, "service", "expired")
        await asyncio.sleep(0.08)
        watchdog.stop()

        assert server.polls[0] == "expired"
        assert "good" in server.polls[1:]

    async def test_malformed_response_keeps_polling(self, watchdog, server, shown):
        server.replies.append(httpx.Response(200, text="<html>502 Bad Gateway</html>"))
        server.add("review-created_5")
        watchdog.poll_interval = 0.01

        watchdog.start(1, "service", "good")
        await asyncio.sleep(0.08)

        assert watchdog.state == WatchdogState.ACTIVE
        assert watchdog.running_loops == 1
        assert [n.key for n in shown] == ["review-created_5"]

    async def test_unexpected_tick_failure_keeps_polling(self, watchdog, server, shown, token_provider):
        calls = []

        def storage():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("storage access denied")
            return "good"

        token_provider.sources.append(storage)
        server.add("review-created_5")
        watchdog.poll_interval = 0.01

        watchdog.start(1, "service")
        await asyncio.sleep(0.08)

        assert watchdog.state == WatchdogState.ACTIVE
        assert watchdog.running_loops == 1
        assert [n.key for n in shown] == ["review-created_5"]

    async def test_late_rejection_keeps_newer_token(self, server, shown, token_provider):
        """A 401 for the old token arriving after a restart must not drop the new one."""
        release = asyncio.Event()
        server.valid_tokens = {"new"}

        async def handler(request):
            if request.headers["Authorization"] == "Bearer old":
                server.polls.append("old")
                await release.wait()
                return httpx.Response(401, json={"detail": "Invalid token"})
            return server(request)

        watchdog = BackgroundDeliveryWatchdog(
            "https://carvizio.test",
            display=shown.append,
            token_provider=token_provider,
            poll_interval=0.01,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        watchdog.start(1, "service", "old")
        await asyncio.sleep(0.01)
        watchdog.start(1, "service", "new")
        await asyncio.sleep(0.01)

        release.set()
        await asyncio.sleep(0.03)
        server.add("offer-accepted_42")
        await asyncio.sleep(0.05)

        assert watchdog.state == WatchdogState.ACTIVE
        assert watchdog.running_loops == 1
        assert await token_provider.resolve() == "new"
        assert server.polls[0] == "old"
        assert set(server.polls[1:]) == {"new"}
        assert [n.key for n in shown] == ["offer-accepted_42"]
        await watchdog.aclose()

    async def test_goes_inactive_without_token(self, watchdog):
        watchdog.start(1, "service")
        task = watchdog._task

        await asyncio.wait_for(task, timeout=1)

        assert watchdog.state == WatchdogState.INACTIVE
        assert not watchdog.is_active

    async def test_stop_when_inactive_is_harmless(self, watchdog):
        watchdog.stop()
        watchdog.stop()

        assert watchdog.state == WatchdogState.INACTIVE

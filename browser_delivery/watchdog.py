"""
Background delivery watchdog: client-side polling for browser notifications.

When the push path is not available the page polls the server for pending
notifications, shows each new one, and acknowledges it.

State machine: inactive -> starting -> active -> inactive (on stop() or when
no auth token can be found at all).

- start() first performs an implicit stop(), so a session never has more
  than one live polling loop
- stop() is immediate: no further tick fires. A poll already in flight is
  allowed to finish but is not rescheduled
- 401/403 invalidates the token that poll used; polling continues and the
  next tick resolves a fresh token. A late rejection of an old token never
  drops a newer one handed to start()
- An unexpected failure on one tick is logged; the loop keeps running
- Keys already shown are remembered, so overlapping polls never show the
  same item twice
"""

import asyncio
import inspect
import logging
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from browser_delivery.token_provider import StoredTokenProvider, TokenProvider
from shared.exceptions import AuthFailure, NotificationError
from shared.models import BrowserNotification

logger = logging.getLogger("watchdog")

DisplayCallback = Callable[[BrowserNotification], Any]


class WatchdogState(str, Enum):
    INACTIVE = "inactive"
    STARTING = "starting"
    ACTIVE = "active"


class TokenUnavailable(NotificationError):
    """No auth token could be resolved; polling cannot continue."""


class BackgroundDeliveryWatchdog:
    """
    Polls GET /api/{role}/notifications/pending and displays new items.

    Args:
        base_url: Server origin, e.g. "https://carvizio.ro"
        display: Called once per new notification (plain or async)
        token_provider: Token lookup; a StoredTokenProvider by default
        poll_interval: Seconds between ticks (30 by default)
        client: HTTP client, injectable for tests
        max_seen: How many shown keys to remember
    """

    def __init__(
        self,
        base_url: str,
        display: DisplayCallback,
        token_provider: Optional[TokenProvider] = None,
        poll_interval: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        max_seen: int = 1000,
    ):
        self.base_url = base_url.rstrip("/")
        self.display = display
        self.token_provider = token_provider or StoredTokenProvider()
        self.poll_interval = poll_interval
        self.client = client or httpx.AsyncClient(timeout=10.0)
        self.max_seen = max_seen

        self.state = WatchdogState.INACTIVE
        self.recipient_id: Optional[int] = None
        self.role: Optional[str] = None
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_active(self) -> bool:
        return self.state == WatchdogState.ACTIVE

    @property
    def running_loops(self) -> int:
        """Polling tasks that have not finished yet (stopped ones exit on their next wake-up)."""
        return sum(1 for task in self._tasks if not task.done())

    def start(self, recipient_id: int, role: str, auth_token: Optional[str] = None) -> None:
        """
        Start polling for a recipient. Needs a running event loop.

        Calling start() while active replaces the running loop. Passing no
        token keeps whatever the token provider already holds.
        """
        self.stop()
        self.state = WatchdogState.STARTING
        self.recipient_id = recipient_id
        self.role = role
        if auth_token is not None:
            self.token_provider.prime(auth_token)

        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._task = asyncio.get_running_loop().create_task(
            self._run(stop_event, recipient_id, role),
            name=f"watchdog-{role}-{recipient_id}",
        )
        self._tasks.add(self._task)
        self._task.add_done_callback(self._tasks.discard)
        self.state = WatchdogState.ACTIVE
        logger.info(f"Watchdog started for {role} {recipient_id}, every {self.poll_interval}s")

    def stop(self) -> None:
        """Stop polling. Safe to call in any state."""
        if self._stop_event is not None:
            self._stop_event.set()
            logger.info(f"Watchdog stopped for {self.role} {self.recipient_id}")
        self._stop_event = None
        self._task = None
        self.state = WatchdogState.INACTIVE

    async def aclose(self) -> None:
        self.stop()
        await self.client.aclose()

    async def _run(self, stop_event: asyncio.Event, recipient_id: int, role: str) -> None:
        while not stop_event.is_set():
            try:
                await self.poll_once(recipient_id, role)
            except TokenUnavailable as e:
                logger.error(f"Watchdog giving up: {e}")
                if self._stop_event is stop_event:
                    self.stop()
                return
            except Exception:
                logger.exception(f"Watchdog tick failed for {role} {recipient_id}")
            if stop_event.is_set():
                return
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def poll_once(self, recipient_id: Optional[int] = None, role: Optional[str] = None) -> list[BrowserNotification]:
        """
        One tick: fetch, display new items, acknowledge.

        Returns:
            The notifications displayed on this tick.

        Raises:
            TokenUnavailable: If no auth token can be resolved.
        """
        recipient_id = recipient_id if recipient_id is not None else self.recipient_id
        role = role or self.role

        token = await self.token_provider.resolve()
        if not token:
            raise TokenUnavailable(f"no auth token for {role} {recipient_id}")

        try:
            items = await self._fetch_pending(role, token)
        except AuthFailure as e:
            logger.warning(f"Poll rejected ({e}); token will be refreshed on the next tick")
            self.token_provider.invalidate(token)
            return []
        except httpx.HTTPError as e:
            logger.warning(f"Poll failed: {e}")
            return []
        except (ValueError, ValidationError) as e:
            logger.warning(f"Malformed pending response: {e}")
            return []

        displayed = []
        handled_keys = []
        for item in items:
            if item.key in self._seen:
                handled_keys.append(item.key)
                continue
            try:
                result = self.display(item)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Displaying {item.key} failed")
                continue
            self._remember(item.key)
            displayed.append(item)
            handled_keys.append(item.key)

        if handled_keys:
            await self._acknowledge(role, token, handled_keys)
        if displayed:
            logger.info(f"Displayed {len(displayed)} notification(s) for {role} {recipient_id}")
        return displayed

    async def _fetch_pending(self, role: str, token: str) -> list[BrowserNotification]:
        response = await self.client.get(
            f"{self.base_url}/api/{role}/notifications/pending",
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code in (401, 403):
            raise AuthFailure(response.status_code)
        response.raise_for_status()
        payload = response.json()
        items = payload.get("notifications", []) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise ValueError("expected an object with a \"notifications\" list")
        return [BrowserNotification.model_validate(item) for item in items]

    async def _acknowledge(self, role: str, token: str, keys: list[str]) -> None:
        try:
            response = await self.client.post(
                f"{self.base_url}/api/{role}/notifications/ack",
                json={"keys": keys},
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Acknowledging {len(keys)} notification(s) failed: {e}")

    def _remember(self, key: str) -> None:
        self._seen[key] = None
        self._seen.move_to_end(key)
        while len(self._seen) > self.max_seen:
            self._seen.popitem(last=False)

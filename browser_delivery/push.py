"""
Browser delivery client: push agent first, polling watchdog as fallback.

The push-capable delivery agent is the page's service worker, reached through
an async request/response call (a message channel in the browser). If no
agent is registered, or it errors, or it does not answer within the ack
timeout (3 seconds), the client falls back to the BackgroundDeliveryWatchdog.
When the page becomes visible again the fallback is re-armed.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Protocol

from browser_delivery.watchdog import BackgroundDeliveryWatchdog, WatchdogState

logger = logging.getLogger("browser_delivery")

START_BACKGROUND_CHECK = "START_BACKGROUND_MESSAGE_CHECK"
STOP_BACKGROUND_CHECK = "STOP_BACKGROUND_MESSAGE_CHECK"


class PushDeliveryAgent(Protocol):
    async def request(self, message: dict[str, Any]) -> dict[str, Any]:
        """Send a message to the agent and wait for its reply."""
        ...


class DeliveryMode(str, Enum):
    INACTIVE = "inactive"
    PUSH = "push"
    POLLING = "polling"


class BrowserDeliveryClient:
    """Chooses between the push agent and client-side polling."""

    def __init__(
        self,
        watchdog: BackgroundDeliveryWatchdog,
        agent: Optional[PushDeliveryAgent] = None,
        ack_timeout: float = 3.0,
    ):
        self.watchdog = watchdog
        self.agent = agent
        self.ack_timeout = ack_timeout
        self.mode = DeliveryMode.INACTIVE
        self._session: Optional[tuple[int, str]] = None

    async def _ask_agent(self, message: dict[str, Any]) -> bool:
        if self.agent is None:
            return False
        try:
            reply = await asyncio.wait_for(self.agent.request(message), timeout=self.ack_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Delivery agent did not answer {message['type']} within {self.ack_timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Delivery agent failed on {message['type']}: {e}")
            return False
        if not (reply or {}).get("success"):
            logger.warning(f"Delivery agent declined {message['type']}: {reply}")
            return False
        return True

    async def activate(self, recipient_id: int, role: str, auth_token: str) -> DeliveryMode:
        """Start background delivery for a signed-in recipient."""
        self._session = (recipient_id, role)
        accepted = await self._ask_agent({
            "type": START_BACKGROUND_CHECK,
            "recipientId": recipient_id,
            "role": role,
            "token": auth_token,
        })
        if accepted:
            self.watchdog.stop()
            self.mode = DeliveryMode.PUSH
            logger.info(f"Background delivery via push agent for {role} {recipient_id}")
        else:
            self.watchdog.start(recipient_id, role, auth_token)
            self.mode = DeliveryMode.POLLING
            logger.info(f"Background delivery via polling for {role} {recipient_id}")
        return self.mode

    async def deactivate(self) -> None:
        """Stop background delivery (sign-out)."""
        if self.mode == DeliveryMode.PUSH:
            await self._ask_agent({"type": STOP_BACKGROUND_CHECK})
        self.watchdog.stop()
        self.mode = DeliveryMode.INACTIVE
        self._session = None

    def handle_visibility_change(self, visible: bool) -> DeliveryMode:
        """
        Re-arm the polling fallback when the page becomes visible again.

        Needs a running event loop. The watchdog keeps the token it already
        holds.
        """
        if not visible or self._session is None or self.mode == DeliveryMode.PUSH:
            return self.mode
        if self.watchdog.state != WatchdogState.ACTIVE:
            recipient_id, role = self._session
            logger.info(f"Page visible again, re-arming polling for {role} {recipient_id}")
            self.watchdog.start(recipient_id, role)
            self.mode = DeliveryMode.POLLING
        return self.mode

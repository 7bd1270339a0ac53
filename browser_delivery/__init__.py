"""
Browser-side background delivery.

- token_provider: one place to find the session's auth token
- watchdog: polling loop that shows pending notifications
- push: prefers the service-worker push agent, falls back to the watchdog
"""

from browser_delivery.token_provider import StoredTokenProvider, TokenProvider
from browser_delivery.watchdog import BackgroundDeliveryWatchdog, TokenUnavailable, WatchdogState
from browser_delivery.push import BrowserDeliveryClient, DeliveryMode, PushDeliveryAgent

__all__ = [
    "StoredTokenProvider",
    "TokenProvider",
    "BackgroundDeliveryWatchdog",
    "TokenUnavailable",
    "WatchdogState",
    "BrowserDeliveryClient",
    "DeliveryMode",
    "PushDeliveryAgent",
]

"""
Auth token resolution for the browser-side watchdog.

A browser session can find its identity token in several places (the value
handed over at start-up, local storage, session storage, the auth SDK). The
watchdog only sees one capability, TokenProvider.resolve(); the lookup order
is an internal detail of StoredTokenProvider.
"""

import inspect
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol, Sequence, Union

logger = logging.getLogger("token_provider")

TokenSource = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class TokenProvider(Protocol):
    async def resolve(self) -> Optional[str]:
        """Best token available right now, or None."""
        ...

    def invalidate(self, token: Optional[str] = None) -> None:
        """Mark a token as rejected. The cache is only cleared if it still holds that token."""
        ...

    def prime(self, token: Optional[str], ttl_seconds: Optional[float] = None) -> None:
        ...


class StoredTokenProvider:
    """
    Token provider with a cached token and ordered fallback sources.

    resolve() returns the cached token while it is fresh. Otherwise each
    source is asked in turn, then the refresher (which may mint a new token).
    A token that was invalidated is not handed out again by a source, since
    storage keeps returning the same stale value.

    Args:
        sources: Zero-argument callables (plain or async) returning a token
        refresher: Async callable forcing a fresh token from the auth provider
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        sources: Sequence[TokenSource] = (),
        refresher: Optional[Callable[[], Awaitable[Optional[str]]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sources = list(sources)
        self.refresher = refresher
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None
        self._rejected: set[str] = set()

    def prime(self, token: Optional[str], ttl_seconds: Optional[float] = None) -> None:
        """Cache a token handed over explicitly (e.g. by watchdog.start)."""
        self._token = token or None
        self._expires_at = self._clock() + ttl_seconds if token and ttl_seconds else None
        if token:
            self._rejected.discard(token)

    def invalidate(self, token: Optional[str] = None) -> None:
        """
        Reject `token` (the cached token when omitted).

        A rejection for a token that was already replaced, e.g. by a newer
        prime(), leaves the newer token cached.
        """
        token = token or self._token
        if not token:
            return
        self._rejected.add(token)
        if token != self._token:
            return
        logger.info("Cached auth token invalidated")
        self._token = None
        self._expires_at = None

    def _fresh(self) -> bool:
        if not self._token:
            return False
        return self._expires_at is None or self._clock() < self._expires_at

    async def resolve(self) -> Optional[str]:
        if self._fresh():
            return self._token

        for source in self.sources:
            token = source()
            if inspect.isawaitable(token):
                token = await token
            if token and token not in self._rejected:
                self._token, self._expires_at = token, None
                return token

        if self.refresher is not None:
            token = await self.refresher()
            if token:
                self.prime(token)
                return token

        logger.warning("No usable auth token found")
        self._token = None
        return None

"""
Error taxonomy for the notification subsystem.

None of these errors is allowed to escape into the business flow that
triggered a notification. They are raised where a failure is detected and
converted to a logged outcome at the nearest boundary:

- UnknownEventKind: the classifier cannot map a domain event (event dropped)
- PersistenceError: preference read/write failed (reads fail open, writes surface)
- TransportFailure: email or push hand-off failed (channel returns False)
- AuthFailure: the browser watchdog was rejected by the server (token invalidated)
"""


class NotificationError(Exception):
    """Base class for all notification subsystem errors."""


class UnknownEventKind(NotificationError):
    """Raised when a domain event has no notification mapping."""

    def __init__(self, kind: str):
        super().__init__(f"Unknown event kind: {kind}")
        self.kind = kind


class PersistenceError(NotificationError):
    """Raised when the preference backend cannot be read or written."""


class TransportFailure(NotificationError):
    """Raised inside a channel when the outbound transport rejects a send."""


class AuthFailure(NotificationError):
    """Raised by the watchdog when the server answers 401 or 403."""

    def __init__(self, status_code: int):
        super().__init__(f"Authentication rejected with HTTP {status_code}")
        self.status_code = status_code

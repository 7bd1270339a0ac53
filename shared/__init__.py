"""
Shared infrastructure for the Carvizio notification service.

This package contains code used by the dispatch core and the HTTP API:
- Domain models (ServiceProvider, ServiceRequest, NotificationPreferences, etc.)
- Data store for JSON-backed persistence
- Preference store with fail-open reads
- Notification channels (Elastic Email, browser inbox)
- Notification templates
- Configuration and error taxonomy
"""

from shared.models import (
    ChannelType,
    EventType,
    ServiceProvider,
    Client,
    ServiceRequest,
    Offer,
    Message,
    Review,
    ChannelPreferences,
    NotificationPreferences,
    NotificationPreferencesUpdate,
    BrowserNotification,
)
from shared.data_store import DataStore
from shared.preferences import PreferenceStore
from shared.channels import (
    EmailChannel,
    BrowserPushChannel,
    BrowserInbox,
    NotificationChannels,
    NotificationResult,
    build_dedup_key,
)
from shared.exceptions import (
    NotificationError,
    UnknownEventKind,
    PersistenceError,
    TransportFailure,
    AuthFailure,
)

__all__ = [
    "ChannelType",
    "EventType",
    "ServiceProvider",
    "Client",
    "ServiceRequest",
    "Offer",
    "Message",
    "Review",
    "ChannelPreferences",
    "NotificationPreferences",
    "NotificationPreferencesUpdate",
    "BrowserNotification",
    "DataStore",
    "PreferenceStore",
    "EmailChannel",
    "BrowserPushChannel",
    "BrowserInbox",
    "NotificationChannels",
    "NotificationResult",
    "build_dedup_key",
    "NotificationError",
    "UnknownEventKind",
    "PersistenceError",
    "TransportFailure",
    "AuthFailure",
]

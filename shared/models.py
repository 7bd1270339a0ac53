"""
Domain models for the Carvizio notification service.

The marketplace itself (requests, offers, messages, reviews) is owned by the
business-logic layer. The notifier only needs a read-only slice of those
records to render messages, plus its own preference records.

Design decisions:
- Using Pydantic for validation and serialization
- Preference records store the user's raw per-type choices; suppression by a
  disabled global flag is derived (see NotificationPreferences.resolved)
- Enums are str-valued so they serialize as plain strings in JSON and HTTP
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class ChannelType(str, Enum):
    """Delivery media a recipient can enable."""
    EMAIL = "email"
    BROWSER = "browser"


class EventType(str, Enum):
    """
    Categories of domain occurrences that produce notifications.

    The value doubles as the prefix of the dedup key, e.g.
    "offer-accepted_42".
    """
    REQUEST_CREATED = "request-created"
    OFFER_ACCEPTED = "offer-accepted"
    MESSAGE_RECEIVED = "message-received"
    REVIEW_CREATED = "review-created"


# =============================================================================
# Marketplace records (read-only for the notifier)
# =============================================================================

class ServiceProvider(BaseModel):
    """An auto-repair business; the recipient of notifications."""
    id: int = Field(..., description="Unique service provider identifier")
    company_name: str = Field(..., description="Registered business name")
    representative_name: str = Field(..., description="Person addressed in emails")
    email: str = Field(..., description="Notification email address")


class Client(BaseModel):
    """A vehicle owner posting requests and accepting offers."""
    id: int
    name: str
    email: Optional[str] = None


class ServiceRequest(BaseModel):
    """A repair request posted by a client."""
    id: int
    title: str
    description: str = ""
    county: str = ""
    cities: list[str] = Field(default_factory=list)
    preferred_date: Optional[datetime] = None


class Offer(BaseModel):
    """An offer sent by a service provider for a request."""
    id: int
    request_id: int
    request_user_id: Optional[int] = Field(
        default=None,
        description="Client who owns the request (used to look up their name)"
    )
    title: str
    price: float = Field(..., ge=0)


class Message(BaseModel):
    """A chat message exchanged on a request."""
    id: int
    request_id: int
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class Review(BaseModel):
    """A client review of a service provider."""
    id: int
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Notification Preferences
# =============================================================================

class ChannelPreferences(BaseModel):
    """Per-event-type opt-in flags for one channel."""
    request_created: bool = True
    offer_accepted: bool = True
    message_received: bool = True
    review_created: bool = True

    def is_enabled(self, event_type: EventType) -> bool:
        return getattr(self, _flag_name(event_type))


class ChannelPreferencesUpdate(BaseModel):
    """Partial form of ChannelPreferences; unset fields are left untouched."""
    request_created: Optional[bool] = None
    offer_accepted: Optional[bool] = None
    message_received: Optional[bool] = None
    review_created: Optional[bool] = None


class NotificationPreferences(BaseModel):
    """
    A recipient's notification preferences.

    Each channel has a global switch plus per-event-type flags. A per-type flag
    only takes effect while its channel's global switch is on. Turning the
    switch off does not overwrite the per-type flags, so turning it back on
    restores the earlier choices.
    """
    recipient_id: int = Field(..., description="Service provider the record belongs to")
    email_enabled: bool = Field(default=True, description="Global email switch")
    browser_enabled: bool = Field(default=True, description="Global browser switch")
    email: ChannelPreferences = Field(default_factory=ChannelPreferences)
    browser: ChannelPreferences = Field(default_factory=ChannelPreferences)
    browser_permission_granted: bool = Field(
        default=False,
        description="Client-side consent state reported by the browser"
    )

    def global_enabled(self, channel: ChannelType) -> bool:
        if channel == ChannelType.EMAIL:
            return self.email_enabled
        return self.browser_enabled

    def channel_flags(self, channel: ChannelType) -> ChannelPreferences:
        if channel == ChannelType.EMAIL:
            return self.email
        return self.browser

    def is_channel_active(self, channel: ChannelType, event_type: EventType) -> bool:
        """True if this event type should be delivered on this channel."""
        return self.global_enabled(channel) and self.channel_flags(channel).is_enabled(event_type)

    def active_channels(self, event_type: EventType) -> list[ChannelType]:
        """Channels that are active for an event type, in fixed order."""
        return [
            channel for channel in (ChannelType.EMAIL, ChannelType.BROWSER)
            if self.is_channel_active(channel, event_type)
        ]

    def resolved(self) -> "NotificationPreferences":
        """
        Return the effective view of this record.

        Per-type flags of a channel whose global switch is off read as False.
        The stored record is left unchanged.
        """
        suppressed = ChannelPreferences(
            request_created=False,
            offer_accepted=False,
            message_received=False,
            review_created=False,
        )
        return self.model_copy(update={
            "email": self.email.model_copy() if self.email_enabled else suppressed,
            "browser": self.browser.model_copy() if self.browser_enabled else suppressed.model_copy(),
        })

    def merged_with(self, update: "NotificationPreferencesUpdate") -> "NotificationPreferences":
        """Apply a partial update and return a new record."""
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        data = self.model_dump()
        for channel in ("email", "browser"):
            nested = changes.pop(channel, None)
            if nested:
                data[channel].update(nested)
        data.update(changes)
        return NotificationPreferences(**data)


class NotificationPreferencesUpdate(BaseModel):
    """Partial preference update as accepted by PreferenceStore.update."""
    email_enabled: Optional[bool] = None
    browser_enabled: Optional[bool] = None
    email: Optional[ChannelPreferencesUpdate] = None
    browser: Optional[ChannelPreferencesUpdate] = None
    browser_permission_granted: Optional[bool] = None


def default_preferences(recipient_id: int) -> NotificationPreferences:
    """All-enabled record used when a recipient has no stored preferences."""
    return NotificationPreferences(recipient_id=recipient_id)


def _flag_name(event_type: EventType) -> str:
    return EventType(event_type).value.replace("-", "_")


# =============================================================================
# Browser notifications
# =============================================================================

class BrowserNotification(BaseModel):
    """
    A notification waiting to be shown in the recipient's browser.

    The key is the dedup key; the watchdog uses it to avoid showing the same
    item twice and to acknowledge it afterwards.
    """
    key: str = Field(..., description="Dedup key, e.g. 'message-received_17'")
    event_type: Optional[EventType] = Field(
        default=None,
        description="Source event type; None for digest summaries"
    )
    title: str
    body: str
    url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(use_enum_values=True)

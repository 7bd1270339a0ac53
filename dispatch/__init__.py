"""
Notification dispatch core.

- Domain events are published on the event bus (or passed to notify_*)
- The classifier maps them to an event type and a priority
- The dispatcher checks preferences and sends instantly or queues for the digest
- The digest scheduler flushes the queue every 15 minutes
"""

from dispatch.event_bus import Event, EventBus
from dispatch.classifier import NotificationEvent, Priority, classify
from dispatch.digest_queue import DigestQueue, FlushSummary, PendingNotification
from dispatch.dispatcher import DispatchOutcome, Dispatcher
from dispatch.notification_service import NotificationService, build_notification_service

__all__ = [
    "Event",
    "EventBus",
    "NotificationEvent",
    "Priority",
    "classify",
    "DigestQueue",
    "FlushSummary",
    "PendingNotification",
    "DispatchOutcome",
    "Dispatcher",
    "NotificationService",
    "build_notification_service",
]

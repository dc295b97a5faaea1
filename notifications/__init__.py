"""
Notification dispatch engine.

This package turns domain events into notifications:
- Domain code publishes events on the event bus
- The notification service classifies them, persists notifications and
  fans them out to the channels each user enabled
- The query API serves the read side (listing, read state, settings, stats)
"""

from notifications.event_bus import EventBus
from notifications.events import EventTypes, NotificationEventPublisher
from notifications.notification_service import NotificationService
from notifications.query_api import NotificationQueryAPI
from notifications.system import NotificationSystem, build_notification_system

__all__ = [
    "EventBus",
    "EventTypes",
    "NotificationEventPublisher",
    "NotificationService",
    "NotificationQueryAPI",
    "NotificationSystem",
    "build_notification_system",
]

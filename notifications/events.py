"""
Event definitions for the notification engine.

This module names the domain events the rest of the API publishes and the
payload fields each one must carry. Payload keys are camelCase because they
are copied verbatim into ``Notification.data`` and returned over HTTP.

Design decisions:
- Event names are dotted and past tense (``invite.sent``, not ``send.invite``)
- Events contain all data needed by subscribers (no need to query back)
- Adding optional fields is backward compatible; removing required ones is not
- The publisher helpers validate required fields, so a malformed event is a
  programming error at the call site rather than a silent drop downstream
"""

from datetime import datetime, timezone
from typing import Any

from notifications.event_bus import EventBus


# =============================================================================
# Event Name Constants
# =============================================================================

class EventTypes:
    """
    Constants for event names.

    Using constants prevents typos and makes it easy to see all event names.
    """
    # Guest events
    GUEST_STATUS_CHANGED = "guest.status.changed"

    # Invite events
    INVITE_SENT = "invite.sent"

    # Event lifecycle
    EVENT_CREATED = "event.created"
    EVENT_UPDATED = "event.updated"
    EVENT_REMINDER = "event.reminder"

    # System
    SYSTEM_ALERT = "system.alert"


REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    EventTypes.GUEST_STATUS_CHANGED: (
        "guestId", "eventId", "userId", "previousStatus", "newStatus", "guestName", "eventTitle",
    ),
    EventTypes.INVITE_SENT: ("inviteId", "eventId", "userId", "guestId", "channel"),
    EventTypes.EVENT_CREATED: ("eventId", "userId", "eventTitle"),
    EventTypes.EVENT_UPDATED: ("eventId", "userId"),
    EventTypes.EVENT_REMINDER: ("eventId", "userId", "reminderType"),
    EventTypes.SYSTEM_ALERT: ("alertType", "message", "severity"),
}


def missing_fields(event_name: str, payload: dict[str, Any]) -> list[str]:
    """Required fields of ``event_name`` that are absent or None in ``payload``."""
    return [name for name in REQUIRED_FIELDS.get(event_name, ()) if payload.get(name) is None]


# =============================================================================
# Publisher
# =============================================================================

class NotificationEventPublisher:
    """
    Typed entry points for the domain code that triggers notifications.

    Example:
        publisher = NotificationEventPublisher(bus)
        publisher.emit_invite_sent({
            "inviteId": "inv-1", "eventId": "evt-1", "userId": "usr-1",
            "guestId": "gst-1", "channel": "whatsapp",
        })
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus

    def emit_guest_status_changed(self, payload: dict[str, Any]) -> int:
        """A guest answered (or changed their answer to) an invitation."""
        return self._emit(EventTypes.GUEST_STATUS_CHANGED, payload)

    def emit_invite_sent(self, payload: dict[str, Any]) -> int:
        """An invite went out to a guest through ``channel`` (email, whatsapp, ...)."""
        return self._emit(EventTypes.INVITE_SENT, payload)

    def emit_event_created(self, payload: dict[str, Any]) -> int:
        return self._emit(EventTypes.EVENT_CREATED, payload)

    def emit_event_updated(self, payload: dict[str, Any]) -> int:
        """An event's details changed; ``changes`` optionally lists what changed."""
        return self._emit(EventTypes.EVENT_UPDATED, payload)

    def emit_event_reminder(self, payload: dict[str, Any]) -> int:
        """``reminderType`` is a free-form label such as "1day" or "1hour"."""
        return self._emit(EventTypes.EVENT_REMINDER, payload)

    def emit_system_alert(self, payload: dict[str, Any]) -> int:
        """Alerts without a ``userId`` are platform-wide and only logged."""
        return self._emit(EventTypes.SYSTEM_ALERT, payload)

    def _emit(self, event_name: str, payload: dict[str, Any]) -> int:
        missing = missing_fields(event_name, payload)
        if missing:
            raise ValueError(f"{event_name} event missing required fields: {', '.join(missing)}")
        event = dict(payload)
        event.setdefault("timestamp", datetime.now(timezone.utc))
        return self.event_bus.publish(event_name, event)

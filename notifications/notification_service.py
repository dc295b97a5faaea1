"""
Notification service: the orchestrator between the event bus and delivery.

This service subscribes to domain events and decides which of them become
notifications, persists them, and fans them out to the channels each user
has enabled.

Design decisions:
- Single service handles all "when to notify" logic (centralized); the CRUD
  code that publishes events doesn't know notifications exist
- Handlers are coroutines, so the bus schedules them and the publisher is
  never blocked by persistence or delivery
- The pipeline is fixed: persist, resolve settings, select channels, dispatch
- Store calls block, so they run in worker threads and the loop keeps serving
  sockets while SQLite works
- Each event is processed in isolation: any failure is logged with its
  traceback and never reaches the bus or other events

Tradeoffs:
- PRO: Adding a new notification type = a classification rule, a template
  and a settings field
- CON: This service must understand every event it subscribes to
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from notifications.dispatcher import Dispatcher, select_active_channels
from notifications.event_bus import EventBus
from notifications.events import EventTypes
from notifications.settings_resolver import SettingsResolver
from shared.data_store import NotificationStore
from shared.models import Notification, NotificationType
from shared.templates import render_title_and_message

logger = logging.getLogger("notification_service")


# newStatus values of guest.status.changed that produce a notification
GUEST_STATUS_TYPES: dict[str, NotificationType] = {
    "confirmed": NotificationType.GUEST_CONFIRMED,
    "declined": NotificationType.GUEST_DECLINED,
}


def classify(event_name: str, payload: dict[str, Any]) -> Optional[NotificationType]:
    """
    Map a domain event to the notification type it produces.

    Returns None for events that are deliberately not notified (a guest moving
    to any status other than confirmed/declined, platform-wide alerts,
    event creation).
    """
    if event_name == EventTypes.GUEST_STATUS_CHANGED:
        return GUEST_STATUS_TYPES.get(payload.get("newStatus"))
    if event_name == EventTypes.INVITE_SENT:
        return NotificationType.INVITE_SENT
    if event_name == EventTypes.EVENT_REMINDER:
        return NotificationType.EVENT_REMINDER
    if event_name == EventTypes.EVENT_UPDATED:
        return NotificationType.EVENT_UPDATED
    if event_name == EventTypes.SYSTEM_ALERT and payload.get("userId"):
        return NotificationType.SYSTEM_ALERT
    return None


class NotificationService:
    """
    Event-driven notification service.

    Example:
        service = NotificationService(bus, store, resolver, dispatcher)
        service.start()

        # Now when events are published, notifications are created and sent
        bus.publish("guest.status.changed", {...})
    """

    def __init__(
        self,
        event_bus: EventBus,
        notifications: NotificationStore,
        settings: SettingsResolver,
        dispatcher: Dispatcher,
    ):
        self.event_bus = event_bus
        self.notifications = notifications
        self.settings = settings
        self.dispatcher = dispatcher

        self._handlers: dict[str, Callable[[dict[str, Any]], Any]] = {
            EventTypes.GUEST_STATUS_CHANGED: self._handle_guest_status_changed,
            EventTypes.INVITE_SENT: self._handle_invite_sent,
            EventTypes.EVENT_CREATED: self._handle_event_created,
            EventTypes.EVENT_UPDATED: self._handle_event_updated,
            EventTypes.EVENT_REMINDER: self._handle_event_reminder,
            EventTypes.SYSTEM_ALERT: self._handle_system_alert,
        }
        self._started = False

    def start(self) -> None:
        """Start the service by subscribing to every event it handles."""
        if self._started:
            logger.warning("NotificationService already started")
            return

        for event_name, handler in self._handlers.items():
            self.event_bus.subscribe(event_name, handler)

        self._started = True
        logger.info("NotificationService started - subscribed to events")

    def stop(self) -> None:
        """Stop the service by unsubscribing from events."""
        if not self._started:
            return

        for event_name, handler in self._handlers.items():
            self.event_bus.unsubscribe(event_name, handler)

        self._started = False
        logger.info("NotificationService stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _handle_guest_status_changed(self, payload: dict[str, Any]) -> None:
        logger.info(
            f"Handling guest.status.changed: guest={payload.get('guestId')}, "
            f"{payload.get('previousStatus')} -> {payload.get('newStatus')}"
        )
        await self._handle(EventTypes.GUEST_STATUS_CHANGED, payload)

    async def _handle_invite_sent(self, payload: dict[str, Any]) -> None:
        logger.info(f"Handling invite.sent: invite={payload.get('inviteId')}, channel={payload.get('channel')}")
        await self._handle(EventTypes.INVITE_SENT, payload)

    async def _handle_event_created(self, payload: dict[str, Any]) -> None:
        # No notification type exists for creation; the organizer just did it
        logger.info(f"Event created: {payload.get('eventId')} ({payload.get('eventTitle')})")

    async def _handle_event_updated(self, payload: dict[str, Any]) -> None:
        logger.info(f"Handling event.updated: event={payload.get('eventId')}")
        await self._handle(EventTypes.EVENT_UPDATED, payload)

    async def _handle_event_reminder(self, payload: dict[str, Any]) -> None:
        logger.info(f"Handling event.reminder: event={payload.get('eventId')}, type={payload.get('reminderType')}")
        await self._handle(EventTypes.EVENT_REMINDER, payload)

    async def _handle_system_alert(self, payload: dict[str, Any]) -> None:
        logger.info(
            f"System alert [{payload.get('severity')}] {payload.get('alertType')}: {payload.get('message')}"
        )
        await self._handle(EventTypes.SYSTEM_ALERT, payload)

    async def _handle(self, event_name: str, payload: dict[str, Any]) -> None:
        notification_type = classify(event_name, payload)
        if notification_type is None:
            logger.debug(f"{event_name} produces no notification, skipping")
            return
        try:
            await self.process(notification_type, payload)
        except Exception:
            logger.exception(f"Failed to process {event_name} for user {payload.get('userId')}")

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def process(
        self,
        notification_type: NotificationType,
        payload: dict[str, Any],
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Notification:
        """
        Persist one notification and deliver it on the user's active channels.

        Raises whatever the notification store raises; in that case nothing
        is dispatched.
        """
        user_id = payload["userId"]
        rendered_title, rendered_message = render_title_and_message(notification_type, payload)

        notification = await asyncio.to_thread(
            self.notifications.create,
            user_id=user_id,
            notification_type=notification_type,
            title=title or rendered_title,
            message=message or rendered_message,
            data=payload,
        )
        logger.info(f"Notification {notification.id} ({notification_type.value}) created for user {user_id}")

        settings = await asyncio.to_thread(self.settings.resolve, user_id)
        channels = select_active_channels(settings, notification_type)
        if not channels:
            logger.info(f"User {user_id} has no channels enabled for {notification_type.value}")
            return notification

        await self.dispatcher.dispatch(notification, channels, payload)
        return notification

    async def send_test_notification(
        self,
        user_id: str,
        notification_type: NotificationType = NotificationType.SYSTEM_ALERT,
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Notification:
        """Run the full pipeline for a synthetic event (development only)."""
        payload = {
            "userId": user_id,
            "alertType": "test",
            "severity": "info",
            "message": message or "This is a test notification",
            "test": True,
        }
        logger.info(f"Sending test {notification_type.value} notification to user {user_id}")
        return await self.process(notification_type, payload, title=title, message=message)

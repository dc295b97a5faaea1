"""
Read side of the notification engine.

Listing, read-state changes, settings and statistics, always scoped to the
calling user. Nothing here touches the event bus or the providers.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from notifications.settings_resolver import SettingsPatch, SettingsResolver
from shared.data_store import DeliveryLedger, NotificationStore
from shared.models import (
    DeliveryLogEntry,
    NotificationPage,
    NotificationSettings,
    NotificationStats,
    NotificationType,
    Pagination,
    utcnow,
)

logger = logging.getLogger("query_api")


DEFAULT_PAGE_SIZE = 20
STATS_WINDOW = timedelta(days=7)


class NotificationQueryAPI:
    """
    Operations behind the notification HTTP routes.

    Example:
        api = NotificationQueryAPI(store, resolver, ledger)
        page = api.list_notifications("usr-1", page=1, limit=10, unread_only=True)
        print(page.unread_count)
    """

    def __init__(
        self,
        notifications: NotificationStore,
        settings: SettingsResolver,
        ledger: DeliveryLedger,
    ):
        self.notifications = notifications
        self.settings = settings
        self.ledger = ledger

    def list_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        unread_only: bool = False,
        notification_type: Optional[Any] = None,
    ) -> NotificationPage:
        """
        One page of the user's notifications, newest first.

        ``unread_count`` is the user's global unread count, independent of
        the filters applied to the page.

        Raises:
            ValueError: If page or limit is below 1, or the type is unknown
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        type_filter = None
        if notification_type is not None:
            type_filter = NotificationType.parse(notification_type)
            if type_filter is None:
                raise ValueError(f"Unknown notification type: {notification_type}")

        items, total = self.notifications.list_for_user(
            user_id,
            offset=(page - 1) * limit,
            limit=limit,
            unread_only=unread_only,
            notification_type=type_filter,
        )
        return NotificationPage(
            notifications=items,
            pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
            unread_count=self.notifications.count_unread(user_id),
        )

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        """
        Mark one unread notification read.

        Returns False (and changes nothing) unless an unread notification of
        ``user_id`` matched.
        """
        changed = self.notifications.mark_read(notification_id, user_id) > 0
        if not changed:
            logger.debug(f"mark_read({notification_id}) by {user_id} matched no notification")
        return changed

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of the user read. Returns how many changed."""
        count = self.notifications.mark_all_read(user_id)
        logger.info(f"Marked {count} notifications read for user {user_id}")
        return count

    def get_settings(self, user_id: str) -> NotificationSettings:
        return self.settings.resolve(user_id)

    def update_settings(self, user_id: str, partial: SettingsPatch) -> NotificationSettings:
        return self.settings.update(user_id, partial)

    def get_stats(self, user_id: str, now: Optional[datetime] = None) -> NotificationStats:
        """Totals, unread count, per-type counts and the last 7 days' count."""
        now = now or utcnow()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc).replace(tzinfo=None)
        since = now - STATS_WINDOW
        return NotificationStats(
            total=self.notifications.count(user_id),
            unread=self.notifications.count_unread(user_id),
            by_type=self.notifications.count_by_type(user_id),
            last_7_days=self.notifications.count(user_id, since=since),
        )

    def get_delivery_log(self, notification_id: str, user_id: str) -> list[DeliveryLogEntry]:
        """Ledger entries of a notification the user owns; [] for anyone else."""
        notification = self.notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return []
        return self.ledger.list_for_notification(notification_id)

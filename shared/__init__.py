"""
Shared infrastructure for the notification engine.

This package contains the pieces every component builds on:
- Configuration and logging setup
- Domain models (Notification, NotificationSettings, DeliveryLogEntry)
- SQLAlchemy-backed stores and the delivery ledger
- The provider contract, channel registry and delivery providers
- Notification templates
"""

from shared.models import (
    ChannelPreferences,
    DeliveryChannel,
    DeliveryLogEntry,
    DeliveryStatus,
    Notification,
    NotificationSettings,
    NotificationSettingsUpdate,
    NotificationType,
)
from shared.data_store import Database, DeliveryLedger, NotificationStore, SettingsStore
from shared.channels import ChannelRegistry, DeliveryResult, Provider

__all__ = [
    "ChannelPreferences",
    "DeliveryChannel",
    "DeliveryLogEntry",
    "DeliveryStatus",
    "Notification",
    "NotificationSettings",
    "NotificationSettingsUpdate",
    "NotificationType",
    "Database",
    "DeliveryLedger",
    "NotificationStore",
    "SettingsStore",
    "ChannelRegistry",
    "DeliveryResult",
    "Provider",
]

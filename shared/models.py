"""
Domain models for the notification engine.

Design decisions:
- Using Pydantic for validation and serialization
- Attributes are snake_case in Python and camelCase on the wire (aliases),
  matching the JSON the HTTP layer has always returned
- Channel preferences are a fixed-shape record per notification type rather
  than a free-form map, so stored shape and code cannot drift apart
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pydantic.alias_generators import to_camel


DEFAULT_TIMEZONE = "America/Sao_Paulo"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime column uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def check_timezone(name: str) -> str:
    """Return ``name`` if it is a known IANA timezone, raise ValueError otherwise."""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        raise ValueError(f"Unknown timezone: {name}") from None
    return name


# =============================================================================
# Enums
# =============================================================================

class NotificationType(str, Enum):
    """Kinds of user-facing notifications."""
    GUEST_CONFIRMED = "GUEST_CONFIRMED"
    GUEST_DECLINED = "GUEST_DECLINED"
    GUEST_PENDING = "GUEST_PENDING"
    INVITE_SENT = "INVITE_SENT"
    EVENT_REMINDER = "EVENT_REMINDER"
    EVENT_UPDATED = "EVENT_UPDATED"
    SYSTEM_ALERT = "SYSTEM_ALERT"

    @classmethod
    def parse(cls, value: Any) -> Optional["NotificationType"]:
        """Return the member for ``value`` or None if it is not a known type."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return None


class DeliveryChannel(str, Enum):
    """Delivery media recorded in the delivery ledger."""
    EMAIL = "EMAIL"
    WEBSOCKET = "WEBSOCKET"
    PUSH = "PUSH"
    SMS = "SMS"

    @classmethod
    def parse(cls, value: Any) -> "DeliveryChannel":
        """
        Accept a member, its value ("EMAIL") or a settings key ("email").

        Raises:
            ValueError: If the name is not a known channel
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown channel: {value}") from None

    @property
    def key(self) -> str:
        """Name used in the per-type preference records ("email", "websocket", ...)."""
        return self.value.lower()


class DeliveryStatus(str, Enum):
    """
    Delivery attempt states.
    DELIVERED and BOUNCED are reserved for provider callbacks; the dispatcher
    only writes PENDING, SENT and FAILED.
    """
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    BOUNCED = "BOUNCED"


class DigestFrequency(str, Enum):
    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class CamelModel(BaseModel):
    """Base for models that cross the HTTP boundary."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Notification Settings
# =============================================================================

# Fixed order in which enabled channels are reported and dispatched
CHANNEL_ORDER = ("email", "websocket", "push")


class ChannelPreferences(CamelModel):
    """Per-channel opt-in flags for one notification type."""
    email: StrictBool = False
    websocket: StrictBool = False
    push: StrictBool = False

    model_config = ConfigDict(extra="forbid")

    def enabled_channels(self) -> list[str]:
        return [name for name in CHANNEL_ORDER if getattr(self, name)]


# Notification type -> NotificationSettings attribute holding its preferences
SETTINGS_FIELDS: dict[NotificationType, str] = {
    NotificationType.GUEST_CONFIRMED: "guest_confirmed",
    NotificationType.GUEST_DECLINED: "guest_declined",
    NotificationType.GUEST_PENDING: "guest_pending",
    NotificationType.INVITE_SENT: "invite_sent",
    NotificationType.EVENT_REMINDER: "event_reminder",
    NotificationType.EVENT_UPDATED: "event_updated",
    NotificationType.SYSTEM_ALERT: "system_alert",
}


def _prefs(email: bool = False, websocket: bool = False, push: bool = False):
    return lambda: ChannelPreferences(email=email, websocket=websocket, push=push)


class NotificationSettings(CamelModel):
    """
    A user's notification preferences.

    Exactly one record exists per user. Quiet hours and digest frequency are
    stored for a future scheduler; nothing enforces them at dispatch time.
    """
    id: Optional[str] = None
    user_id: str
    guest_confirmed: ChannelPreferences = Field(default_factory=_prefs(email=True, websocket=True))
    guest_declined: ChannelPreferences = Field(default_factory=_prefs(email=True, websocket=True))
    guest_pending: ChannelPreferences = Field(default_factory=_prefs())
    invite_sent: ChannelPreferences = Field(default_factory=_prefs(websocket=True))
    event_reminder: ChannelPreferences = Field(default_factory=_prefs(email=True, push=True))
    event_updated: ChannelPreferences = Field(default_factory=_prefs(email=True, websocket=True))
    system_alert: ChannelPreferences = Field(default_factory=_prefs(websocket=True))
    digest_frequency: DigestFrequency = DigestFrequency.NONE
    quiet_hours_start: Optional[int] = Field(default=None, ge=0, le=23)
    quiet_hours_end: Optional[int] = Field(default=None, ge=0, le=23)
    timezone: str = DEFAULT_TIMEZONE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        return check_timezone(value)

    def preferences_for(self, notification_type: Any) -> Optional[ChannelPreferences]:
        """Get the preference record for a type, or None for unknown types."""
        parsed = NotificationType.parse(notification_type)
        if parsed is None:
            return None
        return getattr(self, SETTINGS_FIELDS[parsed])

    def get_channels_for_type(self, notification_type: Any) -> list[str]:
        """
        Get the channels the user wants for a notification type.
        Returns empty list if the type is not known.
        """
        prefs = self.preferences_for(notification_type)
        if prefs is None:
            return []
        return prefs.enabled_channels()


# An explicit null clears these; for every other key null means "unchanged"
_NULLABLE_SETTINGS = frozenset({"quiet_hours_start", "quiet_hours_end"})


class ChannelPreferencesUpdate(CamelModel):
    """Partial channel flags; omitted flags keep their stored value."""
    email: Optional[StrictBool] = None
    websocket: Optional[StrictBool] = None
    push: Optional[StrictBool] = None

    model_config = ConfigDict(extra="forbid")


class NotificationSettingsUpdate(CamelModel):
    """
    Partial settings document accepted by the settings update operation.

    Unknown keys are rejected. Only keys actually present are merged.
    """
    guest_confirmed: Optional[ChannelPreferencesUpdate] = None
    guest_declined: Optional[ChannelPreferencesUpdate] = None
    guest_pending: Optional[ChannelPreferencesUpdate] = None
    invite_sent: Optional[ChannelPreferencesUpdate] = None
    event_reminder: Optional[ChannelPreferencesUpdate] = None
    event_updated: Optional[ChannelPreferencesUpdate] = None
    system_alert: Optional[ChannelPreferencesUpdate] = None
    digest_frequency: Optional[DigestFrequency] = None
    quiet_hours_start: Optional[int] = Field(default=None, ge=0, le=23)
    quiet_hours_end: Optional[int] = Field(default=None, ge=0, le=23)
    timezone: Optional[str] = Field(default=None, min_length=1, max_length=64)

    model_config = ConfigDict(extra="forbid")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: Optional[str]) -> Optional[str]:
        return value if value is None else check_timezone(value)

    def apply_to(self, current: NotificationSettings) -> NotificationSettings:
        """Merge this partial document onto ``current`` and return the result."""
        changes: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name not in _NULLABLE_SETTINGS:
                continue
            if isinstance(value, ChannelPreferencesUpdate):
                base: ChannelPreferences = getattr(current, name)
                value = base.model_copy(update=value.model_dump(exclude_unset=True, exclude_none=True))
            changes[name] = value
        return current.model_copy(update=changes)


# =============================================================================
# Notifications and Delivery Ledger
# =============================================================================

class Notification(CamelModel):
    """A persisted, user-facing record of a domain occurrence."""
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime
    updated_at: datetime


class DeliveryLogEntry(CamelModel):
    """One attempt to deliver a notification through one channel."""
    id: str
    notification_id: str
    channel: DeliveryChannel
    status: DeliveryStatus
    attempted_at: datetime
    delivered_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0


# =============================================================================
# Query results
# =============================================================================

class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class NotificationPage(CamelModel):
    """One page of a user's notifications plus their global unread count."""
    notifications: list[Notification]
    pagination: Pagination
    unread_count: int


class NotificationStats(CamelModel):
    total: int
    unread: int
    by_type: dict[str, int]
    last_7_days: int = Field(alias="last7Days")

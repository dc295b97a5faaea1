"""
Per-user notification settings with lazily created defaults.

Every user has exactly one settings row. It is created the first time anything
asks for it, using an atomic insert-if-absent in the store, so two deliveries
racing for a brand new user still end up with a single row.
"""

import logging
from typing import Any, Union

from shared.data_store import SettingsStore
from shared.models import DEFAULT_TIMEZONE, NotificationSettings, NotificationSettingsUpdate

logger = logging.getLogger("settings_resolver")


SettingsPatch = Union[NotificationSettingsUpdate, dict[str, Any]]


class SettingsResolver:
    """Reads, creates and partially updates NotificationSettings."""

    def __init__(self, store: SettingsStore, default_timezone: str = DEFAULT_TIMEZONE):
        self.store = store
        self.default_timezone = default_timezone

    def default_settings(self, user_id: str) -> NotificationSettings:
        """The settings a user gets before ever changing anything."""
        return NotificationSettings(user_id=user_id, timezone=self.default_timezone)

    def resolve(self, user_id: str) -> NotificationSettings:
        """Get the user's settings, creating the default row if none exists."""
        settings = self.store.get(user_id)
        if settings is not None:
            return settings
        logger.info(f"Creating default notification settings for user {user_id}")
        return self.store.get_or_create(self.default_settings(user_id))

    def update(self, user_id: str, partial: SettingsPatch) -> NotificationSettings:
        """
        Merge a partial settings document onto the user's current settings.

        Top-level keys that are not present keep their values, and inside a
        channel map omitted flags keep theirs.

        Raises:
            pydantic.ValidationError: If ``partial`` has unknown keys or bad values
        """
        if not isinstance(partial, NotificationSettingsUpdate):
            partial = NotificationSettingsUpdate.model_validate(partial)

        current = self.resolve(user_id)
        merged = partial.apply_to(current)
        saved = self.store.save(merged)
        logger.info(f"Notification settings updated for user {user_id}: {sorted(partial.model_fields_set)}")
        return saved

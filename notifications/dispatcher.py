"""
Fan-out of one notification across its active delivery channels.

Design decisions:
- Channel selection is a pure function of the user's settings
- Every channel attempt runs concurrently and settles on its own: one
  provider raising or hanging on an error never cancels its siblings
- The ledger entry is written PENDING before the provider is called, so a
  crash mid-delivery leaves a visible trace
- Ledger writes run in worker threads so a slow database never stalls
  the loop that the WebSocket provider sends on
- A channel without a registered provider is skipped with a warning and
  leaves no ledger entry
"""

import asyncio
import logging
from typing import Any, Iterable, Optional

from shared.channels import ChannelRegistry, DeliveryResult
from shared.data_store import DeliveryLedger
from shared.models import (
    DeliveryChannel,
    DeliveryLogEntry,
    DeliveryStatus,
    Notification,
    NotificationSettings,
)

logger = logging.getLogger("dispatcher")


def select_active_channels(settings: NotificationSettings, notification_type: Any) -> list[str]:
    """
    Channels the user has enabled for a notification type.

    Returned in the fixed order email, websocket, push; unknown types give [].
    """
    return settings.get_channels_for_type(notification_type)


class Dispatcher:
    """Delivers a persisted notification through providers and records every attempt."""

    def __init__(self, registry: ChannelRegistry, ledger: DeliveryLedger):
        self.registry = registry
        self.ledger = ledger

    async def dispatch(
        self,
        notification: Notification,
        channels: Iterable[str],
        event_context: Optional[dict[str, Any]] = None,
    ) -> list[DeliveryLogEntry]:
        """
        Attempt delivery on every channel concurrently.

        Returns:
            The settled ledger entries, one per channel that had a provider
        """
        context = event_context or {}
        attempts = [self._attempt(notification, channel, context) for channel in channels]
        if not attempts:
            return []

        results = await asyncio.gather(*attempts, return_exceptions=True)

        entries: list[DeliveryLogEntry] = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Delivery attempt for notification {notification.id} failed: {result!r}")
            elif result is not None:
                entries.append(result)

        sent = sum(1 for e in entries if e.status == DeliveryStatus.SENT)
        logger.info(
            f"Notification {notification.id} dispatched: {sent}/{len(entries)} channels succeeded"
        )
        return entries

    async def _attempt(
        self,
        notification: Notification,
        channel_name: str,
        context: dict[str, Any],
    ) -> Optional[DeliveryLogEntry]:
        provider = self.registry.get(channel_name)
        if provider is None:
            logger.warning(f"No provider registered for channel {channel_name}, skipping")
            return None

        channel = DeliveryChannel.parse(channel_name)
        entry = await asyncio.to_thread(self.ledger.open_entry, notification.id, channel)

        try:
            result: DeliveryResult = await provider.attempt_delivery(notification, context)
        except Exception as e:
            logger.exception(f"Provider {channel.value} raised for notification {notification.id}")
            return await asyncio.to_thread(self.ledger.mark_failed, entry.id, str(e) or type(e).__name__)

        if result.success:
            return await asyncio.to_thread(self.ledger.mark_sent, entry.id, result.delivered_at)

        logger.warning(f"{channel.value} delivery failed for notification {notification.id}: {result.error}")
        error = result.error or f"{channel.value} delivery failed"
        return await asyncio.to_thread(self.ledger.mark_failed, entry.id, error)

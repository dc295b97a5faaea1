"""
Delivery channel contract, the channel registry and mock providers.

Every channel is served by a Provider: an object with an async
``attempt_delivery(notification, event_context)`` returning a DeliveryResult.
Ordinary delivery failures (recipient offline, SMTP refused, ...) are reported
as ``success=False`` results; a provider only raises on programming errors,
and the dispatcher treats a raise exactly like a failed result.

Design decisions:
- The registry is keyed by the closed DeliveryChannel enum, so an unknown
  channel name is rejected when providers are registered at startup
- Push is a mock provider that logs and records what it "sent"; in a real
  system it would integrate with FCM/APNs. The SMS channel exists in the
  enum and the ledger but has no provider yet
- ConsoleEmailProvider stands in for the SMTP-backed EmailProvider when no
  SMTP host is configured
- Mock providers can simulate failures for testing
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional, Protocol, Union, runtime_checkable

from shared.models import DeliveryChannel, Notification, utcnow
from shared.templates import get_template

logger = logging.getLogger("notifications")


@dataclass
class DeliveryResult:
    """
    Result of a delivery attempt.

    Captures success/failure and when the provider handed the message off.
    """
    success: bool
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, delivered_at: Optional[datetime] = None) -> "DeliveryResult":
        return cls(success=True, delivered_at=delivered_at or utcnow())

    @classmethod
    def failed(cls, error: str) -> "DeliveryResult":
        return cls(success=False, error=error)


@runtime_checkable
class Provider(Protocol):
    """Per-channel delivery contract."""

    async def attempt_delivery(
        self,
        notification: Notification,
        event_context: dict[str, Any],
    ) -> DeliveryResult:
        ...


ChannelName = Union[DeliveryChannel, str]


class ChannelRegistry:
    """
    Providers keyed by delivery channel.

    Written once at startup and only read afterwards.
    """

    def __init__(self, providers: Optional[dict[ChannelName, Provider]] = None):
        self._providers: dict[DeliveryChannel, Provider] = {}
        for channel, provider in (providers or {}).items():
            self.register(channel, provider)

    def register(self, channel: ChannelName, provider: Provider) -> None:
        """
        Register the provider serving ``channel``.

        Raises:
            ValueError: If the channel name is not a known channel
            TypeError: If ``provider`` does not implement attempt_delivery
        """
        key = DeliveryChannel.parse(channel)
        if not isinstance(provider, Provider):
            raise TypeError(f"{type(provider).__name__} does not implement attempt_delivery")
        if key in self._providers:
            logger.warning(f"Replacing provider for channel {key.value}")
        self._providers[key] = provider
        logger.info(f"Notification provider registered: {key.value}")

    def get(self, channel: ChannelName) -> Optional[Provider]:
        """Get the provider for a channel, or None if it is unknown or unregistered."""
        try:
            return self._providers.get(DeliveryChannel.parse(channel))
        except ValueError:
            return None

    def registered_channels(self) -> list[DeliveryChannel]:
        return list(self._providers)

    def __contains__(self, channel: object) -> bool:
        return self.get(channel) is not None  # type: ignore[arg-type]

    def __iter__(self) -> Iterator[DeliveryChannel]:
        return iter(self._providers)

    def __len__(self) -> int:
        return len(self._providers)


# =============================================================================
# Mock providers
# =============================================================================

@dataclass
class SentMessage:
    """One message a recording provider handled, kept for test assertions."""
    channel: DeliveryChannel
    recipient: str
    notification_id: str
    title: str
    body: str
    success: bool
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"{status} {self.channel.value} to {self.recipient}: {self.title}"


class RecordingProvider:
    """
    Base for mock providers.

    Logs each send to console and tracks it for test assertions.
    Can simulate failures for testing error handling.
    """

    channel: DeliveryChannel

    def __init__(self, fail_rate: float = 0.0):
        """
        Args:
            fail_rate: Probability of send failure (0.0 to 1.0), for testing.
        """
        self.fail_rate = fail_rate
        self.sent_messages: list[SentMessage] = []

    async def attempt_delivery(
        self,
        notification: Notification,
        event_context: dict[str, Any],
    ) -> DeliveryResult:
        body = self.format_body(notification)
        if random.random() < self.fail_rate:
            error = f"Simulated {self.channel.key} delivery failure"
            self._record(notification, body, success=False, error=error)
            logger.error(f"[{self.channel.value} FAILED] To: {notification.user_id} | Error: {error}")
            return DeliveryResult.failed(error)

        self._record(notification, body, success=True)
        logger.info(f"[{self.channel.value}] To: {notification.user_id} | {notification.title}")
        logger.debug(f"[{self.channel.value} BODY] {body}")
        return DeliveryResult.ok()

    def format_body(self, notification: Notification) -> str:
        return notification.message

    def _record(self, notification: Notification, body: str, success: bool, error: Optional[str] = None) -> None:
        self.sent_messages.append(
            SentMessage(
                channel=self.channel,
                recipient=notification.user_id,
                notification_id=notification.id,
                title=notification.title,
                body=body,
                success=success,
                error=error,
            )
        )

    def get_sent_count(self) -> int:
        """Get the number of messages sent (for testing)."""
        return len(self.sent_messages)

    def get_successful_sends(self) -> list[SentMessage]:
        return [m for m in self.sent_messages if m.success]

    def clear_history(self) -> None:
        """Clear sent message history (useful between tests)."""
        self.sent_messages.clear()

    def find_message_to(self, recipient: str) -> Optional[SentMessage]:
        """Find a message sent to a specific recipient."""
        for msg in self.sent_messages:
            if msg.recipient == recipient:
                return msg
        return None


class ConsoleEmailProvider(RecordingProvider):
    """
    Mock email provider for local runs without SMTP.

    Renders the real email template, then logs it instead of sending.
    """

    channel = DeliveryChannel.EMAIL

    def format_body(self, notification: Notification) -> str:
        template = get_template(notification.type)
        if template is None:
            return notification.message
        subject, body = template.render_email(notification.data)
        return f"Subject: {subject}\n\n{body}"


class PushProvider(RecordingProvider):
    """Mock mobile push provider."""

    channel = DeliveryChannel.PUSH


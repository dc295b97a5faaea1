"""
Tests for the provider contract, channel registry and mock providers.

These tests verify that the registry rejects bad configuration up front and
that the recording providers log and track what they "sent".
"""

import asyncio

import pytest

from shared.channels import (
    ChannelRegistry,
    ConsoleEmailProvider,
    DeliveryResult,
    Provider,
    PushProvider,
)
from shared.models import DeliveryChannel, Notification, NotificationType, utcnow


def make_notification(**overrides) -> Notification:
    now = utcnow()
    fields = dict(
        id="ntf-1",
        user_id="usr-1",
        type=NotificationType.GUEST_CONFIRMED,
        title="Guest Confirmed",
        message='Carla confirmed attendance for event "Gala"',
        data={"guestName": "Carla", "eventTitle": "Gala"},
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    return Notification(**fields)


class TestDeliveryResult:
    def test_ok_stamps_delivered_at(self):
        result = DeliveryResult.ok()

        assert result.success is True
        assert result.delivered_at is not None
        assert result.error is None

    def test_failed(self):
        result = DeliveryResult.failed("boom")

        assert result.success is False
        assert result.error == "boom"
        assert result.delivered_at is None


class TestChannelRegistry:
    """Tests for provider registration and lookup."""

    def test_register_by_name_and_lookup_by_enum(self, push_provider: PushProvider):
        registry = ChannelRegistry()
        registry.register("push", push_provider)

        assert registry.get(DeliveryChannel.PUSH) is push_provider
        assert registry.get("PUSH") is push_provider
        assert DeliveryChannel.PUSH in registry
        assert len(registry) == 1

    def test_init_with_mapping(self, push_provider, email_provider):
        registry = ChannelRegistry({"email": email_provider, DeliveryChannel.PUSH: push_provider})

        assert registry.registered_channels() == [DeliveryChannel.EMAIL, DeliveryChannel.PUSH]

    def test_unknown_channel_rejected(self, push_provider: PushProvider):
        registry = ChannelRegistry()

        with pytest.raises(ValueError):
            registry.register("fax", push_provider)

    def test_non_provider_rejected(self):
        registry = ChannelRegistry()

        with pytest.raises(TypeError):
            registry.register("email", object())

    def test_lookup_unregistered_or_unknown(self):
        registry = ChannelRegistry()

        assert registry.get("email") is None
        assert registry.get("fax") is None
        assert "fax" not in registry

    def test_replacing_provider(self, push_provider: PushProvider):
        registry = ChannelRegistry({"push": PushProvider()})
        registry.register("push", push_provider)

        assert registry.get("push") is push_provider

    def test_mock_providers_satisfy_protocol(self, push_provider, email_provider):
        assert isinstance(push_provider, Provider)
        assert isinstance(email_provider, Provider)


class TestRecordingProviders:
    """Tests for the logging push and email mocks."""

    def test_push_records_message(self, push_provider: PushProvider):
        result = asyncio.run(push_provider.attempt_delivery(make_notification(), {}))

        assert result.success is True
        assert push_provider.get_sent_count() == 1
        sent = push_provider.find_message_to("usr-1")
        assert sent is not None
        assert sent.channel == DeliveryChannel.PUSH
        assert sent.notification_id == "ntf-1"

    def test_simulated_failure(self):
        failing = PushProvider(fail_rate=1.0)

        result = asyncio.run(failing.attempt_delivery(make_notification(), {}))

        assert result.success is False
        assert "failure" in result.error.lower()
        assert failing.get_successful_sends() == []
        assert failing.get_sent_count() == 1

    def test_clear_history(self, push_provider: PushProvider):
        asyncio.run(push_provider.attempt_delivery(make_notification(), {}))

        push_provider.clear_history()

        assert push_provider.get_sent_count() == 0

    def test_console_email_renders_template(self, email_provider: ConsoleEmailProvider):
        asyncio.run(email_provider.attempt_delivery(make_notification(), {}))

        body = email_provider.sent_messages[0].body
        assert body.startswith("Subject: Attendance Confirmed - Gala")
        assert "Carla confirmed attendance" in body

    def test_find_message_to_unknown(self, push_provider: PushProvider):
        assert push_provider.find_message_to("nobody") is None

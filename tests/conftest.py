"""
Shared pytest fixtures for the notification engine tests.

Every test gets its own in-memory database and fresh providers, so nothing
leaks between tests.
"""

import asyncio
from typing import Any

import pytest

from notifications.system import NotificationSystem, build_notification_system
from notifications.settings_resolver import SettingsResolver
from shared.channels import ConsoleEmailProvider, PushProvider
from shared.config import Settings
from shared.data_store import Database, DeliveryLedger, NotificationStore, SettingsStore
from shared.models import DeliveryChannel
from shared.providers import ConnectionRegistry, WebSocketProvider


class RecordingSocket:
    """Stand-in for a FastAPI WebSocket that keeps every frame it was sent."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.frames: list[Any] = []

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(data)


# =============================================================================
# Persistence
# =============================================================================

@pytest.fixture
def database():
    """Fresh in-memory database with all tables created."""
    db = Database("sqlite:///:memory:")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def notification_store(database: Database) -> NotificationStore:
    return NotificationStore(database.session_factory)


@pytest.fixture
def settings_store(database: Database) -> SettingsStore:
    return SettingsStore(database.session_factory)


@pytest.fixture
def ledger(database: Database) -> DeliveryLedger:
    return DeliveryLedger(database.session_factory)


@pytest.fixture
def resolver(settings_store: SettingsStore) -> SettingsResolver:
    return SettingsResolver(settings_store, default_timezone="America/Sao_Paulo")


# =============================================================================
# Providers
# =============================================================================

@pytest.fixture
def email_provider() -> ConsoleEmailProvider:
    """Fresh logging email provider for each test."""
    return ConsoleEmailProvider(fail_rate=0.0)


@pytest.fixture
def push_provider() -> PushProvider:
    return PushProvider(fail_rate=0.0)


@pytest.fixture
def connections() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def websocket_provider(connections: ConnectionRegistry) -> WebSocketProvider:
    return WebSocketProvider(connections)


# =============================================================================
# Engine
# =============================================================================

@pytest.fixture
def config() -> Settings:
    return Settings(environment="development", database_url="sqlite:///:memory:", smtp_host=None)


@pytest.fixture
def system(config, database, email_provider, websocket_provider, push_provider):
    """A started engine wired to the recording providers."""
    engine = build_notification_system(
        config=config,
        database=database,
        providers={
            DeliveryChannel.EMAIL: email_provider,
            DeliveryChannel.WEBSOCKET: websocket_provider,
            DeliveryChannel.PUSH: push_provider,
        },
    )
    yield engine
    engine.close()


@pytest.fixture
def publish():
    """
    Publish an event and wait for every async handler it scheduled.

    Usage: publish(system, "invite.sent", payload)
    """
    def _publish(engine: NotificationSystem, event_name: str, payload: dict[str, Any]) -> int:
        async def _run() -> int:
            count = engine.event_bus.publish(event_name, payload)
            await engine.event_bus.drain()
            return count

        return asyncio.run(_run())

    return _publish


# =============================================================================
# Identities and payloads
# =============================================================================

@pytest.fixture
def organizer_id() -> str:
    """User id of the organizer who owns the event."""
    return "usr-ana"


@pytest.fixture
def other_user_id() -> str:
    return "usr-bruno"


@pytest.fixture
def guest_payload(organizer_id: str) -> dict[str, Any]:
    """A guest.status.changed payload for a confirmation."""
    return {
        "guestId": "gst-1",
        "eventId": "evt-42",
        "userId": organizer_id,
        "previousStatus": "pending",
        "newStatus": "confirmed",
        "guestName": "Carla",
        "eventTitle": "Ana's Birthday",
        "eventDate": "2026-11-20 20:00",
        "eventLocation": "Rua Augusta, 1500",
    }


@pytest.fixture
def invite_payload(organizer_id: str) -> dict[str, Any]:
    return {
        "inviteId": "inv-7",
        "eventId": "evt-42",
        "userId": organizer_id,
        "guestId": "gst-2",
        "channel": "whatsapp",
    }


@pytest.fixture
def make_socket():
    """Factory for RecordingSocket; ``make_socket(fail=True)`` raises on send."""
    return RecordingSocket


@pytest.fixture
def organizer_socket(connections: ConnectionRegistry, organizer_id: str) -> RecordingSocket:
    """A live WebSocket for the organizer."""
    socket = RecordingSocket()
    connections.connect(organizer_id, socket)
    return socket

"""
Wiring for one running notification engine.

``build_notification_system`` creates every component once and hands them out
together, so the HTTP app, the CLI demos and the tests all assemble the engine
the same way and nothing relies on module-level singletons.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from notifications.dispatcher import Dispatcher
from notifications.event_bus import EventBus
from notifications.events import NotificationEventPublisher
from notifications.notification_service import NotificationService
from notifications.query_api import NotificationQueryAPI
from notifications.settings_resolver import SettingsResolver
from shared.channels import ChannelRegistry, ConsoleEmailProvider, PushProvider, Provider
from shared.config import Settings
from shared.data_store import Database, DeliveryLedger, NotificationStore, SettingsStore
from shared.models import DeliveryChannel
from shared.providers import (
    ConnectionRegistry,
    EmailProvider,
    RecipientLookup,
    SMTPTransport,
    WebSocketProvider,
)

logger = logging.getLogger("notifications")


@dataclass
class NotificationSystem:
    """Every component of one engine instance."""
    config: Settings
    database: Database
    event_bus: EventBus
    publisher: NotificationEventPublisher
    notifications: NotificationStore
    settings_store: SettingsStore
    ledger: DeliveryLedger
    resolver: SettingsResolver
    registry: ChannelRegistry
    connections: ConnectionRegistry
    dispatcher: Dispatcher
    service: NotificationService
    query_api: NotificationQueryAPI

    def start(self) -> None:
        self.service.start()

    def stop(self) -> None:
        self.service.stop()

    def close(self) -> None:
        self.stop()
        self.event_bus.close()
        self.database.dispose()


def _no_recipient(user_id: str) -> Optional[str]:
    return None


def default_providers(
    config: Settings,
    connections: ConnectionRegistry,
    recipient_lookup: Optional[RecipientLookup] = None,
) -> dict[DeliveryChannel, Provider]:
    """
    Providers for a standard deployment.

    Email goes through SMTP when an SMTP host is configured and is only logged
    otherwise; push is always the logging mock.
    """
    transport = SMTPTransport.from_settings(config)
    if transport is not None:
        email: Provider = EmailProvider(
            transport=transport,
            recipient_lookup=recipient_lookup or _no_recipient,
            sender=config.smtp_from,
            frontend_url=config.frontend_url,
        )
    else:
        logger.info("SMTP not configured, emails will be logged instead of sent")
        email = ConsoleEmailProvider()

    return {
        DeliveryChannel.EMAIL: email,
        DeliveryChannel.WEBSOCKET: WebSocketProvider(connections),
        DeliveryChannel.PUSH: PushProvider(),
    }


def build_notification_system(
    config: Optional[Settings] = None,
    database: Optional[Database] = None,
    providers: Optional[dict[DeliveryChannel, Provider]] = None,
    recipient_lookup: Optional[RecipientLookup] = None,
    start: bool = True,
) -> NotificationSystem:
    """
    Assemble a notification engine.

    Args:
        config: Settings to use (defaults to a fresh Settings from the environment)
        database: Database to use (defaults to one built from ``config.database_url``)
        providers: Channel providers; when None, ``default_providers`` is used.
            A WebSocketProvider passed here shares its connection registry with
            the returned system.
        recipient_lookup: user id -> email address, used by the SMTP provider
        start: Subscribe the notification service to the bus immediately
    """
    config = config or Settings()
    if database is None:
        database = Database(config.database_url)
    database.create_all()

    connections = ConnectionRegistry()
    if providers is None:
        providers = default_providers(config, connections, recipient_lookup)
    else:
        websocket = providers.get(DeliveryChannel.WEBSOCKET)
        if isinstance(websocket, WebSocketProvider):
            connections = websocket.connections

    event_bus = EventBus()
    notifications = NotificationStore(database.session_factory)
    settings_store = SettingsStore(database.session_factory)
    ledger = DeliveryLedger(database.session_factory)
    resolver = SettingsResolver(settings_store, default_timezone=config.default_timezone)
    registry = ChannelRegistry(providers)
    dispatcher = Dispatcher(registry, ledger)
    service = NotificationService(event_bus, notifications, resolver, dispatcher)

    system = NotificationSystem(
        config=config,
        database=database,
        event_bus=event_bus,
        publisher=NotificationEventPublisher(event_bus),
        notifications=notifications,
        settings_store=settings_store,
        ledger=ledger,
        resolver=resolver,
        registry=registry,
        connections=connections,
        dispatcher=dispatcher,
        service=service,
        query_api=NotificationQueryAPI(notifications, resolver, ledger),
    )
    if start:
        system.start()
    return system

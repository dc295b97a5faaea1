"""
Demonstration scripts for the notification engine.

These functions show the engine in action against an in-memory database and
logging providers. Run them to see events being published, notifications
being persisted and every delivery attempt landing in the ledger.
"""

import json
from typing import Any

from notifications.system import NotificationSystem, build_notification_system
from shared.channels import ConsoleEmailProvider, PushProvider
from shared.config import Settings, configure_logging
from shared.data_store import Database
from shared.models import DeliveryChannel, Notification
from shared.providers import WebSocketProvider


ORGANIZER_ID = "usr-ana"


class ConsoleSocket:
    """A stand-in WebSocket that prints every frame it receives."""

    def __init__(self, label: str):
        self.label = label
        self.frames: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.frames.append(data)
        print(f"  [{self.label}] <- {json.dumps(data)[:120]}")


def _build_demo_system() -> tuple[NotificationSystem, ConsoleEmailProvider]:
    email = ConsoleEmailProvider()
    system = build_notification_system(
        config=Settings(environment="development", database_url="sqlite:///:memory:"),
        database=Database("sqlite:///:memory:"),
        providers={
            DeliveryChannel.EMAIL: email,
            DeliveryChannel.WEBSOCKET: WebSocketProvider(),
            DeliveryChannel.PUSH: PushProvider(),
        },
    )
    return system, email


def _print_ledger(system: NotificationSystem, notification: Notification) -> None:
    print(f"\n  {notification.type.value}: {notification.title} - {notification.message}")
    for entry in system.ledger.list_for_notification(notification.id):
        detail = f" ({entry.error_message})" if entry.error_message else ""
        print(f"    {entry.channel.value:<10} {entry.status.value}{detail}")


def _banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(f"DEMO: {title}")
    print("=" * 70 + "\n")


def run_guest_responses_demo() -> list[Notification]:
    """
    Demonstrate guests answering an invitation.

    This shows:
    1. The guest CRUD code publishes guest.status.changed
    2. "confirmed" and "declined" become notifications, "pending" does not
    3. Default settings send both over email and WebSocket
    """
    _banner("Guest Responses")

    system, email = _build_demo_system()
    system.connections.connect(ORGANIZER_ID, ConsoleSocket("ana's browser"))

    base = {
        "eventId": "evt-42",
        "userId": ORGANIZER_ID,
        "eventTitle": "Ana's 30th Birthday",
        "eventDate": "2026-11-20 20:00",
        "eventLocation": "Rua Augusta, 1500",
    }
    answers = [
        ("gst-1", "Bruno", "confirmed"),
        ("gst-2", "Carla", "declined"),
        ("gst-3", "Diego", "pending"),
    ]
    for guest_id, name, status in answers:
        print(f"ACTION: {name} answers '{status}'")
        system.publisher.emit_guest_status_changed({
            **base,
            "guestId": guest_id,
            "guestName": name,
            "previousStatus": "pending" if status != "pending" else "invited",
            "newStatus": status,
        })
        system.event_bus.join(timeout=5)

    page = system.query_api.list_notifications(ORGANIZER_ID)
    print("\n" + "-" * 70)
    print(f"RESULT: {page.pagination.total} notifications, {page.unread_count} unread")
    print("(Diego's 'pending' answer was filtered out)")
    print("-" * 70)
    for notification in page.notifications:
        _print_ledger(system, notification)

    print(f"\nEmails logged: {email.get_sent_count()}")
    system.close()
    return page.notifications


def run_invite_sent_demo() -> list[Notification]:
    """
    Demonstrate invite notifications with the organizer offline.

    INVITE_SENT defaults to WebSocket only, and nobody is connected, so the
    notification is persisted and its single delivery attempt is FAILED.
    """
    _banner("Invite Sent (organizer offline)")

    system, _ = _build_demo_system()

    system.publisher.emit_invite_sent({
        "inviteId": "inv-7",
        "eventId": "evt-42",
        "userId": ORGANIZER_ID,
        "guestId": "gst-4",
        "channel": "whatsapp",
        "eventTitle": "Ana's 30th Birthday",
    })
    system.event_bus.join(timeout=5)

    page = system.query_api.list_notifications(ORGANIZER_ID)
    for notification in page.notifications:
        _print_ledger(system, notification)

    system.close()
    return page.notifications


def run_settings_demo() -> list[Notification]:
    """
    Demonstrate a partial settings update changing where notifications go.

    The organizer turns email off for confirmations and push on; websocket
    keeps its stored value because it is not part of the update.
    """
    _banner("Settings Update")

    system, email = _build_demo_system()

    before = system.query_api.get_settings(ORGANIZER_ID)
    print(f"Before: guestConfirmed = {before.guest_confirmed.model_dump()}")

    after = system.query_api.update_settings(
        ORGANIZER_ID, {"guestConfirmed": {"email": False, "push": True}}
    )
    print(f"After:  guestConfirmed = {after.guest_confirmed.model_dump()}\n")

    system.publisher.emit_guest_status_changed({
        "guestId": "gst-5",
        "eventId": "evt-42",
        "userId": ORGANIZER_ID,
        "previousStatus": "pending",
        "newStatus": "confirmed",
        "guestName": "Eva",
        "eventTitle": "Ana's 30th Birthday",
    })
    system.event_bus.join(timeout=5)

    page = system.query_api.list_notifications(ORGANIZER_ID)
    for notification in page.notifications:
        _print_ledger(system, notification)
    print(f"\nEmails logged: {email.get_sent_count()} (email is off for confirmations)")

    system.close()
    return page.notifications


def run_all_demos() -> None:
    run_guest_responses_demo()
    run_invite_sent_demo()
    run_settings_demo()


if __name__ == "__main__":
    configure_logging("INFO")
    print("\nRunning Notification Engine Demos")
    print("=" * 70)
    run_all_demos()

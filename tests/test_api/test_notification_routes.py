"""
Tests for the notification HTTP and WebSocket routes.

These tests verify the FastAPI endpoints against a fresh in-memory engine.
"""

import threading

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketDisconnect

from api.main import app, reset_api_state
from notifications.system import build_notification_system
from shared.config import Settings
from shared.data_store import Database
from shared.models import DeliveryChannel, DeliveryStatus, NotificationType


@pytest.fixture
def api_client(system):
    """Create a test client bound to the test engine."""
    reset_api_state(system)
    with TestClient(app) as client:
        yield client
    reset_api_state(None)


@pytest.fixture
def headers(organizer_id):
    return {"X-User-Id": organizer_id}


def _seed(system, user_id, count, notification_type=NotificationType.GUEST_CONFIRMED):
    return [
        system.notifications.create(user_id, notification_type, "Guest Confirmed", f"guest {i} confirmed")
        for i in range(count)
    ]


class TestHealthEndpoint:
    def test_health_check(self, api_client):
        response = api_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert set(body["channels"]) == {"EMAIL", "WEBSOCKET", "PUSH"}
        assert body["websocket"] == {"connectedUsers": 0, "totalConnections": 0}


class TestAuthentication:
    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/api/notifications"),
            ("patch", "/api/notifications/mark-all-read"),
            ("get", "/api/notifications/settings"),
            ("get", "/api/notifications/stats"),
        ],
    )
    def test_missing_user_is_rejected(self, api_client, method, path):
        response = getattr(api_client, method)(path)

        assert response.status_code == 401

    def test_blank_user_is_rejected(self, api_client):
        response = api_client.get("/api/notifications", headers={"X-User-Id": "  "})

        assert response.status_code == 401


class TestListEndpoint:
    """Tests for GET /api/notifications."""

    def test_lists_with_pagination(self, api_client, system, headers, organizer_id, other_user_id):
        created = _seed(system, organizer_id, 25)
        _seed(system, other_user_id, 3)
        for notification in created[:5]:
            system.query_api.mark_read(notification.id, organizer_id)

        response = api_client.get(
            "/api/notifications", params={"page": 2, "limit": 10, "unreadOnly": "true"}, headers=headers
        )

        assert response.status_code == 200
        body = response.json()
        assert len(body["notifications"]) == 10
        assert body["pagination"] == {"page": 2, "limit": 10, "total": 20, "pages": 2}
        assert body["unreadCount"] == 20
        assert body["notifications"][0]["userId"] == organizer_id

    def test_type_filter(self, api_client, system, headers, organizer_id):
        _seed(system, organizer_id, 2)
        _seed(system, organizer_id, 1, NotificationType.INVITE_SENT)

        response = api_client.get("/api/notifications", params={"type": "INVITE_SENT"}, headers=headers)

        assert response.json()["pagination"]["total"] == 1

    @pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}, {"type": "BIRTHDAY"}])
    def test_invalid_query(self, api_client, headers, params):
        response = api_client.get("/api/notifications", params=params, headers=headers)

        assert response.status_code == 422


class TestReadEndpoints:
    def test_mark_read(self, api_client, system, headers, organizer_id):
        notification = _seed(system, organizer_id, 1)[0]

        response = api_client.patch(f"/api/notifications/{notification.id}/read", headers=headers)

        assert response.status_code == 200
        assert system.notifications.get(notification.id).read is True

    def test_mark_read_twice_is_not_found(self, api_client, system, headers, organizer_id):
        notification = _seed(system, organizer_id, 1)[0]

        first = api_client.patch(f"/api/notifications/{notification.id}/read", headers=headers)
        second = api_client.patch(f"/api/notifications/{notification.id}/read", headers=headers)

        assert first.status_code == 200
        assert second.status_code == 404

    def test_mark_someone_elses_is_not_found(self, api_client, system, organizer_id, other_user_id):
        notification = _seed(system, organizer_id, 1)[0]

        response = api_client.patch(
            f"/api/notifications/{notification.id}/read", headers={"X-User-Id": other_user_id}
        )

        assert response.status_code == 404
        assert system.notifications.get(notification.id).read is False

    def test_mark_all_read(self, api_client, system, headers, organizer_id, other_user_id):
        _seed(system, organizer_id, 3)
        _seed(system, other_user_id, 2)

        response = api_client.patch("/api/notifications/mark-all-read", headers=headers)

        assert response.status_code == 200
        assert response.json()["updated"] == 3
        assert system.notifications.count_unread(other_user_id) == 2

    def test_deliveries(self, api_client, system, headers, organizer_id, other_user_id):
        notification = _seed(system, organizer_id, 1)[0]
        entry = system.ledger.open_entry(notification.id, DeliveryChannel.PUSH)
        system.ledger.mark_failed(entry.id, "device token expired")

        response = api_client.get(f"/api/notifications/{notification.id}/deliveries", headers=headers)
        foreign = api_client.get(
            f"/api/notifications/{notification.id}/deliveries", headers={"X-User-Id": other_user_id}
        )

        assert response.status_code == 200
        assert response.json()[0]["status"] == "FAILED"
        assert response.json()[0]["errorMessage"] == "device token expired"
        assert foreign.json() == []


class TestSettingsEndpoints:
    """Tests for GET/PUT /api/notifications/settings."""

    def test_get_returns_defaults(self, api_client, headers, organizer_id):
        response = api_client.get("/api/notifications/settings", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["userId"] == organizer_id
        assert body["guestConfirmed"] == {"email": True, "websocket": True, "push": False}
        assert body["inviteSent"] == {"email": False, "websocket": True, "push": False}
        assert body["digestFrequency"] == "NONE"

    def test_put_merges_partial_document(self, api_client, headers):
        response = api_client.put(
            "/api/notifications/settings", json={"guestConfirmed": {"push": True}}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["guestConfirmed"] == {"email": True, "websocket": True, "push": True}
        reread = api_client.get("/api/notifications/settings", headers=headers).json()
        assert reread["guestConfirmed"]["push"] is True
        assert reread["guestDeclined"] == {"email": True, "websocket": True, "push": False}

    @pytest.mark.parametrize(
        "body",
        [
            {"guestConfirmed": {"email": "yes"}},
            {"guestConfirmed": {"sms": True}},
            {"birthdayWishes": {"email": True}},
            {"quietHoursStart": 24},
            {"timezone": "Mars/Olympus"},
        ],
    )
    def test_put_rejects_invalid(self, api_client, headers, body):
        response = api_client.put("/api/notifications/settings", json=body, headers=headers)

        assert response.status_code == 422


class TestStatsEndpoint:
    def test_stats(self, api_client, system, headers, organizer_id):
        _seed(system, organizer_id, 2)
        _seed(system, organizer_id, 1, NotificationType.INVITE_SENT)

        response = api_client.get("/api/notifications/stats", headers=headers)

        assert response.status_code == 200
        assert response.json() == {
            "total": 3,
            "unread": 3,
            "byType": {"GUEST_CONFIRMED": 2, "INVITE_SENT": 1},
            "last7Days": 3,
        }


class TestTestNotificationEndpoint:
    def test_creates_and_delivers(self, api_client, system, headers, organizer_id, email_provider):
        response = api_client.post("/api/notifications/test", json={"title": "Hello"}, headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Hello"
        assert body["type"] == "GUEST_CONFIRMED"
        assert email_provider.get_sent_count() == 1
        assert len(system.ledger.list_for_notification(body["id"])) == 2

    def test_forbidden_outside_development(self, organizer_id):
        production = build_notification_system(
            config=Settings(environment="production", database_url="sqlite:///:memory:", smtp_host=None),
            database=Database("sqlite:///:memory:"),
        )
        reset_api_state(production)
        try:
            response = TestClient(app).post(
                "/api/notifications/test", json={}, headers={"X-User-Id": organizer_id}
            )
        finally:
            reset_api_state(None)
            production.close()

        assert response.status_code == 403


class TestWebSocket:
    """Tests for the live notification stream."""

    def test_requires_user_id(self, api_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with api_client.websocket_connect("/ws/notifications"):
                pass

        assert exc_info.value.code == 1008

    def test_receives_live_notification(self, api_client, system, headers, organizer_id):
        with api_client.websocket_connect(f"/ws/notifications?userId={organizer_id}") as websocket:
            assert websocket.receive_json() == {"type": "authenticated", "success": True}
            assert system.connections.is_connected(organizer_id)

            response = api_client.post("/api/notifications/test", json={}, headers=headers)
            frame = websocket.receive_json()

        assert frame["type"] == "notification"
        assert frame["data"]["id"] == response.json()["id"]
        assert frame["data"]["read"] is False

    def test_mark_read_over_socket(self, api_client, system, organizer_id):
        notification = _seed(system, organizer_id, 1)[0]

        with api_client.websocket_connect(f"/ws/notifications?userId={organizer_id}") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "mark_notification_read", "notificationId": notification.id})
            reply = websocket.receive_json()

        assert reply == {"type": "notification_marked_read", "notificationId": notification.id, "success": True}
        assert system.notifications.get(notification.id).read is True

    def test_publish_from_worker_thread_reaches_socket(self, api_client, system, organizer_id, guest_payload):
        with api_client.websocket_connect(f"/ws/notifications?userId={organizer_id}") as websocket:
            websocket.receive_json()

            worker = threading.Thread(target=system.publisher.emit_guest_status_changed, args=(guest_payload,))
            worker.start()
            worker.join(timeout=5)
            frame = websocket.receive_json()

            assert system.event_bus.join(timeout=5)
            assert system.connections.is_connected(organizer_id)

        assert frame["type"] == "notification"
        assert frame["data"]["type"] == "GUEST_CONFIRMED"
        entries = system.ledger.list_for_notification(frame["data"]["id"])
        by_channel = {e.channel: e.status for e in entries}
        assert by_channel[DeliveryChannel.WEBSOCKET] == DeliveryStatus.SENT

"""
FastAPI application for the notification engine.

This application provides:
1. The notification read API (/api/notifications...)
2. Settings and statistics endpoints
3. A development-only endpoint that pushes a test notification
4. The WebSocket endpoint the front-end keeps open for live notifications

Run with:
    uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.

Authentication lives in the wider API; here the caller's user id arrives in
the ``X-User-Id`` header.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, WebSocket, WebSocketDisconnect

from notifications.system import NotificationSystem, build_notification_system
from shared.config import configure_logging, get_settings
from shared.models import (
    CamelModel,
    DeliveryLogEntry,
    Notification,
    NotificationPage,
    NotificationSettings,
    NotificationSettingsUpdate,
    NotificationStats,
    NotificationType,
)

logger = logging.getLogger("api")


# =============================================================================
# Engine wiring
# =============================================================================

_system: Optional[NotificationSystem] = None


def get_system() -> NotificationSystem:
    """Get the engine serving this app, building it from settings on first use."""
    global _system
    if _system is None:
        _system = build_notification_system(get_settings())
    return _system


def reset_api_state(system: Optional[NotificationSystem] = None) -> Optional[NotificationSystem]:
    """Swap the engine (useful for testing). Passing None forces a rebuild on next use."""
    global _system
    if _system is not None and _system is not system:
        _system.stop()
    _system = system
    return _system


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Scope every request to the calling user."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


# Request/response models
class MessageResponse(CamelModel):
    message: str


class MarkAllReadResponse(CamelModel):
    message: str
    updated: int


class TestNotificationRequest(CamelModel):
    """Body of the development-only test endpoint."""
    type: NotificationType = NotificationType.GUEST_CONFIRMED
    title: str = "Test"
    message: str = "This is a test notification"


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(f"Starting notification API ({settings.environment})")
    system = get_system()
    # Publishes from worker threads are handled on this loop, next to the sockets
    system.event_bus.bind_loop(asyncio.get_running_loop())
    yield
    await system.event_bus.drain()
    system.event_bus.bind_loop(None)
    logger.info("Shutting down")


app = FastAPI(
    title="Guest Notification API",
    description="""
    Notifications for event organizers: guest answers, sent invites, event
    reminders and updates.

    ## Endpoints

    - `/api/notifications` - List, read-state, settings and statistics
    - `/ws/notifications` - Live notifications over WebSocket
    """,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    system = get_system()
    return {
        "status": "healthy",
        "service": "guest-notifications",
        "channels": [channel.value for channel in system.registry.registered_channels()],
        "websocket": system.connections.get_stats(),
    }


# =============================================================================
# Notifications
# =============================================================================

@app.get("/api/notifications", response_model=NotificationPage, tags=["Notifications"])
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False, alias="unreadOnly"),
    type: Optional[NotificationType] = Query(None),
    user_id: str = Depends(current_user),
):
    """List the caller's notifications, newest first, with their global unread count."""
    return get_system().query_api.list_notifications(
        user_id, page=page, limit=limit, unread_only=unread_only, notification_type=type
    )


@app.patch("/api/notifications/mark-all-read", response_model=MarkAllReadResponse, tags=["Notifications"])
def mark_all_read(user_id: str = Depends(current_user)):
    updated = get_system().query_api.mark_all_read(user_id)
    return MarkAllReadResponse(message="All notifications marked as read", updated=updated)


@app.patch("/api/notifications/{notification_id}/read", response_model=MessageResponse, tags=["Notifications"])
def mark_read(notification_id: str, user_id: str = Depends(current_user)):
    """Mark one of the caller's notifications read."""
    if not get_system().query_api.mark_read(notification_id, user_id):
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return MessageResponse(message="Notification marked as read")


@app.get(
    "/api/notifications/{notification_id}/deliveries",
    response_model=list[DeliveryLogEntry],
    tags=["Notifications"],
)
def get_deliveries(notification_id: str, user_id: str = Depends(current_user)):
    """Delivery attempts of one of the caller's notifications."""
    return get_system().query_api.get_delivery_log(notification_id, user_id)


# =============================================================================
# Settings and Stats
# =============================================================================

@app.get("/api/notifications/settings", response_model=NotificationSettings, tags=["Settings"])
def get_notification_settings(user_id: str = Depends(current_user)):
    return get_system().query_api.get_settings(user_id)


@app.put("/api/notifications/settings", response_model=NotificationSettings, tags=["Settings"])
def update_notification_settings(
    update: NotificationSettingsUpdate,
    user_id: str = Depends(current_user),
):
    """
    Partially update the caller's settings.

    Keys that are left out keep their value; inside a channel map, flags that
    are left out keep theirs. Unknown keys are rejected with 422.
    """
    return get_system().query_api.update_settings(user_id, update)


@app.get("/api/notifications/stats", response_model=NotificationStats, tags=["Stats"])
def get_stats(user_id: str = Depends(current_user)):
    return get_system().query_api.get_stats(user_id)


# =============================================================================
# Development
# =============================================================================

@app.post("/api/notifications/test", response_model=Notification, tags=["Development"])
async def send_test_notification(
    request: TestNotificationRequest,
    user_id: str = Depends(current_user),
):
    """Run the full notification pipeline for a synthetic event (development only)."""
    system = get_system()
    if not system.config.is_development:
        raise HTTPException(status_code=403, detail="Endpoint only available in development")
    return await system.service.send_test_notification(
        user_id, request.type, title=request.title, message=request.message
    )


# =============================================================================
# WebSocket
# =============================================================================

@app.websocket("/ws/notifications")
async def notifications_websocket(websocket: WebSocket) -> None:
    """
    Live notification stream for one user.

    Frames pushed by the server: ``{"type": "notification", "data": {...}}``.
    The client may send ``{"type": "mark_notification_read", "notificationId": ...}``.
    """
    user_id = (websocket.query_params.get("userId") or "").strip()
    if not user_id:
        await websocket.close(code=1008)
        return

    system = get_system()
    await websocket.accept()
    system.connections.connect(user_id, websocket)
    try:
        await websocket.send_json({"type": "authenticated", "success": True})
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                continue
            if message.get("type") == "mark_notification_read":
                notification_id = str(message.get("notificationId", ""))
                marked = system.query_api.mark_read(notification_id, user_id)
                await websocket.send_json({
                    "type": "notification_marked_read",
                    "notificationId": notification_id,
                    "success": marked,
                })
    except WebSocketDisconnect as e:
        logger.debug(f"WebSocket for user {user_id} closed by client (code {e.code})")
    finally:
        system.connections.disconnect(user_id, websocket)

"""
WebSocket and email delivery providers.

Both satisfy the Provider contract from shared.channels and never raise for
ordinary delivery failures: an offline user, a dead socket or a refused SMTP
login all come back as failed DeliveryResults.
"""

import asyncio
import logging
import smtplib
from collections import defaultdict
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Optional, Protocol

from shared.channels import DeliveryResult
from shared.models import DeliveryChannel, Notification
from shared.templates import get_template

logger = logging.getLogger("notifications")


# =============================================================================
# WebSocket
# =============================================================================

class Connection(Protocol):
    """What the provider needs from a live socket (FastAPI's WebSocket fits)."""

    async def send_json(self, data: Any) -> None:
        ...


class ConnectionRegistry:
    """
    Live real-time connections grouped by user.

    connect/disconnect are the only mutators.
    """

    def __init__(self):
        self._connections: defaultdict[str, set[Connection]] = defaultdict(set)

    def connect(self, user_id: str, connection: Connection) -> None:
        self._connections[user_id].add(connection)
        logger.info(f"WebSocket connected for user {user_id}")

    def disconnect(self, user_id: str, connection: Connection) -> None:
        connections = self._connections.get(user_id)
        if connections is None:
            return
        connections.discard(connection)
        if not connections:
            self._connections.pop(user_id, None)
        logger.info(f"WebSocket disconnected for user {user_id}")

    def connections_for(self, user_id: str) -> list[Connection]:
        return list(self._connections.get(user_id, ()))

    def is_connected(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def connected_users(self) -> list[str]:
        return list(self._connections)

    def get_stats(self) -> dict[str, int]:
        return {
            "connectedUsers": len(self._connections),
            "totalConnections": sum(len(c) for c in self._connections.values()),
        }


class WebSocketProvider:
    """Pushes notifications to every open socket of the owning user."""

    channel = DeliveryChannel.WEBSOCKET

    def __init__(self, connections: Optional[ConnectionRegistry] = None):
        self.connections = connections or ConnectionRegistry()

    @staticmethod
    def build_frame(notification: Notification) -> dict[str, Any]:
        return {
            "type": "notification",
            "data": {
                "id": notification.id,
                "type": notification.type.value,
                "title": notification.title,
                "message": notification.message,
                "data": notification.data,
                "timestamp": notification.created_at.isoformat(),
                "read": notification.read,
            },
        }

    async def attempt_delivery(
        self,
        notification: Notification,
        event_context: dict[str, Any],
    ) -> DeliveryResult:
        user_id = notification.user_id
        connections = self.connections.connections_for(user_id)
        if not connections:
            return DeliveryResult.failed("User not connected via WebSocket")

        frame = self.build_frame(notification)
        delivered = 0
        last_error: Optional[str] = None
        for connection in connections:
            try:
                await connection.send_json(frame)
                delivered += 1
            except Exception as e:
                # A socket that cannot be written to is gone
                last_error = str(e) or type(e).__name__
                logger.warning(f"Dropping WebSocket for user {user_id}: {last_error}")
                self.connections.disconnect(user_id, connection)

        if delivered == 0:
            return DeliveryResult.failed(f"WebSocket send failed: {last_error}")
        logger.info(f"WebSocket notification {notification.id} sent to user {user_id}")
        return DeliveryResult.ok()


# =============================================================================
# Email
# =============================================================================

class EmailTransport(Protocol):
    def send(self, sender: str, recipient: str, subject: str, body: str) -> None:
        ...


class SMTPTransport:
    """Blocking SMTP sender (STARTTLS + login when credentials are set)."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> Optional["SMTPTransport"]:
        """Build a transport from Settings, or None when SMTP is not configured."""
        if not (settings.smtp_host or "").strip():
            return None
        return cls(
            host=settings.smtp_host.strip(),
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
        )

    def send(self, sender: str, recipient: str, subject: str, body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = recipient
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(f"<pre style='font-family:sans-serif'>{body}</pre>", "html"))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.user and self.password:
                server.starttls()
                server.login(self.user, self.password)
            server.sendmail(sender, [recipient], msg.as_string())


RecipientLookup = Callable[[str], Optional[str]]


class EmailProvider:
    """
    Renders the type's email template and hands it to a transport.

    The recipient address is resolved through ``recipient_lookup`` (user id to
    email), which belongs to the user directory, not to this engine.
    """

    channel = DeliveryChannel.EMAIL

    def __init__(
        self,
        transport: EmailTransport,
        recipient_lookup: RecipientLookup,
        sender: str,
        frontend_url: str = "",
    ):
        self.transport = transport
        self.recipient_lookup = recipient_lookup
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")

    def build_context(self, notification: Notification, event_context: dict[str, Any]) -> dict[str, Any]:
        context = {**notification.data, **event_context}
        event_id = context.get("eventId")
        if self.frontend_url and event_id:
            context["dashboardUrl"] = f"{self.frontend_url}/dashboard/events/{event_id}"
        return context

    async def attempt_delivery(
        self,
        notification: Notification,
        event_context: dict[str, Any],
    ) -> DeliveryResult:
        recipient = self.recipient_lookup(notification.user_id)
        if not recipient:
            return DeliveryResult.failed(f"No email address for user {notification.user_id}")

        template = get_template(notification.type)
        if template is None:
            return DeliveryResult.failed(f"No email template for type {notification.type.value}")

        subject, body = template.render_email(self.build_context(notification, event_context))
        try:
            await asyncio.to_thread(self.transport.send, self.sender, recipient, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"[EMAIL FAILED] To: {recipient} | Subject: {subject} | Error: {e}")
            return DeliveryResult.failed(str(e) or type(e).__name__)

        logger.info(f"[EMAIL] To: {recipient} | Subject: {subject}")
        return DeliveryResult.ok()

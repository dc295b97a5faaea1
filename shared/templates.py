"""
Notification message templates.

Each notification type has:
- a title and a short message, stored on the Notification itself and shown
  in-product (and pushed over WebSocket)
- an email subject and plain-text body, rendered by the email provider

Templates use {placeholder} formatting over the triggering event payload, so
placeholders are the payload's camelCase keys (guestName, eventTitle, ...).
Missing keys fall back to neutral defaults instead of raising.

In a production system, templates might be:
- Localized for different languages
- Rendered with a proper templating engine (Jinja2) into HTML
"""

from dataclasses import dataclass
from typing import Any, Optional

from shared.models import NotificationType


# Fallbacks for payload keys a template references but the event did not carry
PLACEHOLDER_DEFAULTS: dict[str, str] = {
    "guestName": "Guest",
    "eventTitle": "Event",
    "eventDate": "Date not provided",
    "eventLocation": "Location not provided",
    "reminderType": "upcoming",
    "channel": "email",
    "inviteCount": "1",
    "severity": "info",
    "message": "",
    "dashboardUrl": "",
}


class _TemplateContext(dict):
    """Mapping used with str.format_map that tolerates missing keys."""

    def __missing__(self, key: str) -> str:
        return PLACEHOLDER_DEFAULTS.get(key, "")


@dataclass
class NotificationTemplate:
    """
    A notification template with in-product and email variants.
    """
    notification_type: NotificationType
    title: str
    message: str
    email_subject: str
    email_body: str

    def render(self, context: dict[str, Any]) -> tuple[str, str]:
        """
        Render the in-product title and message.

        Returns:
            Tuple of (title, message)
        """
        values = _TemplateContext(_stringify(context))
        return self.title.format_map(values), self.message.format_map(values)

    def render_email(self, context: dict[str, Any]) -> tuple[str, str]:
        """
        Render the email template with provided variables.

        Returns:
            Tuple of (subject, body)
        """
        values = _TemplateContext(_stringify(context))
        return self.email_subject.format_map(values), self.email_body.format_map(values)


def _stringify(context: dict[str, Any]) -> dict[str, str]:
    return {key: str(value) for key, value in context.items() if value is not None}


# =============================================================================
# Template Definitions
# =============================================================================

TEMPLATES: dict[NotificationType, NotificationTemplate] = {

    # -------------------------------------------------------------------------
    # Guest responses
    # -------------------------------------------------------------------------

    NotificationType.GUEST_CONFIRMED: NotificationTemplate(
        notification_type=NotificationType.GUEST_CONFIRMED,
        title="Guest Confirmed",
        message='{guestName} confirmed attendance for event "{eventTitle}"',
        email_subject="Attendance Confirmed - {eventTitle}",
        email_body="""Great news!

{guestName} confirmed attendance for your event.

{eventTitle}
Date: {eventDate}
Location: {eventLocation}

You can see every guest and their answers on the event dashboard:
{dashboardUrl}
""",
    ),

    NotificationType.GUEST_DECLINED: NotificationTemplate(
        notification_type=NotificationType.GUEST_DECLINED,
        title="Invitation Declined",
        message='{guestName} declined the invitation to event "{eventTitle}"',
        email_subject="Invitation Declined - {eventTitle}",
        email_body="""An update about your event.

{guestName} declined the invitation to your event.

{eventTitle}
Date: {eventDate}
Location: {eventLocation}

The updated guest list is available on the event dashboard:
{dashboardUrl}
""",
    ),

    NotificationType.GUEST_PENDING: NotificationTemplate(
        notification_type=NotificationType.GUEST_PENDING,
        title="Awaiting Answer",
        message='{guestName} has not answered the invitation to event "{eventTitle}" yet',
        email_subject="Awaiting Answer - {eventTitle}",
        email_body="""{guestName} has not answered the invitation to {eventTitle} yet.

Event dashboard: {dashboardUrl}
""",
    ),

    # -------------------------------------------------------------------------
    # Invites and events
    # -------------------------------------------------------------------------

    NotificationType.INVITE_SENT: NotificationTemplate(
        notification_type=NotificationType.INVITE_SENT,
        title="Invite Sent",
        message="Invite sent successfully via {channel}",
        email_subject="Invite Sent - {eventTitle}",
        email_body="""Your invite was sent successfully.

{eventTitle}
Date: {eventDate}
Invites sent: {inviteCount}

You will be notified when guests answer.
{dashboardUrl}
""",
    ),

    NotificationType.EVENT_REMINDER: NotificationTemplate(
        notification_type=NotificationType.EVENT_REMINDER,
        title="Event Reminder",
        message='Reminder ({reminderType}): event "{eventTitle}" is coming up',
        email_subject="Event Reminder - {eventTitle}",
        email_body="""This is a reminder ({reminderType}) about your event.

{eventTitle}
Date: {eventDate}
Location: {eventLocation}

{dashboardUrl}
""",
    ),

    NotificationType.EVENT_UPDATED: NotificationTemplate(
        notification_type=NotificationType.EVENT_UPDATED,
        title="Event Updated",
        message='Event "{eventTitle}" was updated',
        email_subject="Event Updated - {eventTitle}",
        email_body="""Your event {eventTitle} was updated.

Date: {eventDate}
Location: {eventLocation}

{dashboardUrl}
""",
    ),

    # -------------------------------------------------------------------------
    # System
    # -------------------------------------------------------------------------

    NotificationType.SYSTEM_ALERT: NotificationTemplate(
        notification_type=NotificationType.SYSTEM_ALERT,
        title="System Alert ({severity})",
        message="{message}",
        email_subject="System Alert ({severity})",
        email_body="""{message}
""",
    ),
}


# =============================================================================
# Template Access Functions
# =============================================================================

def get_template(notification_type: NotificationType) -> Optional[NotificationTemplate]:
    """Get a template by notification type."""
    return TEMPLATES.get(notification_type)


def render_title_and_message(
    notification_type: NotificationType,
    context: dict[str, Any],
) -> tuple[str, str]:
    """
    Render the in-product title and message for a notification type.

    Raises:
        ValueError: If template not found
    """
    template = get_template(notification_type)
    if not template:
        raise ValueError(f"No template found for notification type: {notification_type}")
    return template.render(context)

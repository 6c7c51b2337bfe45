"""Builds notification payloads.

Every function here is pure: same inputs, same payload. The only clock read
happens in callers that pass a timestamp in.
"""
from typing import Any, Dict, Optional

from . import config
from .models import (
    ChatEvent,
    MessageKind,
    Notification,
    NotificationPayload,
    NotificationType,
)

MEDIA_BODIES = {
    MessageKind.IMAGE: "📷 Photo",
    MessageKind.VIDEO: "🎥 Video",
    MessageKind.AUDIO: "🔊 Audio message",
    MessageKind.FILE: "📎 File",
}
FALLBACK_BODY = "New message"

DIRECT_TITLE = "New Message"
DIRECT_BODY = "You received a new message"
FRIEND_REQUEST_TITLE = "New Friend Request"
TEST_TITLE = "Test Notification"
TEST_BODY = (
    "This is a test notification to verify the notification "
    "system is working"
)


def compose(
    title: str,
    body: str,
    notification_type: NotificationType,
    data: Optional[Dict[str, Any]] = None,
    with_sound: bool = True,
) -> NotificationPayload:
    """Assemble a payload.

    Args:
        title: Visible title, usually the sender's display name
        body: Visible body text
        notification_type: Routing discriminator written to ``data.type``
        data: Extra data fields; None values are dropped, the rest stringified
        with_sound: Play the default sound on arrival

    Returns:
        NotificationPayload with ``click_action`` and ``type`` always set
    """
    fields = {
        key: str(value)
        for key, value in (data or {}).items()
        if value is not None
    }
    fields["type"] = NotificationType(notification_type).value
    fields["click_action"] = config.CLICK_ACTION

    return NotificationPayload(
        notification=Notification(
            title=title,
            body=body,
            sound="default" if with_sound else None,
            click_action=config.CLICK_ACTION,
        ),
        data=fields,
    )


def message_body(event: ChatEvent) -> str:
    """Human readable body for a chat message event."""
    if event.kind == MessageKind.TEXT:
        return event.body
    return MEDIA_BODIES.get(event.kind, FALLBACK_BODY)


def chat_message_payload(event: ChatEvent, sender_name: str) -> NotificationPayload:
    """Payload for a new chat message.

    Args:
        event: Message event being fanned out
        sender_name: Resolved display name of the sender

    Returns:
        NotificationPayload titled with the sender name
    """
    return compose(
        sender_name,
        message_body(event),
        NotificationType.MESSAGE,
        {
            "chatId": event.chat_id,
            "senderId": event.sender_id,
            "senderName": sender_name,
        },
    )


def friend_request_payload(event: ChatEvent, sender_name: str) -> NotificationPayload:
    """Payload for a new friend request.

    Args:
        event: Friend request event
        sender_name: Resolved display name of the requester

    Returns:
        NotificationPayload carrying the request id for the client
    """
    return compose(
        FRIEND_REQUEST_TITLE,
        f"{sender_name} sent you a friend request",
        NotificationType.FRIEND_REQUEST,
        {
            "requestId": event.event_id,
            "senderId": event.sender_id,
            "senderName": sender_name,
        },
    )


def direct_payload(
    sender_id: str,
    chat_id: Optional[str],
    title: Optional[str] = None,
    message: Optional[str] = None,
) -> NotificationPayload:
    """Payload for a user-initiated chat notification."""
    return compose(
        title or DIRECT_TITLE,
        message or DIRECT_BODY,
        NotificationType.CHAT_MESSAGE,
        {"chatId": chat_id, "senderId": sender_id},
    )


def diagnostic_payload(timestamp_ms: int, with_sound: bool = True) -> NotificationPayload:
    return compose(
        TEST_TITLE,
        TEST_BODY,
        NotificationType.TEST_NOTIFICATION,
        {"timestamp": timestamp_ms},
        with_sound=with_sound,
    )
